"""Tests for catalog curation down to two picks."""

import json

import pytest

from sales_agent.agents.curator import ProductCurator, parse_selection
from sales_agent.llm.client import LLMError, ModelReply
from tests.conftest import ScriptedLLM, make_catalog_payload, make_product


def _payload(count: int) -> dict:
    products = [make_product(f"p{i}", f"Cesta {i}", 100.0 + i) for i in range(count)]
    return json.loads(make_catalog_payload(*products))


class TestParseSelection:
    @pytest.mark.parametrize("reply,expected", [
        ("0,3", [0, 3]),
        ("Escolho 2 e 4", [2, 4]),
        ("9, 1, 0", [1, 0]),
    ])
    def test_valid(self, reply, expected):
        assert parse_selection(reply, 5) == expected

    @pytest.mark.parametrize("reply", ["", "nenhum", "1", "1,1", "7,8"])
    def test_invalid(self, reply):
        assert parse_selection(reply, 5) is None


class TestProductCurator:
    @pytest.mark.asyncio
    async def test_few_candidates_pass_through(self):
        llm = ScriptedLLM()
        payload = _payload(2)
        assert await ProductCurator(llm).curate(payload, "quero uma cesta") is payload
        assert llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_full_catalog_request_skips_curation(self):
        llm = ScriptedLLM()
        payload = _payload(5)
        assert await ProductCurator(llm).curate(payload, "me mostra o catálogo completo") is payload
        assert llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_picks_two(self):
        llm = ScriptedLLM([ModelReply(content="3,1")])
        curated = await ProductCurator(llm, temperature=0.2).curate(
            _payload(5), "quero uma cesta", "Prefere cestas de café"
        )

        assert [p["id"] for p in curated["exatos"]] == ["p3", "p1"]
        assert curated["status"] == "found"
        call = llm.complete_calls[0]
        assert call["temperature"] == 0.2
        assert "Prefere cestas de café" in call["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_model_error_keeps_payload(self):
        payload = _payload(4)
        llm = ScriptedLLM([LLMError("rate limited")])
        assert await ProductCurator(llm).curate(payload, "quero uma cesta") is payload

    @pytest.mark.asyncio
    async def test_unparseable_reply_keeps_payload(self):
        payload = _payload(4)
        llm = ScriptedLLM([ModelReply(content="as duas primeiras")])
        assert await ProductCurator(llm).curate(payload, "quero uma cesta") is payload
