"""End-to-end turn tests for the sales agent with scripted model and tools."""

import asyncio
import json
from datetime import datetime

import pytest

from sales_agent.agents.sales_agent import CART_EVENT_REASON, FINALIZATION_REASON, SalesAgent
from sales_agent.llm.client import LLMError, ModelReply
from sales_agent.prompts.replies import (
    BLOCKED_SESSION_REPLY,
    CART_HANDOFF_REPLY,
    ENGAGEMENT_REPLY,
    HANDOFF_REPLY,
    SENSITIVE_TOPIC_REPLY,
    TEAM_CONFIRMATION_REPLY,
)
from sales_agent.schemas.conversation_schema import Role
from sales_agent.tools import names
from sales_agent.tools.provider import ToolProviderError
from tests.conftest import (
    PHONE,
    SESSION_ID,
    FakeToolProvider,
    ScriptedLLM,
    make_catalog_payload,
    make_message,
    make_order_summary,
    make_product,
    make_tool_call,
    make_tool_exchange,
)

STORE_MOMENT = datetime(2025, 2, 13, 10, 30)


def _agent(llm, tools, store, **kwargs) -> SalesAgent:
    return SalesAgent(llm, tools, store, clock=lambda: STORE_MOMENT, **kwargs)


async def _seed_confirmable_order(store) -> None:
    """A transcript that ends with the assistant presenting a full order summary."""
    catalog = make_catalog_payload(make_product("p1", "Cesta Romântica", 150.0))
    available = json.dumps({"available": True, "date": "2025-02-14", "time": "15:00"})
    await store.get_or_create_session(SESSION_ID)
    for message in [
        make_message(Role.USER, "quero a cesta romântica"),
        *make_tool_exchange(names.CATALOG_SEARCH, catalog, {"termo": "cesta"}, call_id="c1"),
        make_message(Role.ASSISTANT, "A Cesta Romântica custa R$ 150,00! Para quando?"),
        make_message(Role.USER, "dia 14 às 15h"),
        *make_tool_exchange(
            names.DELIVERY_AVAILABILITY, available, {"date_str": "2025-02-14", "time_str": "15:00"}, call_id="c2",
        ),
        make_message(Role.ASSISTANT, "Temos disponibilidade! Qual o endereço?"),
        make_message(Role.USER, "Rua das Flores, 123, Centro"),
        make_message(Role.ASSISTANT, "Perfeito! PIX ou cartão?"),
        make_message(Role.USER, "pix"),
        make_message(Role.ASSISTANT, make_order_summary()),
    ]:
        await store.append_message(SESSION_ID, message)


class TestProductTurn:
    @pytest.mark.asyncio
    async def test_new_customer_gets_catalog_backed_reply(self, store):
        catalog = make_catalog_payload(
            make_product("p1", "Cesta Romântica", 150.0),
            make_product("p2", "Buquê de Rosas", 120.0),
        )
        reply_text = "Temos a Cesta Romântica por R$ 150,00 e o Buquê de Rosas por R$ 120,00! 🌹"
        llm = ScriptedLLM(
            [ModelReply(tool_calls=[make_tool_call(names.CATALOG_SEARCH, {"termo": "cesto de flores"})]),
             ModelReply(content="ok")],
            streams=[reply_text],
        )
        tools = FakeToolProvider({names.CATALOG_SEARCH: catalog})
        agent = _agent(llm, tools, store)

        reply = await agent.reply(SESSION_ID, "Quero um cesto de flores", customer_phone=PHONE)

        assert reply == reply_text
        assert tools.called(names.CATALOG_SEARCH)[0]["termo"] == "cesto de flores"
        history = await store.get_history(SESSION_ID)
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        assert history[-1].content == reply_text
        assert await store.get_sent_product_ids(SESSION_ID) == ["p1", "p2"]
        assert "core_identity_guideline" in tools.prompt_requests

    @pytest.mark.asyncio
    async def test_system_prompt_lists_products_already_sent(self, store):
        await store.get_or_create_session(SESSION_ID)
        await store.record_product_sent(SESSION_ID, "p7")
        llm = ScriptedLLM([ModelReply(content="Posso te mostrar outras cestas!")])
        await _agent(llm, FakeToolProvider(), store).reply(SESSION_ID, "tem outras cestas?")

        system_prompt = llm.complete_calls[0]["messages"][0]["content"]
        assert "p7" in system_prompt

    @pytest.mark.asyncio
    async def test_converse_yields_the_persisted_reply(self, store):
        llm = ScriptedLLM([ModelReply(content="Olá! Como posso te ajudar hoje?")])
        agent = _agent(llm, FakeToolProvider(), store)

        deltas = [d async for d in agent.converse(SESSION_ID, "oi")]

        assert "".join(deltas) == "Olá! Como posso te ajudar hoje?"
        history = await store.get_history(SESSION_ID)
        assert history[-1].content == "".join(deltas)

    @pytest.mark.asyncio
    async def test_model_failure_deflects(self, store):
        llm = ScriptedLLM([LLMError("APIConnectionError: down")])
        reply = await _agent(llm, FakeToolProvider(), store).reply(SESSION_ID, "Quero um cesto de flores")

        assert reply == TEAM_CONFIRMATION_REPLY
        history = await store.get_history(SESSION_ID)
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT]


class TestShortCircuits:
    @pytest.mark.asyncio
    async def test_pix_key_request_deflected_without_model(self, store):
        llm = ScriptedLLM()
        tools = FakeToolProvider()
        reply = await _agent(llm, tools, store).reply(SESSION_ID, "Qual a chave pix de vocês?")

        assert reply == SENSITIVE_TOPIC_REPLY
        assert llm.complete_calls == []
        assert tools.calls == []
        history = await store.get_history(SESSION_ID)
        assert [(m.role, m.content) for m in history] == [
            (Role.USER, "Qual a chave pix de vocês?"),
            (Role.ASSISTANT, SENSITIVE_TOPIC_REPLY),
        ]

    @pytest.mark.asyncio
    async def test_vague_message_gets_engagement_prompt(self, store):
        llm = ScriptedLLM()
        reply = await _agent(llm, FakeToolProvider(), store).reply(SESSION_ID, "???")
        assert reply == ENGAGEMENT_REPLY
        assert llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_blocked_session_answers_fixed_reply(self, store):
        await store.get_or_create_session(SESSION_ID)
        await store.block_session(SESSION_ID)
        llm = ScriptedLLM()

        reply = await _agent(llm, FakeToolProvider(), store).reply(SESSION_ID, "oi, ainda estão aí?")

        assert reply == BLOCKED_SESSION_REPLY
        assert llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_release_session_resumes_agent(self, store):
        await store.get_or_create_session(SESSION_ID)
        await store.block_session(SESSION_ID)
        llm = ScriptedLLM([ModelReply(content="Olá de novo! Como posso ajudar?")])
        agent = _agent(llm, FakeToolProvider(), store)

        assert await agent.release_session(SESSION_ID)
        assert await agent.reply(SESSION_ID, "oi") == "Olá de novo! Como posso ajudar?"


class TestCartEvent:
    @pytest.mark.asyncio
    async def test_cart_event_hands_off(self, store):
        llm = ScriptedLLM()
        tools = FakeToolProvider()
        agent = _agent(llm, tools, store, cart_event_handoff=True)

        reply = await agent.reply(SESSION_ID, "[carrinho] Cesta Romântica adicionada", customer_name="Maria")

        assert reply == CART_HANDOFF_REPLY
        notify = tools.called(names.NOTIFY_HUMAN)[0]
        assert notify["reason"] == CART_EVENT_REASON
        assert notify["customer_phone"] == PHONE
        assert tools.called(names.BLOCK_SESSION) == [{"session_id": SESSION_ID}]
        assert (await store.get_or_create_session(SESSION_ID)).is_blocked
        assert llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_block(self, store):
        tools = FakeToolProvider({names.NOTIFY_HUMAN: ToolProviderError("offline")})
        agent = _agent(ScriptedLLM(), tools, store, cart_event_handoff=True)

        reply = await agent.reply(SESSION_ID, "[carrinho] Cesta Romântica adicionada")

        assert reply == TEAM_CONFIRMATION_REPLY
        assert tools.called(names.BLOCK_SESSION) == []
        assert not (await store.get_or_create_session(SESSION_ID)).is_blocked

    @pytest.mark.asyncio
    async def test_cart_event_runs_turn_when_handoff_disabled(self, store):
        llm = ScriptedLLM([
            ModelReply(tool_calls=[make_tool_call(names.BUSINESS_HOURS)]),
            ModelReply(content="ok"),
        ], streams=["Ótima escolha! Para qual dia seria a entrega?"])
        tools = FakeToolProvider()
        agent = _agent(llm, tools, store, cart_event_handoff=False)

        reply = await agent.reply(SESSION_ID, "[carrinho] Cesta Romântica adicionada")

        assert reply == "Ótima escolha! Para qual dia seria a entrega?"
        assert tools.called(names.NOTIFY_HUMAN) == []
        assert llm.complete_calls[0]["tool_choice"] == "required"


class TestConfirmedOrder:
    @pytest.mark.asyncio
    async def test_confirmation_hands_off_without_model(self, store):
        await _seed_confirmable_order(store)
        llm = ScriptedLLM()
        tools = FakeToolProvider({names.NOTIFY_HUMAN: "Equipe notificada com sucesso"})
        agent = _agent(llm, tools, store)

        reply = await agent.reply(SESSION_ID, "pode confirmar", customer_phone=PHONE, customer_name="Maria")

        assert reply == HANDOFF_REPLY
        assert llm.complete_calls == []
        notify = tools.called(names.NOTIFY_HUMAN)[0]
        assert notify["reason"] == FINALIZATION_REASON
        assert "Produto: Cesta Romântica - R$ 150,00" in notify["customer_context"]
        assert "Pagamento: PIX" in notify["customer_context"]
        assert len(tools.called(names.BLOCK_SESSION)) == 1
        assert (await store.get_or_create_session(SESSION_ID)).is_blocked

        memory = await store.get_customer_memory(PHONE)
        assert "Cesta Romântica" in memory.summary

        assert await agent.reply(SESSION_ID, "obrigada!") == BLOCKED_SESSION_REPLY

    @pytest.mark.asyncio
    async def test_yes_without_summary_goes_through_model(self, store):
        llm = ScriptedLLM([ModelReply(content="Que bom! Quer ver nossas cestas?")])
        tools = FakeToolProvider()
        reply = await _agent(llm, tools, store).reply(SESSION_ID, "sim")

        assert reply == "Que bom! Quer ver nossas cestas?"
        assert tools.called(names.NOTIFY_HUMAN) == []


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_turns_on_one_session_are_serialized(self, store):
        llm = ScriptedLLM(default=lambda: ModelReply(content="Olá! Como posso ajudar?"))
        agent = _agent(llm, FakeToolProvider(), store)

        await asyncio.gather(
            agent.reply(SESSION_ID, "oi"),
            agent.reply(SESSION_ID, "boa tarde"),
        )

        roles = [m.role for m in await store.get_history(SESSION_ID)]
        assert roles == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
