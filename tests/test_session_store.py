"""Tests for the session store against an in-memory database."""

from datetime import timedelta

import pytest

from sales_agent.schemas.conversation_schema import Role
from sales_agent.storage.session_store import PersistenceError
from sales_agent.tools import names
from tests.conftest import PHONE, SESSION_ID, make_message, make_tool_call


class TestSessions:
    @pytest.mark.asyncio
    async def test_phone_taken_from_session_id(self, store, clock):
        session = await store.get_or_create_session(SESSION_ID)
        assert session.customer_phone == PHONE
        assert not session.is_blocked
        assert session.expires_at == clock.now + timedelta(days=5)

    @pytest.mark.asyncio
    async def test_explicit_phone_normalized(self, store):
        session = await store.get_or_create_session("web-abc", customer_phone="+55 (83) 99999-0000")
        assert session.customer_phone == PHONE

    @pytest.mark.asyncio
    async def test_missing_phone_backfilled_later(self, store):
        first = await store.get_or_create_session("web-abc")
        assert first.customer_phone is None
        second = await store.get_or_create_session("web-abc", customer_phone=PHONE)
        assert second.customer_phone == PHONE

    @pytest.mark.asyncio
    async def test_known_phone_never_replaced(self, store):
        await store.get_or_create_session(SESSION_ID)
        session = await store.get_or_create_session(SESSION_ID, customer_phone="5511988887777")
        assert session.customer_phone == PHONE

    @pytest.mark.asyncio
    async def test_remote_jid_reuses_active_session(self, store):
        await store.get_or_create_session("web-1", remote_jid="jid-42@lid")
        session = await store.get_or_create_session("web-2", remote_jid="jid-42@lid")
        assert session.id == "web-1"

    @pytest.mark.asyncio
    async def test_expired_session_purged_and_recreated(self, store, clock):
        await store.get_or_create_session(SESSION_ID)
        await store.append_message(SESSION_ID, make_message(Role.USER, "oi"))
        await store.record_product_sent(SESSION_ID, "p1")

        clock.advance(days=6)
        session = await store.get_or_create_session(SESSION_ID)

        assert session.expires_at == clock.now + timedelta(days=5)
        assert await store.get_history(SESSION_ID) == []
        assert await store.get_sent_product_ids(SESSION_ID) == []

    @pytest.mark.asyncio
    async def test_clear_session(self, store):
        await store.get_or_create_session(SESSION_ID)
        await store.append_message(SESSION_ID, make_message(Role.USER, "oi"))
        await store.clear_session(SESSION_ID)
        assert await store.get_history(SESSION_ID) == []


class TestBlocking:
    @pytest.mark.asyncio
    async def test_block_and_unblock(self, store, clock):
        await store.get_or_create_session(SESSION_ID)
        assert await store.block_session(SESSION_ID)

        blocked = await store.get_or_create_session(SESSION_ID)
        assert blocked.is_blocked
        assert blocked.expires_at == clock.now + timedelta(days=4)

        assert await store.unblock_session(SESSION_ID)
        assert not (await store.get_or_create_session(SESSION_ID)).is_blocked

    @pytest.mark.asyncio
    async def test_block_unknown_session(self, store):
        assert not await store.block_session("missing")

    @pytest.mark.asyncio
    async def test_blocked_session_expires(self, store, clock):
        await store.get_or_create_session(SESSION_ID)
        await store.block_session(SESSION_ID)
        clock.advance(days=4, minutes=1)
        assert not (await store.get_or_create_session(SESSION_ID)).is_blocked


class TestTranscript:
    @pytest.mark.asyncio
    async def test_history_round_trip_in_order(self, store):
        await store.get_or_create_session(SESSION_ID)
        call = make_tool_call(names.CATALOG_SEARCH, {"termo": "cesta"}, call_id="c1")
        messages = [
            make_message(Role.USER, "quero uma cesta"),
            make_message(Role.ASSISTANT, tool_calls=[call]),
            make_message(Role.TOOL, '{"exatos": []}', tool_call_id="c1", name=names.CATALOG_SEARCH),
            make_message(Role.ASSISTANT, "Não encontrei cestas agora."),
        ]
        for message in messages:
            await store.append_message(SESSION_ID, message)

        history = await store.get_history(SESSION_ID)
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        assert history[1].tool_calls == [call]
        assert history[2].tool_call_id == "c1"
        assert history[2].name == names.CATALOG_SEARCH
        assert history[3].content == "Não encontrei cestas agora."

    @pytest.mark.asyncio
    async def test_message_for_unknown_session_fails(self, store):
        with pytest.raises(PersistenceError):
            await store.append_message("missing", make_message(Role.USER, "oi"))


class TestProductExposure:
    @pytest.mark.asyncio
    async def test_repeated_sends_are_counted(self, store):
        await store.get_or_create_session(SESSION_ID)
        await store.record_product_sent(SESSION_ID, "p1")
        await store.record_product_sent(SESSION_ID, "p1")
        await store.record_product_sent(SESSION_ID, "p2")

        exposure = await store.get_product_exposure(SESSION_ID)
        assert [(e.product_id, e.sent_count) for e in exposure] == [("p1", 2), ("p2", 1)]
        assert await store.get_sent_product_ids(SESSION_ID) == ["p1", "p2"]


class TestCustomerMemory:
    @pytest.mark.asyncio
    async def test_save_and_overwrite(self, store):
        await store.save_customer_memory(PHONE, "Gosta de rosas vermelhas")
        await store.save_customer_memory("+55 83 99999-0000", "Prefere retirar na loja")
        record = await store.get_customer_memory(PHONE)
        assert record.summary == "Prefere retirar na loja"

    @pytest.mark.asyncio
    async def test_unknown_phone(self, store):
        assert await store.get_customer_memory(PHONE) is None

    @pytest.mark.asyncio
    async def test_memory_expires_after_30_days(self, store, clock):
        await store.save_customer_memory(PHONE, "Gosta de rosas vermelhas")
        clock.advance(days=31)
        assert await store.get_customer_memory(PHONE) is None
