"""
Sales agent: the per-turn entry point.

One call to ``converse`` is one turn. Turns on the same session are
serialized with a per-session lock; turns on different sessions run
concurrently. A turn either short-circuits with a fixed reply (blocked
session, sensitive topic, cart event, vague message, confirmed order) or
runs the two-phase pipeline:

    select guidelines -> decide tool strategy -> tool loop (Phase 1)
    -> synthesis (Phase 2) -> persist reply -> checkout milestone

Every turn persists the user message and the assistant reply.
"""

import asyncio
import weakref
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from sales_agent.agents.curator import ProductCurator
from sales_agent.agents.memory import CustomerMemoryService
from sales_agent.agents.synthesis import ResponseSynthesizer
from sales_agent.agents.tool_loop import ToolExecutionLoop
from sales_agent.config import settings
from sales_agent.conversation.checkout_state import (
    build_handoff_context,
    coaching_instruction,
    extract_checkout_state,
)
from sales_agent.conversation.confirmation import is_explicit_confirmation, last_assistant_reply
from sales_agent.conversation.guardrails import GuardrailPipeline
from sales_agent.conversation.history import recent_user_texts, window_history
from sales_agent.conversation.prompt_selector import select_prompts
from sales_agent.conversation.tool_strategy import decide_strategy
from sales_agent.llm.client import LLMClient, LLMError
from sales_agent.logging_context import get_session_logger, session_scope
from sales_agent.prompts.replies import (
    BLOCKED_SESSION_REPLY,
    CART_HANDOFF_REPLY,
    HANDOFF_REPLY,
    TEAM_CONFIRMATION_REPLY,
)
from sales_agent.prompts.system_prompts import build_system_prompt, store_now
from sales_agent.schemas.checkout_schema import CheckoutState
from sales_agent.schemas.conversation_schema import ChatMessage, Role
from sales_agent.schemas.session_schema import SessionInfo
from sales_agent.schemas.turn_schema import TurnContext
from sales_agent.storage.session_store import SessionStore
from sales_agent.tools import names
from sales_agent.tools.provider import ToolProvider, ToolProviderError
from sales_agent.tools.validators import validate_tool_arguments
from sales_agent.utils import normalize_phone

logger = get_session_logger(__name__)

FINALIZATION_REASON = "finalização do pedido"
CART_EVENT_REASON = "evento de carrinho"


class SalesAgent:
    """Conversational sales assistant over a tool server, a model and a session store."""

    def __init__(
        self,
        llm: LLMClient,
        tools: ToolProvider,
        store: SessionStore,
        guardrails: Optional[GuardrailPipeline] = None,
        max_iterations: int = settings.orchestrator.max_tool_iterations,
        cart_event_handoff: bool = settings.orchestrator.cart_event_handoff,
        clock: Callable[[], datetime] = store_now,
    ) -> None:
        self._llm = llm
        self._tools = tools
        self._store = store
        self._guardrails = guardrails or GuardrailPipeline()
        self._memory = CustomerMemoryService(store)
        self._curator = ProductCurator(llm)
        self._loop = ToolExecutionLoop(
            llm, tools, store, self._curator, self._memory, self._guardrails, max_iterations,
        )
        self._synthesizer = ResponseSynthesizer(llm, self._guardrails)
        self._cart_event_handoff = cart_event_handoff
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    async def converse(
        self,
        session_id: str,
        user_message: str,
        customer_phone: Optional[str] = None,
        customer_name: Optional[str] = None,
        remote_jid: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Process one inbound message and stream the reply.

        The reply is fully verified and persisted before the first delta is
        yielded, so a consumer that stops reading never leaves the
        transcript without the assistant message.
        """
        lock = self._lock_for(session_id)
        async with lock:
            with session_scope(session_id):
                reply = await self._run_turn(session_id, user_message, customer_phone, customer_name, remote_jid)
        yield reply

    async def reply(
        self,
        session_id: str,
        user_message: str,
        customer_phone: Optional[str] = None,
        customer_name: Optional[str] = None,
        remote_jid: Optional[str] = None,
    ) -> str:
        """Non-streaming convenience wrapper around ``converse``."""
        parts = [
            delta
            async for delta in self.converse(session_id, user_message, customer_phone, customer_name, remote_jid)
        ]
        return "".join(parts)

    async def release_session(self, session_id: str) -> bool:
        """Hand a blocked session back to the agent."""
        released = await self._store.unblock_session(session_id)
        logger.info("Session %s released: %s", session_id, released)
        return released

    async def clear_session(self, session_id: str) -> None:
        await self._store.clear_session(session_id)

    # ------------------------------------------------------------------ #
    #  Turn
    # ------------------------------------------------------------------ #

    async def _run_turn(
        self,
        session_id: str,
        user_message: str,
        customer_phone: Optional[str],
        customer_name: Optional[str],
        remote_jid: Optional[str],
    ) -> str:
        session = await self._store.get_or_create_session(session_id, customer_phone, remote_jid)
        phone = (normalize_phone(customer_phone) if customer_phone else None) or session.customer_phone

        if session.is_blocked:
            logger.info("Session is blocked, not answering")
            return await self._short_circuit(session.id, user_message, BLOCKED_SESSION_REPLY)

        for violation in self._guardrails.check_user_input(user_message):
            if violation.violation_type == "cart_event":
                if not self._cart_event_handoff:
                    continue
                return await self._hand_off(
                    session, user_message, CART_EVENT_REASON,
                    f"Cliente adicionou produto ao carrinho: {user_message}",
                    phone, customer_name, CART_HANDOFF_REPLY,
                )
            logger.info("Turn short-circuited by %s guardrail", violation.violation_type)
            return await self._short_circuit(session.id, user_message, violation.message or "")

        history = await self._store.get_history(session.id)
        now = self._clock()
        turn = TurnContext(
            session_id=session.id,
            user_message=user_message,
            today=now.date(),
            customer_phone=phone,
            customer_name=customer_name,
        )

        if is_explicit_confirmation(window_history(history), user_message):
            handed_off = await self._finalize_confirmed_order(session, user_message, history, turn)
            if handed_off is not None:
                return handed_off

        user_entry = ChatMessage(role=Role.USER, content=user_message)
        await self._store.append_message(session.id, user_entry)
        window = window_history([*history, user_entry])

        selection = select_prompts(user_message)
        turn.strategy = decide_strategy(user_message, selection.explicit_match, selection.prompts)
        turn.checkout, state_before = extract_checkout_state(window)
        turn.memory_summary = await self._memory.get_summary(phone)
        turn.sent_product_ids = await self._store.get_sent_product_ids(session.id)
        turn.recent_user_texts = recent_user_texts(window)
        logger.info(
            "Prompts %s, tool required=%s, tier=%s, checkout=%s",
            selection.prompts, turn.strategy.tool_call_required,
            turn.strategy.model_tier.value, state_before.value,
        )

        system_prompt = build_system_prompt(
            now,
            customer_name=customer_name,
            customer_phone=phone,
            memory_summary=turn.memory_summary,
            sent_product_ids=turn.sent_product_ids,
            guidelines=await self._fetch_guidelines(selection.prompts),
            coaching=coaching_instruction(state_before, turn.checkout, customer_name, phone),
        )
        messages = [{"role": Role.SYSTEM.value, "content": system_prompt}]
        messages.extend(message.to_openai() for message in window)

        try:
            outcome = await self._loop.run(messages, turn)
            reply = await self._synthesizer.synthesize(outcome, turn.strategy.model_tier)
        except LLMError as exc:
            logger.error("Model call failed, deflecting: %s", exc)
            outcome, reply = None, TEAM_CONFIRMATION_REPLY

        assistant_entry = ChatMessage(role=Role.ASSISTANT, content=reply)
        await self._store.append_message(session.id, assistant_entry)

        if outcome is not None:
            data_after, state_after = extract_checkout_state([*window, *outcome.new_messages, assistant_entry])
            if state_after != state_before and state_after != CheckoutState.BROWSING:
                await self._memory.save_checkout_milestone(phone, data_after, state_after, customer_name)
        return reply

    async def _fetch_guidelines(self, prompt_names: list[str]) -> list[str]:
        guidelines = []
        for name in prompt_names:
            try:
                text = await self._tools.get_prompt(name)
            except ToolProviderError as exc:
                logger.warning("Guideline %s unavailable: %s", name, exc)
                continue
            if text:
                guidelines.append(text)
        return guidelines

    # ------------------------------------------------------------------ #
    #  Short-circuits
    # ------------------------------------------------------------------ #

    async def _short_circuit(self, session_id: str, user_message: str, reply: str) -> str:
        """Persist the user message and a fixed reply without calling the model."""
        await self._store.append_message(session_id, ChatMessage(role=Role.USER, content=user_message))
        await self._store.append_message(session_id, ChatMessage(role=Role.ASSISTANT, content=reply))
        return reply

    async def _hand_off(
        self,
        session: SessionInfo,
        user_message: str,
        reason: str,
        context: str,
        phone: Optional[str],
        customer_name: Optional[str],
        reply: str,
    ) -> str:
        """Notify the team, block the session and answer with the hand-off notice."""
        arguments = {"reason": reason, "customer_context": context}
        if phone:
            arguments["customer_phone"] = phone
        if customer_name:
            arguments["customer_name"] = customer_name
        try:
            await self._tools.call_tool(names.NOTIFY_HUMAN, arguments)
        except ToolProviderError as exc:
            logger.error("Hand-off notification failed (%s): %s", reason, exc)
            return await self._short_circuit(session.id, user_message, TEAM_CONFIRMATION_REPLY)

        try:
            await self._tools.call_tool(names.BLOCK_SESSION, {"session_id": session.id})
        except ToolProviderError as exc:
            logger.warning("Tool server could not block session: %s", exc)
        await self._store.block_session(session.id)
        await self._memory.save(phone, context)
        logger.info("Session handed off to the team (%s)", reason)
        return await self._short_circuit(session.id, user_message, reply)

    async def _finalize_confirmed_order(
        self,
        session: SessionInfo,
        user_message: str,
        history: list[ChatMessage],
        turn: TurnContext,
    ) -> Optional[str]:
        """
        Hand off an order the customer just confirmed.

        Returns None when the collected details do not pass the
        finalization check; the turn then continues through the model.
        """
        data, _ = extract_checkout_state(window_history(history))
        context = build_handoff_context(data, turn.customer_name, turn.customer_phone)
        summary = last_assistant_reply(history)
        if summary:
            context = f"{context}\n\nResumo confirmado pelo cliente:\n{summary}"

        validation = validate_tool_arguments(
            names.NOTIFY_HUMAN,
            {"reason": FINALIZATION_REASON, "customer_context": context},
            turn,
        )
        if not validation.ok:
            logger.info("Confirmation detected but order details incomplete, continuing turn")
            return None

        logger.info("Explicit order confirmation detected, handing off")
        return await self._hand_off(
            session, user_message, FINALIZATION_REASON, context,
            turn.customer_phone, turn.customer_name, HANDOFF_REPLY,
        )
