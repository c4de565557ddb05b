"""
Response synthesis: Phase 2 of a turn.

Turns the gathered tool results into one customer-facing reply with tool
use disabled, cleans it, and checks every price it quotes against the
evidence in context. One corrective re-synthesis is allowed; a second
unverified price falls back to the team-confirmation deflection.
"""

from typing import Any, Optional

from sales_agent.agents.tool_loop import LoopOutcome
from sales_agent.conversation.guardrails import GuardrailPipeline
from sales_agent.llm.client import LLMClient
from sales_agent.logging_context import get_session_logger
from sales_agent.prompts.prompt_templates import build_synthesis_prompt
from sales_agent.prompts.replies import (
    EMPTY_REPLY_FALLBACK,
    INVALID_REPLY_FALLBACK,
    TEAM_CONFIRMATION_REPLY,
)
from sales_agent.schemas.conversation_schema import ModelTier, Role

logger = get_session_logger(__name__)

EVIDENCE_ROLES = (Role.TOOL.value, Role.SYSTEM.value)


def collect_evidence(messages: list[dict[str, Any]]) -> list[str]:
    """Texts a quoted price may legitimately come from: tool output and system context."""
    return [
        str(message["content"])
        for message in messages
        if message.get("role") in EVIDENCE_ROLES and message.get("content")
    ]


class ResponseSynthesizer:
    """Produces the final reply from a finished tool loop."""

    def __init__(self, llm: LLMClient, guardrails: Optional[GuardrailPipeline] = None) -> None:
        self._llm = llm
        self._guardrails = guardrails or GuardrailPipeline()

    async def _generate(self, messages: list[dict[str, Any]], tier: ModelTier) -> str:
        parts = []
        async for delta in self._llm.stream(messages, tier=tier):
            parts.append(delta)
        return "".join(parts)

    async def synthesize(self, outcome: LoopOutcome, tier: ModelTier = ModelTier.BASELINE) -> str:
        """
        Produce the reply for one turn.

        When no tool ran and the model already answered, that answer is
        used as is. Otherwise a tool-free synthesis call is made over the
        full context plus a listing of every tool result.
        """
        base = list(outcome.messages)
        if not outcome.results and outcome.final_text:
            draft = outcome.final_text
        else:
            results = [(r.name, r.arguments, r.output) for r in outcome.results]
            base.append({"role": Role.SYSTEM.value, "content": build_synthesis_prompt(results)})
            draft = await self._generate(base, tier)

        if not draft.strip():
            logger.warning("Empty synthesized reply")
            return EMPTY_REPLY_FALLBACK
        reply = self._guardrails.cleaner.clean(draft)
        if reply is None:
            logger.warning("Synthesized reply rejected by cleaner: %r", draft)
            return INVALID_REPLY_FALLBACK

        evidence = collect_evidence(base)
        violations = self._guardrails.check_agent_response(reply, evidence)
        if not violations:
            return reply

        retry_messages = base + [
            {"role": Role.ASSISTANT.value, "content": reply},
            {"role": Role.SYSTEM.value, "content": violations[0].message},
        ]
        retry = self._guardrails.cleaner.clean(await self._generate(retry_messages, tier))
        if retry is None or self._guardrails.check_agent_response(retry, evidence):
            logger.warning("Reply still quotes unverified prices after correction, deflecting")
            return TEAM_CONFIRMATION_REPLY
        return retry
