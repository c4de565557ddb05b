"""
Tool execution loop: Phase 1 of a turn.

Drives the model through bounded tool use. Every model response is
classified into a processing trigger (tool calls, stall, final answer) and
applied to a ProcessingStateMachine; the loop ends on a final answer or at
the iteration cap, which is a degraded but non-fatal exit.

Tool calls within one response run one at a time, in order: later calls
can depend on state written by earlier ones (product exposure, blocking).
Argument validation failures and tool failures both become tool results
the model sees on its next iteration. Only persistence errors propagate.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from sales_agent.agents.curator import ProductCurator
from sales_agent.agents.memory import CustomerMemoryService
from sales_agent.config import settings
from sales_agent.conversation.guardrails import GuardrailPipeline
from sales_agent.conversation.state_machine import (
    ProcessingState,
    ProcessingStateMachine,
    ProcessingTrigger,
)
from sales_agent.llm.client import LLMClient, ModelReply
from sales_agent.logging_context import get_session_logger
from sales_agent.schemas.conversation_schema import ChatMessage, Role, ToolCall
from sales_agent.schemas.turn_schema import TurnContext
from sales_agent.storage.session_store import SessionStore
from sales_agent.tools import names
from sales_agent.tools.catalog import extract_catalog_products
from sales_agent.tools.provider import (
    ToolOutput,
    ToolProvider,
    ToolProviderError,
    ToolResult,
    ToolSpec,
    normalize_tool_result,
)
from sales_agent.tools.validators import validate_tool_arguments
from sales_agent.utils import extract_json_payload

logger = get_session_logger(__name__)

TOOL_FAILURE_MESSAGE = (
    "Erro ao executar {name}: {error}. Por favor, tente novamente ou use outra abordagem."
)
NOTIFY_SUCCESS_MARKERS = ("notifica", "sucesso")


@dataclass
class ToolExecutionResult:
    """One tool call as executed (or rejected) this turn."""
    tool_call_id: str
    name: str
    arguments: dict[str, Any]
    output: str
    success: bool


@dataclass
class LoopOutcome:
    """Everything Phase 2 needs from Phase 1."""
    messages: list[dict[str, Any]]
    results: list[ToolExecutionResult] = field(default_factory=list)
    new_messages: list[ChatMessage] = field(default_factory=list)
    state: ProcessingState = ProcessingState.ANALYZING
    iterations: int = 0
    final_text: str = ""

    @property
    def degraded(self) -> bool:
        return self.state == ProcessingState.ITERATION_LIMIT


class ToolExecutionLoop:
    """Runs model calls and tool calls until a final answer or the iteration cap."""

    def __init__(
        self,
        llm: LLMClient,
        tools: ToolProvider,
        store: SessionStore,
        curator: ProductCurator,
        memory: CustomerMemoryService,
        guardrails: Optional[GuardrailPipeline] = None,
        max_iterations: int = settings.orchestrator.max_tool_iterations,
    ) -> None:
        self._llm = llm
        self._tools = tools
        self._store = store
        self._curator = curator
        self._memory = memory
        self._guardrails = guardrails or GuardrailPipeline()
        self._max_iterations = max_iterations

    async def run(self, messages: list[dict[str, Any]], turn: TurnContext) -> LoopOutcome:
        """
        Run Phase 1 for one turn.

        Args:
            messages: Context in chat-completions format; extended in place.
            turn: Per-turn context (strategy, checkout data, customer).

        Returns:
            LoopOutcome with the gathered tool results and the terminal state.
        """
        sm = ProcessingStateMachine()
        outcome = LoopOutcome(messages=messages)
        specs = await self._list_tools()
        openai_tools = [spec.to_openai() for spec in specs] or None

        while True:
            if outcome.iterations >= self._max_iterations:
                sm.transition(ProcessingTrigger.ITERATION_LIMIT_REACHED)
                logger.warning(
                    "Tool loop hit the iteration cap (%d) with %d tool results; degraded exit",
                    self._max_iterations, len(outcome.results),
                )
                break

            force_tool = (
                turn.strategy.tool_call_required and outcome.iterations == 0 and openai_tools is not None
            )
            reply = await self._llm.complete(
                messages,
                tier=turn.strategy.model_tier,
                tools=openai_tools,
                tool_choice="required" if force_tool else None,
            )
            outcome.iterations += 1

            if reply.has_tool_calls:
                sm.transition(ProcessingTrigger.TOOL_CALLS_RECEIVED)
                await self._record_tool_request(reply, turn, outcome)
                for call in reply.tool_calls:
                    outcome.results.append(await self._execute(call, turn, outcome))
                continue

            evidence_required = turn.strategy.tool_call_required and not outcome.results
            check = self._guardrails.check_model_text(reply.content, evidence_required)
            if not check.passed:
                sm.transition(ProcessingTrigger.STALL_DETECTED)
                logger.info("Model response rejected (%s), correcting", check.violation_type)
                messages.append({"role": Role.SYSTEM.value, "content": check.message})
                continue

            sm.transition(ProcessingTrigger.FINAL_ANSWER_RECEIVED)
            outcome.final_text = reply.content
            break

        outcome.state = sm.current_state
        logger.info(
            "Tool loop finished: %s after %d iterations (trace: %s)",
            outcome.state.value, outcome.iterations, " -> ".join(sm.get_state_trace()),
        )
        return outcome

    async def _list_tools(self) -> list[ToolSpec]:
        try:
            return await self._tools.list_tools()
        except ToolProviderError as exc:
            logger.warning("Tool listing failed, continuing without tools: %s", exc)
            return []

    async def _persist(self, message: ChatMessage, turn: TurnContext, outcome: LoopOutcome) -> None:
        outcome.messages.append(message.to_openai())
        await self._store.append_message(turn.session_id, message)
        outcome.new_messages.append(message)

    async def _record_tool_request(self, reply: ModelReply, turn: TurnContext, outcome: LoopOutcome) -> None:
        # Text alongside tool calls is never shown to the customer.
        message = ChatMessage(role=Role.ASSISTANT, content="", tool_calls=reply.tool_calls)
        await self._persist(message, turn, outcome)

    async def _execute(self, call: ToolCall, turn: TurnContext, outcome: LoopOutcome) -> ToolExecutionResult:
        validation = validate_tool_arguments(call.name, call.parsed_arguments(), turn)
        arguments = validation.arguments

        if not validation.ok:
            output, success = validation.error or "", False
        else:
            try:
                result = await self._tools.call_tool(call.name, arguments)
            except ToolProviderError as exc:
                logger.warning("Tool %s failed: %s", call.name, exc)
                output, success = TOOL_FAILURE_MESSAGE.format(name=call.name, error=exc), False
            else:
                output, success = normalize_tool_result(result), True
                if call.name == names.CATALOG_SEARCH:
                    output = await self._handle_catalog_result(result, output, turn)

        message = ChatMessage(role=Role.TOOL, content=output, tool_call_id=call.id, name=call.name)
        await self._persist(message, turn, outcome)

        if success:
            await self._after_tool(call.name, arguments, output, turn)
        return ToolExecutionResult(
            tool_call_id=call.id, name=call.name, arguments=arguments, output=output, success=success,
        )

    async def _handle_catalog_result(self, result: ToolResult, output: str, turn: TurnContext) -> str:
        """Record every candidate as shown, then curate down to two."""
        payload = result.data if isinstance(result, ToolOutput) else extract_json_payload(result)
        if isinstance(payload, list):
            payload = {"produtos": payload}
        if not isinstance(payload, dict):
            return output
        products = extract_catalog_products(payload)
        if not products:
            return output

        for product in products:
            product_id = product.get("id")
            if product_id is None:
                continue
            await self._store.record_product_sent(turn.session_id, str(product_id))
            if str(product_id) not in turn.sent_product_ids:
                turn.sent_product_ids.append(str(product_id))

        curated = await self._curator.curate(payload, turn.user_message, turn.memory_summary)
        return json.dumps(curated, ensure_ascii=False, default=str)

    async def _after_tool(self, name: str, arguments: dict[str, Any], output: str, turn: TurnContext) -> None:
        if name == names.NOTIFY_HUMAN:
            if any(marker in output.lower() for marker in NOTIFY_SUCCESS_MARKERS):
                phone = arguments.get("customer_phone") or turn.customer_phone
                summary = str(arguments.get("customer_context") or output)
                await self._memory.save(phone, summary)
        elif name == names.BLOCK_SESSION:
            await self._store.block_session(turn.session_id)
        elif name == names.SAVE_CUSTOMER_SUMMARY:
            await self._memory.save(arguments.get("customer_phone"), str(arguments.get("summary", "")))
