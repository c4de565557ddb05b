from sales_agent.conversation.checkout_state import (
    build_handoff_context,
    coaching_instruction,
    extract_checkout_state,
    find_missing_checkout_fields,
)
from sales_agent.conversation.confirmation import is_explicit_confirmation
from sales_agent.conversation.guardrails import GuardrailPipeline
from sales_agent.conversation.history import window_history
from sales_agent.conversation.prompt_selector import PromptSelection, select_prompts
from sales_agent.conversation.state_machine import (
    ProcessingState,
    ProcessingStateMachine,
    ProcessingTrigger,
)
from sales_agent.conversation.tool_strategy import ToolStrategy, decide_strategy

__all__ = [
    "ProcessingStateMachine",
    "ProcessingState",
    "ProcessingTrigger",
    "GuardrailPipeline",
    "PromptSelection",
    "select_prompts",
    "ToolStrategy",
    "decide_strategy",
    "extract_checkout_state",
    "build_handoff_context",
    "coaching_instruction",
    "find_missing_checkout_fields",
    "is_explicit_confirmation",
    "window_history",
]
