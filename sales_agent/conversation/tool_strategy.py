"""
Per-turn tool strategy: must the model call a tool first, and on which tier?

The result is a value object handed down the call chain for one turn only.
Nothing here is stored on a shared object, so concurrent sessions never
observe each other's tier.
"""

import re
from dataclasses import dataclass

from sales_agent.conversation.prompt_selector import CART_EVENT_RE, CORE_IDENTITY_PROMPT
from sales_agent.schemas.conversation_schema import ModelTier

SHORT_MESSAGE_CHARS = 30
TOOL_REQUIRED_THRESHOLD = 60
ADVANCED_TIER_THRESHOLD = 40

CRITICAL_PROMPTS = frozenset({
    "product_selection_guideline",
    "delivery_rules_guideline",
    "closing_protocol_guideline",
    "pricing_guideline",
})
OPTIONAL_PROMPTS = frozenset({
    "customization_guideline",
    "indecision_guideline",
    "location_guideline",
    "faq_production_guideline",
    "mass_orders_guideline",
})

FINALIZE_INTENT_RE = re.compile(
    r"finaliz|fechar (?:o )?pedido|pode confirmar|confirmo o pedido|vou comprar|vou levar|quero fechar",
    re.IGNORECASE,
)
SPECIFIC_PRODUCT_RE = re.compile(
    r"r\$\s*\d|\d+\s*reais|pre[cç]o|valor|quanto (?:custa|fica|[eé])|"
    r"\b(?:cesta|cesto|buqu[eê]|caneca|quadro|rosas?|girass[oó]is|chocolates?|pel[uú]cia)\b",
    re.IGNORECASE,
)
GENERIC_RE = re.compile(
    r"qualquer|tanto faz|alguma coisa|algo assim|sei l[aá]|compar|melhor|\bou\b",
    re.IGNORECASE,
)
COMPARATIVE_RE = re.compile(r"compar|diferen[cç]a|melhor|versus|\bvs\b|\bou\b", re.IGNORECASE)
ENUMERATION_RE = re.compile(r"quais|lista|todas|todos|op[cç][oõ]es|cat[aá]logo", re.IGNORECASE)


@dataclass(frozen=True)
class ToolStrategy:
    """How the tool loop should drive the model for one turn."""
    tool_call_required: bool = False
    model_tier: ModelTier = ModelTier.BASELINE
    score: int = 0
    complexity: int = 0


def complexity_score(user_message: str) -> int:
    """Rough estimate of how much reasoning the message needs."""
    score = 0
    if COMPARATIVE_RE.search(user_message):
        score += 30
    if ENUMERATION_RE.search(user_message):
        score += 20
    if len(user_message) > 200:
        score += 30
    if user_message.count("?") > 1:
        score += 20
    return score


def tool_need_score(user_message: str, selected_prompts: list[str]) -> int:
    topical = set(selected_prompts) - {CORE_IDENTITY_PROMPT}
    score = 0
    if topical & CRITICAL_PROMPTS:
        score += 100
    if topical & OPTIONAL_PROMPTS:
        score += 30
    if SPECIFIC_PRODUCT_RE.search(user_message):
        score += 50
    if GENERIC_RE.search(user_message):
        score -= 20
    return score


def decide_strategy(
    user_message: str,
    explicit_match: bool,
    selected_prompts: list[str],
) -> ToolStrategy:
    """Decide whether the first model call must issue a tool call, and the tier."""
    if CART_EVENT_RE.search(user_message) or FINALIZE_INTENT_RE.search(user_message):
        return ToolStrategy(tool_call_required=True, model_tier=ModelTier.BASELINE)

    complexity = complexity_score(user_message)
    tier = (
        ModelTier.ADVANCED
        if complexity > ADVANCED_TIER_THRESHOLD and len(selected_prompts) > 1
        else ModelTier.BASELINE
    )

    if len(user_message.strip()) <= SHORT_MESSAGE_CHARS or not explicit_match:
        return ToolStrategy(tool_call_required=False, model_tier=tier, complexity=complexity)

    score = tool_need_score(user_message, selected_prompts)
    return ToolStrategy(
        tool_call_required=score > TOOL_REQUIRED_THRESHOLD,
        model_tier=tier,
        score=score,
        complexity=complexity,
    )
