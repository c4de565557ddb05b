"""
Contextual guideline selection.

Each inbound message is matched against a priority-ordered rule table to
decide which named guideline prompts are fetched from the tool server and
injected into the system context for this turn.

Priorities:
    0  protocol-level (cart events, explicit request for a human)
    1  high-salience topics (delivery, schedule, closing, pricing)
    2  supporting topics (browsing, customization, indecision, ...)
"""

import re
from dataclasses import dataclass, field

from sales_agent.config import settings
from sales_agent.utils import strip_punctuation

CORE_IDENTITY_PROMPT = "core_identity_guideline"
FALLBACK_PROMPT = "product_selection_guideline"

CART_EVENT_RE = re.compile(
    r"\[(?:carrinho|cart)[^\]]*\]|evento de carrinho|adicionou (?:ao|no) carrinho|add_to_cart",
    re.IGNORECASE,
)
HUMAN_REQUEST_RE = re.compile(
    r"atendente|atendimento humano|\bhumano\b|falar com (?:uma |um )?(?:pessoa|algu[eé]m)|suporte",
    re.IGNORECASE,
)

GREETING_WORDS = frozenset({
    "oi", "oii", "oie", "ola", "opa", "eai", "e", "ai", "hey", "hello",
    "bom", "boa", "dia", "tarde", "noite", "tudo", "bem", "td", "blz", "beleza",
})


@dataclass(frozen=True)
class PromptRule:
    """A guideline prompt that applies when any of its patterns match."""
    patterns: tuple[re.Pattern, ...]
    prompt: str
    priority: int

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


def _rule(pattern: str, prompt: str, priority: int) -> PromptRule:
    return PromptRule((re.compile(pattern, re.IGNORECASE),), prompt, priority)


PROMPT_RULES: list[PromptRule] = [
    PromptRule((CART_EVENT_RE,), "closing_protocol_guideline", 0),
    PromptRule((HUMAN_REQUEST_RE,), "human_transfer_guideline", 0),
    _rule(
        r"entrega|jo[aã]o pessoa|queimadas|galante|puxinan[aã]|s[aã]o jos[eé]|cobertura|cidad|faz entrega",
        "delivery_rules_guideline", 1,
    ),
    _rule(r"hor[aá]rio|que horas|quando|amanh[aã]|hoje|noite|tarde|manh[aã]", "delivery_rules_guideline", 1),
    _rule(r"finaliza|confirma|fecha|pedido|compro|quero esse|quero essa|vou levar", "closing_protocol_guideline", 1),
    _rule(r"pre[cç]o|valor|quanto (?:custa|fica|[eé])|barat|caro|r\$\s*\d|\d+\s*reais|or[cç]amento", "pricing_guideline", 1),
    _rule(r"(?:\b[2-9]\d|\b\d{3,})\s*(?:unidades|cestas|kits)|corporativ|empresa", "mass_orders_guideline", 1),
    _rule(r"produto|cesta|cesto|flor|caneca|chocolate|presente|buqu[eê]|quadro|pel[uú]cia", "product_selection_guideline", 2),
    _rule(r"personaliza|foto|nome|customiza|adesivo|bilhete", "customization_guideline", 2),
    _rule(r"mais op[cç][oõ]|outro|diferente|parecido|similar|d[uú]vida", "indecision_guideline", 2),
    _rule(r"onde fica|endere[cç]o da loja|localiza|retirar na loja|retirada", "location_guideline", 2),
    _rule(r"prazo|demora|produ[cç][aã]o|fica pronto", "faq_production_guideline", 2),
]


@dataclass(frozen=True)
class PromptSelection:
    """Guideline prompt names for one turn; always starts with the identity prompt."""
    prompts: list[str] = field(default_factory=lambda: [CORE_IDENTITY_PROMPT])
    explicit_match: bool = False


def is_pure_greeting(message: str) -> bool:
    """True for short small talk like "oi", "bom dia!" or "olá, tudo bem?"."""
    words = strip_punctuation(message).split()
    return 0 < len(words) <= 4 and all(word in GREETING_WORDS for word in words)


def select_prompts(
    user_message: str,
    max_prompts: int = settings.orchestrator.max_guideline_prompts,
) -> PromptSelection:
    """Choose the guideline prompts to inject for this message."""
    if is_pure_greeting(user_message):
        return PromptSelection([CORE_IDENTITY_PROMPT], explicit_match=False)

    matched = sorted(
        (rule for rule in PROMPT_RULES if rule.matches(user_message)),
        key=lambda rule: rule.priority,
    )
    if not matched:
        return PromptSelection([CORE_IDENTITY_PROMPT, FALLBACK_PROMPT], explicit_match=False)

    names: list[str] = []
    for rule in matched:
        # The identity prompt counts toward the cap
        if len(names) + 1 >= max_prompts:
            break
        if rule.prompt not in names:
            names.append(rule.prompt)
    return PromptSelection([CORE_IDENTITY_PROMPT, *names], explicit_match=True)
