"""
Explicit order confirmation detection.

A reply like "sim" only confirms an order when the assistant's previous
message was a complete order summary ending in a closing question. Both
halves are plain string predicates so they can be tested in isolation.
"""

import re
from typing import Optional

from sales_agent.schemas.conversation_schema import ChatMessage, Role
from sales_agent.utils import strip_punctuation

MAX_CONFIRMATION_CHARS = 60

SUMMARY_PRODUCT_RE = re.compile(r"R\$\s*\d|\b(?:cesta|buqu[eê]|produto|caneca|quadro|kit)\b", re.IGNORECASE)
SUMMARY_DELIVERY_RE = re.compile(r"entrega|retirada|\bdata\b|hor[aá]rio", re.IGNORECASE)
SUMMARY_PAYMENT_RE = re.compile(r"\bpix\b|cart[aã]o|pagamento", re.IGNORECASE)
CLOSING_QUESTION_RE = re.compile(
    r"tudo certo|est[aá] (?:tudo )?corret|posso (?:confirmar|finalizar|fechar)|"
    r"podemos (?:confirmar|finalizar|fechar|seguir)|confirma(?:r|mos)?\s*(?:o pedido)?\s*\?|"
    r"pode(?:mos)? seguir|certinho\s*\?",
    re.IGNORECASE,
)

SHORT_CONFIRMATIONS = frozenset({
    "sim", "s", "ss", "sim sim", "isso", "isso mesmo", "isso ai", "exato", "exatamente",
    "correto", "certo", "ta certo", "esta certo", "tudo certo", "ok", "okay", "blz", "beleza",
    "perfeito", "fechado", "fechou", "confirmo", "confirmado", "confirma", "pode",
    "pode sim", "pode confirmar", "pode finalizar", "pode fechar", "pode mandar", "bora",
})
AFFIRMATIVE_RE = re.compile(
    r"\b(?:sim|pode confirmar|pode finalizar|pode fechar|confirmo|isso mesmo|tudo certo|"
    r"esta certo|ta certo|pode mandar|fechado)\b"
)
HESITATION_RE = re.compile(r"\b(?:nao|mas|espera|muda|mudar|troca|trocar|alterar|ainda)\b")


def is_order_summary(text: str) -> bool:
    """True when text reads like a completed order summary awaiting confirmation."""
    return bool(
        SUMMARY_PRODUCT_RE.search(text)
        and SUMMARY_DELIVERY_RE.search(text)
        and SUMMARY_PAYMENT_RE.search(text)
        and CLOSING_QUESTION_RE.search(text)
    )


def is_affirmative(user_message: str) -> bool:
    """True for short confirmations like "sim", "pode confirmar" or "isso mesmo!"."""
    normalized = strip_punctuation(user_message)
    if not normalized or HESITATION_RE.search(normalized):
        return False
    if normalized in SHORT_CONFIRMATIONS:
        return True
    return len(user_message.strip()) <= MAX_CONFIRMATION_CHARS and bool(AFFIRMATIVE_RE.search(normalized))


def last_assistant_reply(messages: list[ChatMessage]) -> Optional[str]:
    """Most recent assistant text shown to the customer (tool requests skipped)."""
    for message in reversed(messages):
        if message.role == Role.ASSISTANT and not message.tool_calls and message.content.strip():
            return message.content
    return None


def is_explicit_confirmation(messages: list[ChatMessage], user_message: str) -> bool:
    """A summary was just presented and the customer said yes to it."""
    summary = last_assistant_reply(messages)
    return summary is not None and is_order_summary(summary) and is_affirmative(user_message)
