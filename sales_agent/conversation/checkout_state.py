"""
Checkout state extraction from an unstructured transcript.

Nothing about checkout progress is stored. Every turn the transcript
window is folded, newest message first, into a CheckoutData value:
product and price from catalog results, delivery slot from availability
results (or the arguments that were validated), freight from freight
results, and address, pickup and payment method from what the customer
wrote. The discrete CheckoutState follows from which fields are null.

All predicates here are pure functions over plain strings so they can be
tested without the orchestration loop.
"""

import re
from decimal import Decimal
from typing import Any, Optional

from sales_agent.prompts.replies import HANDOFF_REPLY
from sales_agent.schemas.checkout_schema import CheckoutData, CheckoutState, DeliveryType
from sales_agent.schemas.conversation_schema import ChatMessage, Role
from sales_agent.tools import names
from sales_agent.tools.catalog import extract_catalog_products, product_name, product_price
from sales_agent.utils import extract_json_payload, format_brl, normalize_text, parse_amount

ADDRESS_RE = re.compile(
    r"\b(?:rua|r\.|av\.?|avenida|travessa|tv\.|rodovia|alameda|pra[cç]a|estrada|"
    r"condom[ií]nio|conjunto|bairro)\s+[^\n]{3,}",
    re.IGNORECASE,
)
CEP_RE = re.compile(r"\b\d{5}-?\d{3}\b")
PICKUP_RE = re.compile(
    r"retirada|retirar|buscar na loja|pegar na loja|vou buscar|vou pegar a[ií]", re.IGNORECASE
)
DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}(?:/\d{2,4})?)\b")
RELATIVE_DATE_RE = re.compile(
    r"\b(?:hoje|amanh[aã]|segunda|ter[cç]a|quarta|quinta|sexta|s[aá]bado)\b", re.IGNORECASE
)
TIME_RE = re.compile(r"\b([01]?\d|2[0-3])(?::([0-5]\d)|h([0-5]\d)?)")
PRICE_RE = re.compile(r"R\$\s*\d", re.IGNORECASE)
PRODUCT_WORD_RE = re.compile(
    r"cesta|cesto|buqu[eê]|caneca|quadro|produto|kit|flor|rosa|chocolate|pel[uú]cia|arranjo",
    re.IGNORECASE,
)
UNAVAILABLE_RE = re.compile(
    r"indispon|n[aã]o (?:h[aá]|temos|[eé] poss[ií]vel|est[aá] dispon)|fechad"
    r"|\"(?:available|disponivel)\"\s*:\s*false",
    re.IGNORECASE,
)
FREE_FREIGHT_RE = re.compile(r"gr[aá]tis|gratuit", re.IGNORECASE)
PRICE_AMOUNT_RE = re.compile(r"R\$\s*([\d.]+(?:,\d{2})?)", re.IGNORECASE)
TEXT_PRODUCT_RE = re.compile(r"([A-ZÀ-Ý][^\n\-–:*_]{2,60}?)\s*[-–:]\s*R\$\s*([\d.]+(?:,\d{2})?)")
ORDINAL_RE = re.compile(
    r"\b(?:op[cç][aã]o\s*(\d)|(primeir[ao]|segund[ao])|a\s+(\d)\b|(\d)[ªºa]\b)", re.IGNORECASE
)

PAYMENT_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bpix\b", re.IGNORECASE), "PIX"),
    (re.compile(r"cart[aã]o|cr[eé]dito|d[eé]bito", re.IGNORECASE), "CARTAO"),
    (re.compile(r"\bdinheiro\b|esp[eé]cie", re.IGNORECASE), "DINHEIRO"),
]

# Words too common in product names to identify one product
_NAME_NOISE = frozenset({
    "cesta", "cesto", "flores", "flor", "buque", "caneca", "kit", "com", "para", "premium",
})

# ------------------------------------------------------------------ #
#  String predicates
# ------------------------------------------------------------------ #


def find_address(text: str) -> Optional[str]:
    match = ADDRESS_RE.search(text)
    if match:
        return match.group(0).strip(" .,")
    cep = CEP_RE.search(text)
    if cep:
        return text.strip()
    return None


def wants_pickup(text: str) -> bool:
    return bool(PICKUP_RE.search(text))


def find_payment_method(text: str) -> Optional[str]:
    for pattern, method in PAYMENT_PATTERNS:
        if pattern.search(text):
            return method
    return None


def find_date(text: str) -> Optional[str]:
    match = DATE_RE.search(text)
    return match.group(1) if match else None


def find_time(text: str) -> Optional[str]:
    match = TIME_RE.search(text)
    if not match:
        return None
    minutes = match.group(2) or match.group(3) or "00"
    return f"{int(match.group(1)):02d}:{minutes}"


def is_error_result(content: str) -> bool:
    """True for the structured error payloads produced by argument validation."""
    payload = extract_json_payload(content)
    return isinstance(payload, dict) and payload.get("status") == "error"


def find_missing_checkout_fields(context: str) -> list[str]:
    """List what a hand-off context still lacks before an order can be finalized."""
    missing = []
    if not (PRODUCT_WORD_RE.search(context) and PRICE_RE.search(context)):
        missing.append("produto e preço")
    if not (DATE_RE.search(context) or RELATIVE_DATE_RE.search(context)):
        missing.append("data")
    if not TIME_RE.search(context):
        missing.append("horário")
    if not (find_address(context) or re.search(r"endere[cç]o", context, re.IGNORECASE) or wants_pickup(context)):
        missing.append("endereço ou retirada")
    if not find_payment_method(context):
        missing.append("método de pagamento")
    return missing


# ------------------------------------------------------------------ #
#  Tool result readers
# ------------------------------------------------------------------ #


def _call_arguments(messages: list[ChatMessage], tool_call_id: Optional[str]) -> dict[str, Any]:
    for message in messages:
        for call in message.tool_calls:
            if call.id == tool_call_id:
                return call.parsed_arguments()
    return {}


def _first(mapping: dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        if mapping.get(key) not in (None, ""):
            return mapping[key]
    return None


def _listed_products(content: str) -> list[tuple[str, Optional[Decimal]]]:
    products = extract_catalog_products(extract_json_payload(content))
    listed = [(product_name(p), product_price(p)) for p in products if product_name(p)]
    if listed:
        return listed
    return [(name.strip(), parse_amount(price)) for name, price in TEXT_PRODUCT_RE.findall(content)]


def _ordinal_choice(text: str) -> Optional[int]:
    match = ORDINAL_RE.search(text)
    if not match:
        return None
    digit = match.group(1) or match.group(3) or match.group(4)
    if digit:
        return int(digit) - 1
    return 0 if normalize_text(match.group(2)).startswith("primeir") else 1


def _mentions_product(text: str, name: str) -> bool:
    said = set(re.findall(r"\w+", normalize_text(text)))
    distinctive = {
        w for w in re.findall(r"\w+", normalize_text(name)) if len(w) >= 4 and w not in _NAME_NOISE
    }
    return bool(distinctive & said)


def _chosen_product(
    listed: list[tuple[str, Optional[Decimal]]], later_user_texts: list[str]
) -> Optional[tuple[str, Optional[Decimal]]]:
    if not listed:
        return None
    if len(listed) == 1:
        return listed[0]
    for text in later_user_texts:
        ordinal = _ordinal_choice(text)
        if ordinal is not None and 0 <= ordinal < len(listed):
            return listed[ordinal]
        for name, price in listed:
            if _mentions_product(text, name):
                return name, price
    return None


def _delivery_slot(content: str, arguments: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    if UNAVAILABLE_RE.search(content):
        return None, None
    payload = extract_json_payload(content)
    date = time = None
    if isinstance(payload, dict):
        if payload.get("available") is False or payload.get("disponivel") is False:
            return None, None
        date = _first(payload, "date", "data", "delivery_date")
        time = _first(payload, "time", "horario", "hora", "delivery_time")
    date = date or find_date(content) or _first(arguments, "date", "data", "date_str")
    time = time or find_time(content) or _first(arguments, "time", "horario", "hora")
    return (str(date) if date else None), (str(time) if time else None)


def _freight(content: str) -> Optional[Decimal]:
    payload = extract_json_payload(content)
    if isinstance(payload, dict):
        if payload.get("status") == "error":
            return None
        value = _first(payload, "frete", "freight", "valor_frete", "valor", "value")
        if value is not None:
            return parse_amount(value)
    if FREE_FREIGHT_RE.search(content):
        return Decimal("0.00")
    amount = PRICE_AMOUNT_RE.search(content)
    return parse_amount(amount.group(1)) if amount else None


# ------------------------------------------------------------------ #
#  Fold
# ------------------------------------------------------------------ #


def extract_checkout_data(messages: list[ChatMessage]) -> CheckoutData:
    """Reconstruct checkout details, newest evidence first."""
    fields: dict[str, Any] = {}
    later_user_texts: list[str] = []

    for message in reversed(messages):
        if message.role == Role.USER:
            text = message.content
            if "address" not in fields and "delivery_type" not in fields:
                if wants_pickup(text):
                    fields["delivery_type"] = DeliveryType.PICKUP
                else:
                    address = find_address(text)
                    if address:
                        fields["address"] = address
                        fields["delivery_type"] = DeliveryType.DELIVERY
            if "payment_method" not in fields:
                method = find_payment_method(text)
                if method:
                    fields["payment_method"] = method
            later_user_texts.append(text)
            continue

        if message.role != Role.TOOL or is_error_result(message.content):
            continue

        if message.name == names.CATALOG_SEARCH and "product_name" not in fields:
            chosen = _chosen_product(_listed_products(message.content), later_user_texts)
            if chosen:
                fields["product_name"], fields["product_price"] = chosen
        elif message.name == names.DELIVERY_AVAILABILITY and "delivery_date" not in fields:
            date, time = _delivery_slot(message.content, _call_arguments(messages, message.tool_call_id))
            if date:
                fields["delivery_date"] = date
                if time:
                    fields["delivery_time"] = time
        elif message.name == names.FREIGHT and "freight" not in fields:
            freight = _freight(message.content)
            if freight is not None:
                fields["freight"] = freight

    return CheckoutData(**fields)


def checkout_state_for(data: CheckoutData) -> CheckoutState:
    if not data.has_product:
        return CheckoutState.BROWSING
    if not data.has_schedule:
        started = any(
            value is not None
            for value in (data.delivery_date, data.address, data.delivery_type, data.payment_method)
        )
        return CheckoutState.WAITING_DATE if started else CheckoutState.PRODUCT_SELECTED
    if not data.has_destination:
        return CheckoutState.WAITING_ADDRESS
    if data.payment_method is None:
        return CheckoutState.WAITING_PAYMENT
    return CheckoutState.READY_TO_FINALIZE


def extract_checkout_state(messages: list[ChatMessage]) -> tuple[CheckoutData, CheckoutState]:
    data = extract_checkout_data(messages)
    return data, checkout_state_for(data)


# ------------------------------------------------------------------ #
#  Hand-off context and coaching
# ------------------------------------------------------------------ #


def build_handoff_context(
    data: CheckoutData,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
) -> str:
    """Render collected checkout details as the context block sent to the team."""
    lines = ["Resumo do pedido:"]
    if data.product_name:
        price = f" - {format_brl(data.product_price)}" if data.product_price is not None else ""
        lines.append(f"Produto: {data.product_name}{price}")
    if data.delivery_date:
        when = f"{data.delivery_date} às {data.delivery_time}" if data.delivery_time else data.delivery_date
        lines.append(f"Data: {when}")
    if data.delivery_type == DeliveryType.PICKUP:
        lines.append("Entrega: Retirada na loja")
    elif data.address:
        lines.append(f"Endereço: {data.address}")
    if data.payment_method:
        lines.append(f"Pagamento: {data.payment_method}")
    if data.freight is not None:
        lines.append(f"Frete: {format_brl(data.freight)}")
    if data.total is not None and data.freight is not None:
        lines.append(f"Total: {format_brl(data.total)}")
    if customer_name:
        lines.append(f"Cliente: {customer_name}")
    if customer_phone:
        lines.append(f"Telefone: {customer_phone}")
    return "\n".join(lines)


def coaching_instruction(
    state: CheckoutState,
    data: CheckoutData,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
) -> Optional[str]:
    """The single next step the model should take for the current checkout state."""
    if state == CheckoutState.BROWSING:
        return None
    if state == CheckoutState.PRODUCT_SELECTED:
        return (
            f"O cliente escolheu {data.product_name}. Próximo passo: pergunte a data e o "
            "horário desejados para a entrega e valide com `validate_delivery_availability` "
            "antes de confirmar qualquer prazo."
        )
    if state == CheckoutState.WAITING_DATE:
        return (
            "Falta a data e o horário de entrega. Pergunte ao cliente quando deseja receber "
            "e valide a resposta com `validate_delivery_availability`."
        )
    if state == CheckoutState.WAITING_ADDRESS:
        return (
            "Data e horário validados. Pergunte o endereço completo (rua, número, bairro e "
            "cidade) ou se o cliente prefere retirar na loja."
        )
    if state == CheckoutState.WAITING_PAYMENT:
        return (
            "Pergunte o método de pagamento: PIX ou Cartão? Com a cidade e o método, "
            "calcule o frete com `calculate_freight`. Nunca informe chave PIX."
        )
    context = build_handoff_context(data, customer_name, customer_phone)
    return (
        "Todos os dados do pedido foram coletados. Apresente o resumo abaixo e pergunte "
        "se está tudo certo. Quando o cliente confirmar:\n"
        "1. chame `notify_human_support` com reason \"finalização do pedido\" e "
        "customer_context com o resumo;\n"
        "2. chame `block_session`;\n"
        f"3. responda exatamente: \"{HANDOFF_REPLY}\"\n\n{context}"
    )
