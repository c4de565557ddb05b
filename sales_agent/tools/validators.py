"""
Per-tool argument validation.

Model-issued tool arguments are duck-typed: keys may be missing, misnamed
or too vague to be useful. Each tool name has at most one validator
registered here. A validator receives a copy of the arguments plus the
turn context, returns the (possibly normalized) arguments, or raises
ToolArgumentError. The registry turns that error into a structured tool
result, so the model can self-correct instead of the turn failing.

Tools without a validator pass through unchanged.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Optional

from sales_agent.conversation.checkout_state import find_missing_checkout_fields, find_payment_method
from sales_agent.schemas.turn_schema import TurnContext
from sales_agent.tools import names
from sales_agent.tools.catalog import get_valid_catalog_terms, resolve_search_term
from sales_agent.utils import normalize_phone, normalize_text

logger = logging.getLogger(__name__)

Validator = Callable[[dict[str, Any], TurnContext], dict[str, Any]]

_VALIDATORS: dict[str, Validator] = {}

CITY_KEYS = ("city", "cityName", "city_name", "cidade")
PAYMENT_KEYS = ("payment_method", "paymentMethod", "method")
DATE_KEYS = ("date_str", "date", "data")
SEARCH_TERM_KEYS = ("termo", "term", "query")
CONTEXT_KEYS = ("customer_context", "customerContext")
PHONE_KEYS = ("customer_phone", "customerPhone")
NAME_KEYS = ("customer_name", "customerName")

FINALIZATION_REASON_RE = re.compile(r"finaliza|pedido|finalizar|end_of_checkout", re.IGNORECASE)
_SLASH_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4}))?$")

DEFAULT_NOTIFY_CONTEXT = (
    "Cliente solicitou conversar com um atendente humano. Contexto não fornecido pela IA."
)


class ToolArgumentError(Exception):
    """A tool call's arguments fail a precondition of that tool."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_payload(self) -> str:
        return json.dumps(
            {"status": "error", "error": self.code, "message": self.message},
            ensure_ascii=False,
        )


@dataclass
class ValidationOutcome:
    """Result of validating one tool call."""
    ok: bool
    arguments: dict[str, Any]
    error: Optional[str] = None


def register_validator(tool_name: str) -> Callable[[Validator], Validator]:
    """Register the decorated function as the argument validator for ``tool_name``."""
    def decorator(func: Validator) -> Validator:
        _VALIDATORS[tool_name] = func
        logger.debug("Tool validator registered: %s", tool_name)
        return func
    return decorator


def get_registered_validators() -> list[str]:
    return list(_VALIDATORS.keys())


def validate_tool_arguments(
    tool_name: str, arguments: dict[str, Any], turn: TurnContext
) -> ValidationOutcome:
    """
    Run the validator registered for ``tool_name``.

    Returns:
        ValidationOutcome with normalized arguments on success, or with
        ``error`` set to a JSON error payload that stands in for the
        tool's output.
    """
    validator = _VALIDATORS.get(tool_name)
    if validator is None:
        return ValidationOutcome(ok=True, arguments=dict(arguments))
    try:
        return ValidationOutcome(ok=True, arguments=validator(dict(arguments), turn))
    except ToolArgumentError as exc:
        logger.info("Rejected %s arguments (%s): %s", tool_name, exc.code, exc.message)
        return ValidationOutcome(ok=False, arguments=dict(arguments), error=exc.to_payload())


def _first_value(arguments: dict[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = arguments.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _first_key(arguments: dict[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    for key in keys:
        if key in arguments:
            return key
    return None


def normalize_delivery_date(raw: str, today: date) -> Optional[str]:
    """Turn "hoje", "amanhã" or dd/mm[/yyyy] into an ISO date; ISO passes through.

        >>> normalize_delivery_date("amanhã", date(2025, 2, 13))
        '2025-02-14'
        >>> normalize_delivery_date("20/02", date(2025, 2, 13))
        '2025-02-20'
    """
    text = normalize_text(raw)
    if text == "hoje":
        return today.isoformat()
    if text == "amanha":
        return (today + timedelta(days=1)).isoformat()
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
        return text

    match = _SLASH_DATE_RE.match(text)
    if not match:
        return None
    day, month, year = int(match.group(1)), int(match.group(2)), match.group(3)
    if year is None:
        year_value = today.year
    else:
        year_value = int(year) + 2000 if len(year) == 2 else int(year)
    try:
        parsed = date(year_value, month, day)
    except ValueError:
        return None
    if year is None and parsed < today:
        parsed = parsed.replace(year=today.year + 1)
    return parsed.isoformat()


# ------------------------------------------------------------------ #
#  Validators
# ------------------------------------------------------------------ #


@register_validator(names.CATALOG_SEARCH)
def validate_catalog_search(arguments: dict[str, Any], turn: TurnContext) -> dict[str, Any]:
    key = _first_key(arguments, SEARCH_TERM_KEYS) or "termo"
    raw_term = _first_value(arguments, SEARCH_TERM_KEYS)
    term = resolve_search_term(raw_term, [turn.user_message, *turn.recent_user_texts])
    if term is None:
        raise ToolArgumentError(
            "missing_search_term",
            "Termo de busca ausente ou genérico demais. Pergunte ao cliente que tipo de "
            f"presente procura antes de buscar. Termos aceitos: {', '.join(get_valid_catalog_terms())}.",
        )
    arguments[key] = term
    if not arguments.get("exclude_product_ids"):
        arguments["exclude_product_ids"] = list(turn.sent_product_ids)
    return arguments


@register_validator(names.FREIGHT)
def validate_freight(arguments: dict[str, Any], turn: TurnContext) -> dict[str, Any]:
    city = _first_value(arguments, CITY_KEYS)
    payment = _first_value(arguments, PAYMENT_KEYS)
    if payment is None:
        payment = turn.checkout.payment_method or find_payment_method(turn.user_message)
        if payment is not None:
            arguments["payment_method"] = payment

    missing = []
    if not city:
        missing.append("cidade")
    if not payment:
        missing.append("método de pagamento (PIX ou Cartão)")
    if missing:
        raise ToolArgumentError(
            "missing_params",
            f"Parâmetros ausentes: {', '.join(missing)}. Pergunte ao cliente: "
            "'Qual é a sua cidade e qual o método de pagamento? PIX ou Cartão?'",
        )
    return arguments


@register_validator(names.DELIVERY_AVAILABILITY)
def validate_delivery_availability(arguments: dict[str, Any], turn: TurnContext) -> dict[str, Any]:
    key = _first_key(arguments, DATE_KEYS)
    raw = _first_value(arguments, DATE_KEYS)
    if key is None or raw is None:
        raise ToolArgumentError(
            "missing_date",
            "Data ausente. Pergunte ao cliente para qual dia deseja a entrega antes de validar.",
        )
    normalized = normalize_delivery_date(raw, turn.today)
    if normalized is not None:
        arguments[key] = normalized
    return arguments


@register_validator(names.ADD_ONS)
def validate_add_ons(arguments: dict[str, Any], turn: TurnContext) -> dict[str, Any]:
    if not turn.checkout.product_name:
        raise ToolArgumentError(
            "product_not_confirmed",
            "Nenhum produto foi escolhido ainda. Ajude o cliente a escolher o produto "
            "principal antes de oferecer adicionais.",
        )
    return arguments


@register_validator(names.NOTIFY_HUMAN)
def validate_notify_human(arguments: dict[str, Any], turn: TurnContext) -> dict[str, Any]:
    reason = str(arguments.get("reason") or "")
    context = _first_value(arguments, CONTEXT_KEYS) or ""

    if FINALIZATION_REASON_RE.search(reason):
        missing = find_missing_checkout_fields(context)
        if missing:
            raise ToolArgumentError(
                "incomplete_context",
                f"Contexto incompleto. Faltando: {', '.join(missing)}. Colete produto e "
                "preço, data e horário de entrega, endereço completo (ou retirada) e "
                "método de pagamento antes de notificar o atendente.",
            )
    elif not context:
        arguments["customer_context"] = DEFAULT_NOTIFY_CONTEXT

    if not _first_value(arguments, PHONE_KEYS) and turn.customer_phone:
        arguments["customer_phone"] = turn.customer_phone
    if not _first_value(arguments, NAME_KEYS) and turn.customer_name:
        arguments["customer_name"] = turn.customer_name
    return arguments


@register_validator(names.BLOCK_SESSION)
def validate_block_session(arguments: dict[str, Any], turn: TurnContext) -> dict[str, Any]:
    arguments["session_id"] = turn.session_id
    return arguments


@register_validator(names.SAVE_CUSTOMER_SUMMARY)
def validate_save_customer_summary(arguments: dict[str, Any], turn: TurnContext) -> dict[str, Any]:
    if not str(arguments.get("summary") or "").strip():
        raise ToolArgumentError("missing_summary", "Resumo vazio. Informe um resumo do atendimento.")
    phone = _first_value(arguments, PHONE_KEYS) or turn.customer_phone
    if not phone:
        raise ToolArgumentError(
            "missing_phone", "Telefone do cliente desconhecido; não é possível salvar o resumo."
        )
    arguments["customer_phone"] = normalize_phone(phone)
    return arguments
