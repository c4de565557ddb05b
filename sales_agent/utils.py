"""Shared utilities used across the sales agent orchestrator."""

import json
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

_SESSION_PHONE_RE = re.compile(r"(?<!\d)(\d{10,13})(?!\d)")
_JSON_FENCE_RE = re.compile(r"```json\s*\n(.*?)\n```", re.DOTALL)


def normalize_phone(value: str) -> str:
    """Normalize a phone number to digits only.

    Examples:
        >>> normalize_phone("+55 (83) 99999-0000")
        '5583999990000'
        >>> normalize_phone("83 9 9999 0000")
        '83999990000'
    """
    return re.sub(r"[^\d]", "", value.strip())


def phone_from_session_id(session_id: str) -> Optional[str]:
    """Extract a phone number embedded in a session id.

    Session ids are derived from the customer's chat address, e.g.
    ``session-5583999990000`` or ``5583999990000@s.whatsapp.net``.

        >>> phone_from_session_id("session-5583999990000")
        '5583999990000'
        >>> phone_from_session_id("web-abc") is None
        True
    """
    match = _SESSION_PHONE_RE.search(session_id)
    return match.group(1) if match else None


def normalize_text(text: str) -> str:
    """Lowercase, strip accents and collapse whitespace for keyword matching.

        >>> normalize_text("  Buquê de  FLORES! ")
        'buque de flores!'
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", stripped).strip()


def strip_punctuation(text: str) -> str:
    """Normalize text and drop everything that is not a letter, digit or space."""
    return re.sub(r"\s+", " ", re.sub(r"[^\w\s]", " ", normalize_text(text))).strip()


def parse_amount(raw: Any) -> Optional[Decimal]:
    """Parse a money amount written in Brazilian or JSON notation.

        >>> parse_amount("1.250,90")
        Decimal('1250.90')
        >>> parse_amount(137.9)
        Decimal('137.90')
        >>> parse_amount("abc") is None
        True
    """
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"\d{1,3}(?:\.\d{3})+", text):
        text = text.replace(".", "")
    try:
        return Decimal(text).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def format_brl(amount: Decimal) -> str:
    """Format an amount as Brazilian currency text.

        >>> format_brl(Decimal("1250.9"))
        'R$ 1.250,90'
    """
    whole, cents = f"{amount:.2f}".split(".")
    grouped = f"{int(whole):,}".replace(",", ".")
    return f"R$ {grouped},{cents}"


def extract_json_payload(text: str) -> Optional[Any]:
    """Parse structured data out of a tool output.

    Accepts a whole JSON document or a fenced ```json block followed by
    free text. Returns None when nothing parses.
    """
    if not text:
        return None
    candidates = [text.strip()]
    fenced = _JSON_FENCE_RE.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1))
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
    return None
