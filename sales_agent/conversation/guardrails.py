"""
Multi-layer guardrail system for controlling agent behavior.

Independent guardrail layers, each checking a different concern:
1. SensitiveTopicGuardrail: payment keys and bank data are never discussed
2. CartEventGuardrail: storefront cart events go straight to the team
3. VagueMessageGuardrail: empty or filler messages get an engagement prompt
4. StallGuardrail: model output that narrates instead of acting
5. HallucinationGuardrail: prices in a reply that no tool ever returned
6. ResponseCleaner: strips internal markers and bounds reply length

These are composed into a GuardrailPipeline for pre-LLM and post-LLM checks.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sales_agent.config import settings
from sales_agent.conversation.prompt_selector import CART_EVENT_RE
from sales_agent.prompts.replies import (
    CART_HANDOFF_REPLY,
    ENGAGEMENT_REPLY,
    SENSITIVE_TOPIC_REPLY,
)
from sales_agent.utils import extract_json_payload, normalize_text, parse_amount, strip_punctuation

logger = logging.getLogger(__name__)


@dataclass
class GuardrailResult:
    """Outcome of a single guardrail check."""
    passed: bool
    violation_type: Optional[str] = None
    message: Optional[str] = None
    severity: str = "warning"  # "warning" | "block" | "correct"


class SensitiveTopicGuardrail:
    """Deflects requests for payment keys and bank details."""

    SENSITIVE_PATTERNS = [
        re.compile(r"chave\s*(?:do\s*)?pix", re.IGNORECASE),
        re.compile(r"pix\s+(?:da loja|de voc[eê]s)", re.IGNORECASE),
        re.compile(r"dados\s+banc[aá]rios|conta\s+banc[aá]ria|ag[eê]ncia\s+e\s+conta", re.IGNORECASE),
        re.compile(r"\bcnpj\b|qr\s*code\s+(?:do\s+)?pix", re.IGNORECASE),
    ]

    def check(self, text: str) -> GuardrailResult:
        for pattern in self.SENSITIVE_PATTERNS:
            if pattern.search(text):
                logger.info("Sensitive topic detected: %r", pattern.pattern)
                return GuardrailResult(
                    passed=False,
                    violation_type="sensitive_topic",
                    message=SENSITIVE_TOPIC_REPLY,
                    severity="block",
                )
        return GuardrailResult(passed=True)


class CartEventGuardrail:
    """Recognizes the marker the storefront sends when a product is added to the cart."""

    def check(self, text: str) -> GuardrailResult:
        if CART_EVENT_RE.search(text):
            return GuardrailResult(
                passed=False,
                violation_type="cart_event",
                message=CART_HANDOFF_REPLY,
                severity="block",
            )
        return GuardrailResult(passed=True)


class VagueMessageGuardrail:
    """Catches messages with nothing to act on: punctuation, emoji, fillers."""

    FILLERS = frozenset({"hm", "hmm", "hmmm", "ah", "eh", "uhm", "ue", "q", "?"})

    def check(self, text: str) -> GuardrailResult:
        words = strip_punctuation(text).split()
        if not words or (len(words) == 1 and words[0] in self.FILLERS):
            return GuardrailResult(
                passed=False,
                violation_type="vague_message",
                message=ENGAGEMENT_REPLY,
                severity="block",
            )
        return GuardrailResult(passed=True)


class StallGuardrail:
    """Detects model output that announces an action instead of performing it."""

    STALL_PATTERNS = [
        re.compile(
            r"(?:^|[.!?,]\s*)(?:so\s+)?(?:um|1)\s+(?:momento|instante|minutinho|segundo)"
            r"(?=\s*(?:$|[^\w\s]|por favor|enquanto|que\b|ja\b))"
        ),
        re.compile(r"\baguarde\b(?=\s*(?:$|[^\w\s]|um\b|so\b|enquanto|que\b))"),
        re.compile(
            r"\b(?:vou|irei|ja vou|deixa eu|deixe-me|deixe me)\s+"
            r"(?:procurar|verificar|buscar|consultar|checar|pesquisar|ver|olhar)\b"
        ),
        re.compile(r"\bestou\s+(?:verificando|procurando|buscando|consultando|checando|pesquisando)\b"),
        re.compile(r"\bja volto\b"),
    ]
    EVIDENCE_RE = re.compile(
        r"R\$\s*\d|\d+\s*reais|https?://|\b(?:cestas?|cestos?|buques?|flor|flores|rosas?|canecas?|"
        r"quadros?|chocolates?|pelucias?|kits?|girassol|girassois)\b",
        re.IGNORECASE,
    )
    SHORT_REPLY_CHARS = 200

    STALL_CORRECTION = (
        "ATENÇÃO: não anuncie ações ('um momento', 'vou verificar'). Se precisar de dados, "
        "chame a ferramenta agora com o conteúdo vazio. Se já tem os dados, responda ao "
        "cliente diretamente."
    )
    EVIDENCE_CORRECTION = (
        "ATENÇÃO: esta mensagem exige dados reais do catálogo ou da agenda. Chame a "
        "ferramenta adequada agora (por exemplo `consultarCatalogo`) em vez de responder "
        "sem preços ou produtos verificados."
    )

    def is_stalling(self, text: str) -> bool:
        normalized = normalize_text(text)
        return not normalized or any(p.search(normalized) for p in self.STALL_PATTERNS)

    def lacks_evidence(self, text: str) -> bool:
        normalized = normalize_text(text)
        return len(normalized) < self.SHORT_REPLY_CHARS and not self.EVIDENCE_RE.search(normalized)

    def check_model_text(self, text: str, evidence_required: bool) -> GuardrailResult:
        if self.is_stalling(text):
            return GuardrailResult(
                passed=False,
                violation_type="stall",
                message=self.STALL_CORRECTION,
                severity="correct",
            )
        if evidence_required and self.lacks_evidence(text):
            return GuardrailResult(
                passed=False,
                violation_type="missing_evidence",
                message=self.EVIDENCE_CORRECTION,
                severity="correct",
            )
        return GuardrailResult(passed=True)


class HallucinationGuardrail:
    """Flags prices in a reply that do not come from tool output or system context."""

    PRICE_RE = re.compile(r"R\$\s*(\d{1,3}(?:\.\d{3})+(?:,\d{2})?|\d+(?:[.,]\d{1,2})?)")
    PRICE_FIELD_RE = re.compile(r"pre[cç]o|price|valor|frete|freight|shipping|total|taxa|custo|cost", re.IGNORECASE)
    FREIGHT_RE = re.compile(r"frete|freight|shipping|entrega|taxa", re.IGNORECASE)
    FREIGHT_WINDOW_CHARS = 30

    PRICE_CORRECTION = (
        "ATENÇÃO: sua resposta cita valores que não aparecem nos resultados das "
        "ferramentas ({prices}). Reescreva usando somente preços retornados pelas "
        "ferramentas, sem inventar valores."
    )

    def collect_known_amounts(self, evidence: list[str]) -> tuple[set[Decimal], set[Decimal]]:
        """
        Harvest the amounts a reply may quote, split into (prices, freights).

        Only price-shaped evidence counts: ``R$`` amounts in any text and
        price-like fields of JSON tool payloads. Clock times, dates, opening
        hours and phone numbers never become known amounts. An ``R$`` amount
        shortly after a freight word, or a freight-named field, is a freight.
        """
        prices: set[Decimal] = set()
        freights: set[Decimal] = set()
        for text in evidence:
            for match in self.PRICE_RE.finditer(text):
                amount = parse_amount(match.group(1))
                if amount is None:
                    continue
                window = text[max(0, match.start() - self.FREIGHT_WINDOW_CHARS):match.start()]
                (freights if self.FREIGHT_RE.search(window) else prices).add(amount)
            self._collect_fields(extract_json_payload(text), None, prices, freights)
        return prices, freights

    def _collect_fields(
        self, node: Any, key: Optional[str], prices: set[Decimal], freights: set[Decimal]
    ) -> None:
        if isinstance(node, dict):
            for child_key, value in node.items():
                self._collect_fields(value, str(child_key), prices, freights)
        elif isinstance(node, list):
            for item in node:
                self._collect_fields(item, key, prices, freights)
        elif key is not None and self.PRICE_FIELD_RE.search(key):
            amount = parse_amount(node)
            if amount is not None:
                (freights if self.FREIGHT_RE.search(key) else prices).add(amount)

    def find_unverified_prices(self, reply: str, evidence: list[str]) -> list[str]:
        prices, freights = self.collect_known_amounts(evidence)
        known = prices | freights
        # A total is one product price plus one freight
        totals = {price + freight for price in prices for freight in freights}

        unverified = []
        for raw in self.PRICE_RE.findall(reply):
            amount = parse_amount(raw)
            if amount is not None and amount not in known and amount not in totals:
                unverified.append(f"R$ {raw}")
        return unverified

    def check_response(self, reply: str, evidence: list[str]) -> GuardrailResult:
        unverified = self.find_unverified_prices(reply, evidence)
        if unverified:
            logger.warning("Unverified prices in reply: %s", unverified)
            return GuardrailResult(
                passed=False,
                violation_type="unverified_price",
                message=self.PRICE_CORRECTION.format(prices=", ".join(unverified)),
                severity="correct",
            )
        return GuardrailResult(passed=True)


class ResponseCleaner:
    """Removes internal markers from a final reply and bounds its length."""

    MIN_REPLY_CHARS = 3

    def __init__(self, max_chars: int = settings.orchestrator.max_reply_chars) -> None:
        self.max_chars = max_chars

    def clean(self, message: Optional[str]) -> Optional[str]:
        """Return the cleaned reply, or None when nothing usable remains."""
        if not message or not message.strip():
            return None
        cleaned = message.strip()
        cleaned = re.sub(r"\[INTERNO\].*?(?=\n[^\[]|$)", "", cleaned, flags=re.DOTALL)
        cleaned = re.sub(r"\[THINK\]", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\[DEBUG\].*?$", "", cleaned, flags=re.MULTILINE)
        cleaned = re.sub(r"\[(?:SEND|DONE)\]", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
        cleaned = re.sub(r" {2,}", " ", cleaned)

        if len(cleaned) < self.MIN_REPLY_CHARS:
            return None
        if len(cleaned) > self.max_chars:
            cleaned = cleaned[: self.max_chars - 3] + "..."
        return cleaned.strip()


class GuardrailPipeline:
    """Composes all guardrails into pre-LLM and post-LLM check pipelines."""

    def __init__(self) -> None:
        self.sensitive = SensitiveTopicGuardrail()
        self.cart_event = CartEventGuardrail()
        self.vague = VagueMessageGuardrail()
        self.stall = StallGuardrail()
        self.hallucination = HallucinationGuardrail()
        self.cleaner = ResponseCleaner()

    def check_user_input(self, text: str) -> list[GuardrailResult]:
        """Pre-LLM: checks whose failure short-circuits the turn, in priority order."""
        results = [
            self.sensitive.check(text),
            self.cart_event.check(text),
            self.vague.check(text),
        ]
        return [r for r in results if not r.passed]

    def check_model_text(self, text: str, evidence_required: bool = False) -> GuardrailResult:
        """Mid-loop: a tool-free model response that must not be accepted as final."""
        return self.stall.check_model_text(text, evidence_required)

    def check_agent_response(self, reply: str, evidence: list[str]) -> list[GuardrailResult]:
        """Post-LLM: check the synthesized reply before it reaches the customer."""
        results = [self.hallucination.check_response(reply, evidence)]
        return [r for r in results if not r.passed]
