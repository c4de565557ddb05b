"""
Product curator: narrows a catalog-search result to the two best picks.

The customer is shown two products at a time. When the search returns
more candidates than that, a single low-temperature model call ranks them
with a fixed rubric. Any failure (model error, unparseable answer) keeps
the original result, so curation can never fail a turn.
"""

import json
import re
from typing import Any, Optional

from sales_agent.config import settings
from sales_agent.llm.client import LLMClient, LLMError
from sales_agent.logging_context import get_session_logger
from sales_agent.prompts.prompt_templates import build_curator_prompt
from sales_agent.tools.catalog import extract_catalog_products, replace_catalog_products

logger = get_session_logger(__name__)

PICK_COUNT = 2

FULL_CATALOG_RE = re.compile(
    r"cat[aá]logo (?:completo|inteiro)|todos os produtos|todas as op|ver tudo|mostra tudo",
    re.IGNORECASE,
)


def parse_selection(reply: str, candidate_count: int) -> Optional[list[int]]:
    """Read two distinct in-range indices from the curator reply.

        >>> parse_selection("3, 0", 5)
        [3, 0]
        >>> parse_selection("2,2", 5) is None
        True
    """
    picks: list[int] = []
    for raw in re.findall(r"\d+", reply):
        index = int(raw)
        if 0 <= index < candidate_count and index not in picks:
            picks.append(index)
        if len(picks) == PICK_COUNT:
            return picks
    return None


class ProductCurator:
    """Re-ranks catalog candidates and keeps the two most relevant ones."""

    def __init__(
        self,
        llm: LLMClient,
        min_candidates: int = settings.orchestrator.curator_min_candidates,
        temperature: float = settings.model.curator_temperature,
    ) -> None:
        self._llm = llm
        self._min_candidates = min_candidates
        self._temperature = temperature

    async def curate(
        self,
        payload: dict[str, Any],
        user_message: str,
        memory_summary: Optional[str] = None,
    ) -> dict[str, Any]:
        """Return ``payload`` reduced to two products, or unchanged."""
        products = extract_catalog_products(payload)
        if len(products) < self._min_candidates:
            return payload
        if FULL_CATALOG_RE.search(user_message):
            logger.info("Full catalog requested, skipping curation of %d products", len(products))
            return payload

        prompt = build_curator_prompt(products, user_message, memory_summary)
        try:
            reply = await self._llm.complete(
                [{"role": "user", "content": prompt}],
                temperature=self._temperature,
                max_tokens=20,
            )
        except LLMError as exc:
            logger.warning("Curator call failed, keeping catalog order: %s", exc)
            return payload

        picks = parse_selection(reply.content, len(products))
        if picks is None:
            logger.warning("Unparseable curator reply %r, keeping catalog order", reply.content)
            return payload

        selected = [products[index] for index in picks]
        logger.info(
            "Curated %d candidates down to %s",
            len(products), json.dumps([p.get("id") for p in selected], default=str),
        )
        return replace_catalog_products(payload, selected)
