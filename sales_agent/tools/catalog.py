"""
Catalog vocabulary and result-shape helpers.

The tool server owns the catalog itself. This module only knows how
customers talk about products (keyword aliases used to build short search
terms) and how catalog-search results are shaped.
"""

import logging
import re
from decimal import Decimal
from typing import Any, Optional

from sales_agent.utils import normalize_text, parse_amount

logger = logging.getLogger(__name__)

MAX_SEARCH_TERM_CHARS = 40

CATALOG_KEYWORDS: dict[str, str] = {
    "cesta": "cesta", "cestas": "cesta", "cesto": "cesta", "cestinha": "cesta",
    "flor": "flores", "flores": "flores", "floral": "flores",
    "rosa": "rosas", "rosas": "rosas",
    "buque": "buquê", "buques": "buquê", "ramalhete": "buquê",
    "girassol": "girassol", "girassois": "girassol",
    "orquidea": "orquídea", "orquideas": "orquídea",
    "caneca": "caneca", "canecas": "caneca",
    "quadro": "quadro", "quadros": "quadro", "porta retrato": "quadro",
    "chocolate": "chocolate", "chocolates": "chocolate", "bombom": "chocolate", "bombons": "chocolate",
    "cafe da manha": "café", "cafe": "café", "breakfast": "café",
    "pelucia": "pelúcia", "urso": "pelúcia", "ursinho": "pelúcia",
    "vinho": "vinho", "espumante": "vinho",
    "aniversario": "aniversário", "niver": "aniversário",
    "namorados": "namorados", "romantica": "romântica", "romantico": "romântica",
    "maes": "mães", "pais": "pais", "maternidade": "maternidade",
    "formatura": "formatura", "kit": "kit", "balao": "balão", "baloes": "balão",
}

GENERIC_TERMS = frozenset({
    "presente", "presentes", "produto", "produtos", "algo", "coisa", "opcao", "opcoes",
    "catalogo", "qualquer", "sugestao", "sugestoes", "item", "itens",
})

SEARCH_STOPWORDS = frozenset({
    "o", "a", "os", "as", "de", "da", "do", "das", "dos", "em", "um", "uma", "e", "ou",
    "para", "pra", "por", "com", "sem", "que", "se", "nao", "na", "no", "nas", "nos",
    "ao", "aos", "quero", "queria", "gostaria", "tem", "voces",
})

EXACT_RESULT = "EXATO"
FALLBACK_RESULT = "FALLBACK"
_PRODUCT_LIST_KEYS = ("exatos", "fallback", "produtos", "products")


def get_valid_catalog_terms() -> list[str]:
    """Canonical search terms, one per product family or occasion."""
    return sorted(set(CATALOG_KEYWORDS.values()))


def match_catalog_keyword(text: str) -> Optional[str]:
    """Map free text to a canonical catalog search term. Longest alias wins."""
    normalized = normalize_text(text)
    for alias in sorted(CATALOG_KEYWORDS, key=len, reverse=True):
        if re.search(rf"\b{re.escape(alias)}\b", normalized):
            return CATALOG_KEYWORDS[alias]
    return None


def normalize_search_term(term: str) -> str:
    """Reduce a multi-word term to its longest meaningful word.

        >>> normalize_search_term("cestas de chocolate")
        'chocolate'
    """
    words = [w for w in re.findall(r"[\wÀ-ÿ]+", term.lower()) if normalize_text(w) not in SEARCH_STOPWORDS]
    if len(words) <= 1:
        return words[0] if words else term.strip()
    return max(words, key=len)


def _is_usable_term(term: str) -> bool:
    normalized = normalize_text(term)
    if not normalized or len(normalized) > MAX_SEARCH_TERM_CHARS:
        return False
    if all(word in GENERIC_TERMS or word in SEARCH_STOPWORDS for word in normalized.split()):
        return False
    return match_catalog_keyword(term) is not None


def resolve_search_term(raw_term: Optional[str], recent_user_texts: list[str]) -> Optional[str]:
    """
    Pick the search term to send to catalog search.

    A short term containing a catalog keyword is kept. Otherwise a keyword
    is taken from the term itself, then from the customer's recent messages
    (most recent first); failing that, the term is reduced to its longest
    meaningful word. Returns None when there is nothing to search for.
    """
    term = (raw_term or "").strip()
    if term and _is_usable_term(term):
        return term

    for source in [term, *recent_user_texts]:
        keyword = match_catalog_keyword(source) if source else None
        if keyword:
            logger.info("Search term %r resolved to catalog keyword %r", term, keyword)
            return keyword

    if term:
        reduced = normalize_search_term(term)
        if normalize_text(reduced) not in GENERIC_TERMS:
            return reduced
    return None


def extract_catalog_products(payload: Any) -> list[dict[str, Any]]:
    """Flatten a catalog-search payload into its product list, exact matches first."""
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    if not isinstance(payload, dict):
        return []
    products: list[dict[str, Any]] = []
    for key in _PRODUCT_LIST_KEYS:
        items = payload.get(key)
        if isinstance(items, list):
            products.extend(p for p in items if isinstance(p, dict))
    return products


def replace_catalog_products(payload: dict[str, Any], selected: list[dict[str, Any]]) -> dict[str, Any]:
    """Rebuild a catalog payload so it only carries ``selected`` products."""
    rebuilt = {k: v for k, v in payload.items() if k not in _PRODUCT_LIST_KEYS}
    if "exatos" in payload or "fallback" in payload:
        rebuilt["exatos"] = [p for p in selected if p.get("tipo_resultado", EXACT_RESULT) == EXACT_RESULT]
        rebuilt["fallback"] = [p for p in selected if p.get("tipo_resultado") == FALLBACK_RESULT]
    else:
        key = "produtos" if "produtos" in payload else "products"
        rebuilt[key] = list(selected)
    return rebuilt


def product_name(product: dict[str, Any]) -> Optional[str]:
    for key in ("nome", "name", "titulo", "title"):
        if product.get(key):
            return str(product[key])
    return None


def product_price(product: dict[str, Any]) -> Optional[Decimal]:
    for key in ("preco", "price", "valor", "preco_final"):
        if key in product:
            return parse_amount(product[key])
    return None
