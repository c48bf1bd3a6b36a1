"""Turn component evidence into a weighted vendor/product dictionary query."""
import re
from collections import Counter
from collections.abc import Iterable

import structlog

from vulnmatch.models.evidence import Evidence

logger = structlog.get_logger('query_service')

MAX_TERM_LENGTH = 1000
WEIGHTING_BOOST = 1

PRODUCT_FIELD = 'product'
VENDOR_FIELD = 'vendor'

_CLEANSE = re.compile(r'[^A-Za-z0-9 ._:/-]')
_NON_ALPHA = re.compile(r'[^a-z]')
_TRUNCATE_DELIMITERS = (' ', '.', '-', '_', '/')
_QUERY_SPECIAL = re.compile(r'([+\-!():^\[\]"{}~*?\\/&|])')
_KEYWORDS = {'and', 'or', 'not'}


def cleanse(text: str) -> str:
    return _CLEANSE.sub(' ', text)


def truncate_term(value: str, limit: int = MAX_TERM_LENGTH) -> str:
    """Cut an over-long value at the last delimiter at or before ``limit``."""
    if len(value) <= limit:
        return value
    for delimiter in _TRUNCATE_DELIMITERS:
        position = value.rfind(delimiter, 0, limit + 1)
        if position > 0:
            return value[:position]
    return value[:limit]


def collect_terms(terms: Counter, evidence: Iterable[Evidence]) -> Counter:
    """
    Add the cleansed value of every evidence item to ``terms``.

    The counter is updated in place so one map can be built across several
    confidence levels and collectors.
    """
    for item in evidence:
        value = cleanse(item.value).strip()
        if not value:
            continue
        terms[truncate_term(value)] += 1
    return terms


def add_major_version_to_terms(major_versions: set[str], products: Counter) -> None:
    """
    Add ``<product><major>`` and ``<product>v<major>`` variants so that
    ``jackson`` with major version 2 can find ``jackson2``.
    """
    additions: Counter = Counter()
    for term in list(products):
        if not term or term[-1].isdigit():
            continue
        for major in major_versions:
            if not major:
                continue
            for suffix in (major, f"v{major}"):
                if term.endswith(suffix) or (term + suffix) in products:
                    continue
                additions[term + suffix] += 1
    products.update(additions)


def escape(word: str) -> str:
    escaped = _QUERY_SPECIAL.sub(r'\\\1', word)
    if word.lower() in _KEYWORDS:
        return f'"{escaped}"'
    return escaped


def _find_boost_term(word: str, weightings: set[str]) -> str | None:
    normalized = _NON_ALPHA.sub('', word.lower())
    if not normalized:
        return None
    for entry in sorted(weightings):
        if _NON_ALPHA.sub('', entry.lower()) == normalized:
            return entry
    return None


def _weighted_clause(field: str, terms: Counter, weightings: set[str]) -> str | None:
    words: list[str] = []
    for phrase, count in terms.items():
        boosted: list[str] = []
        for word in phrase.split(' '):
            if not word:
                continue
            text = escape(word)
            boost_term = _find_boost_term(word, weightings)
            if boost_term is not None:
                text += f"^{count + WEIGHTING_BOOST}"
                if boost_term != word:
                    boosted.append(f"{escape(boost_term)}^{count + WEIGHTING_BOOST}")
            elif count > 1:
                text += f"^{count}"
            words.append(text)
        words.extend(boosted)
    if not words:
        return None
    return f"{field}:({' '.join(words)})"


def build_search(
    vendor_terms: Counter,
    product_terms: Counter,
    vendor_weightings: set[str] | None = None,
    product_weightings: set[str] | None = None,
) -> str | None:
    """
    Build ``product:(...) AND vendor:(...)``.

    Returns None when either side has no usable word; no query should be
    issued for such a component.
    """
    product = _weighted_clause(PRODUCT_FIELD, product_terms, product_weightings or set())
    if product is None:
        return None
    vendor = _weighted_clause(VENDOR_FIELD, vendor_terms, vendor_weightings or set())
    if vendor is None:
        return None
    return f"{product} AND {vendor}"
