"""In-memory inverted index over the vendor/product pairs of the dataset."""
import math
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field

import structlog

from vulnmatch.core.errors import QueryParseError
from vulnmatch.core.errors import SearchIndexError
from vulnmatch.models.ecosystem import Ecosystem
from vulnmatch.services.query_service import PRODUCT_FIELD
from vulnmatch.services.query_service import VENDOR_FIELD

logger = structlog.get_logger('index_service')

FIELDS = (PRODUCT_FIELD, VENDOR_FIELD)

STOP_WORDS = frozenset({
    'software', 'framework', 'inc', 'com', 'org', 'net', 'www',
    'consulting', 'ltd', 'foundation', 'project',
})

# BM25 parameters, term frequency is always one
_K1 = 1.2
_B = 0.75

_TOKEN_SPLIT = re.compile(r'[^a-z0-9]+')
_FIELD_START = re.compile(r'\s*([A-Za-z_]+):\(')
_AND = re.compile(r'\s+AND\s+')
_BOOST = re.compile(r'\d+(\.\d+)?')


def analyze(text: str) -> list[str]:
    """
    Lower-case, split on anything that is not a letter or digit, and add
    the concatenation of each adjacent pair: ``spring-framework`` gives
    ``spring``, ``springframework`` and ``framework``. Stop words are
    dropped unless they are part of a concatenated pair.
    """
    words = [w for w in _TOKEN_SPLIT.split(text.lower()) if w]
    tokens = []
    for index, word in enumerate(words):
        if word not in STOP_WORDS:
            tokens.append(word)
        if index + 1 < len(words):
            tokens.append(word + words[index + 1])
    return tokens


@dataclass
class IndexEntry:
    """A search hit. Equality only considers vendor and product."""
    vendor: str
    product: str
    ecosystem: str | None = None
    document_id: int = -1
    score: float = 0.0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndexEntry):
            return NotImplemented
        return (self.vendor, self.product) == (other.vendor, other.product)

    def __hash__(self) -> int:
        return hash((self.vendor, self.product))


@dataclass(frozen=True)
class QueryClause:
    field: str
    terms: tuple[tuple[str, float], ...]


@dataclass(frozen=True)
class Query:
    clauses: tuple[QueryClause, ...]


def _read_word(text: str, pos: int) -> tuple[str, int]:
    chars = []
    quoted = text[pos] == '"'
    if quoted:
        pos += 1
    while pos < len(text):
        char = text[pos]
        if char == '\\' and pos + 1 < len(text):
            chars.append(text[pos + 1])
            pos += 2
            continue
        if quoted:
            if char == '"':
                return ''.join(chars), pos + 1
        elif char.isspace() or char in ')^':
            break
        chars.append(char)
        pos += 1
    if quoted:
        raise QueryParseError(f"Unterminated quote in query: {text!r}")
    return ''.join(chars), pos


def parse_query(text: str | None) -> Query:
    """Parse ``field:(word word^2 ...) AND field:(...)``."""
    if text is None or not text.strip():
        raise QueryParseError('Empty query')
    clauses = []
    pos = 0
    while True:
        match = _FIELD_START.match(text, pos)
        if match is None:
            raise QueryParseError(f"Expected a field clause at {pos}: {text!r}")
        field_name = match.group(1).lower()
        if field_name not in FIELDS:
            raise QueryParseError(f"Unknown field {field_name!r}")
        pos = match.end()
        terms = []
        while True:
            while pos < len(text) and text[pos].isspace():
                pos += 1
            if pos >= len(text):
                raise QueryParseError(f"Unterminated clause: {text!r}")
            if text[pos] == ')':
                pos += 1
                break
            word, pos = _read_word(text, pos)
            boost = 1.0
            if pos < len(text) and text[pos] == '^':
                boost_match = _BOOST.match(text, pos + 1)
                if boost_match is None:
                    raise QueryParseError(f"Invalid boost at {pos}: {text!r}")
                boost = float(boost_match.group())
                pos = boost_match.end()
            if word:
                terms.append((word, boost))
        if not terms:
            raise QueryParseError(f"Empty {field_name} clause: {text!r}")
        clauses.append(QueryClause(field_name, tuple(terms)))
        and_match = _AND.match(text, pos)
        if and_match is None:
            break
        pos = and_match.end()
    if text[pos:].strip():
        raise QueryParseError(f"Unexpected text at {pos}: {text!r}")
    return Query(tuple(clauses))


@dataclass
class _Snapshot:
    """Immutable once built; searches read it without locking."""
    entries: list[tuple[str, str, str | None]] = field(default_factory=list)
    postings: dict[str, dict[str, list[int]]] = field(default_factory=dict)
    lengths: dict[str, list[int]] = field(default_factory=dict)
    average_lengths: dict[str, float] = field(default_factory=dict)


def _build_snapshot(entries: Iterable[tuple[str, str, str | None]]) -> _Snapshot:
    snapshot = _Snapshot(
        postings={name: {} for name in FIELDS},
        lengths={name: [] for name in FIELDS},
    )
    seen = set()
    for vendor, product, ecosystem in entries:
        if (vendor, product, ecosystem) in seen:
            continue
        seen.add((vendor, product, ecosystem))
        document_id = len(snapshot.entries)
        snapshot.entries.append((vendor, product, ecosystem))
        for name, value in ((VENDOR_FIELD, vendor), (PRODUCT_FIELD, product)):
            tokens = set(analyze(value))
            snapshot.lengths[name].append(len(tokens) or 1)
            for token in tokens:
                snapshot.postings[name].setdefault(token, []).append(document_id)
    for name in FIELDS:
        lengths = snapshot.lengths[name]
        snapshot.average_lengths[name] = (sum(lengths) / len(lengths)) if lengths else 1.0
    return snapshot


def in_ecosystem_scope(entry_ecosystem: str | None, ecosystem: str | None) -> bool:
    if ecosystem is None or entry_ecosystem is None:
        return True
    if entry_ecosystem == ecosystem:
        return True
    return ecosystem == Ecosystem.IOS and entry_ecosystem == Ecosystem.NATIVE


class CpeMemoryIndex:
    """
    Vendor/product dictionary held in memory.

    A rebuild prepares a complete new snapshot and swaps it in under a
    lock, so concurrent searches keep reading the snapshot they started
    with and never see a half-built index.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot: _Snapshot | None = None

    def open(self, entries: Iterable[tuple[str, str, str | None]]) -> None:
        self.rebuild(entries)

    def rebuild(self, entries: Iterable[tuple[str, str, str | None]]) -> None:
        snapshot = _build_snapshot(entries)
        with self._lock:
            self._snapshot = snapshot
        logger.info('Search index built', documents=len(snapshot.entries))

    def is_open(self) -> bool:
        return self._snapshot is not None

    def close(self) -> None:
        with self._lock:
            self._snapshot = None

    def __len__(self) -> int:
        snapshot = self._snapshot
        return len(snapshot.entries) if snapshot else 0

    def search(
        self,
        query: str | Query,
        ecosystem: str | None = None,
        limit: int = 25,
    ) -> list[IndexEntry]:
        """
        Return the best matching entries, highest score first. Every field
        clause must match at least one token; equal scores keep dictionary
        order.
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise SearchIndexError('The search index is not open')
        if isinstance(query, str):
            query = parse_query(query)

        total = len(snapshot.entries)
        scores: dict[int, float] = {}
        for position, clause in enumerate(query.clauses):
            postings = snapshot.postings[clause.field]
            lengths = snapshot.lengths[clause.field]
            average = snapshot.average_lengths[clause.field]
            clause_scores: dict[int, float] = {}
            for word, boost in clause.terms:
                for token in analyze(word):
                    documents = postings.get(token)
                    if not documents:
                        continue
                    idf = math.log(1 + (total - len(documents) + 0.5) / (len(documents) + 0.5))
                    for document_id in documents:
                        norm = _K1 * (1 - _B + _B * lengths[document_id] / average)
                        weight = boost * idf * (_K1 + 1) / (1 + norm)
                        clause_scores[document_id] = clause_scores.get(document_id, 0.0) + weight
            if position == 0:
                scores = clause_scores
            else:
                scores = {
                    document_id: score + clause_scores[document_id]
                    for document_id, score in scores.items()
                    if document_id in clause_scores
                }
            if not scores:
                return []

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        results = []
        for document_id, score in ranked:
            vendor, product, entry_ecosystem = snapshot.entries[document_id]
            if not in_ecosystem_scope(entry_ecosystem, ecosystem):
                continue
            entry = IndexEntry(vendor, product, entry_ecosystem, document_id, score)
            if entry in results:
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results
