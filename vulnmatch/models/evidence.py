import threading
from collections.abc import Iterable
from collections.abc import Iterator
from dataclasses import dataclass

from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import EvidenceType


@dataclass(frozen=True)
class Evidence:
    """A single observation about a component's vendor, product or version."""
    source: str
    name: str
    value: str
    confidence: Confidence

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source.lower(), self.name.lower(), self.value.lower())


class EvidenceCollection:
    """
    Evidence of a component grouped by type, plus the vendor and product
    weightings collected from strong signals such as the file name.

    Evidence with the same (source, name, value), compared case-insensitively,
    is stored once; the higher confidence wins.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._evidence: dict[EvidenceType, dict[tuple[str, str, str], Evidence]] = {
            evidence_type: {} for evidence_type in EvidenceType
        }
        self._vendor_weightings: set[str] = set()
        self._product_weightings: set[str] = set()

    def add(self, evidence_type: EvidenceType, evidence: Evidence) -> bool:
        """Store evidence. Returns False when an equal item already existed."""
        with self._lock:
            bucket = self._evidence[EvidenceType(evidence_type)]
            existing = bucket.get(evidence.key)
            if existing is None:
                bucket[evidence.key] = evidence
                return True
            if evidence.confidence > existing.confidence:
                bucket[evidence.key] = evidence
            return False

    def remove(self, evidence_type: EvidenceType, evidence: Evidence) -> None:
        with self._lock:
            self._evidence[EvidenceType(evidence_type)].pop(evidence.key, None)

    def get(
        self,
        evidence_type: EvidenceType,
        confidence: Confidence | None = None,
    ) -> list[Evidence]:
        """Evidence of one type, optionally of one confidence, in stable order."""
        with self._lock:
            items = list(self._evidence[EvidenceType(evidence_type)].values())
        if confidence is not None:
            items = [e for e in items if e.confidence == confidence]
        return sorted(items, key=lambda e: e.key)

    def size(self, evidence_type: EvidenceType | None = None) -> int:
        with self._lock:
            if evidence_type is not None:
                return len(self._evidence[EvidenceType(evidence_type)])
            return sum(len(bucket) for bucket in self._evidence.values())

    def __iter__(self) -> Iterator[tuple[EvidenceType, Evidence]]:
        for evidence_type in EvidenceType:
            for evidence in self.get(evidence_type):
                yield evidence_type, evidence

    def add_vendor_weighting(self, term: str) -> None:
        with self._lock:
            self._vendor_weightings.add(term.lower())

    def add_product_weighting(self, term: str) -> None:
        with self._lock:
            self._product_weightings.add(term.lower())

    @property
    def vendor_weightings(self) -> set[str]:
        with self._lock:
            return set(self._vendor_weightings)

    @property
    def product_weightings(self) -> set[str]:
        with self._lock:
            return set(self._product_weightings)

    def values_of(self, evidence_type: EvidenceType) -> list[str]:
        return [e.value for e in self.get(evidence_type)]

    def extend(self, other: 'EvidenceCollection', types: Iterable[EvidenceType] | None = None) -> None:
        for evidence_type in types or list(EvidenceType):
            for evidence in other.get(evidence_type):
                self.add(evidence_type, evidence)
