from enum import Enum


class Confidence(str, Enum):
    """How strongly a piece of evidence, or an identifier, can be trusted."""
    HIGHEST = 'HIGHEST'
    HIGH = 'HIGH'
    MEDIUM = 'MEDIUM'
    LOW = 'LOW'

    def __str__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def descending(cls) -> list['Confidence']:
        """HIGHEST first."""
        return sorted(cls, key=lambda c: c.rank, reverse=True)


# The single definition of the confidence order
_CONFIDENCE_RANK = {
    Confidence.LOW: 0,
    Confidence.MEDIUM: 1,
    Confidence.HIGH: 2,
    Confidence.HIGHEST: 3,
}


class EvidenceType(str, Enum):
    VENDOR = 'VENDOR'
    PRODUCT = 'PRODUCT'
    VERSION = 'VERSION'

    def __str__(self) -> str:
        return self.value


class IdentifierScheme(str, Enum):
    CPE = 'CPE'
    PURL = 'PURL'
    GENERIC = 'GENERIC'

    def __str__(self) -> str:
        return self.value
