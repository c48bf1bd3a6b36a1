"""Parsing and comparison of free-form version strings."""
import functools
import re

_PART_PATTERN = re.compile(
    r'(\d+[a-z]{1,3}$|[a-z]{1,3}[_-]?\d+|\d+|(rc|release|snapshot|beta|alpha)$)',
    re.IGNORECASE,
)

# Version embedded in a longer text, e.g. a file name or a manifest value
_EMBEDDED_VERSION = re.compile(
    r'\d+(\.\d+){1,6}([._-]?(snapshot|release|final|alpha|beta|rc$|'
    r'[a-zA-Z]{1,3}[_-]?\d{1,8}|[a-z]\b|\d{1,8}\b))?',
    re.IGNORECASE,
)
_EMBEDDED_SINGLE_VERSION = re.compile(
    r'\d+(\.\d+){0,6}([._-]?(snapshot|release|final|alpha|beta|rc$|'
    r'[a-zA-Z]{1,3}[_-]?\d{1,8}))?',
)
_PRE_VERSION = re.compile(r'^(.+)[_-](\d+\.\d{1,6})+')

UNKNOWN_VERSION = '-'


@functools.total_ordering
class DependencyVersion:
    """
    A version split into comparable parts.

    ``DependencyVersion.parse('2.1.0-RC1')`` yields the parts
    ``['2', '1', '0', 'rc1']``. Parsing never fails: text without any
    recognisable token becomes a single part.
    """

    __slots__ = ('parts',)

    def __init__(self, parts: list[str] | None = None):
        self.parts: list[str] = list(parts or [])

    @classmethod
    def parse(cls, text: str | None) -> 'DependencyVersion':
        if text is None:
            return cls()
        if text == UNKNOWN_VERSION:
            return cls([text])
        parts = [m.group() for m in _PART_PATTERN.finditer(text.lower())]
        if not parts:
            parts = [text]
        return cls(parts)

    def __str__(self) -> str:
        return '.'.join(self.parts)

    def __repr__(self) -> str:
        return f"DependencyVersion({str(self)!r})"

    def __len__(self) -> int:
        return len(self.parts)

    def __iter__(self):
        return iter(self.parts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DependencyVersion):
            return NotImplemented
        return self.parts == other.parts

    def __hash__(self) -> int:
        return hash(tuple(self.parts))

    def __lt__(self, other: 'DependencyVersion') -> bool:
        if not isinstance(other, DependencyVersion):
            return NotImplemented
        return compare(self, other) < 0

    @property
    def is_unknown(self) -> bool:
        return self.parts == [UNKNOWN_VERSION]

    def major(self) -> str | None:
        return self.parts[0] if self.parts else None

    def fuzzy_equals(self, other: 'DependencyVersion') -> bool:
        return fuzzy_equals(self, other)

    def matches_at_least_three_levels(self, other: 'DependencyVersion') -> bool:
        return matches_at_least_three_levels(self, other)


def _compare_parts(left: str, right: str) -> int:
    if left.isdecimal() and right.isdecimal():
        a, b = int(left), int(right)
    else:
        a, b = left, right
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def compare(a: DependencyVersion, b: DependencyVersion) -> int:
    """Return -1, 0 or 1. Numeric parts compare as numbers, the rest as text."""
    for left, right in zip(a.parts, b.parts):
        result = _compare_parts(left, right)
        if result:
            return result
    if len(a.parts) < len(b.parts):
        return -1
    if len(a.parts) > len(b.parts):
        return 1
    return 0


def fuzzy_equals(a: DependencyVersion, b: DependencyVersion) -> bool:
    """
    Equality that ignores trailing zero parts, so ``1.2.3.0`` equals
    ``1.2.3``. A bare major version never equals a version with three or
    more parts.
    """
    shorter, longer = sorted((a.parts, b.parts), key=len)
    if len(shorter) == 1 and len(longer) >= 3:
        return False
    for index, part in enumerate(shorter):
        if part != longer[index]:
            return False
    return all(part == '0' for part in longer[len(shorter):])


def matches_at_least_three_levels(a: DependencyVersion, b: DependencyVersion) -> bool:
    """
    True when the first three parts agree and every further shared part of
    ``a`` sorts before the one of ``b``: ``a`` could be an earlier build of
    the same release line.
    """
    if abs(len(a.parts) - len(b.parts)) >= 3:
        return False
    for index, (left, right) in enumerate(zip(a.parts, b.parts)):
        if index >= 3:
            if left.lower() >= right.lower():
                return False
        elif left != right:
            return False
    return True


def extract_version(text: str | None, first_match_only: bool = False) -> DependencyVersion | None:
    """
    Find the version inside a longer text such as ``commons-io-2.11.0.jar``.

    Returns None when nothing version-like is present, or when two
    candidates are found and ``first_match_only`` is not set.
    """
    if text is None:
        return None
    if text == UNKNOWN_VERSION:
        return DependencyVersion([text])

    version = None
    matches = _EMBEDDED_VERSION.finditer(text)
    first = next(matches, None)
    if first is not None:
        version = first.group()
        if not first_match_only and next(matches, None) is not None:
            return None
    else:
        matches = _EMBEDDED_SINGLE_VERSION.finditer(text)
        first = next(matches, None)
        if first is None:
            return None
        version = first.group()
        if next(matches, None) is not None:
            return None

    if version.endswith('-py2') and len(version) > 4:
        version = version[:-4]
    return DependencyVersion.parse(version)


def extract_pre_version(text: str) -> str:
    """Return the part of ``text`` before its version, e.g. ``struts2-core``."""
    if extract_version(text) is None:
        return text
    match = _PRE_VERSION.search(text)
    if match:
        return match.group(1)
    return text
