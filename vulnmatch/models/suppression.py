import datetime
import re
from dataclasses import dataclass
from dataclasses import field
from functools import cached_property

from vulnmatch.models.confidence import IdentifierScheme
from vulnmatch.models.identifier import Identifier
from vulnmatch.models.vulnerability import Vulnerability


@dataclass
class PropertyType:
    """A matcher value: a literal or a regular expression, case-insensitive by default."""
    value: str
    regex: bool = False
    case_sensitive: bool = False

    @cached_property
    def pattern(self) -> re.Pattern | None:
        if not self.regex:
            return None
        flags = 0 if self.case_sensitive else re.IGNORECASE
        return re.compile(self.value, flags)

    def matches(self, text: str | None) -> bool:
        if text is None:
            return False
        if self.pattern is not None:
            return self.pattern.fullmatch(text) is not None
        if self.case_sensitive:
            return self.value == text
        return self.value.lower() == text.lower()


@dataclass(eq=False)
class SuppressionRule:
    """
    One ``<suppress>`` entry.

    ``file_path``, ``sha1``, ``gav`` and ``package_url`` select the
    components a rule applies to; ``cpe`` removes identifiers;
    ``cve``, ``cwe``, ``cvss_below`` and ``vulnerability_names`` remove
    findings. Base rules ship with vulnmatch and never count as used.
    """
    file_path: PropertyType | None = None
    sha1: str | None = None
    gav: PropertyType | None = None
    package_url: PropertyType | None = None
    cpe: list[PropertyType] = field(default_factory=list)
    cve: list[str] = field(default_factory=list)
    cwe: list[str] = field(default_factory=list)
    cvss_below: list[float] = field(default_factory=list)
    vulnerability_names: list[PropertyType] = field(default_factory=list)
    notes: str | None = None
    until: datetime.datetime | None = None
    base: bool = False
    matched: bool = False
    source: str | None = None

    def has_cpe(self) -> bool:
        return bool(self.cpe)

    def has_vulnerability_criteria(self) -> bool:
        return bool(self.cve or self.cwe or self.cvss_below or self.vulnerability_names)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.until is None:
            return False
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return self.until < now

    def applies_to(self, component) -> bool:
        """Check the component-level gates."""
        if self.file_path is not None and not self.file_path.matches(component.file_path):
            return False
        if self.sha1 is not None and (component.sha1 or '').lower() != self.sha1.lower():
            return False
        software = list(component.software_identifiers.values())
        if self.gav is not None and not any(identifier_matches(self.gav, i) for i in software):
            return False
        if self.package_url is not None and not any(
            i.scheme == IdentifierScheme.PURL and self.package_url.matches(i.value) for i in software
        ):
            return False
        return True

    def matches_identifier(self, identifier: Identifier) -> bool:
        return any(identifier_matches(entry, identifier) for entry in self.cpe)

    def matches_vulnerability(self, vulnerability: Vulnerability) -> bool:
        name = vulnerability.name
        if any(entry.lower() == name.lower() for entry in self.cve):
            return True
        for entry in self.cwe:
            prefix = f"CWE-{entry}"
            if any(cwe.startswith(prefix) for cwe in vulnerability.cwes):
                return True
        if any(entry.matches(name) for entry in self.vulnerability_names):
            return True
        score = vulnerability.cvss_score
        if score is not None and any(score < limit for limit in self.cvss_below):
            return True
        return False

    def describe(self) -> str:
        parts = []
        if self.file_path is not None:
            parts.append(f"filePath={self.file_path.value}")
        if self.sha1:
            parts.append(f"sha1={self.sha1}")
        if self.gav is not None:
            parts.append(f"gav={self.gav.value}")
        if self.package_url is not None:
            parts.append(f"packageUrl={self.package_url.value}")
        parts.extend(f"cpe={c.value}" for c in self.cpe)
        parts.extend(f"cve={c}" for c in self.cve)
        parts.extend(f"cwe={c}" for c in self.cwe)
        parts.extend(f"cvssBelow={c}" for c in self.cvss_below)
        parts.extend(f"vulnerabilityName={v.value}" for v in self.vulnerability_names)
        return 'SuppressionRule{' + ','.join(parts) + '}'


def identifier_matches(entry: PropertyType, identifier: Identifier) -> bool:
    """
    Match a ``cpe`` or ``gav`` entry against an identifier.

    CPEs are compared by their 2.2 URI: a regex must match all of it, a
    literal is a prefix. Package URLs are compared by their maven GAV.
    """
    if identifier.scheme == IdentifierScheme.PURL:
        gav = identifier.to_gav()
        return gav is not None and entry.matches(gav)
    if identifier.scheme == IdentifierScheme.CPE:
        uri = identifier.cpe.to_cpe22_uri()
        if entry.regex:
            return entry.matches(uri)
        if entry.case_sensitive:
            return uri.startswith(entry.value)
        return uri.lower().startswith(entry.value.lower())
    return entry.matches(identifier.value)
