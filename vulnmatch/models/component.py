import threading
from pathlib import PurePosixPath

from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.confidence import IdentifierScheme
from vulnmatch.models.evidence import Evidence
from vulnmatch.models.evidence import EvidenceCollection
from vulnmatch.models.identifier import Identifier
from vulnmatch.models.vulnerability import Vulnerability


class Component:
    """
    A physical artifact found in the scanned project, or a virtual one
    declared in a lock file or manifest.

    Identity is the artifact path plus its content hash; equality is object
    identity so components can be kept in sets while being mutated.
    Software identifiers (package URLs, generic names) come from collectors;
    vulnerable software identifiers (CPEs) come from identification.
    """

    def __init__(
        self,
        file_path: str,
        sha1: str | None = None,
        ecosystem: str | None = None,
        name: str | None = None,
        version: str | None = None,
        package_path: str | None = None,
        virtual: bool = False,
        sha256: str | None = None,
    ):
        self.file_path = file_path.replace('\\', '/')
        self.sha1 = sha1.lower() if sha1 else None
        self.sha256 = sha256.lower() if sha256 else None
        self.ecosystem = ecosystem
        self.name = name
        self.version = version
        self.package_path = package_path
        self.virtual = virtual
        self.evidence = EvidenceCollection()
        self.software_identifiers: dict[tuple[IdentifierScheme, str], Identifier] = {}
        self.vulnerable_software_identifiers: dict[tuple[IdentifierScheme, str], Identifier] = {}
        self.suppressed_identifiers: dict[tuple[IdentifierScheme, str], Identifier] = {}
        self.vulnerabilities: dict[str, Vulnerability] = {}
        self.suppressed_vulnerabilities: dict[str, Vulnerability] = {}
        self.project_references: set[str] = set()
        self.related_dependencies: list['Component'] = []
        self.absorbed = False
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"Component({self.file_path!r})"

    @property
    def file_name(self) -> str:
        return PurePosixPath(self.file_path).name

    @property
    def identity(self) -> tuple[str, str | None]:
        return (self.file_path, self.sha1)

    # -- Evidence --

    def add_evidence(
        self,
        evidence_type: EvidenceType,
        source: str,
        name: str,
        value: str,
        confidence: Confidence,
    ) -> None:
        self.evidence.add(
            EvidenceType(evidence_type),
            Evidence(source, name, value, Confidence(confidence)),
        )

    # -- Identifiers --

    def add_software_identifier(self, identifier: Identifier) -> None:
        with self._lock:
            self.software_identifiers.setdefault(identifier.key, identifier)

    def add_vulnerable_software_identifier(self, identifier: Identifier) -> bool:
        """Attach a CPE identifier. Returns False when one with the same key exists."""
        with self._lock:
            existing = self.vulnerable_software_identifiers.get(identifier.key)
            if existing is None:
                self.vulnerable_software_identifiers[identifier.key] = identifier
                return True
            if identifier.confidence > existing.confidence:
                existing.confidence = identifier.confidence
            return False

    def remove_vulnerable_software_identifier(self, identifier: Identifier) -> None:
        with self._lock:
            self.vulnerable_software_identifiers.pop(identifier.key, None)

    def add_suppressed_identifier(self, identifier: Identifier) -> None:
        with self._lock:
            self.suppressed_identifiers.setdefault(identifier.key, identifier)

    @property
    def identifiers(self) -> list[Identifier]:
        """All live identifiers, software identifiers first."""
        with self._lock:
            return list(self.software_identifiers.values()) + list(
                self.vulnerable_software_identifiers.values(),
            )

    def cpe_identifiers(self) -> list[Identifier]:
        with self._lock:
            return [
                i for i in self.vulnerable_software_identifiers.values()
                if i.scheme == IdentifierScheme.CPE
            ]

    def purl_identifiers(self) -> list[Identifier]:
        with self._lock:
            return [
                i for i in self.software_identifiers.values()
                if i.scheme == IdentifierScheme.PURL
            ]

    # -- Findings --

    def add_vulnerability(self, vulnerability: Vulnerability) -> bool:
        with self._lock:
            if vulnerability.name in self.vulnerabilities:
                return False
            self.vulnerabilities[vulnerability.name] = vulnerability
            return True

    def remove_vulnerability(self, vulnerability: Vulnerability) -> None:
        with self._lock:
            self.vulnerabilities.pop(vulnerability.name, None)

    def add_suppressed_vulnerability(self, vulnerability: Vulnerability) -> None:
        with self._lock:
            self.suppressed_vulnerabilities.setdefault(vulnerability.name, vulnerability)

    # -- Relations --

    def add_related_dependency(self, other: 'Component') -> None:
        if other is self:
            return
        with self._lock:
            if not any(related is other for related in self.related_dependencies):
                self.related_dependencies.append(other)

    def remove_related_dependency(self, other: 'Component') -> None:
        with self._lock:
            self.related_dependencies = [c for c in self.related_dependencies if c is not other]

    def clear_related_dependencies(self) -> None:
        with self._lock:
            self.related_dependencies = []

    def add_project_references(self, references: set[str]) -> None:
        with self._lock:
            self.project_references.update(references)
