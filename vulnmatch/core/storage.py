import os
from collections.abc import Iterable
from pathlib import Path
from typing import TypeVar

import structlog
from packageurl import PackageURL
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

from vulnmatch.models.component import Component
from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.confidence import IdentifierScheme
from vulnmatch.models.identifier import Cpe
from vulnmatch.models.identifier import Identifier

logger = structlog.get_logger('storage')

ModelT = TypeVar('ModelT', bound=BaseModel)


class EvidenceRecord(BaseModel):
    type: EvidenceType
    source: str
    name: str
    value: str
    confidence: Confidence


class IdentifierRecord(BaseModel):
    scheme: IdentifierScheme
    value: str
    confidence: Confidence = Confidence.HIGHEST
    url: str | None = None
    notes: str | None = None

    @classmethod
    def from_identifier(cls, identifier: Identifier) -> 'IdentifierRecord':
        return cls(
            scheme=identifier.scheme,
            value=identifier.value,
            confidence=identifier.confidence,
            url=identifier.url,
            notes=identifier.notes,
        )

    def to_identifier(self, file_path: str) -> Identifier | None:
        """The identifier, or None when a CPE or PURL value does not parse."""
        try:
            if self.scheme == IdentifierScheme.CPE:
                Cpe.parse(self.value)
            elif self.scheme == IdentifierScheme.PURL:
                PackageURL.from_string(self.value)
        except ValueError as e:
            logger.warning(
                'Skipping invalid identifier', component=file_path,
                scheme=self.scheme.value, value=self.value, error=str(e),
            )
            return None
        return Identifier(self.scheme, self.value, self.confidence, self.url, self.notes)


class ComponentRecord(BaseModel):
    """A component as written by a collector, one per line."""
    file_path: str = Field(alias='filePath')
    sha1: str | None = None
    sha256: str | None = None
    ecosystem: str | None = None
    name: str | None = None
    version: str | None = None
    package_path: str | None = Field(alias='packagePath', default=None)
    virtual: bool = False
    evidence: list[EvidenceRecord] = Field(default_factory=list)
    vendor_weightings: list[str] = Field(alias='vendorWeightings', default_factory=list)
    product_weightings: list[str] = Field(alias='productWeightings', default_factory=list)
    identifiers: list[IdentifierRecord] = Field(default_factory=list)
    project_references: list[str] = Field(alias='projectReferences', default_factory=list)

    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    def to_component(self) -> Component:
        component = Component(
            self.file_path,
            sha1=self.sha1,
            sha256=self.sha256,
            ecosystem=self.ecosystem,
            name=self.name,
            version=self.version,
            package_path=self.package_path,
            virtual=self.virtual,
        )
        for item in self.evidence:
            component.add_evidence(item.type, item.source, item.name, item.value, item.confidence)
        for term in self.vendor_weightings:
            component.evidence.add_vendor_weighting(term)
        for term in self.product_weightings:
            component.evidence.add_product_weighting(term)
        for item in self.identifiers:
            identifier = item.to_identifier(self.file_path)
            if identifier is None:
                continue
            if item.scheme == IdentifierScheme.CPE:
                component.add_vulnerable_software_identifier(identifier)
            else:
                component.add_software_identifier(identifier)
        component.add_project_references(set(self.project_references))
        return component


class ComponentResult(BaseModel):
    """What a scan reports for one surviving component."""
    file_path: str
    sha1: str | None = None
    ecosystem: str | None = None
    identifiers: list[IdentifierRecord] = Field(default_factory=list)
    suppressed_identifiers: list[IdentifierRecord] = Field(default_factory=list)
    vulnerabilities: list[dict] = Field(default_factory=list)
    suppressed_vulnerabilities: list[dict] = Field(default_factory=list)
    related: list[str] = Field(default_factory=list)

    @classmethod
    def from_component(cls, component: Component) -> 'ComponentResult':
        return cls(
            file_path=component.file_path,
            sha1=component.sha1,
            ecosystem=component.ecosystem,
            identifiers=[IdentifierRecord.from_identifier(i) for i in component.identifiers],
            suppressed_identifiers=[
                IdentifierRecord.from_identifier(i) for i in component.suppressed_identifiers.values()
            ],
            vulnerabilities=[v.model_dump() for v in component.vulnerabilities.values()],
            suppressed_vulnerabilities=[
                v.model_dump() for v in component.suppressed_vulnerabilities.values()
            ],
            related=[r.file_path for r in component.related_dependencies],
        )


def load_jsonl(filepath: str | Path, model: type[ModelT]) -> list[ModelT]:
    """Load one model per non-empty line. Invalid lines are logged and skipped."""
    path = Path(filepath)
    if not path.exists():
        return []

    records = []
    with path.open(encoding='utf-8') as f:
        for number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                records.append(model.model_validate_json(line))
            except ValidationError as e:
                logger.warning(
                    'Skipping invalid record', path=str(path), line=number,
                    errors=e.error_count(),
                )
    return records


def load_components(filepath: str | Path) -> list[Component]:
    return [record.to_component() for record in load_jsonl(filepath, ComponentRecord)]


def save_results(filepath: str | Path, components: Iterable[Component]) -> int:
    path = Path(filepath)
    os.makedirs(path.parent, exist_ok=True)
    count = 0
    with path.open('w', encoding='utf-8') as f:
        for component in components:
            f.write(ComponentResult.from_component(component).model_dump_json(exclude_none=True) + '\n')
            count += 1
    return count
