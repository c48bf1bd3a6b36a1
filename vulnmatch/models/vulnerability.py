from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from vulnmatch.core.version import DependencyVersion
from vulnmatch.core.version import fuzzy_equals
from vulnmatch.models.identifier import Cpe


class VulnerableSoftware(BaseModel):
    """A dataset CPE, optionally bounded by a version range."""
    cpe: str
    ecosystem: str | None = None
    version_start_including: str | None = Field(alias='versionStartIncluding', default=None)
    version_start_excluding: str | None = Field(alias='versionStartExcluding', default=None)
    version_end_including: str | None = Field(alias='versionEndIncluding', default=None)
    version_end_excluding: str | None = Field(alias='versionEndExcluding', default=None)

    model_config = ConfigDict(extra='ignore', populate_by_name=True, frozen=True)

    @field_validator('cpe')
    @classmethod
    def validate_cpe(cls, v: str) -> str:
        Cpe.parse(v)
        return v

    @property
    def parsed(self) -> Cpe:
        return Cpe.parse(self.cpe)

    @property
    def has_range(self) -> bool:
        return any((
            self.version_start_including, self.version_start_excluding,
            self.version_end_including, self.version_end_excluding,
        ))

    def matches_version(self, version: DependencyVersion) -> bool:
        """True when ``version`` is covered by this entry."""
        cpe = self.parsed
        cpe_version = f"{cpe.version}.{cpe.update}" if cpe.version and cpe.update else cpe.version
        if cpe_version and cpe_version != '-' and not self.has_range:
            return fuzzy_equals(DependencyVersion.parse(cpe_version), version)
        if cpe_version == '-' and not self.has_range:
            return False
        if self.version_start_including and version < DependencyVersion.parse(self.version_start_including):
            return False
        if self.version_start_excluding and version <= DependencyVersion.parse(self.version_start_excluding):
            return False
        if self.version_end_including and version > DependencyVersion.parse(self.version_end_including):
            return False
        if self.version_end_excluding and version >= DependencyVersion.parse(self.version_end_excluding):
            return False
        return True


class VulnerabilityRecord(BaseModel):
    """One dataset entry: a vulnerability and the software it affects."""
    name: str
    description: str = ''
    cvss_score: float | None = Field(alias='cvssScore', default=None)
    severity: str | None = None
    cwes: list[str] = Field(default_factory=list)
    vulnerable_software: list[VulnerableSoftware] = Field(
        alias='vulnerableSoftware', default_factory=list,
    )

    model_config = ConfigDict(extra='ignore', populate_by_name=True)


class Vulnerability(BaseModel):
    """A finding attached to a component."""
    name: str
    description: str = ''
    cvss_score: float | None = None
    severity: str | None = None
    cwes: list[str] = Field(default_factory=list)
    source: str = 'dataset'
    matched_cpe: str | None = None
    notes: str | None = None

    @classmethod
    def from_record(cls, record: VulnerabilityRecord, matched_cpe: str | None = None) -> 'Vulnerability':
        return cls(
            name=record.name,
            description=record.description,
            cvss_score=record.cvss_score,
            severity=record.severity,
            cwes=list(record.cwes),
            matched_cpe=matched_cpe,
        )
