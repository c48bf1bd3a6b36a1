from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class AdvisoryVulnerability(BaseModel):
    """A vulnerability listed in a remote component report."""
    id: str
    title: str | None = None
    description: str = ''
    cvss_score: float | None = Field(alias='cvssScore', default=None)
    cvss_vector: str | None = Field(alias='cvssVector', default=None)
    cve: str | None = None
    cwe: str | None = None
    reference: str | None = None
    external_references: list[str] = Field(alias='externalReferences', default_factory=list)

    model_config = ConfigDict(extra='ignore', populate_by_name=True)


class ComponentReport(BaseModel):
    """The advisory service's answer for one package URL."""
    coordinates: str
    description: str | None = None
    reference: str | None = None
    vulnerabilities: list[AdvisoryVulnerability] = Field(default_factory=list)

    model_config = ConfigDict(extra='ignore')
