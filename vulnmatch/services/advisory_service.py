"""Enrich findings from a remote advisory service keyed by package URL."""
import re
import threading

import requests
import structlog
from packageurl import PackageURL
from pydantic import ValidationError

from vulnmatch.core.client import get_http_client
from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.core.config import get_config
from vulnmatch.core.errors import AnalysisError
from vulnmatch.models.advisory import AdvisoryVulnerability
from vulnmatch.models.advisory import ComponentReport
from vulnmatch.models.component import Component
from vulnmatch.models.identifier import Identifier
from vulnmatch.models.vulnerability import Vulnerability

logger = structlog.get_logger('advisory_service')

CVE_PATTERN = re.compile(r'\bCVE-\d{4}-\d{4,10}\b')
REPORT_PATH = '/api/v3/component-report'


def coordinate(purl: PackageURL) -> str:
    """Package URL without qualifiers and subpath, lower-cased for lookups."""
    return PackageURL(
        type=purl.type, namespace=purl.namespace, name=purl.name, version=purl.version,
    ).to_string().lower()


def severity_for(score: float | None) -> str | None:
    if score is None:
        return None
    if score >= 9.0:
        return 'CRITICAL'
    if score >= 7.0:
        return 'HIGH'
    if score >= 4.0:
        return 'MEDIUM'
    if score > 0:
        return 'LOW'
    return 'NONE'


def vulnerability_name(source: AdvisoryVulnerability) -> str:
    """The CVE when the advisory names one, otherwise its title or id."""
    if source.cve:
        return source.cve
    if source.title:
        match = CVE_PATTERN.search(source.title)
        return match.group() if match else source.title
    if source.reference:
        match = CVE_PATTERN.search(source.reference)
        if match:
            return match.group()
    return source.id


def to_vulnerability(report: ComponentReport, source: AdvisoryVulnerability) -> Vulnerability:
    return Vulnerability(
        name=vulnerability_name(source),
        description=source.description,
        cvss_score=source.cvss_score,
        severity=severity_for(source.cvss_score),
        cwes=[source.cwe] if source.cwe else [],
        source='advisory',
        matched_cpe=report.coordinates,
    )


def _versioned_purls(component: Component) -> list[tuple[Identifier, PackageURL]]:
    result = []
    for identifier in component.purl_identifiers():
        try:
            purl = identifier.purl
        except ValueError:
            logger.debug('Invalid package URL', component=component.file_path, purl=identifier.value)
            continue
        if purl.version:
            result.append((identifier, purl))
    return result


class AdvisoryLookupAnalyzer:
    """
    Requests component reports for every versioned package URL of the scan
    in one pass, then adds the reported vulnerabilities to each component.

    Reports are fetched by the first component that needs them and cached
    until ``close``; the cache is only touched while holding ``_lock``. A
    remote failure disables the stage for the rest of the scan.
    """

    name = 'Advisory Lookup Analyzer'

    def __init__(self, config: VulnMatchConfig | None = None, session: requests.Session | None = None):
        self.config = config or get_config()
        self._session = session
        self._lock = threading.Lock()
        self._reports: dict[str, ComponentReport] | None = None
        self.enabled = self.config.advisory.enabled

    def initialize(self, engine) -> None:
        if self.enabled and self._session is None:
            self._session = get_http_client()
            if self.config.advisory.username and self.config.advisory.token:
                self._session.auth = (self.config.advisory.username, self.config.advisory.token)

    def close(self) -> None:
        with self._lock:
            self._reports = None
            if self._session is not None:
                self._session.close()
                self._session = None

    def process(self, component: Component, engine=None) -> None:
        if not self.enabled:
            return
        purls = _versioned_purls(component)
        if not purls:
            return
        reports = self._get_reports(engine)
        if reports is None:
            return
        added = self.enrich(component, purls, reports)
        if added and engine is not None:
            engine.stats.inc_findings(added)

    def enrich(self, component: Component, purls, reports: dict[str, ComponentReport]) -> int:
        added = 0
        for identifier, purl in purls:
            report = reports.get(coordinate(purl))
            if report is None:
                logger.debug('No component report', component=component.file_path, purl=identifier.value)
                continue
            if report.reference:
                identifier.url = report.reference
            for source in report.vulnerabilities:
                if component.add_vulnerability(to_vulnerability(report, source)):
                    added += 1
        return added

    def _get_reports(self, engine) -> dict[str, ComponentReport] | None:
        with self._lock:
            if self._reports is not None:
                return self._reports
            if not self.enabled:
                return None
            components = engine.components if engine is not None else []
            packages = {
                coordinate(purl): purl
                for component in components
                for _, purl in _versioned_purls(component)
            }
            try:
                self._reports = self.request_reports(list(packages))
            except (requests.RequestException, ValidationError, ValueError) as e:
                self.enabled = False
                self._fail(e)
                return None
            return self._reports

    def _fail(self, error: Exception) -> None:
        status = getattr(getattr(error, 'response', None), 'status_code', None)
        if status in (401, 403):
            logger.error('Advisory service rejected the credentials, disabling the stage', status=status)
            raise AnalysisError(f"Advisory service access denied ({status})") from error
        if self.config.advisory.warn_only:
            logger.warning('Advisory lookup failed, disabling the stage', error=str(error))
            return
        raise AnalysisError(f"Failed to request component reports: {error}") from error

    def request_reports(self, coordinates: list[str]) -> dict[str, ComponentReport]:
        if not coordinates:
            return {}
        url = self.config.advisory.url.rstrip('/') + REPORT_PATH
        batch_size = max(1, self.config.advisory.batch_size)
        reports: dict[str, ComponentReport] = {}
        for start in range(0, len(coordinates), batch_size):
            batch = coordinates[start:start + batch_size]
            response = self._session.post(
                url, json={'coordinates': batch}, timeout=self.config.advisory.timeout,
            )
            response.raise_for_status()
            for item in response.json():
                report = ComponentReport.model_validate(item)
                reports[report.coordinates.lower()] = report
        logger.info('Component reports received', requested=len(coordinates), reports=len(reports))
        return reports
