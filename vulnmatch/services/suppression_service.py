"""Suppression rules: loading, applying and auditing."""
import datetime
import re
import threading
import xml.etree.ElementTree as ET
from enum import Enum
from pathlib import Path

import requests
import structlog

from vulnmatch.core.client import get_http_client
from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.core.config import get_config
from vulnmatch.core.errors import SuppressionConfigError
from vulnmatch.core.errors import SuppressionParseError
from vulnmatch.core.errors import UnusedSuppressionRuleError
from vulnmatch.models.component import Component
from vulnmatch.models.suppression import PropertyType
from vulnmatch.models.suppression import SuppressionRule

logger = structlog.get_logger('suppression_service')

BASE_SUPPRESSION_FILE = Path(__file__).resolve().parent.parent / 'resources' / 'base_suppressions.xml'

_TRUE = ('true', '1')


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _flag(element: ET.Element, name: str) -> bool:
    return (element.get(name) or '').strip().lower() in _TRUE


# xs:date with an optional zone, e.g. 2024-01-01Z or 2024-01-01-05:00
_XS_DATE = re.compile(r'^(\d{4}-\d{2}-\d{2})(Z|[+-]\d{2}:\d{2})?$')


def _parse_until(text: str) -> datetime.datetime:
    value = text.strip()
    match = _XS_DATE.match(value)
    if match is not None:
        date, zone = match.groups()
        value = f"{date}T00:00:00{zone or 'Z'}"
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    try:
        until = datetime.datetime.fromisoformat(value)
    except ValueError as e:
        raise SuppressionParseError(f"Invalid 'until' date: {text!r}") from e
    if until.tzinfo is None:
        until = until.replace(tzinfo=datetime.timezone.utc)
    return until


class SuppressionParser:
    """
    Reads ``<suppressions>`` documents.

    Matcher elements (filePath, gav, packageUrl, cpe, vulnerabilityName)
    accept ``regex`` and ``caseSensitive`` attributes. Rules whose
    ``until`` date has passed are skipped.
    """

    def __init__(self, now: datetime.datetime | None = None):
        self.now = now

    def parse(self, source: str | Path | bytes, name: str | None = None) -> list[SuppressionRule]:
        label = name or (str(source) if isinstance(source, (str, Path)) else '<memory>')
        try:
            if isinstance(source, bytes):
                root = ET.fromstring(source)
            else:
                root = ET.parse(source).getroot()
        except ET.ParseError as e:
            raise SuppressionParseError(f"Unable to parse suppression file {label}: {e}") from e
        except OSError as e:
            raise SuppressionConfigError(f"Unable to read suppression file {label}: {e}") from e

        if _local_name(root.tag) != 'suppressions':
            raise SuppressionParseError(
                f"Unexpected root element <{_local_name(root.tag)}> in {label}",
            )

        rules = []
        for element in root:
            if _local_name(element.tag) != 'suppress':
                continue
            rule = self._parse_rule(element, label)
            if rule.is_expired(self.now):
                logger.info(
                    'Skipping expired suppression rule', source=label,
                    until=rule.until.isoformat(), rule=rule.describe(),
                )
                continue
            rules.append(rule)
        return rules

    def _property(self, element: ET.Element) -> PropertyType:
        prop = PropertyType(
            value=(element.text or '').strip(),
            regex=_flag(element, 'regex'),
            case_sensitive=_flag(element, 'caseSensitive'),
        )
        if prop.regex:
            try:
                prop.pattern
            except re.error as e:
                raise SuppressionParseError(f"Invalid regular expression {prop.value!r}: {e}") from e
        return prop

    def _parse_rule(self, element: ET.Element, label: str) -> SuppressionRule:
        rule = SuppressionRule(base=_flag(element, 'base'), source=label)
        until = element.get('until')
        if until:
            rule.until = _parse_until(until)

        for child in element:
            tag = _local_name(child.tag)
            text = (child.text or '').strip()
            if tag == 'notes':
                rule.notes = text
            elif tag == 'filePath':
                rule.file_path = self._property(child)
            elif tag == 'sha1':
                rule.sha1 = text
            elif tag == 'gav':
                rule.gav = self._property(child)
            elif tag == 'packageUrl':
                rule.package_url = self._property(child)
            elif tag == 'cpe':
                rule.cpe.append(self._property(child))
            elif tag == 'cve':
                rule.cve.append(text)
            elif tag == 'cwe':
                rule.cwe.append(text)
            elif tag == 'vulnerabilityName':
                rule.vulnerability_names.append(self._property(child))
            elif tag == 'cvssBelow':
                try:
                    rule.cvss_below.append(float(text))
                except ValueError as e:
                    raise SuppressionParseError(f"Invalid cvssBelow value {text!r} in {label}") from e
            else:
                logger.debug('Ignoring unknown suppression element', element=tag, source=label)
        return rule


def _fetch(url: str, config: VulnMatchConfig) -> bytes:
    with get_http_client(cache_name=config.paths.http_cache) as session:
        try:
            response = session.get(url, timeout=config.advisory.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SuppressionConfigError(f"Unable to download suppression file {url}: {e}") from e
        return response.content


def load_suppression_rules(
    config: VulnMatchConfig | None = None,
    parser: SuppressionParser | None = None,
) -> list[SuppressionRule]:
    """
    Load the packaged base rules and every configured rule file.

    Files add up. A file that cannot be found, downloaded or parsed is a
    configuration error.
    """
    config = config or get_config()
    parser = parser or SuppressionParser()
    rules: list[SuppressionRule] = []

    if config.suppression.include_base:
        base_rules = parser.parse(BASE_SUPPRESSION_FILE, name='base')
        for rule in base_rules:
            rule.base = True
        rules.extend(base_rules)

    for location in config.suppression.files:
        if location.startswith(('http://', 'https://')):
            loaded = parser.parse(_fetch(location, config), name=location)
        else:
            path = Path(location)
            if not path.is_file():
                raise SuppressionConfigError(f"Suppression file not found: {location}")
            loaded = parser.parse(path)
        logger.info('Suppression rules loaded', source=location, rules=len(loaded))
        rules.extend(loaded)
    return rules


class SuppressionEngine:
    """
    Applies suppression rules to components.

    For each identifier or finding the first matching rule removes it.
    User rules record the match and keep the removed item in the
    component's suppressed set; base rules remove silently.
    """

    def __init__(
        self,
        rules: list[SuppressionRule] | None = None,
        config: VulnMatchConfig | None = None,
    ):
        self.config = config or get_config()
        self._rules = rules
        self._lock = threading.Lock()

    def load(self) -> list[SuppressionRule]:
        with self._lock:
            if self._rules is None:
                self._rules = load_suppression_rules(self.config)
            return self._rules

    @property
    def rules(self) -> list[SuppressionRule]:
        return self.load()

    def _record(self, rule: SuppressionRule) -> None:
        if rule.base:
            return
        with self._lock:
            rule.matched = True

    def apply(self, component: Component) -> int:
        return self.apply_identifiers(component) + self.apply_vulnerabilities(component)

    def apply_identifiers(self, component: Component) -> int:
        rules = [r for r in self.rules if r.has_cpe() and r.applies_to(component)]
        if not rules:
            return 0
        removed = 0
        for identifier in component.cpe_identifiers():
            rule = next((r for r in rules if r.matches_identifier(identifier)), None)
            if rule is None:
                continue
            component.remove_vulnerable_software_identifier(identifier)
            removed += 1
            if not rule.base:
                self._record(rule)
                if rule.notes:
                    identifier.notes = rule.notes
                component.add_suppressed_identifier(identifier)
            logger.debug(
                'Identifier suppressed', component=component.file_path,
                identifier=identifier.value, base=rule.base,
            )
        return removed

    def apply_vulnerabilities(self, component: Component) -> int:
        rules = [r for r in self.rules if r.has_vulnerability_criteria() and r.applies_to(component)]
        if not rules:
            return 0
        removed = 0
        for vulnerability in list(component.vulnerabilities.values()):
            rule = next((r for r in rules if r.matches_vulnerability(vulnerability)), None)
            if rule is None:
                continue
            component.remove_vulnerability(vulnerability)
            removed += 1
            if not rule.base:
                self._record(rule)
                if rule.notes:
                    vulnerability.notes = rule.notes
                component.add_suppressed_vulnerability(vulnerability)
            logger.debug(
                'Vulnerability suppressed', component=component.file_path,
                vulnerability=vulnerability.name, base=rule.base,
            )
        return removed

    def unused_rules(self) -> list[SuppressionRule]:
        with self._lock:
            return [r for r in (self._rules or []) if not r.base and not r.matched]


class SuppressionTarget(str, Enum):
    IDENTIFIERS = 'identifiers'
    VULNERABILITIES = 'vulnerabilities'


class SuppressionAnalyzer:
    """Runs one half of the suppression engine as a pipeline stage."""

    def __init__(self, suppression: SuppressionEngine, target: SuppressionTarget):
        self.suppression = suppression
        self.target = SuppressionTarget(target)
        if self.target == SuppressionTarget.IDENTIFIERS:
            self.name = 'CPE Suppression Analyzer'
        else:
            self.name = 'Vulnerability Suppression Analyzer'

    def initialize(self, engine) -> None:
        rules = self.suppression.load()
        logger.debug('Suppression rules ready', stage=self.name, rules=len(rules))

    def close(self) -> None:
        pass

    def process(self, component: Component, engine=None) -> None:
        if self.target == SuppressionTarget.IDENTIFIERS:
            removed = self.suppression.apply_identifiers(component)
        else:
            removed = self.suppression.apply_vulnerabilities(component)
        if removed and engine is not None:
            engine.stats.inc_suppressed(removed)


class UnusedSuppressionRuleAuditor:
    """Reports user rules that never matched. Runs once per scan."""

    name = 'Unused Suppression Rule Analyzer'

    def __init__(self, suppression: SuppressionEngine, config: VulnMatchConfig | None = None):
        self.suppression = suppression
        self.config = config or get_config()
        self._lock = threading.Lock()
        self._audited = False

    def initialize(self, engine) -> None:
        self.suppression.load()

    def close(self) -> None:
        pass

    def process_all(self, engine=None) -> None:
        with self._lock:
            if self._audited:
                return
            self._audited = True
        self.audit()

    def audit(self) -> list[SuppressionRule]:
        unused = self.suppression.unused_rules()
        fail = self.config.suppression.fail_on_unused_rule
        for rule in unused:
            if fail:
                logger.error('Suppression rule had zero matches', rule=rule.describe(), source=rule.source)
            else:
                logger.info('Suppression rule had zero matches', rule=rule.describe(), source=rule.source)
        if unused and fail:
            raise UnusedSuppressionRuleError(
                f"There are {len(unused)} unused suppression rule(s): check logs.",
            )
        return unused
