"""Remove CPE identifiers that the component's own evidence does not support."""
import re

import structlog

from vulnmatch.models.component import Component
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.identifier import Cpe
from vulnmatch.models.identifier import Identifier

logger = structlog.get_logger('false_positive_service')

CORE_JAVA = re.compile(
    r'^cpe:/a:(sun|oracle|ibm):(j2[ems]e|'
    r'java(_platform_micro_edition|_runtime_environment|_se|virtual_machine|se_development_kit|fx)?|'
    r'jdk|jre|jsse)($|:.*)',
)
CORE_JAVA_JSF = re.compile(r'^cpe:/a:(sun|oracle|ibm):jsf($|:.*)')
CORE_FILES = re.compile(r'(^|/)((alt[-])?rt|jsse|jfxrt|jfr|jce|javaws|deploy|charsets)\.jar$')
CORE_JSF_FILES = re.compile(r'(^|/)jsf[-][^/]*\.jar$')

# Products this short are matched by the fuzzy search far too easily
AMBIGUOUS_PRODUCT_LENGTH = 6

_BINARY_SUFFIXES = (
    '.jar', 'pom.xml', '.dll', '.exe', '.nuspec', '.zip', '.sar', '.apk',
    '.tar', '.gz', '.tgz', '.rpm', '.ear', '.war',
)
_GENERIC_PAIRS = {
    ('file', 'file'), ('mozilla', 'mozilla'), ('cvs', 'cvs'), ('ftp', 'ftp'),
    ('tcp', 'tcp'), ('ssh', 'ssh'), ('lookup', 'lookup'),
}
_JS_LIBRARY_PAIRS = {('jquery', 'jquery'), ('prototypejs', 'prototype'), ('yahoo', 'yui')}
_JS_LIBRARY_SUFFIXES = ('.jar', 'pom.xml', '.dll', '.exe')
_DESKTOP_PAIRS = {
    ('microsoft', 'excel'), ('microsoft', 'word'), ('microsoft', 'visio'),
    ('microsoft', 'powerpoint'), ('microsoft', 'office'), ('core_ftp', 'core_ftp'),
}
_DESKTOP_SUFFIXES = ('.jar', '.ear', '.war', 'pom.xml')
_MAVEN_CORE = re.compile(r'maven-core-[\d.]+\.jar')
_JBOSS = re.compile(r'jboss-?[\d.-]+(ga)?\.jar')
_TOKEN_SPLIT = re.compile(r'[\s._/:-]+')
_NON_ALNUM = re.compile(r'[^a-z0-9]+')

_OPENSSO_PRODUCTS = ('opensso', 'opensso_enterprise')


def has_direct_evidence(values: list[str], name: str) -> bool:
    """
    True when ``name`` appears as an evidence value, ignoring case and
    punctuation, or as one word of a value, optionally followed by digits
    (``struts`` in ``struts2-core``).
    """
    target = name.lower()
    compact = _NON_ALNUM.sub('', target)
    if not compact:
        return False
    for value in values:
        lowered = value.lower()
        if lowered == target or _NON_ALNUM.sub('', lowered) == compact:
            return True
        for token in _TOKEN_SPLIT.split(lowered):
            if token in (target, compact):
                return True
            if token.startswith(compact) and token[len(compact):].isdigit():
                return True
    return False


def _is_ambiguous(cpe: Cpe) -> bool:
    return (
        len(cpe.product) <= AMBIGUOUS_PRODUCT_LENGTH
        or (cpe.vendor, cpe.product) in _GENERIC_PAIRS
    )


class FalsePositiveAnalyzer:
    """Applies the false-positive rules to every identified component."""

    name = 'False Positive Analyzer'

    def initialize(self, engine) -> None:
        pass

    def close(self) -> None:
        pass

    def process(self, component: Component, engine=None) -> None:
        remove_jre_entries(component)
        remove_bad_matches(component)
        remove_bad_spring_matches(component)
        remove_wrong_version_matches(component)
        remove_spurious_cpe(component)
        add_false_negative_cpes(component)


def _remove(component: Component, identifiers: list[Identifier], reason: str) -> None:
    for identifier in identifiers:
        logger.debug(
            'Removing false positive', component=component.file_path,
            identifier=identifier.value, reason=reason,
        )
        component.remove_vulnerable_software_identifier(identifier)


def remove_jre_entries(component: Component) -> None:
    file_name = component.file_name
    removals = [
        i for i in component.cpe_identifiers()
        if (CORE_JAVA.match(i.value) and not CORE_FILES.search(file_name))
        or (CORE_JAVA_JSF.match(i.value) and not CORE_JSF_FILES.search(file_name))
    ]
    _remove(component, removals, 'core java')


def _is_bad_match(component: Component, cpe: Cpe) -> bool:
    file_name = component.file_name.lower()
    pair = (cpe.vendor, cpe.product)

    if ('c++' in cpe.product or pair in _GENERIC_PAIRS) and file_name.endswith(_BINARY_SUFFIXES):
        return True
    if pair in _JS_LIBRARY_PAIRS and file_name.endswith(_JS_LIBRARY_SUFFIXES):
        return True
    if pair in _DESKTOP_PAIRS and file_name.endswith(_DESKTOP_SUFFIXES):
        return True
    if pair == ('apache', 'maven') and not _MAVEN_CORE.fullmatch(file_name):
        return True
    if pair == ('jboss', 'jboss') and not _JBOSS.fullmatch(file_name):
        return True
    if pair == ('java-websocket_project', 'java-websocket'):
        return not any(
            'org.java-websocket/java-websocket' in i.value.lower()
            for i in component.software_identifiers.values()
        )

    if _is_ambiguous(cpe):
        products = component.evidence.values_of(EvidenceType.PRODUCT)
        if has_direct_evidence(products, cpe.product):
            return False
        if cpe.vendor == cpe.product:
            vendors = component.evidence.values_of(EvidenceType.VENDOR)
            if has_direct_evidence(vendors, cpe.vendor):
                return False
        return True
    return False


def remove_bad_matches(component: Component) -> None:
    """
    Drop identifiers known to be noise for the component's file type, and
    identifiers with a short or generic product name that no PRODUCT
    evidence (or, when vendor and product are the same, VENDOR evidence)
    names directly.
    """
    removals = [i for i in component.cpe_identifiers() if _is_bad_match(component, i.cpe)]
    _remove(component, removals, 'unsupported by evidence')


def remove_bad_spring_matches(component: Component) -> None:
    must_contain = None
    for identifier in component.purl_identifiers():
        purl = identifier.purl
        namespace = purl.namespace or ''
        if purl.type == 'maven' and namespace.startswith('org.springframework.'):
            must_contain = namespace[len('org.springframework.'):].lower()
            break
    if not must_contain:
        return
    removals = [
        i for i in component.cpe_identifiers()
        if i.value.startswith('cpe:/a:springsource:') and must_contain not in i.value.lower()
    ]
    _remove(component, removals, 'spring module mismatch')


def remove_wrong_version_matches(component: Component) -> None:
    file_name = component.file_name
    if 'axis2' in file_name:
        wrong = 'axis'
    elif 'axis' in file_name:
        wrong = 'axis2'
    else:
        return
    removals = [
        i for i in component.cpe_identifiers()
        if i.cpe.vendor == 'apache' and i.cpe.product == wrong
    ]
    _remove(component, removals, 'axis version mismatch')


def remove_spurious_cpe(component: Component) -> None:
    """Of two CPEs for one vendor/product, drop the one whose version is a prefix of the other."""
    identifiers = sorted(component.cpe_identifiers(), key=lambda i: i.value)
    removed: set = set()
    for index, current in enumerate(identifiers):
        if current.key in removed:
            continue
        current_cpe = current.cpe
        for other in identifiers[index + 1:]:
            if other.key in removed:
                continue
            other_cpe = other.cpe
            if (current_cpe.vendor, current_cpe.product) != (other_cpe.vendor, other_cpe.product):
                continue
            current_version, other_version = current_cpe.version, other_cpe.version
            if not current_version and not other_version:
                continue
            if not current_version:
                loser = current
            elif not other_version:
                loser = other
            elif len(current_version) < len(other_version):
                if not (other_version.startswith(current_version) or current_version == '-'):
                    continue
                loser = current
            elif current_version.startswith(other_version) or other_version == '-':
                loser = other
            else:
                continue
            removed.add(loser.key)
            _remove(component, [loser], 'spurious version')
            if loser is current:
                break


def add_false_negative_cpes(component: Component) -> None:
    additions = []
    for identifier in component.cpe_identifiers():
        cpe = identifier.cpe
        if cpe.vendor in ('oracle', 'sun') and cpe.product in _OPENSSO_PRODUCTS:
            for vendor in ('sun', 'oracle'):
                for product in ('opensso_enterprise', 'opensso'):
                    additions.append((Cpe('a', vendor, product, cpe.version), identifier.confidence))
        if cpe.vendor == 'apache' and cpe.product == 'santuario_xml_security_for_java':
            additions.append((
                Cpe('a', 'apache', 'xml_security_for_java', cpe.version), identifier.confidence,
            ))
    for cpe, confidence in additions:
        component.add_vulnerable_software_identifier(Identifier.for_cpe(cpe, confidence))
