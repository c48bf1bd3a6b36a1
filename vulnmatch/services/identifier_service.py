"""Determine CPE identifiers for components from their evidence."""
import re
from collections import Counter
from dataclasses import dataclass
from enum import IntEnum
from urllib.parse import quote

import structlog

from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.core.config import get_config
from vulnmatch.core.errors import SearchIndexError
from vulnmatch.core.version import DependencyVersion
from vulnmatch.core.version import extract_version
from vulnmatch.core.version import fuzzy_equals
from vulnmatch.core.version import matches_at_least_three_levels
from vulnmatch.models.component import Component
from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.ecosystem import Ecosystem
from vulnmatch.models.evidence import Evidence
from vulnmatch.models.identifier import Cpe
from vulnmatch.models.identifier import Identifier
from vulnmatch.models.identifier import NVD_SEARCH_URL
from vulnmatch.services.dataset_service import VulnerabilityDataset
from vulnmatch.services.index_service import STOP_WORDS
from vulnmatch.services.index_service import CpeMemoryIndex
from vulnmatch.services.index_service import IndexEntry
from vulnmatch.services.index_service import in_ecosystem_scope
from vulnmatch.services.query_service import add_major_version_to_terms
from vulnmatch.services.query_service import build_search
from vulnmatch.services.query_service import collect_terms

logger = structlog.get_logger('identifier_service')

_UPDATE_QUALIFIER = re.compile(r'^(v|release|final|snapshot|beta|alpha|u|rc|m|20\d\d).*$')
_WORD_SPLIT = re.compile(r'[\s_-]+')
_NON_ALNUM = re.compile(r'[^a-zA-Z0-9]+')


class MatchQuality(IntEnum):
    """Lower is better."""
    EXACT = 0
    BEST_GUESS = 1
    BROAD = 2


@dataclass(frozen=True)
class IdentifierMatch:
    cpe: Cpe
    quality: MatchQuality
    confidence: Confidence
    url: str | None = None


def collection_contains_string(evidence: list[Evidence], text: str | None) -> bool:
    """
    True when every meaningful word of ``text`` occurs in some evidence value.

    Words of one or two letters are joined to the following word
    (``m-core`` becomes ``mcore``) and stop words are ignored.
    """
    if not text:
        return False
    lowered = text.lower()
    if any(e.value.lower() == lowered for e in evidence):
        return True

    words: list[str] = []
    pending = None
    for word in _WORD_SPLIT.split(text):
        if pending is not None:
            words.append(pending + word)
            pending = None
        elif len(word) <= 2:
            pending = word
        elif word.lower() not in STOP_WORDS:
            words.append(word)
    if pending is not None:
        words.append(words[-1] + pending if words else pending)
    words = [w for w in words if w]
    if not words:
        return False

    values = [_WORD_SPLIT.sub('', e.value.lower()) for e in evidence]
    for word in words:
        word = word.lower()
        found = False
        for value in values:
            if word in value:
                if word == 'http' and 'http:' in value:
                    continue
                found = True
                break
        if not found:
            return False
    return True


def _clean_package_name(name: str | None) -> str:
    return _NON_ALNUM.sub('', name or '')


def _split_update(version: DependencyVersion) -> tuple[DependencyVersion | None, str | None]:
    """Split ``2.0.1.rc1`` into ``2.0.1`` and the update qualifier ``rc1``."""
    if len(version) < 2:
        return None, None
    last = version.parts[-1]
    if _UPDATE_QUALIFIER.match(last):
        return DependencyVersion(version.parts[:-1]), last
    return None, None


def _nvd_url(cpe: Cpe) -> str:
    return NVD_SEARCH_URL.format(vendor=quote(cpe.vendor, safe=''), product=quote(cpe.product, safe=''))


class CpeIdentifierAnalyzer:
    """
    Searches the vendor/product dictionary with the component's evidence
    and attaches CPE identifiers for candidates backed by direct evidence.

    Confidence levels are tried from HIGHEST to LOW, each level adding its
    terms to those of the levels before; the first level that yields an
    identifier ends the search.
    """

    name = 'CPE Analyzer'

    def __init__(
        self,
        dataset: VulnerabilityDataset,
        index: CpeMemoryIndex | None = None,
        suppression=None,
        config: VulnMatchConfig | None = None,
    ):
        self.dataset = dataset
        self.index = index or CpeMemoryIndex()
        self.suppression = suppression
        self.config = config or get_config()
        self._owns_index = index is None

    def initialize(self, engine) -> None:
        if not self.index.is_open():
            self.index.open(self.dataset.vendor_products())

    def close(self) -> None:
        if self._owns_index:
            self.index.close()

    def process(self, component: Component, engine=None) -> None:
        if component.ecosystem and component.ecosystem in self.config.analysis.skip_ecosystems:
            return
        added = self.determine_cpe(component)
        if added and engine is not None:
            engine.stats.inc_identified(len(component.cpe_identifiers()))

    # -- search --

    def _major_versions(self, component: Component) -> set[str]:
        majors = set()
        for identifier in component.purl_identifiers():
            version = extract_version(identifier.purl.version)
            if version is not None and version.major():
                majors.add(version.major())
        return majors

    def search(self, component: Component, vendors: Counter, products: Counter) -> list[IndexEntry] | None:
        query = build_search(
            vendors, products,
            component.evidence.vendor_weightings,
            component.evidence.product_weightings,
        )
        if query is None:
            logger.debug('Not enough evidence to search', component=component.file_path)
            return None
        try:
            return self.index.search(
                query, component.ecosystem, self.config.analysis.max_query_results,
            )
        except SearchIndexError as e:
            logger.warning(
                'Unable to search the dictionary', component=component.file_path,
                query=query, error=str(e),
            )
            return None

    def determine_cpe(self, component: Component) -> bool:
        major_versions = self._major_versions(component)
        vendors: Counter = Counter()
        products: Counter = Counter()
        previously_found: set[int] = set()

        for confidence in Confidence.descending():
            collect_terms(vendors, component.evidence.get(EvidenceType.VENDOR, confidence))
            collect_terms(products, component.evidence.get(EvidenceType.PRODUCT, confidence))
            add_major_version_to_terms(major_versions, products)
            if not vendors or not products:
                continue
            entries = self.search(component, vendors, products)
            if entries is None:
                continue

            added = False
            for entry in entries:
                if entry.document_id in previously_found:
                    continue
                previously_found.add(entry.document_id)
                if self.verify_entry(entry, component, major_versions):
                    logger.debug(
                        'Candidate verified', component=component.file_path,
                        vendor=entry.vendor, product=entry.product,
                    )
                    added |= self.determine_identifiers(
                        component, entry.vendor, entry.product, confidence,
                    )
            if added:
                return True
        return False

    def verify_entry(self, entry: IndexEntry, component: Component, major_versions: set[str]) -> bool:
        if component.ecosystem == Ecosystem.NODEJS:
            product = _clean_package_name(entry.product)
            return any(
                _clean_package_name(identifier.purl.name) == product
                for identifier in component.purl_identifiers()
            )
        vendor_evidence = component.evidence.get(EvidenceType.VENDOR)
        if not collection_contains_string(vendor_evidence, entry.vendor):
            return False
        product_evidence = component.evidence.get(EvidenceType.PRODUCT)
        if collection_contains_string(product_evidence, entry.product):
            return True
        for major in major_versions:
            for suffix in (f"v{major}", major):
                if entry.product.endswith(suffix) and len(entry.product) > len(suffix):
                    if collection_contains_string(product_evidence, entry.product[:-len(suffix)]):
                        return True
        return False

    # -- version determination --

    def _candidate_cpes(self, component: Component, vendor: str, product: str):
        return [
            software for software in self.dataset.get_cpes(vendor, product)
            if in_ecosystem_scope(software.ecosystem, component.ecosystem)
        ]

    def _declared_version_matches(
        self, component: Component, product: str, candidates, confidence: Confidence,
    ) -> list[IdentifierMatch]:
        if not component.version or not component.name:
            return []
        name = component.name.lower()
        if not all(word in name for word in _WORD_SPLIT.split(product.lower()) if word):
            return []
        version = extract_version(component.version, first_match_only=True)
        if version is None:
            return []
        matches = []
        for software in candidates:
            cpe = software.parsed
            db_version = extract_version(cpe.version) if cpe.version else None
            if db_version is not None and fuzzy_equals(version, db_version):
                matches.append(IdentifierMatch(cpe, MatchQuality.EXACT, confidence, _nvd_url(cpe)))
            elif db_version is None and software.has_range and software.matches_version(version):
                exact = cpe.with_version(str(version))
                matches.append(IdentifierMatch(exact, MatchQuality.EXACT, confidence, _nvd_url(exact)))
        return matches

    def determine_identifiers(
        self,
        component: Component,
        vendor: str,
        product: str,
        current_confidence: Confidence,
    ) -> bool:
        """
        Attach the identifiers for one verified vendor/product pair.

        Only the best kind of match found is attached: exact version
        matches, else a best guess, else version-less (broad) matches.
        An identifier's confidence never exceeds that of the evidence that
        selected the vendor/product pair or the version.
        """
        candidates = self._candidate_cpes(component, vendor, product)
        if not candidates:
            return False

        matches = self._declared_version_matches(component, product, candidates, current_confidence)
        best_guess = DependencyVersion.parse('-')
        best_guess_update = None
        best_guess_confidence: Confidence | None = None
        best_guess_url = None

        for confidence in Confidence.descending():
            for evidence in component.evidence.get(EvidenceType.VERSION, confidence):
                version = extract_version(evidence.value, first_match_only=True)
                if version is None:
                    continue
                base_version, update = _split_update(version)
                for software in candidates:
                    cpe = software.parsed
                    db_version = extract_version(cpe.version) if cpe.version else None
                    if db_version is None:
                        if software.has_range:
                            if software.matches_version(version):
                                exact = cpe.with_version(str(version))
                                matches.append(IdentifierMatch(
                                    exact, MatchQuality.EXACT, confidence, _nvd_url(exact),
                                ))
                        elif cpe.version != '-':
                            matches.append(IdentifierMatch(
                                cpe, MatchQuality.BROAD, confidence, _nvd_url(cpe),
                            ))
                    elif fuzzy_equals(version, db_version):
                        matches.append(IdentifierMatch(
                            cpe, MatchQuality.EXACT, confidence, _nvd_url(cpe),
                        ))
                    elif base_version is not None and fuzzy_equals(base_version, db_version):
                        if best_guess_confidence is None or best_guess_confidence < confidence:
                            best_guess = db_version
                            best_guess_update = update
                            best_guess_confidence = confidence
                            best_guess_url = _nvd_url(cpe)
                    elif len(version) <= len(db_version) and matches_at_least_three_levels(version, db_version):
                        if best_guess_confidence is None or best_guess_confidence < confidence:
                            if len(best_guess) < len(db_version):
                                best_guess = db_version
                                best_guess_update = update
                                best_guess_confidence = confidence
                if (best_guess_confidence is None or best_guess_confidence < confidence) \
                        and len(best_guess) < len(version):
                    best_guess = version
                    best_guess_update = update
                    best_guess_confidence = confidence

        guess = self._best_guess_cpe(vendor, product, best_guess, best_guess_update)
        if guess is not None:
            matches.append(IdentifierMatch(guess, MatchQuality.BEST_GUESS, Confidence.LOW, best_guess_url))

        if not matches:
            return False
        best_quality = min(match.quality for match in matches)
        added = False
        for match in matches:
            if match.quality != best_quality:
                continue
            confidence = min(current_confidence, match.confidence)
            identifier = Identifier.for_cpe(match.cpe, confidence, match.url)
            added |= self._attach(component, identifier)
        return added

    def _best_guess_cpe(
        self, vendor: str, product: str, guess: DependencyVersion, update: str | None,
    ) -> Cpe | None:
        if guess.is_unknown or not guess.parts:
            return None
        last = guess.parts[-1]
        if len(guess) > 1 and _UPDATE_QUALIFIER.match(last):
            version = '.'.join(guess.parts[:-1])
            update = last[1:] if re.match(r'^v\d', last) else last
        else:
            version = str(guess)
        return Cpe('a', vendor, product, version, update or '')

    def _attach(self, component: Component, identifier: Identifier) -> bool:
        """Attach and immediately apply CPE suppression; True when it survived."""
        component.add_vulnerable_software_identifier(identifier)
        if self.suppression is not None:
            self.suppression.apply_identifiers(component)
        return identifier.key in component.vulnerable_software_identifiers
