"""Fold duplicate components into one survivor."""
import re
import threading
from pathlib import PurePosixPath

import structlog

from vulnmatch.core.version import extract_version
from vulnmatch.models.component import Component
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.ecosystem import Ecosystem
from vulnmatch.models.identifier import Identifier

logger = structlog.get_logger('merge_service')

_STARTING_TEXT = re.compile(r'^[a-zA-Z0-9]*')
_CONTAINED_IN_WAR = re.compile(r'.*\.(ear|war)[\\/].*', re.IGNORECASE)
_ARCHIVE_NAME = re.compile(r'.*\.(tar|tgz|gz|zip|ear|war|rpm).+')
_NESTED_IN_ARCHIVE = re.compile(r'\.(jar|war|ear|zip|aar|sar|tar|tgz|gz)[\\/!]', re.IGNORECASE)
_LOCAL_REPOSITORY = re.compile(r'.*[/\\](?P<repo>repository|local-repo)[/\\].*')
_CORE_HINTS = (
    'core', 'kernel', 'server', 'project', 'engine', 'akka-stream', 'netty-transport',
)


def _parent(path: str) -> str | None:
    parent = str(PurePosixPath(path.replace('\\', '/')).parent)
    return None if parent in ('.', '') else parent


class PairwiseComparison:
    """
    Compares every pair of active components exactly once per scan.

    ``evaluate(main, candidate, to_remove)`` returns True when ``main`` was
    absorbed and the outer loop must move on to the next component.
    """

    name = 'Pairwise Comparison'

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._analyzed = False

    def initialize(self, engine) -> None:
        pass

    def close(self) -> None:
        pass

    def process_all(self, engine) -> None:
        with self._lock:
            if self._analyzed:
                return
            self._analyzed = True

        components = engine.components
        to_remove: set[Component] = set()
        for index, main in enumerate(components):
            if main in to_remove:
                continue
            for candidate in components[index + 1:]:
                if candidate in to_remove:
                    continue
                if self.evaluate(main, candidate, to_remove):
                    break

        if to_remove:
            logger.info('Components merged', stage=self.name, removed=len(to_remove))

    def evaluate(self, main: Component, candidate: Component, to_remove: set[Component]) -> bool:
        raise NotImplementedError


# -- Merging --

def merge_dependencies(main: Component, related: Component, to_remove: set[Component] | None) -> None:
    """Fold ``related`` into ``main``: evidence, relations and project references."""
    logger.debug('Merging component', main=main.file_path, related=related.file_path)
    main.add_related_dependency(related)
    for evidence_type in (EvidenceType.VENDOR, EvidenceType.PRODUCT, EvidenceType.VERSION):
        for evidence in related.evidence.get(evidence_type):
            main.evidence.add(evidence_type, evidence)
    for nested in related.related_dependencies:
        main.add_related_dependency(nested)
    related.clear_related_dependencies()
    main.add_project_references(related.project_references)
    if to_remove is not None:
        related.absorbed = True
        to_remove.add(related)


def is_same_ruby_gem(a: Component, b: Component) -> bool:
    if not (a.file_name.endswith('.gemspec') and b.file_name.endswith('.gemspec')):
        return False
    if a.package_path is None or b.package_path is None:
        return False
    return a.package_path.lower() == b.package_path.lower()


def main_gemspec_component(a: Component, b: Component) -> Component | None:
    if a.ecosystem == Ecosystem.RUBY and b.ecosystem == Ecosystem.RUBY and is_same_ruby_gem(a, b):
        parent = PurePosixPath(a.file_path).parent.name
        if parent.lower() == 'specifications':
            return b
        return a
    return None


def _is_swift_manifest(component: Component) -> bool:
    return component.file_name.endswith('.podspec') or component.file_name == 'Package.swift'


def is_same_swift_package(a: Component, b: Component) -> bool:
    if not (_is_swift_manifest(a) and _is_swift_manifest(b)):
        return False
    if a.package_path is None or b.package_path is None:
        return False
    return a.package_path.lower() == b.package_path.lower()


def main_swift_component(a: Component, b: Component) -> Component | None:
    if a.ecosystem == Ecosystem.IOS and b.ecosystem == Ecosystem.IOS and is_same_swift_package(a, b):
        if a.file_name == 'Package.swift':
            return a
        return b
    return None


def main_android_component(a: Component, b: Component) -> Component | None:
    """The ``classes.jar`` extracted from an ``.aar`` absorbs its container."""
    if a.virtual or b.virtual or a.ecosystem != Ecosystem.JAVA or b.ecosystem != Ecosystem.JAVA:
        return None
    if b.file_name == 'classes.jar' and a.file_name.endswith('.aar') and a.file_name in b.file_path:
        return b
    if a.file_name == 'classes.jar' and b.file_name.endswith('.aar') and b.file_name in a.file_path:
        return a
    return None


def main_dotnet_component(a: Component, b: Component) -> Component | None:
    if None in (a.name, a.version, b.name, b.version):
        return None
    if a.ecosystem != Ecosystem.DOTNET or b.ecosystem != Ecosystem.DOTNET:
        return None
    if a.name != b.name or a.version != b.version:
        return None
    if a.virtual != b.virtual:
        return b if a.virtual else a
    # the assembly wins over its package manifest
    if a.file_name.lower().endswith('.nuspec'):
        return b
    return a


_SELECTORS = (
    main_gemspec_component,
    main_swift_component,
    main_android_component,
    main_dotnet_component,
)


class DependencyMergingAnalyzer(PairwiseComparison):
    """
    Merges components that describe the same package twice: gemspec pairs,
    podspec/Package.swift pairs, an aar with its classes.jar and .NET
    assemblies declared by a project file.
    """

    name = 'Dependency Merging Analyzer'

    def evaluate(self, main: Component, candidate: Component, to_remove: set[Component]) -> bool:
        for selector in _SELECTORS:
            survivor = selector(main, candidate)
            if survivor is None:
                continue
            if survivor is main:
                merge_dependencies(main, candidate, to_remove)
                return False
            merge_dependencies(candidate, main, to_remove)
            return True
        return False


# -- Bundling --

def bundle_dependencies(
    main: Component,
    related: Component,
    to_remove: set[Component] | None,
    copy_vulns_and_ids: bool = False,
) -> None:
    """
    Attach ``related`` to ``main``. Identifiers and findings are copied when
    requested; project references only when both share a hash.
    """
    logger.debug('Bundling component', main=main.file_path, related=related.file_path)
    main.add_related_dependency(related)
    for nested in related.related_dependencies:
        main.add_related_dependency(nested)
    related.clear_related_dependencies()
    if copy_vulns_and_ids:
        for identifier in related.software_identifiers.values():
            main.add_software_identifier(identifier)
        for identifier in related.vulnerable_software_identifiers.values():
            main.add_vulnerable_software_identifier(identifier)
        for vulnerability in related.vulnerabilities.values():
            main.add_vulnerability(vulnerability)
    if main.sha1 is not None and main.sha1 == related.sha1:
        main.add_project_references(related.project_references)
    if to_remove is not None:
        related.absorbed = True
        to_remove.add(related)


def hashes_match(a: Component, b: Component) -> bool:
    return a.sha1 is not None and b.sha1 is not None and a.sha1 == b.sha1


def contained_in_war(path: str | None) -> bool:
    return path is not None and _CONTAINED_IN_WAR.match(path) is not None


def first_path_is_shortest(left: str, right: str) -> bool:
    """
    True when ``left`` is the better survivor: the path with fewer
    directory levels wins, temporary extraction paths lose, and equal depth
    keeps ``left``.
    """
    if 'dctemp' in left and 'dctemp' not in right:
        return False
    left_depth = left.replace('\\', '/').count('/')
    right_depth = right.replace('\\', '/').count('/')
    return left_depth <= right_depth


def is_core(left: Component, right: Component) -> bool:
    """True when ``left`` should absorb ``right``."""
    left_name = left.file_name.lower()
    right_name = right.file_name.lower()
    if left.virtual and not right.virtual:
        return True
    if not left.virtual and right.virtual:
        return False

    left_archive = _ARCHIVE_NAME.match(left_name) is not None
    right_archive = _ARCHIVE_NAME.match(right_name) is not None
    if left_archive and not right_archive:
        return False
    if any(hint in right_name and hint not in left_name for hint in _CORE_HINTS):
        return False
    if right_archive and not left_archive:
        return True
    if any(hint in left_name and hint not in right_name for hint in _CORE_HINTS):
        return True
    return len(left_name) <= len(right_name)


def _software_values(component: Component) -> set[str]:
    return {identifier.value for identifier in component.software_identifiers.values()}


def is_shaded_jar(a: Component, b: Component) -> bool:
    """
    A jar that embeds the ``pom.xml`` of a library it shades. The pom must
    sit inside an archive; a top-level pom is the project's own build file.
    """
    if not a.software_identifiers or not b.software_identifiers:
        return False
    a_name, b_name = a.file_name.lower(), b.file_name.lower()
    if a_name.endswith('.jar') and b_name.endswith('pom.xml'):
        jar, pom = a, b
    elif b_name.endswith('.jar') and a_name.endswith('pom.xml'):
        jar, pom = b, a
    else:
        return False
    if _NESTED_IN_ARCHIVE.search(pom.file_path) is None:
        return False
    return _software_values(jar) >= _software_values(pom)


def _webjar_value(identifier: Identifier) -> str:
    purl = identifier.purl
    if purl is None:
        return identifier.value
    webjar = Identifier.for_purl(
        f"pkg:maven/org.webjars/{purl.name}" + (f"@{purl.version}" if purl.version else ''),
        identifier.confidence,
    )
    return webjar.value


def is_web_jar(a: Component, b: Component) -> bool:
    """A jar from org.webjars and the JavaScript file packaged in it."""
    if not a.software_identifiers or not b.software_identifiers:
        return False
    a_name, b_name = a.file_name.lower(), b.file_name.lower()
    if a_name.endswith('.jar') and b_name.endswith('.js') and b.file_path.startswith(a.file_path + '/'):
        jar, script = a, b
    elif b_name.endswith('.jar') and a_name.endswith('.js') and a.file_path.startswith(b.file_path + '/'):
        jar, script = b, a
    else:
        return False
    wanted = {_webjar_value(i) for i in script.software_identifiers.values()}
    return _software_values(jar) >= wanted


def cpe_identifiers_match(a: Component, b: Component) -> bool:
    left = set(a.vulnerable_software_identifiers)
    right = set(b.vulnerable_software_identifiers)
    return bool(left) and left == right


def vulnerabilities_match(a: Component, b: Component) -> bool:
    return set(a.vulnerabilities) == set(b.vulnerabilities)


def _base_repo_path(path: str, repo: str) -> str:
    start = path.find(repo + '/')
    if start < 0:
        return path
    pos = start + len(repo) + 1
    end = path.find('/', pos)
    if end <= 0:
        return path
    pos = end + 1
    end = path.find('/', pos)
    if end > 0:
        pos = end + 1
    return path[:pos]


def has_same_base_path(a: Component, b: Component) -> bool:
    """
    Same parent directory, or the same group/artifact directory of a local
    Maven repository, or a shared directory with one of ``b``'s related
    components.
    """
    left, right = _parent(a.file_path), _parent(b.file_path)
    if left is None or right is None:
        return left is None and right is None
    if left.lower() == right.lower():
        return True
    left_repo = _LOCAL_REPOSITORY.match(left)
    right_repo = _LOCAL_REPOSITORY.match(right)
    if left_repo and right_repo:
        left = _base_repo_path(left, left_repo.group('repo'))
        right = _base_repo_path(right, right_repo.group('repo'))
        if left.lower() == right.lower():
            return True
    return any(has_same_base_path(child, a) for child in b.related_dependencies)


def file_name_match(a: Component, b: Component) -> bool:
    left, right = a.file_name, b.file_name
    left_version, right_version = extract_version(left), extract_version(right)
    if left_version is not None and right_version is not None and left_version != right_version:
        return False
    return _STARTING_TEXT.match(left).group() == _STARTING_TEXT.match(right).group()


def _npm_pair(a: Component, b: Component) -> bool:
    return (
        a.ecosystem == Ecosystem.NODEJS and b.ecosystem == Ecosystem.NODEJS
        and a.name is not None and a.name == b.name
        and npm_versions_match(a.version, b.version)
    )


class DependencyBundlingAnalyzer(PairwiseComparison):
    """
    Bundles components that are the same artifact seen more than once:
    identical files, shaded and web jars, split jars of one library and
    duplicated npm packages.
    """

    name = 'Dependency Bundling Analyzer'

    def evaluate(self, main: Component, candidate: Component, to_remove: set[Component]) -> bool:
        if hashes_match(main, candidate):
            if contained_in_war(main.file_path) or contained_in_war(candidate.file_path):
                return False
            if first_path_is_shortest(main.file_path, candidate.file_path):
                bundle_dependencies(main, candidate, to_remove)
                return False
            bundle_dependencies(candidate, main, to_remove)
            return True

        if is_shaded_jar(main, candidate):
            if main.file_name.lower().endswith('pom.xml'):
                bundle_dependencies(candidate, main, to_remove)
                candidate.remove_related_dependency(main)
                return True
            bundle_dependencies(main, candidate, to_remove)
            main.remove_related_dependency(candidate)
            return False

        if is_web_jar(main, candidate):
            if main.file_name.lower().endswith('.js'):
                bundle_dependencies(candidate, main, to_remove, copy_vulns_and_ids=True)
                candidate.remove_related_dependency(main)
                return True
            bundle_dependencies(main, candidate, to_remove, copy_vulns_and_ids=True)
            main.remove_related_dependency(candidate)
            return False

        if (
            cpe_identifiers_match(main, candidate)
            and has_same_base_path(main, candidate)
            and vulnerabilities_match(main, candidate)
            and file_name_match(main, candidate)
        ):
            if is_core(main, candidate):
                bundle_dependencies(main, candidate, to_remove)
                return False
            bundle_dependencies(candidate, main, to_remove)
            return True

        if _npm_pair(main, candidate):
            if not main.virtual:
                merge_dependencies(main, candidate, to_remove)
                return False
            merge_dependencies(candidate, main, to_remove)
            return True
        return False


# -- npm version ranges --

_PARTIAL = re.compile(r'^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:[-+][0-9A-Za-z.-]*)?$')
_COMPARATOR = re.compile(r'^(>=|<=|>|<|=|\^|~>?)?\s*(.*)$')
_HYPHEN = re.compile(r'^\s*(\S+)\s+-\s+(\S+)\s*$')


def _strip_leading_non_numeric(text: str) -> str | None:
    for index, char in enumerate(text):
        if char.isdecimal():
            return text[index:]
    return None


def _partial(text: str) -> list[int | None] | None:
    """``1.2`` -> [1, 2, None]; wildcards become None. None when unparsable."""
    if text in ('', '*', 'x', 'X'):
        return [None, None, None]
    match = _PARTIAL.match(text)
    if match is None:
        return None
    return [int(p) if p is not None and p.isdecimal() else None for p in match.groups()]


def _concrete(text: str) -> tuple[int, int, int] | None:
    parts = _partial(text)
    if parts is None or parts[0] is None:
        return None
    return tuple(p or 0 for p in parts)


def _bump(parts: list[int | None]) -> tuple[int, int, int]:
    """The first version above every match of a partial version."""
    major, minor, _ = parts
    if minor is None:
        return (major + 1, 0, 0)
    return (major, minor + 1, 0)


def _floor(parts: list[int | None]) -> tuple[int, int, int]:
    return tuple(p or 0 for p in parts)


def _expand(token: str) -> list[tuple[str, tuple[int, int, int]]] | None:
    """Turn one comparator token into primitive (operator, version) bounds."""
    match = _COMPARATOR.match(token.strip())
    operator, rest = match.group(1) or '', match.group(2).strip()
    parts = _partial(rest)
    if parts is None:
        return None
    if parts[0] is None:
        return [] if operator in ('', '=', '>=', '<=', '^', '~', '~>') else None

    exact = parts[2] is not None
    if operator in ('', '='):
        if exact:
            return [('=', _floor(parts))]
        return [('>=', _floor(parts)), ('<', _bump(parts))]
    if operator == '^':
        major, minor, patch = _floor(parts)
        if major > 0 or parts[1] is None:
            upper = (major + 1, 0, 0)
        elif minor > 0 or parts[2] is None:
            upper = (0, minor + 1, 0)
        else:
            upper = (0, 0, patch + 1)
        return [('>=', (major, minor, patch)), ('<', upper)]
    if operator in ('~', '~>'):
        major, minor, _ = parts
        upper = (major + 1, 0, 0) if minor is None else (major, minor + 1, 0)
        return [('>=', _floor(parts)), ('<', upper)]
    if operator == '>':
        return [('>', _floor(parts))] if exact else [('>=', _bump(parts))]
    if operator == '>=':
        return [('>=', _floor(parts))]
    if operator == '<':
        return [('<', _floor(parts))]
    # <=
    return [('<=', _floor(parts))] if exact else [('<', _bump(parts))]


def _check(version: tuple[int, int, int], operator: str, bound: tuple[int, int, int]) -> bool:
    if operator == '=':
        return version == bound
    if operator == '>':
        return version > bound
    if operator == '>=':
        return version >= bound
    if operator == '<':
        return version < bound
    return version <= bound


def _range_set(text: str) -> list[list[tuple[str, tuple[int, int, int]]]] | None:
    alternatives = []
    for part in text.split('||'):
        hyphen = _HYPHEN.match(part)
        if hyphen:
            low, high = _partial(hyphen.group(1)), _partial(hyphen.group(2))
            if low is None or high is None or low[0] is None or high[0] is None:
                return None
            upper = ('<=', _floor(high)) if high[2] is not None else ('<', _bump(high))
            alternatives.append([('>=', _floor(low)), upper])
            continue
        tokens = re.sub(r'(>=|<=|>|<|=|\^|~>?)\s+', r'\1', part.strip()).split()
        bounds = []
        for token in tokens or ['*']:
            expanded = _expand(token)
            if expanded is None:
                return None
            bounds.extend(expanded)
        alternatives.append(bounds)
    return alternatives


def satisfies(version: str, range_text: str) -> bool:
    """npm-style range check on the numeric part of ``version``."""
    concrete = _concrete(version.strip())
    if concrete is None:
        return False
    alternatives = _range_set(range_text)
    if alternatives is None:
        return False
    return any(all(_check(concrete, op, bound) for op, bound in bounds) for bounds in alternatives)


def npm_versions_match(current: str | None, next_version: str | None) -> bool:
    """
    True when two npm version strings can refer to the same release. Either
    side may be a range from package.json or a resolved version from a lock
    file.
    """
    if current is None or next_version is None:
        return False
    if current == next_version or '*' in (current, next_version):
        return True

    left, right = current, next_version
    if ' ' in left:
        if ' ' in right:
            # two ranges cannot be compared
            return False
        if not right[:1].isdecimal():
            right = _strip_leading_non_numeric(right)
            if right is None:
                return False
        return satisfies(right, left)

    if not left[:1].isdecimal():
        left = _strip_leading_non_numeric(left)
        if not left:
            return False
    if right and satisfies(left, right):
        return True
    if ' ' not in right:
        stripped = _strip_leading_non_numeric(right)
        if stripped is not None:
            return satisfies(stripped, current)
    return False

