import re
from dataclasses import dataclass
from urllib.parse import quote
from urllib.parse import unquote

from packageurl import PackageURL

from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import IdentifierScheme

NVD_SEARCH_URL = (
    'https://nvd.nist.gov/vuln/search/results?form_type=Advanced&results_type=overview'
    '&search_type=all&cpe_vendor=cpe%3A%2F%3A{vendor}&cpe_product=cpe%3A%2F%3A{vendor}%3A{product}'
)

_CPE23_SPLIT = re.compile(r'(?<!\\):')


@dataclass(frozen=True)
class Cpe:
    """
    The vendor, product and version part of a CPE name.

    Both CPE 2.2 URIs (``cpe:/a:apache:struts:2.5.10``) and CPE 2.3
    formatted strings (``cpe:2.3:a:apache:struts:2.5.10:*:*:*:*:*:*:*``)
    are accepted. An empty attribute means ANY.
    """
    part: str
    vendor: str
    product: str
    version: str = ''
    update: str = ''

    @classmethod
    def parse(cls, text: str) -> 'Cpe':
        if text.startswith('cpe:2.3:'):
            values = [
                _unescape_23(value) for value in _CPE23_SPLIT.split(text[len('cpe:2.3:'):])
            ]
        elif text.startswith('cpe:/'):
            values = [unquote(value) for value in text[len('cpe:/'):].split(':')]
        else:
            raise ValueError(f"Not a CPE name: {text!r}")
        values = (values + [''] * 5)[:5]
        if not values[0] or not values[1] or not values[2]:
            raise ValueError(f"CPE name needs part, vendor and product: {text!r}")
        return cls(*values)

    def to_cpe22_uri(self) -> str:
        values = [self.part, self.vendor, self.product, self.version, self.update]
        while values and not values[-1]:
            values.pop()
        return 'cpe:/' + ':'.join(quote(value, safe='._-~') for value in values)

    def with_version(self, version: str, update: str = '') -> 'Cpe':
        return Cpe(self.part, self.vendor, self.product, version, update)

    def __str__(self) -> str:
        return self.to_cpe22_uri()


def _unescape_23(value: str) -> str:
    if value == '*':
        return ''
    return re.sub(r'\\(.)', r'\1', value)


class Identifier:
    """
    A name for a component in some scheme (CPE, package URL or a free-form
    generic name). Two identifiers are equal when scheme and value are.
    """

    __slots__ = ('scheme', 'value', 'confidence', 'url', 'notes')

    def __init__(
        self,
        scheme: IdentifierScheme,
        value: str,
        confidence: Confidence,
        url: str | None = None,
        notes: str | None = None,
    ):
        self.scheme = IdentifierScheme(scheme)
        self.value = value
        self.confidence = Confidence(confidence)
        self.url = url
        self.notes = notes

    @classmethod
    def for_cpe(cls, cpe: Cpe, confidence: Confidence, url: str | None = None) -> 'Identifier':
        if url is None:
            url = NVD_SEARCH_URL.format(
                vendor=quote(cpe.vendor, safe=''), product=quote(cpe.product, safe=''),
            )
        return cls(IdentifierScheme.CPE, cpe.to_cpe22_uri(), confidence, url)

    @classmethod
    def for_purl(cls, purl: PackageURL | str, confidence: Confidence) -> 'Identifier':
        if isinstance(purl, str):
            purl = PackageURL.from_string(purl)
        return cls(IdentifierScheme.PURL, purl.to_string(), confidence)

    @property
    def key(self) -> tuple[IdentifierScheme, str]:
        return (self.scheme, self.value)

    @property
    def cpe(self) -> Cpe | None:
        if self.scheme != IdentifierScheme.CPE:
            return None
        return Cpe.parse(self.value)

    @property
    def purl(self) -> PackageURL | None:
        if self.scheme != IdentifierScheme.PURL:
            return None
        return PackageURL.from_string(self.value)

    def to_gav(self) -> str | None:
        """``group:artifact:version`` of a maven package URL."""
        purl = self.purl
        if purl is None or purl.type != 'maven':
            return None
        return f"{purl.namespace}:{purl.name}:{purl.version or ''}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Identifier):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"Identifier({self.scheme.value}, {self.value!r}, {self.confidence.value})"

    def __str__(self) -> str:
        return self.value
