from collections import Counter

from vulnmatch.models.confidence import Confidence
from vulnmatch.models.evidence import Evidence
from vulnmatch.services.query_service import add_major_version_to_terms
from vulnmatch.services.query_service import build_search
from vulnmatch.services.query_service import collect_terms
from vulnmatch.services.query_service import escape
from vulnmatch.services.query_service import truncate_term


def ev(value):
    return Evidence('manifest', 'name', value, Confidence.HIGH)


class TestBuildSearch:
    """Tests for build_search."""

    def test_plain_terms(self):
        query = build_search(
            Counter({'apache software foundation': 1}),
            Counter({'struts 2 core': 1}),
        )
        assert query == 'product:(struts 2 core) AND vendor:(apache software foundation)'

    def test_weighted_vendor_term_is_boosted(self):
        """A weighting boosts the matching word by its count plus one."""
        query = build_search(
            Counter({'apache software foundation': 1}),
            Counter({'struts 2 core': 1}),
            vendor_weightings={'apache'},
        )
        assert query == 'product:(struts 2 core) AND vendor:(apache^2 software foundation)'

    def test_repeated_term_is_boosted_by_count(self):
        query = build_search(Counter({'apache': 3}), Counter({'struts': 1}))
        assert query == 'product:(struts) AND vendor:(apache^3)'

    def test_weighting_matches_ignoring_punctuation(self):
        """A differently written weighting is appended as extra boosted word."""
        query = build_search(
            Counter({'jboss': 1}),
            Counter({'hibernate-core': 1}),
            product_weightings={'hibernatecore'},
        )
        assert query == r'product:(hibernate\-core^2 hibernatecore^2) AND vendor:(jboss)'

    def test_blank_terms_yield_no_query(self):
        assert build_search(Counter(), Counter({'struts': 1})) is None
        assert build_search(Counter({'apache': 1}), Counter()) is None
        assert build_search(Counter({'   ': 1}), Counter({'struts': 1})) is None

    def test_keywords_are_quoted(self):
        query = build_search(Counter({'and': 1}), Counter({'or': 1}))
        assert query == 'product:("or") AND vendor:("and")'


class TestCollectTerms:
    """Tests for collect_terms."""

    def test_special_characters_only_are_ignored(self):
        terms = collect_terms(Counter(), [ev('\\@'), ev('\\*'), ev('\\+')])
        assert terms == Counter()

    def test_values_are_cleansed(self):
        terms = collect_terms(Counter(), [ev('spring (core)')])
        assert terms == Counter({'spring  core': 1})

    def test_counts_accumulate(self):
        terms = Counter({'apache': 1})
        collect_terms(terms, [ev('apache'), ev('tomcat')])
        assert terms == Counter({'apache': 2, 'tomcat': 1})

    def test_long_value_is_cut_at_last_space(self):
        """Test a 1200 character value is cut at the last space before 1000."""
        value = 'a' * 990 + ' ' + 'b' * 7 + '.' + 'c' * 201
        terms = collect_terms(Counter(), [ev(value)])
        assert list(terms) == ['a' * 990]

    def test_long_value_falls_back_to_later_delimiters(self):
        value = 'a' * 995 + '/' + 'b' * 3 + '-' + 'c' * 200
        terms = collect_terms(Counter(), [ev(value)])
        assert list(terms) == ['a' * 995 + '/' + 'b' * 3]

    def test_delimiter_is_last_character_of_window(self):
        value = 'a' * 999 + '_' + 'b' * 200
        terms = collect_terms(Counter(), [ev(value)])
        assert list(terms) == ['a' * 999]

    def test_long_value_without_delimiter_is_hard_cut(self):
        terms = collect_terms(Counter(), [ev('x' * 1200)])
        assert list(terms) == ['x' * 1000]


def test_truncate_term_cuts_at_delimiter():
    value = 'alpha beta gamma'
    assert truncate_term(value, limit=12) == 'alpha beta'
    assert truncate_term(value, limit=100) == value


def test_truncate_term_without_delimiter():
    assert truncate_term('abcdefgh', limit=4) == 'abcd'


def test_escape():
    assert escape('a+b') == 'a\\+b'
    assert escape('NOT') == '"NOT"'


def test_add_major_version_to_terms():
    products = Counter({'jackson': 1, 'struts2': 1})
    add_major_version_to_terms({'2'}, products)
    assert products['jackson2'] == 1
    assert products['jacksonv2'] == 1
    assert 'struts22' not in products
