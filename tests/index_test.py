import threading

import pytest

from vulnmatch.core.errors import QueryParseError
from vulnmatch.core.errors import SearchIndexError
from vulnmatch.services.index_service import CpeMemoryIndex
from vulnmatch.services.index_service import IndexEntry
from vulnmatch.services.index_service import analyze
from vulnmatch.services.index_service import in_ecosystem_scope
from vulnmatch.services.index_service import parse_query

ENTRIES = [
    ('apache', 'struts', 'java'),
    ('apache', 'tomcat', 'java'),
    ('pivotal', 'spring_framework', 'java'),
    ('lodash', 'lodash', 'npm'),
    ('apple', 'swift', 'native'),
]


@pytest.fixture
def index():
    idx = CpeMemoryIndex()
    idx.open(ENTRIES)
    return idx


class TestAnalyze:
    """Tests for the token analyzer."""

    def test_splits_and_concatenates_pairs(self):
        """Test adjacent words are also indexed as one token."""
        assert analyze('Spring-Core') == ['spring', 'springcore', 'core']

    def test_stop_words_only_survive_in_pairs(self):
        assert analyze('spring_framework') == ['spring', 'springframework']

    def test_empty(self):
        assert analyze('') == []


class TestParseQuery:
    """Tests for parse_query."""

    def test_two_clauses_with_boosts(self):
        query = parse_query('product:(struts^2 core) AND vendor:(apache)')
        assert [c.field for c in query.clauses] == ['product', 'vendor']
        assert query.clauses[0].terms == (('struts', 2.0), ('core', 1.0))
        assert query.clauses[1].terms == (('apache', 1.0),)

    def test_escaped_and_quoted_words(self):
        query = parse_query(r'product:(hibernate\-core "or") AND vendor:(jboss)')
        assert query.clauses[0].terms == (('hibernate-core', 1.0), ('or', 1.0))

    @pytest.mark.parametrize(
        'text', [
            '',
            None,
            'product:(struts',
            'title:(struts)',
            'product:() AND vendor:(apache)',
            'product:(struts) OR vendor:(apache)',
            'product:("struts) AND vendor:(apache)',
            'product:(struts^x)',
        ],
    )
    def test_invalid_queries(self, text):
        with pytest.raises(QueryParseError):
            parse_query(text)


class TestCpeMemoryIndex:
    """Tests for CpeMemoryIndex."""

    def test_search_requires_open_index(self):
        """Test searching a closed index raises."""
        with pytest.raises(SearchIndexError):
            CpeMemoryIndex().search('product:(struts) AND vendor:(apache)')

    def test_best_match_first(self, index):
        results = index.search('product:(struts 2 core) AND vendor:(apache software foundation)')
        assert results[0] == IndexEntry('apache', 'struts')
        assert len(results) == 1

    def test_every_clause_must_match(self, index):
        assert index.search('product:(struts) AND vendor:(pivotal)') == []

    def test_stop_word_pairs_are_searchable(self, index):
        results = index.search('product:(spring framework) AND vendor:(pivotal)')
        assert results == [IndexEntry('pivotal', 'spring_framework')]
        assert results[0].score > 0

    def test_results_are_scoped_to_ecosystem(self, index):
        query = 'product:(lodash) AND vendor:(lodash)'
        assert index.search(query, ecosystem='npm') == [IndexEntry('lodash', 'lodash')]
        assert index.search(query, ecosystem='java') == []

    def test_native_entries_are_visible_to_ios(self, index):
        results = index.search('product:(swift) AND vendor:(apple)', ecosystem='ios')
        assert results == [IndexEntry('apple', 'swift')]

    def test_limit(self, index):
        results = index.search('product:(struts tomcat) AND vendor:(apache)', limit=1)
        assert len(results) == 1

    def test_boost_changes_ranking(self, index):
        """Test a boosted word lifts its document above the others."""
        results = index.search('product:(struts tomcat^5) AND vendor:(apache)')
        assert [r.product for r in results] == ['tomcat', 'struts']

    def test_duplicates_are_indexed_once(self):
        idx = CpeMemoryIndex()
        idx.open(ENTRIES + ENTRIES)
        assert len(idx) == len(ENTRIES)

    def test_rebuild_swaps_contents(self, index):
        index.rebuild([('jboss', 'hibernate', 'java')])
        assert index.search('product:(struts) AND vendor:(apache)') == []
        assert index.search('product:(hibernate) AND vendor:(jboss)')

    def test_close(self, index):
        index.close()
        assert not index.is_open()
        assert len(index) == 0

    def test_concurrent_searches_during_rebuild(self, index):
        """Test readers never fail while the index is rebuilt."""
        errors = []

        def reader():
            try:
                for _ in range(50):
                    index.search('product:(struts) AND vendor:(apache)')
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for _ in range(10):
            index.rebuild(ENTRIES)
        for thread in threads:
            thread.join()
        assert errors == []


def test_in_ecosystem_scope():
    assert in_ecosystem_scope(None, 'java')
    assert in_ecosystem_scope('java', None)
    assert in_ecosystem_scope('java', 'java')
    assert in_ecosystem_scope('native', 'ios')
    assert not in_ecosystem_scope('npm', 'java')
