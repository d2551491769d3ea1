"""
Test Suite for Preprocessing Module
=====================================

Tests for key coercion, normalization, merging, feature derivation,
filtering and the train/test split.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bechdel.exceptions import (
    DegenerateSplit,
    EmptyJoinResult,
    KeyCoercionError,
    SchemaMismatch,
)
from bechdel.preprocessing import (
    GENRES,
    GENRE_COLUMNS,
    coerce_imdb_id,
    derive_features,
    filter_rows,
    genre_column,
    genre_counts,
    join_tables,
    merge_sources,
    normalize_bechdel,
    normalize_metadata,
    normalize_ratio,
    split_train_test,
)


class TestCoerceImdbId:
    """Tests for identifier parsing."""

    @pytest.mark.parametrize("value, expected", [
        ("tt0120338", 120338),
        ("tt0000001", 1),
        ("tt9999999", 9999999),
        (" tt0114709 ", 114709),
    ])
    def test_prefixed_ids(self, value, expected):
        """'tt' + digits coerces to the digits as an integer."""
        assert coerce_imdb_id(value) == expected

    @pytest.mark.parametrize("value", ["0120338", "nm0120338", "tt", "ttabc", "tt12a", "", "1997-08-20"])
    def test_non_matching_raises(self, value):
        """Anything else is a KeyCoercionError."""
        with pytest.raises(KeyCoercionError):
            coerce_imdb_id(value)

    def test_bare_digits_with_empty_prefix(self):
        """With no prefix, digit strings and integral numbers are accepted."""
        assert coerce_imdb_id("0120338", prefix="") == 120338
        assert coerce_imdb_id(120338, prefix="") == 120338
        assert coerce_imdb_id(120338.0, prefix="") == 120338

    def test_empty_prefix_rejects_prefixed(self):
        """A 'tt' key is not bare digits."""
        with pytest.raises(KeyCoercionError):
            coerce_imdb_id("tt0120338", prefix="")


class TestNormalizers:
    """Tests for the per-source schema normalizers."""

    def test_normalize_bechdel(self, raw_tables):
        """Renames rating/imdbid and drops presentation columns."""
        bechdel, _, _ = raw_tables
        out = normalize_bechdel(bechdel)

        assert 'bechdel' in out.columns
        assert 'imdb_id' in out.columns
        for dropped in ('rating', 'imdbid', 'title', 'id', 'year'):
            assert dropped not in out.columns
        assert out['imdb_id'].iloc[0] == 100000
        assert out['imdb_id'].dtype == np.int64

    def test_normalize_bechdel_does_not_mutate_input(self, raw_tables):
        """The source frame is left untouched."""
        bechdel, _, _ = raw_tables
        before = bechdel.copy()
        normalize_bechdel(bechdel)
        pd.testing.assert_frame_equal(bechdel, before)

    def test_normalize_metadata(self, raw_tables):
        """Strips 'tt', parses numerics and derives year from release_date."""
        _, metadata, _ = raw_tables
        out = normalize_metadata(metadata)

        assert out['imdb_id'].iloc[0] == 100000
        assert out['id'].iloc[0] == 500
        assert out['budget'].iloc[0] == 25000000
        assert out['year'].iloc[0] == 1990
        assert metadata['imdb_id'].iloc[0] == "tt0100000"

    def test_normalize_metadata_bad_key(self, raw_tables):
        """A malformed IMDB id is fatal."""
        _, metadata, _ = raw_tables
        metadata = metadata.copy()
        metadata.loc[3, 'imdb_id'] = 'not-an-id'

        with pytest.raises(KeyCoercionError):
            normalize_metadata(metadata)

    def test_normalize_metadata_drops_null_keys(self, raw_tables):
        """Rows with no key cannot join and are dropped."""
        _, metadata, _ = raw_tables
        metadata = metadata.copy()
        metadata.loc[0, 'imdb_id'] = None

        out = normalize_metadata(metadata)
        assert len(out) == len(metadata) - 1

    def test_normalize_metadata_needs_a_year(self, raw_tables):
        """Without year or release_date the table cannot be used."""
        _, metadata, _ = raw_tables
        with pytest.raises(SchemaMismatch):
            normalize_metadata(metadata.drop(columns=['release_date']))

    def test_normalize_ratio(self, raw_tables):
        """Parses the MovieLens key and numeric columns."""
        _, _, ratio = raw_tables
        out = normalize_ratio(ratio)
        assert out['id'].dtype == np.int64
        assert set(out['female_director'].unique()) <= {0, 1}

    @pytest.mark.parametrize("flag", [0.5, 2, -1])
    def test_normalize_ratio_rejects_non_binary_director(self, raw_tables, flag):
        """A director flag outside 0/1 has no label and is a schema error."""
        _, _, ratio = raw_tables
        ratio = ratio.copy()
        ratio['female_director'] = ratio['female_director'].astype(float)
        ratio.loc[1, 'female_director'] = flag

        with pytest.raises(SchemaMismatch, match='female_director'):
            normalize_ratio(ratio)

    def test_normalize_ratio_keeps_missing_director(self, raw_tables):
        """A missing flag is not an error here; filter_rows drops the row later."""
        _, _, ratio = raw_tables
        ratio = ratio.copy()
        ratio['female_director'] = ratio['female_director'].astype(float)
        ratio.loc[1, 'female_director'] = np.nan

        out = normalize_ratio(ratio)
        assert out['female_director'].isnull().sum() == 1


class TestMerge:
    """Tests for the two inner joins."""

    @pytest.fixture
    def normalized(self, raw_tables):
        bechdel, metadata, ratio = raw_tables
        return normalize_bechdel(bechdel), normalize_metadata(metadata), normalize_ratio(ratio)

    def test_join_keeps_only_shared_keys(self, normalized):
        """Every joined row has a key present on both sides."""
        bechdel, metadata, _ = normalized
        joined = join_tables(bechdel, metadata, key='imdb_id')

        assert set(joined['imdb_id']) <= set(bechdel['imdb_id']) & set(metadata['imdb_id'])
        assert len(joined) <= min(len(bechdel), len(metadata))
        assert joined['imdb_id'].notnull().all()

    def test_merge_row_count(self, normalized):
        """Both joins drop unmatched rows; no null keys are introduced."""
        bechdel, metadata, ratio = normalized
        merged = merge_sources(bechdel, metadata, ratio)

        # 23 metadata rows and 23 ratio rows, 22 Bechdel rows; all 22 match
        assert len(merged) == 22
        assert len(merged) <= min(len(bechdel), len(metadata), len(ratio))

    def test_merge_drops_irrelevant_columns(self, normalized):
        """Identifiers and presentation columns are gone after merging."""
        merged = merge_sources(*normalized)

        for col in ('id', 'imdb_id', 'title', 'overview', 'popularity', 'homepage',
                    'release_date', 'vote_count', 'adult'):
            assert col not in merged.columns
        for col in ('bechdel', 'budget', 'runtime', 'year', 'genres',
                    'female_ratio', 'female_director'):
            assert col in merged.columns

    def test_duplicate_keys_cross_product(self):
        """A duplicated key on both sides yields every pairing."""
        left = pd.DataFrame({'k': [1, 1, 2], 'a': ['x', 'y', 'z']})
        right = pd.DataFrame({'k': [1, 1, 3], 'b': ['p', 'q', 'r']})

        joined = join_tables(left, right, key='k')
        assert len(joined) == 4
        assert set(zip(joined['a'], joined['b'])) == {('x', 'p'), ('x', 'q'), ('y', 'p'), ('y', 'q')}

    def test_empty_join_raises(self):
        """No shared keys is a fatal data-quality error."""
        left = pd.DataFrame({'k': [1, 2], 'a': [1, 2]})
        right = pd.DataFrame({'k': [3, 4], 'b': [3, 4]})

        with pytest.raises(EmptyJoinResult):
            join_tables(left, right, key='k')

    def test_missing_key_raises(self):
        """A side without the key column is a schema error."""
        with pytest.raises(SchemaMismatch):
            join_tables(pd.DataFrame({'k': [1]}), pd.DataFrame({'j': [1]}), key='k')


class TestFeatures:
    """Tests for filtering and derived features."""

    @pytest.fixture
    def merged(self, raw_tables):
        bechdel, metadata, ratio = raw_tables
        return merge_sources(
            normalize_bechdel(bechdel),
            normalize_metadata(metadata),
            normalize_ratio(ratio)
        )

    def test_budget_filter(self, merged):
        """No surviving row has a budget under the threshold."""
        filtered = filter_rows(merged, budget_threshold=10000)

        assert (filtered['budget'] >= 10000).all()
        assert len(filtered) == 20
        assert list(filtered.index) == list(range(20))

    def test_filter_to_nothing_raises(self, merged):
        """A threshold nothing clears leaves no data to model."""
        with pytest.raises(EmptyJoinResult):
            filter_rows(merged, budget_threshold=1e12)

    def test_filter_drops_incomplete_rows(self, merged):
        """Rows missing a modeling column are dropped."""
        merged = merged.copy()
        merged.loc[0, 'runtime'] = np.nan
        filtered = filter_rows(merged)
        assert len(filtered) == 19
        assert filtered['runtime'].notnull().all()

    def test_bechdel_bin(self, merged):
        """bechdel_bin is 1 exactly when bechdel == 3."""
        derived = derive_features(filter_rows(merged))

        assert list(derived['bechdel_bin'].cat.categories) == [0, 1]
        assert ((derived['bechdel_bin'].astype(int) == 1) == (derived['bechdel'] == 3)).all()

    def test_one_row_per_input_row(self, merged):
        """Derivation never adds or drops rows."""
        filtered = filter_rows(merged)
        assert len(derive_features(filtered)) == len(filtered)

    def test_director_label(self, merged):
        """The 0/1 flag becomes a two-level labelled categorical."""
        derived = derive_features(filter_rows(merged))

        assert set(derived['female_director'].cat.categories) == {'female director', 'male director'}
        assert derived['female_director'].notnull().all()

    def test_genre_indicators(self):
        """Indicators are booleans set by literal, case-sensitive matches."""
        df = pd.DataFrame({
            'bechdel': [3, 0, 1, 2],
            'female_director': [1, 0, 0, 1],
            'genres': [
                "[{'id': 878, 'name': 'Science Fiction'}, {'id': 18, 'name': 'Drama'}]",
                "science fiction, drama",
                None,
                "Action|Adventure|TV Movie",
            ]
        })
        derived = derive_features(df)

        assert 'genres' not in derived.columns
        assert len(GENRE_COLUMNS) == 19
        for col in GENRE_COLUMNS:
            assert derived[col].dtype == bool
            assert derived[col].notnull().all()

        assert derived.loc[0, 'science_fiction'] and derived.loc[0, 'drama']
        assert not derived.loc[1, 'science_fiction']
        assert not derived.loc[2, GENRE_COLUMNS].any()
        assert derived.loc[3, ['action', 'adventure', 'tv_movie']].all()
        assert derived.loc[3, GENRE_COLUMNS].sum() == 3

    def test_genre_matches_source_text(self, merged):
        """Every genre named in the raw text has its indicator set."""
        filtered = filter_rows(merged)
        derived = derive_features(filtered)

        for genre in GENRES:
            named = filtered['genres'].str.contains(genre, regex=False)
            assert derived.loc[named, genre_column(genre)].all()

    def test_genre_counts(self, merged):
        """Counts per genre match the indicator columns, largest first."""
        derived = derive_features(filter_rows(merged))
        counts = genre_counts(derived)

        assert set(counts.index) == set(GENRE_COLUMNS)
        assert list(counts.values) == sorted(counts.values, reverse=True)
        # 5 dramas survive the budget filter (the sixth has a 5000 budget)
        assert counts['drama'] == 5
        assert counts['romance'] == 4
        assert counts['western'] == 0

    def test_derive_does_not_mutate_input(self, merged):
        """The input table keeps its raw genre text."""
        filtered = filter_rows(merged)
        before = filtered.copy()
        derive_features(filtered)
        pd.testing.assert_frame_equal(filtered, before)


class TestSplit:
    """Tests for split_train_test."""

    @pytest.fixture
    def table(self):
        np.random.seed(0)
        return pd.DataFrame({
            'x': np.random.randn(101),
            'y': np.random.randint(0, 2, 101)
        })

    def test_reproducible(self, table):
        """Same seed, same partition, index for index."""
        first = split_train_test(table, train_split=0.8, random_state=13)
        second = split_train_test(table, train_split=0.8, random_state=13)

        assert list(first.train.index) == list(second.train.index)
        assert list(first.test.index) == list(second.test.index)

    def test_different_seed_differs(self, table):
        """Another seed draws another partition."""
        first = split_train_test(table, train_split=0.8, random_state=13)
        second = split_train_test(table, train_split=0.8, random_state=14)
        assert list(first.train.index) != list(second.train.index)

    def test_sizes(self, table):
        """Training size is ceil(0.8 * n)."""
        split = split_train_test(table, train_split=0.8, random_state=1)
        assert len(split.train) == 81
        assert len(split.test) == 20

    def test_exact_proportion(self):
        """0.8 of 10 rows is exactly 8 training rows."""
        split = split_train_test(pd.DataFrame({'x': range(10)}), train_split=0.8)
        assert len(split.train) == 8

    def test_disjoint_and_complete(self, table):
        """Partitions are disjoint and their union is the input table."""
        split = split_train_test(table, train_split=0.8, random_state=5)

        assert set(split.train.index).isdisjoint(split.test.index)
        recovered = pd.concat([split.train, split.test]).sort_index()
        pd.testing.assert_frame_equal(recovered, table)

    def test_row_order_preserved(self, table):
        """Each partition keeps the input's row order."""
        split = split_train_test(table, train_split=0.8, random_state=5)
        assert split.train.index.is_monotonic_increasing
        assert split.test.index.is_monotonic_increasing

    @pytest.mark.parametrize("train_split", [0.0, 1.0, 0.95])
    def test_degenerate_split(self, train_split):
        """An empty train or test side is fatal."""
        with pytest.raises(DegenerateSplit):
            split_train_test(pd.DataFrame({'x': range(10)}), train_split=train_split)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
