"""
Data Preprocessing Module - Phase 2
====================================

Turns the three raw source tables into one modeling table and splits it.

Every stage takes a DataFrame and returns a new one; nothing is modified
in place, so each stage can be run and tested on its own.

Functions:
    - coerce_imdb_id: Parse an IMDB identifier into an integer key
    - normalize_bechdel / normalize_metadata / normalize_ratio: Canonical schemas
    - merge_sources: Two sequential inner joins plus column pruning
    - filter_rows: Budget threshold and completeness filter
    - derive_features: Binary target, director label and genre indicators
    - split_train_test: Reproducible train/test partition
"""

import logging
import math
import re
from typing import Dict, Any, Iterable, List, NamedTuple, Optional

import pandas as pd
import numpy as np

from .data_loader import SourceTables
from .exceptions import (
    DegenerateSplit,
    EmptyJoinResult,
    KeyCoercionError,
    SchemaMismatch,
)

logger = logging.getLogger(__name__)


GENRES = [
    'Action', 'Adventure', 'Animation', 'Comedy', 'Crime', 'Documentary',
    'Drama', 'Family', 'Fantasy', 'History', 'Horror', 'Music', 'Mystery',
    'Romance', 'Science Fiction', 'TV Movie', 'Thriller', 'War', 'Western',
]

DIRECTOR_LEVELS = ['female director', 'male director']

# Columns with no modeling value once both joins are done
DROP_AFTER_MERGE = [
    'adult', 'belongs_to_collection', 'homepage', 'id', 'imdb_id',
    'original_language', 'original_title', 'overview', 'popularity',
    'poster_path', 'production_companies', 'production_countries',
    'release_date', 'revenue', 'spoken_languages', 'status', 'tagline',
    'title', 'video', 'vote_average', 'vote_count',
]

MODEL_COLUMNS = ['bechdel', 'budget', 'runtime', 'year', 'female_ratio', 'female_director']


def genre_column(genre: str) -> str:
    """Column name for a genre indicator, e.g. 'Science Fiction' -> 'science_fiction'."""
    return genre.lower().replace(' ', '_')


GENRE_COLUMNS = [genre_column(g) for g in GENRES]

FEATURE_COLUMNS = ['budget', 'runtime', 'year', 'female_ratio', 'female_director'] + GENRE_COLUMNS


class DatasetSplit(NamedTuple):
    """Training and test partitions of the working table."""
    train: pd.DataFrame
    test: pd.DataFrame


def coerce_imdb_id(value: Any, prefix: str = "tt") -> int:
    """
    Parse an identifier of the form ``<prefix><digits>`` into an integer.

    ``coerce_imdb_id("tt0120338") == 120338``. With an empty prefix the
    value must be bare digits (integral numbers are accepted as-is).

    Raises:
        KeyCoercionError: If the value does not match the pattern
    """
    if not prefix and isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        return int(value)
    if not prefix and isinstance(value, (float, np.floating)) and float(value).is_integer():
        return int(value)

    match = re.fullmatch(rf"{re.escape(prefix)}(\d+)", str(value).strip())
    if match is None:
        raise KeyCoercionError(
            f"Cannot coerce identifier {value!r} to an integer key (expected '{prefix}' followed by digits)"
        )
    return int(match.group(1))


def _coerce_key_column(
    df: pd.DataFrame,
    column: str,
    prefix: str,
    table: str
) -> pd.DataFrame:
    """Drop rows with a null key, then parse the remaining keys to integers."""
    missing = df[column].isnull()
    if missing.any():
        logger.warning(f"[{table}] Dropping {int(missing.sum())} rows with no '{column}'")
    df = df.loc[~missing].copy()

    df[column] = df[column].map(lambda v: coerce_imdb_id(v, prefix=prefix)).astype('int64')
    return df


def normalize_bechdel(df: pd.DataFrame) -> pd.DataFrame:
    """
    Canonicalize the Bechdel score table.

    Renames ``rating`` -> ``bechdel`` and ``imdbid`` -> ``imdb_id``, drops the
    presentation-only columns and parses the bare-digit IMDB key.
    """
    out = df.rename(columns={'rating': 'bechdel', 'imdbid': 'imdb_id'})
    # the release year used for modeling comes from the metadata table
    out = out.drop(columns=['id', 'title', 'year'], errors='ignore')
    out = _coerce_key_column(out, 'imdb_id', prefix='', table='bechdel')
    out['bechdel'] = pd.to_numeric(out['bechdel'], errors='coerce')

    logger.info(f"[bechdel] Normalized: {len(out)} rows")
    return out


def normalize_metadata(df: pd.DataFrame) -> pd.DataFrame:
    """
    Canonicalize the movie metadata table.

    Strips the ``tt`` prefix from ``imdb_id``, parses the MovieLens ``id``,
    makes ``budget`` and ``runtime`` numeric and derives ``year`` from
    ``release_date`` when the table has no ``year`` column.
    """
    out = _coerce_key_column(df, 'imdb_id', prefix='tt', table='metadata')
    out = _coerce_key_column(out, 'id', prefix='', table='metadata')

    out['budget'] = pd.to_numeric(out['budget'], errors='coerce')
    out['runtime'] = pd.to_numeric(out['runtime'], errors='coerce')

    if 'year' not in out.columns:
        if 'release_date' not in out.columns:
            raise SchemaMismatch('metadata', {'year', 'release_date'})
        out['year'] = pd.to_datetime(out['release_date'], errors='coerce').dt.year
    out['year'] = pd.to_numeric(out['year'], errors='coerce')

    logger.info(f"[metadata] Normalized: {len(out)} rows")
    return out


def normalize_ratio(df: pd.DataFrame) -> pd.DataFrame:
    """
    Canonicalize the cast/crew gender-ratio table.

    ``female_director`` must be a 0/1 flag; missing flags are left for
    ``filter_rows`` to drop.

    Raises:
        SchemaMismatch: If a director flag is anything other than 0 or 1
    """
    out = _coerce_key_column(df, 'id', prefix='', table='ratio')
    out['female_ratio'] = pd.to_numeric(out['female_ratio'], errors='coerce')
    out['female_director'] = pd.to_numeric(out['female_director'], errors='coerce')

    invalid = out['female_director'].notnull() & ~out['female_director'].isin([0, 1])
    if invalid.any():
        values = sorted(out.loc[invalid, 'female_director'].unique().tolist())
        raise SchemaMismatch('ratio', detail=f"has female_director values other than 0/1: {values}")

    logger.info(f"[ratio] Normalized: {len(out)} rows")
    return out


def _log_duplicate_keys(df: pd.DataFrame, key: str, name: str) -> None:
    n_duplicated = int(df[key].duplicated().sum())
    if n_duplicated:
        logger.warning(
            f"[{name}] {n_duplicated} duplicated '{key}' values; "
            f"the join will repeat the matching rows"
        )


def join_tables(
    left: pd.DataFrame,
    right: pd.DataFrame,
    key: str,
    name: str = "join"
) -> pd.DataFrame:
    """
    Inner join two tables on ``key``.

    Duplicated keys produce the cross-product of matching rows.

    Raises:
        SchemaMismatch: If either side lacks the key
        EmptyJoinResult: If no key is shared by both sides
    """
    for side, table in (('left', left), ('right', right)):
        if key not in table.columns:
            raise SchemaMismatch(f"{name} ({side})", {key})

    _log_duplicate_keys(left, key, f"{name} left")
    _log_duplicate_keys(right, key, f"{name} right")

    joined = left.merge(right, on=key, how='inner')

    if joined.empty:
        raise EmptyJoinResult(
            f"Join '{name}' on '{key}' produced no rows "
            f"({len(left)} left rows, {len(right)} right rows)"
        )

    logger.info(f"[{name}] {len(left)} × {len(right)} rows -> {len(joined)} rows on '{key}'")
    return joined


def merge_sources(
    bechdel: pd.DataFrame,
    metadata: pd.DataFrame,
    ratio: pd.DataFrame
) -> pd.DataFrame:
    """
    Join the normalized tables into one table of movies.

    Bechdel ⋈ metadata on ``imdb_id``, then the result ⋈ ratio on the
    MovieLens ``id``. Identifier, free-text and other presentation columns
    are dropped afterwards.
    """
    with_metadata = join_tables(bechdel, metadata, key='imdb_id', name='bechdel+metadata')
    merged = join_tables(with_metadata, ratio, key='id', name='bechdel+metadata+ratio')

    merged = merged.drop(columns=DROP_AFTER_MERGE, errors='ignore')
    logger.info(f"Merged table: {merged.shape[0]} rows × {merged.shape[1]} columns")
    return merged


def filter_rows(
    df: pd.DataFrame,
    budget_threshold: float = 10000,
    required_columns: Optional[Iterable[str]] = None
) -> pd.DataFrame:
    """
    Keep rows with a credible budget and complete modeling columns.

    Budgets under the threshold are placeholder values in the source data.

    Args:
        df: Merged table
        budget_threshold: Minimum budget kept
        required_columns: Columns that must be non-null (default: MODEL_COLUMNS)

    Returns:
        Filtered table with a fresh 0..n-1 index

    Raises:
        SchemaMismatch: If a required column is absent
        EmptyJoinResult: If no row survives
    """
    required = list(required_columns) if required_columns is not None else list(MODEL_COLUMNS)
    missing = set(required) - set(df.columns)
    if missing:
        raise SchemaMismatch('merged', missing)

    kept = df[df['budget'] >= budget_threshold]
    n_low_budget = len(df) - len(kept)
    kept = kept.dropna(subset=required)
    n_incomplete = len(df) - n_low_budget - len(kept)

    logger.info(
        f"Filter: dropped {n_low_budget} rows with budget < {budget_threshold}, "
        f"{n_incomplete} incomplete rows; {len(kept)} remain"
    )

    if kept.empty:
        raise EmptyJoinResult(f"No rows left after filtering {len(df)} merged rows")

    kept = kept.reset_index(drop=True)
    kept['bechdel'] = kept['bechdel'].astype(int)
    return kept


def derive_features(df: pd.DataFrame) -> pd.DataFrame:
    """
    Derive the modeling features.

    Adds ``bechdel_bin`` (1 iff ``bechdel == 3``), recodes the director
    flag into a labelled categorical and expands the raw ``genres`` text into
    one boolean column per genre. Produces exactly one row per input row.
    """
    out = df.copy()

    out['bechdel_bin'] = pd.Categorical((out['bechdel'] == 3).astype(int), categories=[0, 1])

    if 'female_director' in out.columns:
        out['female_director'] = pd.Categorical(
            out['female_director'].map({1: 'female director', 0: 'male director'}),
            categories=DIRECTOR_LEVELS
        )

    genre_text = out['genres'].fillna('').astype(str)
    for genre in GENRES:
        # case-sensitive literal match; 'Science Fiction' is one unit
        out[genre_column(genre)] = genre_text.str.contains(genre, regex=False).astype(bool)
    out = out.drop(columns=['genres'])

    logger.info(f"Derived features: {len(GENRES)} genre indicators, target 'bechdel_bin'")
    return out


def prepare_dataset(
    sources: SourceTables,
    config: Optional[Dict[str, Any]] = None
) -> pd.DataFrame:
    """
    Run normalize -> merge -> filter -> derive on the raw tables.

    Args:
        sources: Raw tables from ``load_sources``
        config: Configuration dictionary (``preprocessing`` section is read)

    Returns:
        The working table, one row per movie
    """
    prep_config = (config or {}).get('preprocessing', {})

    logger.info("=" * 60)
    logger.info("STARTING DATA PREPROCESSING (Phase 2)")
    logger.info("=" * 60)

    merged = merge_sources(
        normalize_bechdel(sources.bechdel),
        normalize_metadata(sources.metadata),
        normalize_ratio(sources.ratio)
    )
    filtered = filter_rows(merged, budget_threshold=prep_config.get('budget_threshold', 10000))
    dataset = derive_features(filtered)

    logger.info("=" * 60)
    logger.info("PREPROCESSING COMPLETE")
    logger.info(f"  Movies: {len(dataset)}")
    logger.info(f"  Bechdel pass rate: {(dataset['bechdel_bin'] == 1).mean():.3f}")
    logger.info("=" * 60)

    return dataset


def split_train_test(
    df: pd.DataFrame,
    train_split: float = 0.8,
    random_state: int = 42
) -> DatasetSplit:
    """
    Partition rows into training and test sets.

    The training set holds ``ceil(train_split * n)`` rows drawn with a seeded
    permutation, so the same seed and table always give the same partition.
    Both partitions keep the original row order and index labels.

    Raises:
        DegenerateSplit: If either partition would be empty
    """
    n_rows = len(df)
    # round first so that e.g. 0.8 * 10 is not pushed to 9 by float error
    n_train = int(math.ceil(round(train_split * n_rows, 9)))

    if n_train <= 0 or n_train >= n_rows:
        raise DegenerateSplit(
            f"train_split={train_split} on {n_rows} rows gives "
            f"{n_train} training and {n_rows - n_train} test rows"
        )

    order = np.random.RandomState(random_state).permutation(n_rows)
    train_idx = np.sort(order[:n_train])
    test_idx = np.sort(order[n_train:])

    split = DatasetSplit(train=df.iloc[train_idx], test=df.iloc[test_idx])
    logger.info(
        f"Train/Test split (seed={random_state}): "
        f"{len(split.train)} train rows, {len(split.test)} test rows"
    )
    return split


def print_preprocessing_summary(dataset: pd.DataFrame, split: Optional[DatasetSplit] = None) -> None:
    """
    Print a summary of the working table and its split.

    Args:
        dataset: Output of prepare_dataset
        split: Output of split_train_test
    """
    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Movies: {len(dataset)}")
    print(f"Features: {len([c for c in FEATURE_COLUMNS if c in dataset.columns])}")
    print(f"Bechdel pass rate: {(dataset['bechdel_bin'] == 1).mean():.3f}")
    print("\nBechdel score counts:")
    for score, count in dataset['bechdel'].value_counts().sort_index().items():
        print(f"  {score}: {count}")
    if split is not None:
        print(f"\nTraining rows: {len(split.train)}")
        print(f"Test rows: {len(split.test)}")
    print("=" * 50 + "\n")


def genre_counts(df: pd.DataFrame) -> pd.Series:
    """Number of movies flagged for each genre, largest first."""
    present: List[str] = [c for c in GENRE_COLUMNS if c in df.columns]
    return df[present].sum().sort_values(ascending=False)
