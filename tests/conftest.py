"""
Shared fixtures: small synthetic versions of the three source tables.

22 movies carry a Bechdel score; two of them have placeholder budgets
below 10000. The metadata table has one movie with no Bechdel score and
the ratio table one MovieLens id with no metadata, so both joins drop rows.
"""

import pytest
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))


GENRE_TEXT = {
    'action': "[{'id': 28, 'name': 'Action'}, {'id': 12, 'name': 'Adventure'}]",
    'drama': "[{'id': 18, 'name': 'Drama'}]",
    'romcom': "[{'id': 10749, 'name': 'Romance'}, {'id': 35, 'name': 'Comedy'}]",
    'scifi': "[{'id': 878, 'name': 'Science Fiction'}, {'id': 53, 'name': 'Thriller'}]",
    'none': "[]",
}

# (bechdel rating, budget, female_ratio, female_director, genre key)
MOVIES = [
    (3, 25000000, 0.55, 1, 'drama'),
    (3, 18000000, 0.60, 0, 'romcom'),
    (3, 40000000, 0.52, 1, 'drama'),
    (3, 12000000, 0.58, 0, 'romcom'),
    (3, 30000000, 0.61, 1, 'drama'),
    (3, 22000000, 0.50, 0, 'romcom'),
    (3, 15000000, 0.57, 1, 'drama'),
    (3, 35000000, 0.54, 0, 'scifi'),
    (3, 28000000, 0.59, 1, 'romcom'),
    (3, 20000000, 0.56, 0, 'drama'),
    (0, 90000000, 0.12, 0, 'action'),
    (0, 80000000, 0.15, 0, 'action'),
    (0, 70000000, 0.10, 0, 'scifi'),
    (1, 85000000, 0.18, 0, 'action'),
    (1, 60000000, 0.14, 1, 'scifi'),
    (1, 95000000, 0.11, 0, 'action'),
    (2, 75000000, 0.20, 0, 'scifi'),
    (2, 65000000, 0.16, 0, 'action'),
    (2, 88000000, 0.13, 1, 'none'),
    (2, 72000000, 0.19, 0, 'action'),
    (3, 5000, 0.50, 1, 'drama'),
    (0, 1, 0.10, 0, 'action'),
]


def _imdb_number(i: int) -> int:
    return 100000 + i


def _movielens_id(i: int) -> int:
    return 500 + i


@pytest.fixture
def raw_tables():
    """The three source tables as DataFrames, before any normalization."""
    bechdel = pd.DataFrame({
        'id': range(1, len(MOVIES) + 1),
        'imdbid': [f"{_imdb_number(i):07d}" for i in range(len(MOVIES))],
        'title': [f"Movie {i}" for i in range(len(MOVIES))],
        'rating': [m[0] for m in MOVIES],
        'year': [1990 + i for i in range(len(MOVIES))],
    })

    metadata = pd.DataFrame({
        'adult': ['False'] * (len(MOVIES) + 1),
        'budget': [str(m[1]) for m in MOVIES] + ['1000000'],
        'genres': [GENRE_TEXT[m[4]] for m in MOVIES] + [GENRE_TEXT['drama']],
        'homepage': [''] * (len(MOVIES) + 1),
        'id': [str(_movielens_id(i)) for i in range(len(MOVIES) + 1)],
        'imdb_id': [f"tt{_imdb_number(i):07d}" for i in range(len(MOVIES) + 1)],
        'overview': ['A movie.'] * (len(MOVIES) + 1),
        'popularity': [1.5] * (len(MOVIES) + 1),
        'release_date': [f"{1990 + i % 25}-06-15" for i in range(len(MOVIES) + 1)],
        'runtime': [90 + (i * 7) % 60 for i in range(len(MOVIES) + 1)],
        'title': [f"Movie {i}" for i in range(len(MOVIES) + 1)],
        'vote_count': [100] * (len(MOVIES) + 1),
    })

    ratio = pd.DataFrame({
        'id': [_movielens_id(i) for i in range(len(MOVIES))] + [9999],
        'female_ratio': [m[2] for m in MOVIES] + [0.3],
        'female_director': [m[3] for m in MOVIES] + [0],
    })

    return bechdel, metadata, ratio


@pytest.fixture
def source_files(tmp_path, raw_tables):
    """The source tables written to CSV; returns the ``data`` config section."""
    bechdel, metadata, ratio = raw_tables
    paths = {
        'bechdel_path': tmp_path / 'bechdel.csv',
        'metadata_path': tmp_path / 'movies_metadata.csv',
        'ratio_path': tmp_path / 'gender_ratio.csv',
    }
    bechdel.to_csv(paths['bechdel_path'], index=False)
    metadata.to_csv(paths['metadata_path'], index=False)
    ratio.to_csv(paths['ratio_path'], index=False)
    return {key: str(path) for key, path in paths.items()}
