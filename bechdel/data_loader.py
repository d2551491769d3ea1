"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion and schema checks for the
three source tables.

Functions:
    - load_config: Load YAML configuration file
    - load_source: Load one CSV and check its required columns
    - load_sources: Load the Bechdel, metadata and ratio tables
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, Iterable, NamedTuple, Optional

import pandas as pd
import numpy as np
import yaml

from .exceptions import SourceUnavailable, SchemaMismatch

logger = logging.getLogger(__name__)


BECHDEL_COLUMNS = ['imdbid', 'rating']
METADATA_COLUMNS = ['imdb_id', 'id', 'budget', 'runtime', 'genres']
RATIO_COLUMNS = ['id', 'female_ratio', 'female_director']


class SourceTables(NamedTuple):
    """The three raw tables, as read from disk."""
    bechdel: pd.DataFrame
    metadata: pd.DataFrame
    ratio: pd.DataFrame


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_source(
    file_path: str,
    required_columns: Optional[Iterable[str]] = None,
    name: Optional[str] = None
) -> pd.DataFrame:
    """
    Load one CSV source and verify it carries the expected columns.

    Args:
        file_path: Path to the CSV file
        required_columns: Columns that must be present after loading
        name: Table name used in log and error messages

    Returns:
        DataFrame containing the loaded data

    Raises:
        SourceUnavailable: If the file is missing or cannot be parsed
        SchemaMismatch: If a required column is absent
    """
    file_path = Path(file_path)
    name = name or file_path.stem

    if not file_path.is_file():
        raise SourceUnavailable(f"Data file not found for '{name}': {file_path}")

    try:
        # low_memory=False keeps mixed-type columns (ids, budgets) in one dtype
        df = pd.read_csv(file_path, low_memory=False)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise SourceUnavailable(f"Could not read '{name}' from {file_path}: {e}") from e

    logger.info(f"Loaded '{name}' from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    if required_columns is not None:
        missing = set(required_columns) - set(df.columns)
        if missing:
            raise SchemaMismatch(name, missing)

    return df


def load_sources(data_config: Dict[str, Any]) -> SourceTables:
    """
    Load the Bechdel, movie metadata and gender-ratio tables.

    Args:
        data_config: The ``data`` section of the configuration, holding
            ``bechdel_path``, ``metadata_path`` and ``ratio_path``

    Returns:
        SourceTables with the three raw DataFrames
    """
    return SourceTables(
        bechdel=load_source(
            data_config.get('bechdel_path', 'data/raw/bechdel.csv'),
            BECHDEL_COLUMNS,
            name='bechdel'
        ),
        metadata=load_source(
            data_config.get('metadata_path', 'data/raw/movies_metadata.csv'),
            METADATA_COLUMNS,
            name='metadata'
        ),
        ratio=load_source(
            data_config.get('ratio_path', 'data/raw/gender_ratio.csv'),
            RATIO_COLUMNS,
            name='ratio'
        ),
    )


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for a table.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "missing": df.isnull().sum().to_dict(),
        "memory_usage_mb": df.memory_usage(deep=True).sum() / 1024 / 1024,
        "statistics": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max())
        }

    return summary


def print_data_summary(df: pd.DataFrame, name: str = "DATASET") -> None:
    """
    Print a formatted summary of a table to console.

    Args:
        df: DataFrame to summarize
        name: Heading for the summary
    """
    print("\n" + "=" * 60)
    print(f"{name.upper()} SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    numeric = df.select_dtypes(include=[np.number])
    if not numeric.empty:
        print("\nBasic Statistics:")
        print("-" * 40)
        print(numeric.describe().round(4).to_string())
    print("=" * 60 + "\n")
