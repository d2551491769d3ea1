"""
Exploratory Data Analysis (EDA) Module - Phase 1
=================================================

Figures and summary statistics for the working movie table.

Functions:
    - plot_bechdel_distribution: Count of movies per Bechdel score
    - plot_pass_rate_by_year: Share of passing movies per release year
    - plot_pass_rate_by_genre: Share of passing movies per genre
    - plot_budget_by_score: Budget spread per Bechdel score
    - plot_female_ratio: Female cast/crew ratio by test outcome
    - plot_correlation_matrix: Correlation heatmap of numeric columns
    - director_association: Chi-square test of director gender vs outcome
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .preprocessing import GENRES, genre_column, genre_counts

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def _passes(df: pd.DataFrame) -> pd.Series:
    return (df['bechdel_bin'].astype(int) == 1)


def plot_bechdel_distribution(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of movie counts per Bechdel score (0-3).

    Args:
        df: Working table
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Matplotlib Figure object
    """
    counts = df['bechdel'].value_counts().reindex(range(4), fill_value=0)

    fig, ax = plt.subplots(figsize=figsize)
    ax.bar(counts.index.astype(str), counts.values, alpha=0.8, color='steelblue')
    for x, count in zip(counts.index.astype(str), counts.values):
        ax.annotate(f'{count}', (x, count), ha='center', va='bottom', fontsize=9)

    ax.set_xlabel('Bechdel score')
    ax.set_ylabel('Movies')
    ax.set_title('Bechdel Score Distribution', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Bechdel distribution saved to {save_path}")

    return fig


def plot_pass_rate_by_year(
    df: pd.DataFrame,
    window: int = 5,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Pass rate per release year with a rolling mean.

    Args:
        df: Working table
        window: Rolling window in years
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    by_year = _passes(df).groupby(df['year'].astype(int)).mean().sort_index()

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(by_year.index, by_year.values, alpha=0.5, linewidth=0.8, label='Yearly')
    ax.plot(
        by_year.index,
        by_year.rolling(window=window, min_periods=1).mean(),
        color='red',
        label=f'Rolling Mean ({window} yrs)'
    )

    ax.set_xlabel('Release year')
    ax.set_ylabel('Pass rate')
    ax.set_ylim([0, 1])
    ax.set_title('Bechdel Pass Rate by Year', fontsize=14, fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Pass rate by year saved to {save_path}")

    return fig


def plot_pass_rate_by_genre(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Horizontal bar chart of pass rate per genre.

    Args:
        df: Working table
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Tuple of (Figure, DataFrame with movies and pass_rate per genre)
    """
    passes = _passes(df)
    counts = genre_counts(df)
    rows = []
    for genre in GENRES:
        column = genre_column(genre)
        if column not in counts.index:
            continue
        members = df[column]
        rows.append({
            'genre': genre,
            'movies': int(counts[column]),
            'pass_rate': float(passes[members].mean()) if members.any() else np.nan
        })
    genre_stats = pd.DataFrame(rows).sort_values('pass_rate')

    fig, ax = plt.subplots(figsize=figsize)
    ax.barh(genre_stats['genre'], genre_stats['pass_rate'], alpha=0.8, color='coral')
    ax.axvline(passes.mean(), color='blue', linestyle='--', label=f'Overall: {passes.mean():.2f}')

    ax.set_xlabel('Pass rate')
    ax.set_xlim([0, 1])
    ax.set_title('Bechdel Pass Rate by Genre', fontsize=14, fontweight='bold')
    ax.legend(loc='lower right', fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Pass rate by genre saved to {save_path}")

    return fig, genre_stats


def plot_budget_by_score(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Box plots of budget (log scale) for each Bechdel score.

    Args:
        df: Working table
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    sns.boxplot(data=df, x='bechdel', y='budget', ax=ax)
    ax.set_yscale('log')

    ax.set_xlabel('Bechdel score')
    ax.set_ylabel('Budget (log scale)')
    ax.set_title('Budget by Bechdel Score', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Budget box plots saved to {save_path}")

    return fig


def plot_female_ratio(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Distribution of the female cast/crew ratio, split by test outcome.

    Args:
        df: Working table
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    plot_df = df.assign(outcome=np.where(_passes(df), 'pass', 'fail'))

    fig, ax = plt.subplots(figsize=figsize)
    sns.histplot(data=plot_df, x='female_ratio', hue='outcome', kde=True,
                 stat='density', common_norm=False, bins=30, alpha=0.5, ax=ax)

    ax.set_xlabel('Female ratio (cast and crew)')
    ax.set_ylabel('Density')
    ax.set_title('Female Ratio by Bechdel Outcome', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Female ratio plot saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Correlation heatmap for the numeric, non-indicator columns.

    Args:
        df: Working table
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    numeric = df.select_dtypes(include=[np.number]).columns.tolist()
    corr_matrix = df[numeric].corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt='.3f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def director_association(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Chi-square test of independence between director gender and passing.

    Returns:
        Dictionary with the contingency table, pass rate per director label,
        chi2 statistic, p-value and degrees of freedom (statistic and p-value
        are None when the table has a single row or column)
    """
    table = pd.crosstab(df['female_director'], df['bechdel_bin'])
    # unobserved categories would give zero expected frequencies
    table = table.loc[table.sum(axis=1) > 0, table.sum(axis=0) > 0]
    pass_rates = _passes(df).groupby(df['female_director'], observed=True).mean()

    result = {
        'contingency': table.to_dict(),
        'pass_rate': {str(k): float(v) for k, v in pass_rates.items()},
        'chi2': None,
        'p_value': None,
        'dof': None
    }

    if table.shape[0] > 1 and table.shape[1] > 1:
        chi2, p_value, dof, _ = stats.chi2_contingency(table)
        result.update({'chi2': float(chi2), 'p_value': float(p_value), 'dof': int(dof)})
    else:
        logger.warning("Director association test skipped: only one director label or outcome present")

    return result


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with all visualizations.

    Args:
        df: Working table from prepare_dataset
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "figures": [],
        "correlation_matrix": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS (Phase 1)")
    logger.info("=" * 60)

    logger.info("Plotting Bechdel score distribution...")
    plot_bechdel_distribution(df, save_path=str(output_dir / "01_bechdel_distribution.png"))
    report["figures"].append("01_bechdel_distribution.png")

    logger.info("Plotting pass rate by year...")
    plot_pass_rate_by_year(df, save_path=str(output_dir / "02_pass_rate_by_year.png"))
    report["figures"].append("02_pass_rate_by_year.png")

    logger.info("Plotting pass rate by genre...")
    _, genre_stats = plot_pass_rate_by_genre(df, save_path=str(output_dir / "03_pass_rate_by_genre.png"))
    report["figures"].append("03_pass_rate_by_genre.png")
    report["genre_pass_rates"] = genre_stats.set_index('genre')['pass_rate'].to_dict()

    logger.info("Plotting budget by score...")
    plot_budget_by_score(df, save_path=str(output_dir / "04_budget_by_score.png"))
    report["figures"].append("04_budget_by_score.png")

    logger.info("Plotting female ratio by outcome...")
    plot_female_ratio(df, save_path=str(output_dir / "05_female_ratio.png"))
    report["figures"].append("05_female_ratio.png")

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(df, save_path=str(output_dir / "06_correlation_matrix.png"))
    report["figures"].append("06_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    logger.info("Testing director gender vs Bechdel outcome...")
    report["director_association"] = director_association(df)

    report["statistics"]["pass_rate"] = float(_passes(df).mean())
    for col in ['budget', 'runtime', 'year', 'female_ratio']:
        if col in df.columns:
            report["statistics"][col] = {
                "mean": float(df[col].mean()),
                "std": float(df[col].std()),
                "min": float(df[col].min()),
                "max": float(df[col].max())
            }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_eda_insights(report: Dict[str, Any]) -> None:
    """
    Print the headline findings of the EDA report.

    Args:
        report: Dictionary from generate_eda_report
    """
    print("\n" + "=" * 50)
    print("EDA INSIGHTS")
    print("=" * 50)
    print(f"Overall pass rate: {report['statistics']['pass_rate']:.3f}")

    rates = {g: r for g, r in report.get('genre_pass_rates', {}).items() if not pd.isna(r)}
    if rates:
        ordered = sorted(rates.items(), key=lambda item: item[1])
        print(f"\nLowest pass rate genre:  {ordered[0][0]} ({ordered[0][1]:.3f})")
        print(f"Highest pass rate genre: {ordered[-1][0]} ({ordered[-1][1]:.3f})")

    association = report.get('director_association', {})
    if association.get('pass_rate'):
        print("\nPass rate by director:")
        for label, rate in association['pass_rate'].items():
            print(f"  • {label}: {rate:.3f}")
    if association.get('p_value') is not None:
        verdict = "associated" if association['p_value'] < 0.05 else "no evidence of association"
        print(f"  Chi-square = {association['chi2']:.3f}, p = {association['p_value']:.4f} ({verdict})")

    print("=" * 50 + "\n")
