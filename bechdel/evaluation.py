"""
Model Evaluation Module - Phase 4
==================================

Confusion matrices, classification metrics and the comparison report.

Features:
    - Confusion matrix (rows = predicted, columns = actual)
    - Accuracy, sensitivity, specificity and no-information rate
    - Evaluation on row subsets (e.g. by director gender) without refitting
    - Results table, confusion-matrix heatmaps, k-scan curve and comparison plots
"""

import logging
import json
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import confusion_matrix

from .model import FittedModel

logger = logging.getLogger(__name__)


def _ratio(numerator: float, denominator: float) -> float:
    return float(numerator) / float(denominator) if denominator else float('nan')


def model_labels(model: FittedModel) -> List[Any]:
    """Class labels a model can emit, in sorted order."""
    if model.task == 'regression':
        label_range = model.selection.get('label_range')
        if not label_range:
            return []
        return list(range(label_range[0], label_range[1] + 1))
    return [label.item() if hasattr(label, 'item') else label for label in model.classes_]


def predict_labels(model: FittedModel, df: pd.DataFrame) -> np.ndarray:
    """
    Predicted class labels for ``df``.

    Regression predictions are rounded to the nearest integer and clipped to
    the label range seen in training so they can be tabulated as classes.
    """
    predictions = model.predict(df)
    if model.task != 'regression':
        return predictions

    labels = model_labels(model)
    rounded = np.rint(predictions)
    if labels:
        rounded = np.clip(rounded, labels[0], labels[-1])
    return rounded.astype(int)


def calculate_metrics(
    y_true: Sequence[Any],
    y_pred: Sequence[Any],
    labels: Optional[Sequence[Any]] = None,
    positive_label: Any = 1
) -> Dict[str, Any]:
    """
    Confusion matrix and summary statistics for predicted vs actual labels.

    Args:
        y_true: Actual labels
        y_pred: Predicted labels
        labels: Label order for the matrix (default: every label seen)
        positive_label: Positive class for a two-label problem (None for
            macro averages)

    Returns:
        Dictionary with ``confusion_matrix`` (DataFrame, rows = predicted,
        columns = actual), ``accuracy``, ``sensitivity``, ``specificity``,
        ``no_information_rate``, ``n_samples`` and ``per_class``.
        Sensitivity and specificity are for ``positive_label`` when there are
        two labels and it is one of them, and macro-averaged one-vs-rest
        otherwise.
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if labels is None:
        labels = sorted(set(y_true.tolist()) | set(y_pred.tolist()))
    labels = list(labels)

    n_samples = len(y_true)
    cm = confusion_matrix(y_true, y_pred, labels=labels).T

    matrix = pd.DataFrame(
        cm,
        index=pd.Index(labels, name='predicted'),
        columns=pd.Index(labels, name='actual')
    )

    actual_counts = cm.sum(axis=0)
    total = cm.sum()

    per_class = OrderedDict()
    for i, label in enumerate(labels):
        tp = cm[i, i]
        fn = actual_counts[i] - tp
        fp = cm[i, :].sum() - tp
        tn = total - tp - fn - fp
        per_class[label] = {
            'sensitivity': _ratio(tp, tp + fn),
            'specificity': _ratio(tn, tn + fp),
            'support': int(actual_counts[i])
        }

    if len(labels) == 2 and positive_label in labels:
        sensitivity = per_class[positive_label]['sensitivity']
        specificity = per_class[positive_label]['specificity']
    else:
        sensitivity = float(np.nanmean([c['sensitivity'] for c in per_class.values()]))
        specificity = float(np.nanmean([c['specificity'] for c in per_class.values()]))

    return {
        'confusion_matrix': matrix,
        'n_samples': int(n_samples),
        'accuracy': _ratio(np.trace(cm), total),
        'sensitivity': sensitivity,
        'specificity': specificity,
        'no_information_rate': _ratio(actual_counts.max() if len(labels) else 0, total),
        'per_class': per_class
    }


def evaluate_model(
    model: FittedModel,
    df: pd.DataFrame,
    positive_label: Any = 1
) -> Dict[str, Any]:
    """
    Predict on a table with known targets and compute the metrics.

    Args:
        model: Fitted model
        df: Table with the model's features and target column
        positive_label: Positive class for binary targets (ignored for
            multiclass models, which always report macro averages)

    Returns:
        Metrics dictionary from calculate_metrics, plus ``model`` and ``target``
    """
    if model.task == 'multiclass':
        positive_label = None

    y_true = df[model.target].astype(int).to_numpy()
    y_pred = predict_labels(model, df)

    # labels the model never saw in training still need a row and column
    labels = sorted(set(model_labels(model)) | set(y_true.tolist()) | set(y_pred.tolist()))
    metrics = calculate_metrics(y_true, y_pred, labels=labels, positive_label=positive_label)
    metrics['model'] = model.name
    metrics['target'] = model.target

    logger.info(
        f"[{model.name}] n={metrics['n_samples']} accuracy={metrics['accuracy']:.4f} "
        f"sensitivity={metrics['sensitivity']:.4f} specificity={metrics['specificity']:.4f}"
    )
    return metrics


def evaluate_by_group(
    model: FittedModel,
    df: pd.DataFrame,
    group_column: str = 'female_director',
    positive_label: Any = 1
) -> 'OrderedDict[Any, Dict[str, Any]]':
    """
    Evaluate a fitted model separately on each value of ``group_column``.

    The model is not refit; each group is just a subset of rows.

    Returns:
        Ordered mapping of group value to metrics (empty groups omitted)
    """
    if group_column not in df.columns:
        raise ValueError(f"Group column '{group_column}' not in table")

    results = OrderedDict()
    for value, group in df.groupby(group_column, observed=True, sort=True):
        if group.empty:
            continue
        logger.info(f"[{model.name}] Evaluating subset {group_column}={value!r}")
        results[value] = evaluate_model(model, group, positive_label=positive_label)
    return results


def build_results_table(evaluations: Mapping[str, Dict[str, Any]]) -> pd.DataFrame:
    """
    One row per model with accuracy, sensitivity and specificity.

    Args:
        evaluations: Mapping of model name to metrics

    Returns:
        DataFrame with columns model, accuracy, sensitivity, specificity
    """
    rows = [
        {
            'model': name,
            'accuracy': metrics['accuracy'],
            'sensitivity': metrics['sensitivity'],
            'specificity': metrics['specificity']
        }
        for name, metrics in evaluations.items()
    ]
    return pd.DataFrame(rows, columns=['model', 'accuracy', 'sensitivity', 'specificity'])


def plot_confusion_matrix(
    matrix: pd.DataFrame,
    title: str = 'Confusion Matrix',
    figsize: Tuple[int, int] = (6, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Heatmap of a confusion matrix.

    Args:
        matrix: Confusion matrix (rows = predicted, columns = actual)
        title: Figure title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        matrix,
        annot=True,
        fmt='d',
        cmap='Blues',
        cbar=False,
        linewidths=0.5,
        ax=ax
    )
    ax.set_xlabel('Actual')
    ax.set_ylabel('Predicted')
    ax.set_title(title, fontsize=12, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Confusion matrix saved to {save_path}")

    return fig


def plot_k_curve(
    model: FittedModel,
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    RMSE against k from a grid-scan selection.

    Args:
        model: Model selected by grid_scan_select
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    k_values = [c['n_neighbors'] for c in model.selection['candidates']]
    rmse = model.selection['scores']
    best_k = model.params['n_neighbors']

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(k_values, rmse, 'b-', linewidth=1.5, marker='o', markersize=3)
    ax.axvline(best_k, color='red', linestyle='--', label=f'Best k = {best_k}')

    ax.set_xlabel('k (neighbours)')
    ax.set_ylabel('RMSE (training data)')
    ax.set_title(f'{model.name}: RMSE by k', fontsize=12, fontweight='bold')
    ax.legend()
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"k curve saved to {save_path}")

    return fig


def plot_model_comparison(
    results_table: pd.DataFrame,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Grouped bar chart of accuracy, sensitivity and specificity per model.

    Args:
        results_table: Output of build_results_table
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    long_form = results_table.melt(id_vars='model', var_name='metric', value_name='value')

    fig, ax = plt.subplots(figsize=figsize)
    sns.barplot(data=long_form, x='model', y='value', hue='metric', ax=ax)

    ax.set_xlabel('')
    ax.set_ylabel('Score')
    ax.set_ylim([0, 1.05])
    ax.set_title('Model Comparison (Test Set)', fontsize=14, fontweight='bold')
    ax.tick_params(axis='x', rotation=30)
    for label in ax.get_xticklabels():
        label.set_horizontalalignment('right')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Model comparison plot saved to {save_path}")

    return fig


def _finite_or_none(value: float) -> Optional[float]:
    """Undefined rates (NaN) become None, which JSON writes as null."""
    return None if pd.isna(value) else float(value)


def _to_serializable(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-friendly copy of a metrics dictionary."""
    matrix = metrics['confusion_matrix']
    return {
        'model': metrics.get('model'),
        'target': metrics.get('target'),
        'n_samples': metrics['n_samples'],
        'accuracy': _finite_or_none(metrics['accuracy']),
        'sensitivity': _finite_or_none(metrics['sensitivity']),
        'specificity': _finite_or_none(metrics['specificity']),
        'no_information_rate': _finite_or_none(metrics['no_information_rate']),
        'labels': [str(label) for label in matrix.index],
        'confusion_matrix': matrix.to_numpy().tolist(),
        'per_class': {
            str(label): {
                'sensitivity': _finite_or_none(values['sensitivity']),
                'specificity': _finite_or_none(values['specificity']),
                'support': values['support']
            }
            for label, values in metrics['per_class'].items()
        }
    }


def _slug(text: str) -> str:
    return ''.join(ch if ch.isalnum() else '_' for ch in str(text).lower()).strip('_')


def generate_evaluation_report(
    models: Mapping[str, FittedModel],
    test: pd.DataFrame,
    output_dir: str = "reports/",
    positive_label: Any = 1,
    group_column: Optional[str] = 'female_director',
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Evaluate every model on the test set and write the report files.

    Args:
        models: Mapping of model name to fitted model
        test: Held-out table
        output_dir: Directory for output files
        positive_label: Positive class for binary targets
        group_column: Column to break results down by (None to skip)
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary with ``evaluations``, ``group_evaluations``,
        ``results_table``, ``figures``, ``metrics_file`` and ``results_file``
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION (Phase 4)")
    logger.info("=" * 60)

    evaluations = OrderedDict()
    group_evaluations = OrderedDict()
    figures = []

    for name, model in models.items():
        metrics = evaluate_model(model, test, positive_label=positive_label)
        evaluations[name] = metrics

        filename = f"eval_confusion_{_slug(name)}.png"
        plot_confusion_matrix(
            metrics['confusion_matrix'],
            title=f"{name} (accuracy {metrics['accuracy']:.3f})",
            save_path=str(figures_dir / filename)
        )
        figures.append(filename)

        if model.selection.get('method') == 'grid_scan':
            filename = f"eval_k_curve_{_slug(name)}.png"
            plot_k_curve(model, save_path=str(figures_dir / filename))
            figures.append(filename)

        if group_column and group_column in test.columns:
            group_evaluations[name] = evaluate_by_group(
                model, test, group_column=group_column, positive_label=positive_label
            )

    results_table = build_results_table(evaluations)

    plot_model_comparison(results_table, save_path=str(figures_dir / "eval_model_comparison.png"))
    figures.append("eval_model_comparison.png")

    results_file = metrics_dir / "results_table.csv"
    results_table.to_csv(results_file, index=False)
    logger.info(f"Results table saved to {results_file}")

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(
            {
                'overall': {name: _to_serializable(m) for name, m in evaluations.items()},
                'by_group': {
                    name: {str(value): _to_serializable(m) for value, m in groups.items()}
                    for name, groups in group_evaluations.items()
                }
            },
            f,
            indent=2,
            allow_nan=False
        )
    logger.info(f"Metrics saved to {metrics_file}")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    best = results_table.loc[results_table['accuracy'].idxmax()]
    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info(f"  Models evaluated: {len(evaluations)}")
    logger.info(f"  Best accuracy: {best['model']} ({best['accuracy']:.4f})")
    logger.info("=" * 60)

    return {
        'evaluations': evaluations,
        'group_evaluations': group_evaluations,
        'results_table': results_table,
        'figures': figures,
        'metrics_file': str(metrics_file),
        'results_file': str(results_file)
    }


def print_evaluation_report(result: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        result: Dictionary from generate_evaluation_report
    """
    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT")
    print("=" * 70)

    print(f"\n{'Model':<34} {'Accuracy':<10} {'Sensitivity':<12} {'Specificity':<12}")
    print("-" * 70)
    for row in result['results_table'].itertuples(index=False):
        print(f"{row.model:<34} {row.accuracy:<10.4f} {row.sensitivity:<12.4f} {row.specificity:<12.4f}")

    for name, metrics in result['evaluations'].items():
        print("\n" + "-" * 70)
        print(f"{name}  (target: {metrics['target']})")
        print("-" * 70)
        print(metrics['confusion_matrix'].to_string())
        print(f"  • Accuracy: {metrics['accuracy']:.4f}")
        print(f"  • No-information rate: {metrics['no_information_rate']:.4f}")

        for value, group_metrics in result['group_evaluations'].get(name, {}).items():
            print(f"  • {value}: accuracy {group_metrics['accuracy']:.4f} "
                  f"(n={group_metrics['n_samples']})")

    print("=" * 70 + "\n")
