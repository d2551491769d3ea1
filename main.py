#!/usr/bin/env python3
"""
Bechdel Analysis Pipeline - Main Pipeline
==========================================

Orchestrates the batch analysis of which movies pass the Bechdel test.

Phases:
    1. EDA - Exploratory Data Analysis of the working table
    2. Preprocessing - Load, normalize, merge, filter, derive features, split
    3. Training - Hyperparameter selection for every model family
    4. Evaluation - Confusion matrices and the model comparison table

Usage:
    # Run complete pipeline
    python main.py

    # Run specific phase
    python main.py --phase eda

    # Run with custom config
    python main.py --config config/custom.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Mapping, Optional

import pandas as pd

from bechdel.data_loader import load_config, load_sources, print_data_summary
from bechdel.eda import generate_eda_report, print_eda_insights
from bechdel.preprocessing import (
    DatasetSplit,
    prepare_dataset,
    print_preprocessing_summary,
    split_train_test,
)
from bechdel.model import FittedModel, train_models, print_model_summary
from bechdel.evaluation import generate_evaluation_report, print_evaluation_report


def setup_logging(level: str = "INFO", log_dir: str = "logs/") -> None:
    """Configure logging for the pipeline."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_dir / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def run_preprocessing(config: Dict[str, Any]) -> pd.DataFrame:
    """
    Execute Phase 2 (data half): load the sources and build the working table.

    Args:
        config: Configuration dictionary

    Returns:
        Working table, one row per movie
    """
    print("\n" + "=" * 70)
    print("PHASE 2: DATA PREPROCESSING")
    print("=" * 70)

    print("\n📊 Loading data...")
    sources = load_sources(config.get('data', {}))
    for name, table in sources._asdict().items():
        print_data_summary(table, name)

    return prepare_dataset(sources, config)


def run_split(dataset: pd.DataFrame, config: Dict[str, Any]) -> DatasetSplit:
    """
    Execute Phase 2 (split half): partition the working table.

    Args:
        dataset: Working table
        config: Configuration dictionary

    Returns:
        Train/test split
    """
    prep_config = config.get('preprocessing', {})

    split = split_train_test(
        dataset,
        train_split=prep_config.get('train_split', 0.8),
        random_state=prep_config.get('random_state', 42)
    )

    print_preprocessing_summary(dataset, split)

    return split


def run_eda(dataset: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Exploratory Data Analysis.

    Args:
        dataset: Working table
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(dataset, output_dir=output_dir, show_plots=False)
    print_eda_insights(report)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_training(split: DatasetSplit, config: Dict[str, Any]) -> Mapping[str, FittedModel]:
    """
    Execute Phase 3: Model Training.

    Args:
        split: Train/test split
        config: Configuration dictionary

    Returns:
        Ordered mapping of model name to fitted model
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL TRAINING")
    print("=" * 70)

    model_dir = config.get('output', {}).get('model_path', 'models/')

    models = train_models(split.train, config, save_dir=model_dir)

    for model in models.values():
        print_model_summary(model)

    return models


def run_evaluation(
    models: Mapping[str, FittedModel],
    split: DatasetSplit,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 4: Model Evaluation.

    Args:
        models: Fitted models
        split: Train/test split
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL EVALUATION")
    print("=" * 70)

    eval_config = config.get('evaluation', {})

    result = generate_evaluation_report(
        models,
        split.test,
        output_dir=config.get('output', {}).get('reports_path', 'reports/'),
        positive_label=eval_config.get('positive_label', 1),
        group_column=eval_config.get('group_column', 'female_director'),
        show_plots=False
    )

    print_evaluation_report(result)

    return result


def run_full_pipeline(
    config_path: str = "config/config.yaml",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the complete pipeline.

    Args:
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("BECHDEL ANALYSIS PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(
        log_level or config.get('logging', {}).get('level', 'INFO'),
        config.get('logging', {}).get('log_dir', 'logs/')
    )

    results: Dict[str, Any] = {'config': config}

    dataset = run_preprocessing(config)
    results['data_shape'] = dataset.shape

    results['eda'] = run_eda(dataset, config)
    results['split'] = run_split(dataset, config)
    results['models'] = run_training(results['split'], config)
    results['evaluation'] = run_evaluation(results['models'], results['split'], config)

    table = results['evaluation']['results_table']
    best = table.loc[table['accuracy'].idxmax()]

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Working table: {dataset.shape[0]} movies × {dataset.shape[1]} columns")
    print(f"  • Models trained: {len(results['models'])}")
    print(f"  • Best accuracy: {best['model']} ({best['accuracy']:.4f})")
    print(f"  • Results table: {results['evaluation']['results_file']}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_single_phase(
    phase: str,
    config_path: str = "config/config.yaml",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute a single phase of the pipeline (and the phases it depends on).

    Args:
        phase: Phase to run ('eda', 'preprocess', 'train', 'evaluate')
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Phase result dictionary
    """
    config = load_config(config_path)
    setup_logging(
        log_level or config.get('logging', {}).get('level', 'INFO'),
        config.get('logging', {}).get('log_dir', 'logs/')
    )

    dataset = run_preprocessing(config)

    if phase == 'eda':
        return run_eda(dataset, config)

    elif phase == 'preprocess':
        return {'dataset': dataset, 'split': run_split(dataset, config)}

    elif phase == 'train':
        split = run_split(dataset, config)
        return {'models': run_training(split, config), 'split': split}

    elif phase == 'evaluate':
        split = run_split(dataset, config)
        models = run_training(split, config)
        return run_evaluation(models, split, config)

    else:
        raise ValueError(f"Unknown phase: {phase}. Choose from: eda, preprocess, train, evaluate")


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Bechdel test analysis: merge movie data, fit and compare classifiers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --phase eda
  python main.py --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=['eda', 'preprocess', 'train', 'evaluate', 'all'],
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    log_level = 'DEBUG' if args.verbose else None

    try:
        if args.phase == 'all':
            run_full_pipeline(args.config, log_level)
        else:
            run_single_phase(args.phase, args.config, log_level)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
