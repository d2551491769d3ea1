"""
Bechdel Analysis Pipeline
=========================

Predicts whether a movie passes the Bechdel test from its budget,
runtime, release year, genres and the gender make-up of its cast and crew.

Modules:
    - data_loader: CSV ingestion, schema checks and configuration
    - eda: Exploratory Data Analysis (Phase 1)
    - preprocessing: Normalization, merging, feature derivation and splitting (Phase 2)
    - model: Model families and hyperparameter selection (Phase 3)
    - evaluation: Confusion matrices, metrics and reports (Phase 4)
    - exceptions: Fatal pipeline errors
"""

__version__ = "1.0.0"
__author__ = "Bechdel Analysis Team"
