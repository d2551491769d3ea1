"""
Model Training Module - Phase 3
================================

Hyperparameter selection and fitting for every model family in the report.

Families (scikit-learn estimators behind one adapter):
    - knn_classifier: KNeighborsClassifier
    - knn_regressor: KNeighborsRegressor (selected by a grid scan over k)
    - gradient_boosting: GradientBoostingClassifier (binary or multiclass)
    - multinomial_regression: LogisticRegression on a multiclass target
    - logistic_regression: LogisticRegression on a binary target

Every family is wrapped in a Pipeline that standardizes numeric columns and
one-hot encodes categorical ones, so the same table feeds every model.
"""

import logging
import re
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Callable, Iterable, List, Optional

import numpy as np
import pandas as pd
import joblib
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import GradientBoostingClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import mean_squared_error
from sklearn.model_selection import GridSearchCV, KFold, ParameterGrid, StratifiedKFold
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .preprocessing import FEATURE_COLUMNS

logger = logging.getLogger(__name__)


class ModelFamily:
    """
    Adapter exposing one scikit-learn estimator as fit / predict / predict_proba.

    Parameter grids use bare estimator parameter names
    (``{'n_neighbors': [5, 7]}``); the pipeline prefix is added here.
    """

    def __init__(
        self,
        name: str,
        estimator_factory: Callable[[int], Any],
        param_grid: Dict[str, List[Any]],
        is_regressor: bool = False,
        task: Optional[str] = None
    ):
        self.name = name
        self.estimator_factory = estimator_factory
        self.param_grid = param_grid
        self.is_regressor = is_regressor
        self.task = 'regression' if is_regressor else task

    def task_for(self, y: pd.Series, target: Optional[str] = None) -> str:
        """
        'regression', 'binary' or 'multiclass' for a target column.

        A fixed family task wins, then the known task of the named target.
        Only unknown targets fall back to counting the classes in ``y``, so a
        training sample that happens to hold two Bechdel scores stays multiclass.
        """
        if self.task:
            return self.task
        if target in TARGET_TASKS:
            return TARGET_TASKS[target]
        return 'binary' if pd.Series(y).nunique() <= 2 else 'multiclass'

    def build_pipeline(
        self,
        df: pd.DataFrame,
        features: List[str],
        params: Optional[Dict[str, Any]] = None,
        random_state: int = 42
    ) -> Pipeline:
        """
        Create an unfitted preprocessing + estimator pipeline.

        Args:
            df: Table whose dtypes decide how each feature is encoded
            features: Predictor columns
            params: Bare estimator parameters to set
            random_state: Seed for estimators that use randomness
        """
        pipeline = Pipeline([
            ('preprocess', build_preprocessor(df, features)),
            ('model', self.estimator_factory(random_state))
        ])
        if params:
            pipeline.set_params(**prefixed(params))
        return pipeline

    def fit(
        self,
        df: pd.DataFrame,
        target: str,
        features: List[str],
        params: Optional[Dict[str, Any]] = None,
        random_state: int = 42
    ) -> 'FittedModel':
        """Fit the family at one hyperparameter setting."""
        y = target_values(df, target, self)
        pipeline = self.build_pipeline(df, features, params, random_state)
        pipeline.fit(df[features], y)
        return FittedModel(
            name=self.name,
            family=self.name,
            target=target,
            features=features,
            pipeline=pipeline,
            params=dict(params or {}),
            task=self.task_for(y, target)
        )

    def __repr__(self) -> str:
        return f"ModelFamily({self.name!r})"


# Task of each modeling target, independent of the rows in a sample
TARGET_TASKS = {
    'bechdel': 'multiclass',
    'bechdel_bin': 'binary',
}


FAMILIES: Dict[str, ModelFamily] = {
    'knn_classifier': ModelFamily(
        'knn_classifier',
        lambda seed: KNeighborsClassifier(),
        {'n_neighbors': [5, 7, 9, 11, 13, 15]}
    ),
    'knn_regressor': ModelFamily(
        'knn_regressor',
        lambda seed: KNeighborsRegressor(),
        {'n_neighbors': list(range(1, 101))},
        is_regressor=True
    ),
    'gradient_boosting': ModelFamily(
        'gradient_boosting',
        lambda seed: GradientBoostingClassifier(learning_rate=0.1, random_state=seed),
        {'n_estimators': [50, 100, 150], 'max_depth': [1, 2, 3]}
    ),
    'multinomial_regression': ModelFamily(
        'multinomial_regression',
        lambda seed: LogisticRegression(max_iter=1000),
        {'C': [0.1, 1.0, 10.0]},
        task='multiclass'
    ),
    'logistic_regression': ModelFamily(
        'logistic_regression',
        lambda seed: LogisticRegression(max_iter=1000),
        {'C': [1.0]}
    ),
}

DEFAULT_MODELS = [
    {'name': 'k-NN classification', 'family': 'knn_classifier', 'target': 'bechdel'},
    {'name': 'k-NN regression', 'family': 'knn_regressor', 'target': 'bechdel'},
    {'name': 'Gradient boosting (multiclass)', 'family': 'gradient_boosting', 'target': 'bechdel'},
    {'name': 'Multinomial regression', 'family': 'multinomial_regression', 'target': 'bechdel'},
    {'name': 'k-NN classification (binary)', 'family': 'knn_classifier', 'target': 'bechdel_bin'},
    {'name': 'Gradient boosting (binary)', 'family': 'gradient_boosting', 'target': 'bechdel_bin'},
    {'name': 'Logistic regression', 'family': 'logistic_regression', 'target': 'bechdel_bin'},
]


def get_family(name: str) -> ModelFamily:
    """Look up a model family by name."""
    try:
        return FAMILIES[name]
    except KeyError:
        raise ValueError(f"Unknown model family: {name}. Choose from: {', '.join(FAMILIES)}") from None


def prefixed(params: Dict[str, Any]) -> Dict[str, Any]:
    """Route bare estimator parameters to the pipeline's 'model' step."""
    return {f"model__{key}": value for key, value in params.items()}


def build_preprocessor(df: pd.DataFrame, features: List[str]) -> ColumnTransformer:
    """
    Encode predictors by dtype.

    Booleans pass through as 0/1, other numeric columns are standardized and
    categorical / text columns are one-hot encoded.
    """
    boolean = [c for c in features if pd.api.types.is_bool_dtype(df[c])]
    numeric = [
        c for c in features
        if c not in boolean and pd.api.types.is_numeric_dtype(df[c])
    ]
    categorical = [c for c in features if c not in boolean and c not in numeric]

    transformers = []
    if numeric:
        transformers.append(('num', StandardScaler(), numeric))
    if categorical:
        transformers.append((
            'cat',
            OneHotEncoder(drop='if_binary', sparse_output=False, handle_unknown='ignore'),
            categorical
        ))
    if boolean:
        transformers.append(('bool', 'passthrough', boolean))

    return ColumnTransformer(transformers=transformers, remainder='drop')


def target_values(df: pd.DataFrame, target: str, family: ModelFamily) -> pd.Series:
    """Target column as floats for regressors and integer labels for classifiers."""
    if target not in df.columns:
        raise ValueError(f"Target column '{target}' not in table")
    return df[target].astype(float if family.is_regressor else int)


class FittedModel:
    """
    A fitted pipeline plus everything needed to use and report on it.

    Attributes:
        name: Display name in the report
        family: Model family name
        target: Target column
        features: Predictor columns, in training order
        pipeline: The fitted scikit-learn Pipeline
        params: Selected hyperparameters (bare names)
        task: 'regression', 'binary' or 'multiclass'
        selection: Search trace (method, candidates, scores, best score)
    """

    def __init__(
        self,
        name: str,
        family: str,
        target: str,
        features: List[str],
        pipeline: Pipeline,
        params: Dict[str, Any],
        task: str,
        selection: Optional[Dict[str, Any]] = None
    ):
        self.name = name
        self.family = family
        self.target = target
        self.features = list(features)
        self.pipeline = pipeline
        self.params = params
        self.task = task
        self.selection = selection or {}
        self.training_info: Dict[str, Any] = {}

    @property
    def classes_(self) -> Optional[np.ndarray]:
        if self.task == 'regression':
            return None
        return self.pipeline.named_steps['model'].classes_

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """Predicted labels (classifiers) or values (regressors)."""
        missing = set(self.features) - set(df.columns)
        if missing:
            raise ValueError(f"Table is missing feature columns: {sorted(missing)}")
        return self.pipeline.predict(df[self.features])

    def predict_proba(self, df: pd.DataFrame) -> np.ndarray:
        """Class probabilities, columns ordered as ``classes_``."""
        if self.task == 'regression':
            raise ValueError(f"'{self.name}' is a regression model and has no class probabilities")
        return self.pipeline.predict_proba(df[self.features])

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        state = {
            'name': self.name,
            'family': self.family,
            'target': self.target,
            'features': self.features,
            'pipeline': self.pipeline,
            'params': self.params,
            'task': self.task,
            'selection': self.selection,
            'training_info': self.training_info
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model '{self.name}' saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FittedModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded FittedModel instance
        """
        state = joblib.load(filepath)
        training_info = state.pop('training_info', {})

        model = cls(**state)
        model.training_info = training_info

        logger.info(f"Model '{model.name}' loaded from {filepath}")
        return model

    def __repr__(self) -> str:
        return f"FittedModel({self.name!r}, target={self.target!r}, params={self.params})"


def grid_scan_select(
    train: pd.DataFrame,
    target: str,
    features: List[str],
    k_values: Iterable[int] = range(1, 101),
    name: str = 'k-NN regression'
) -> FittedModel:
    """
    Choose k for k-NN regression by scanning a fixed range.

    Each candidate is fit on ``train`` and scored by RMSE on the same rows
    (in-sample, no validation split). The first k with the lowest RMSE wins
    and the model is refit at that k.

    Args:
        train: Training table
        target: Numeric target column
        features: Predictor columns
        k_values: Candidate neighbour counts, in scan order
        name: Display name for the fitted model

    Returns:
        FittedModel with the RMSE curve in ``selection``
    """
    family = get_family('knn_regressor')
    X = train[features]
    y = target_values(train, target, family)

    k_values = list(k_values)
    candidates = [k for k in k_values if k <= len(train)]
    if len(candidates) < len(k_values):
        logger.warning(
            f"[{name}] Skipping {len(k_values) - len(candidates)} values of k "
            f"larger than the {len(train)} training rows"
        )
    if not candidates:
        raise ValueError(f"No candidate k fits {len(train)} training rows")

    rmse = []
    for k in candidates:
        pipeline = family.build_pipeline(train, features, {'n_neighbors': k})
        pipeline.fit(X, y)
        rmse.append(float(np.sqrt(mean_squared_error(y, pipeline.predict(X)))))

    # np.argmin returns the first minimum, i.e. the lowest k on ties
    best = int(np.argmin(rmse))
    best_k = candidates[best]
    logger.info(f"[{name}] Grid scan over {len(candidates)} k values: best k={best_k} (RMSE={rmse[best]:.4f})")

    model = family.fit(train, target, features, {'n_neighbors': best_k})
    model.name = name
    model.selection = {
        'method': 'grid_scan',
        'metric': 'rmse',
        'candidates': [{'n_neighbors': k} for k in candidates],
        'scores': rmse,
        'best_score': rmse[best],
        'label_range': [int(np.floor(y.min())), int(np.ceil(y.max()))]
    }
    return model


def cross_validated_select(
    train: pd.DataFrame,
    target: str,
    features: List[str],
    family: Any,
    param_grid: Optional[Dict[str, List[Any]]] = None,
    cv_folds: int = 5,
    random_state: int = 42,
    n_jobs: Optional[int] = None,
    name: Optional[str] = None
) -> FittedModel:
    """
    Choose hyperparameters by k-fold cross-validation and refit.

    Fold assignment is fixed by ``random_state`` before any scoring, so the
    result does not depend on ``n_jobs``. Classifier folds are stratified on
    the target. Binary targets are scored by ROC AUC (from class
    probabilities), everything else by accuracy. Ties go to the first
    candidate in grid order.

    Args:
        train: Training table
        target: Target column
        features: Predictor columns
        family: ModelFamily or family name
        param_grid: Bare-name grid; defaults to the family's grid
        cv_folds: Number of folds
        random_state: Seed for fold assignment and estimators
        n_jobs: Parallel jobs for the search
        name: Display name for the fitted model

    Returns:
        FittedModel refit on all of ``train``
    """
    if isinstance(family, str):
        family = get_family(family)
    name = name or family.name
    grid = param_grid if param_grid is not None else family.param_grid

    y = target_values(train, target, family)
    task = family.task_for(y, target)
    scoring = 'roc_auc' if task == 'binary' else (
        'neg_root_mean_squared_error' if task == 'regression' else 'accuracy'
    )

    if family.is_regressor:
        cv = KFold(n_splits=cv_folds, shuffle=True, random_state=random_state)
    else:
        cv = StratifiedKFold(n_splits=cv_folds, shuffle=True, random_state=random_state)

    search = GridSearchCV(
        family.build_pipeline(train, features, random_state=random_state),
        prefixed(grid) if grid else {},
        scoring=scoring,
        cv=cv,
        n_jobs=n_jobs,
        refit=True
    )

    logger.info(f"[{name}] {cv_folds}-fold CV over {len(ParameterGrid(grid or {}))} candidates, scoring={scoring}")
    search.fit(train[features], y)

    best_params = {
        key.replace('model__', '', 1): value for key, value in search.best_params_.items()
    }
    logger.info(f"[{name}] Best params: {best_params} (mean {scoring}={search.best_score_:.4f})")

    cv_results = search.cv_results_
    return FittedModel(
        name=name,
        family=family.name,
        target=target,
        features=features,
        pipeline=search.best_estimator_,
        params=best_params,
        task=task,
        selection={
            'method': 'cross_validation',
            'metric': scoring,
            'cv_folds': cv_folds,
            'candidates': [
                {k.replace('model__', '', 1): v for k, v in p.items()}
                for p in cv_results['params']
            ],
            'scores': [float(s) for s in cv_results['mean_test_score']],
            'best_score': float(search.best_score_)
        }
    )


def model_filename(name: str) -> str:
    """File name for a saved model, e.g. 'Gradient boosting (binary)' -> 'gradient_boosting_binary.joblib'."""
    return re.sub(r'[^a-z0-9]+', '_', name.lower()).strip('_') + '.joblib'


def train_models(
    train: pd.DataFrame,
    config: Dict[str, Any],
    save_dir: Optional[str] = None
) -> 'OrderedDict[str, FittedModel]':
    """
    Fit every model listed in the configuration.

    ``knn_regressor`` entries use the grid scan, all other families use
    cross-validated selection.

    Args:
        train: Training table
        config: Configuration dictionary (``models``, ``features``,
            ``selection`` and ``preprocessing`` sections are read)
        save_dir: Directory to save each fitted model (optional)

    Returns:
        Ordered mapping of display name to FittedModel
    """
    selection_config = config.get('selection', {})
    random_state = config.get('preprocessing', {}).get('random_state', 42)
    features = [c for c in config.get('features', FEATURE_COLUMNS) if c in train.columns]
    k_values = range(selection_config.get('k_min', 1), selection_config.get('k_max', 100) + 1)

    logger.info("=" * 60)
    logger.info("STARTING MODEL TRAINING (Phase 3)")
    logger.info("=" * 60)
    logger.info(f"Training rows: {len(train)}, features: {len(features)}")

    models: 'OrderedDict[str, FittedModel]' = OrderedDict()
    for spec in config.get('models', DEFAULT_MODELS):
        start_time = datetime.now()
        name = spec.get('name', spec['family'])

        if spec['family'] == 'knn_regressor':
            model = grid_scan_select(train, spec['target'], features, k_values, name=name)
        else:
            model = cross_validated_select(
                train,
                spec['target'],
                features,
                spec['family'],
                param_grid=spec.get('param_grid'),
                cv_folds=selection_config.get('cv_folds', 5),
                random_state=random_state,
                n_jobs=selection_config.get('n_jobs'),
                name=name
            )

        end_time = datetime.now()
        model.training_info = {
            'training_duration_seconds': (end_time - start_time).total_seconds(),
            'n_samples': len(train),
            'n_features': len(features),
            'trained_at': end_time.isoformat()
        }
        models[name] = model

        if save_dir:
            model.save(str(Path(save_dir) / model_filename(name)))

    logger.info("=" * 60)
    logger.info(f"MODEL TRAINING COMPLETE: {len(models)} models")
    logger.info("=" * 60)

    return models


def print_model_summary(model: FittedModel) -> None:
    """
    Print a summary of one fitted model.

    Args:
        model: Fitted model instance
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY: {model.name}")
    print("=" * 50)
    print(f"Family: {model.family}")
    print(f"Target: {model.target} ({model.task})")
    print(f"Number of input features: {len(model.features)}")
    print(f"Selected hyperparameters: {model.params}")

    if model.selection:
        print(f"\nSelection ({model.selection['method']}):")
        print(f"  - Metric: {model.selection['metric']}")
        print(f"  - Candidates: {len(model.selection['candidates'])}")
        print(f"  - Best score: {model.selection['best_score']:.4f}")

    if model.training_info:
        print(f"\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")

    print("=" * 50 + "\n")
