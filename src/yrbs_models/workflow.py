from __future__ import annotations

import copy
import os
import warnings
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Tuple

import joblib
import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.inspection import permutation_importance

from .errors import DegenerateDataError, SchemaError, UnfinalizedWorkflowError
from .models import ModelSpec, Tunable, build_estimator
from .recipe import FittedRecipe, Recipe
from .utils.logger import get_logger


def _py(value: Any) -> Any:
    """Unwrap numpy scalars so specs hold plain Python values."""
    return value.item() if isinstance(value, np.generic) else value


def outcome_levels(y: pd.Series, event: Optional[str] = None) -> Tuple[Any, Any]:
    """Return (event, other) for a binary outcome; the event level comes first."""
    present = set(y.dropna().unique())
    if isinstance(y.dtype, pd.CategoricalDtype):
        levels = [lvl for lvl in y.cat.categories if lvl in present]
    else:
        levels = sorted(present, key=str)
    if len(levels) < 2:
        raise DegenerateDataError(
            f"Outcome '{y.name}' has a single class {levels}; cannot fit a classifier"
        )
    if len(levels) > 2:
        raise DegenerateDataError(f"Outcome '{y.name}' is not binary: {levels}")
    if event is not None:
        if event not in levels:
            raise DegenerateDataError(f"Event level '{event}' not present in '{y.name}'")
        levels = [event] + [lvl for lvl in levels if lvl != event]
    return levels[0], levels[1]


@dataclass(frozen=True)
class Workflow:
    """A preprocessing recipe bound to a model specification."""
    recipe: Recipe
    spec: ModelSpec

    @property
    def target(self) -> str:
        return self.recipe.target

    def tunables(self) -> Dict[str, Tunable]:
        return self.spec.tunables()

    def update_model(self, spec: ModelSpec) -> "Workflow":
        return compose(self.recipe, spec)

    def update_recipe(self, recipe: Recipe) -> "Workflow":
        return compose(recipe, self.spec)

    def finalize(self, params: Mapping[str, Any]) -> "Workflow":
        """Bind every tunable placeholder to the value chosen for it."""
        tunables = self.tunables()
        missing = sorted(set(tunables) - set(params))
        if missing:
            raise UnfinalizedWorkflowError(f"No value supplied for tunable parameters {missing}")
        values = {name: _py(params[name]) for name in tunables}
        return replace(self, spec=self.spec.set_args(**values))

    def fit(
        self,
        train: pd.DataFrame,
        seed: int = 42,
        event: Optional[str] = None,
    ) -> "FittedWorkflow":
        if not self.spec.is_final:
            raise UnfinalizedWorkflowError(
                f"Workflow has unresolved tunable parameters {sorted(self.tunables())}; "
                "tune and finalize it first"
            )
        if train.empty:
            raise DegenerateDataError("Training table is empty")
        if self.target not in train.columns:
            raise SchemaError(f"Target column '{self.target}' not found")

        levels = outcome_levels(train[self.target], event)
        fitted_recipe = self.recipe.fit(train)
        predictors = list(fitted_recipe.predictors)
        if not predictors:
            raise DegenerateDataError(
                "No usable predictor columns remain after preprocessing"
            )

        baked = fitted_recipe.apply(train)
        non_numeric = [c for c in predictors if not pd.api.types.is_numeric_dtype(baked[c])]
        if non_numeric:
            raise SchemaError(
                f"Predictors {non_numeric} are not numeric after preprocessing; add a Dummy step"
            )

        X = baked[predictors].to_numpy(dtype=float)
        y = (baked[self.target] == levels[0]).to_numpy(dtype=int)
        estimator = build_estimator(self.spec, n_rows=len(X), n_predictors=len(predictors), seed=seed)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            estimator.fit(X, y)

        importance = None
        if self.spec.algorithm == "rand_forest":
            kind = self.spec.value("importance")
            if kind == "permutation":
                result = permutation_importance(
                    estimator, X, y, scoring="roc_auc", n_repeats=5, random_state=seed
                )
                importance = pd.Series(result.importances_mean, index=predictors)
            elif kind == "impurity" and hasattr(estimator, "feature_importances_"):
                importance = pd.Series(estimator.feature_importances_, index=predictors)

        return FittedWorkflow(
            workflow=self,
            recipe=fitted_recipe,
            estimator=estimator,
            levels=levels,
            importance=importance,
        )


def compose(recipe: Recipe, spec: ModelSpec) -> Workflow:
    """Pair a recipe with a model spec; the workflow owns its own copies."""
    return Workflow(recipe=copy.deepcopy(recipe), spec=copy.deepcopy(spec))


@dataclass(frozen=True)
class FittedWorkflow:
    """Trained recipe + estimator. Read-only once created."""
    workflow: Workflow
    recipe: FittedRecipe
    estimator: Any
    levels: Tuple[Any, Any]
    importance: Optional[pd.Series] = None

    @property
    def event(self) -> Any:
        return self.levels[0]

    @property
    def predictors(self) -> Tuple[str, ...]:
        return self.recipe.predictors

    def predict_proba(self, df: pd.DataFrame) -> np.ndarray:
        """Probability of the event level for each row."""
        X = self.recipe.matrix(df)
        return self.estimator.predict_proba(X)[:, 1]

    def predict(self, df: pd.DataFrame, threshold: float = 0.5) -> pd.DataFrame:
        prob = self.predict_proba(df)
        event, other = self.levels
        labels = np.where(prob >= threshold, event, other)
        return pd.DataFrame(
            {
                ".pred_class": pd.Categorical(labels, categories=list(self.levels)),
                f".pred_{event}": prob,
                f".pred_{other}": 1.0 - prob,
            },
            index=df.index,
        )

    def augment(self, df: pd.DataFrame) -> pd.DataFrame:
        """Input rows with prediction columns appended."""
        return pd.concat([df, self.predict(df)], axis=1)

    def save(self, path: str) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        joblib.dump(self, path)

    @staticmethod
    def load(path: str) -> "FittedWorkflow":
        return joblib.load(path)
