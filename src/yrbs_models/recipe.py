"""Declarative preprocessing recipes.

A recipe is an ordered tuple of step records. Fitting interprets the steps
left to right on the training table; each step fits its sklearn transformer
(imputer, variance filter, one-hot encoder, scaler) or records the columns it
drops. The fitted recipe then replays exactly that state on any table with
the same predictor schema.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from functools import singledispatch
from typing import Any, Dict, List, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.feature_selection import VarianceThreshold
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .errors import DegenerateDataError, SchemaError
from .utils.logger import get_logger

Selector = Union[str, Tuple[str, ...]]

ALL_PREDICTORS = "all_predictors"
ALL_NUMERIC = "all_numeric_predictors"
ALL_NOMINAL = "all_nominal_predictors"

logger = get_logger("Recipe")


@dataclass(frozen=True)
class Step:
    columns: Selector = ALL_PREDICTORS


@dataclass(frozen=True)
class ImputeMode(Step):
    columns: Selector = ALL_NOMINAL


@dataclass(frozen=True)
class ImputeMean(Step):
    columns: Selector = ALL_NUMERIC


@dataclass(frozen=True)
class ZeroVariance(Step):
    columns: Selector = ALL_PREDICTORS


@dataclass(frozen=True)
class Correlation(Step):
    columns: Selector = ALL_NUMERIC
    threshold: float = 0.7


@dataclass(frozen=True)
class Dummy(Step):
    columns: Selector = ALL_NOMINAL
    one_hot: bool = False


@dataclass(frozen=True)
class Normalize(Step):
    columns: Selector = ALL_NUMERIC


def _is_numeric(s: pd.Series) -> bool:
    return pd.api.types.is_numeric_dtype(s)


def select_columns(df: pd.DataFrame, selector: Selector, target: str) -> List[str]:
    """Resolve a selector against the current table, never returning the target."""
    predictors = [c for c in df.columns if c != target]
    if selector == ALL_PREDICTORS:
        return predictors
    if selector == ALL_NUMERIC:
        return [c for c in predictors if _is_numeric(df[c])]
    if selector == ALL_NOMINAL:
        return [c for c in predictors if not _is_numeric(df[c])]
    if isinstance(selector, str):
        raise ValueError(f"Unknown column selector: {selector}")

    missing = [c for c in selector if c not in df.columns]
    if missing:
        raise SchemaError(f"Selected columns not found: {missing}")
    return [c for c in selector if c != target]


# ---- step interpreters -------------------------------------------------

@singledispatch
def _prep(step: Step, df: pd.DataFrame, columns: List[str]) -> Dict[str, Any]:
    raise TypeError(f"No preparation rule for step {type(step).__name__}")


@singledispatch
def _bake(step: Step, state: Dict[str, Any], df: pd.DataFrame) -> pd.DataFrame:
    raise TypeError(f"No bake rule for step {type(step).__name__}")


def _nominal_block(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    # object block with NaN as the only missing marker
    block = df[columns].astype(object)
    return block.where(block.notna(), np.nan)


def _require_observed(step: Step, df: pd.DataFrame, columns: List[str]) -> None:
    empty = [c for c in columns if df[c].isna().all()]
    if empty:
        raise DegenerateDataError(
            f"{type(step).__name__}: columns entirely missing in training data: {empty}"
        )


@_prep.register
def _(step: ImputeMode, df, columns):
    if not columns:
        return {"imputer": None}
    _require_observed(step, df, columns)
    imputer = SimpleImputer(strategy="most_frequent")
    imputer.fit(_nominal_block(df, columns))
    return {"imputer": imputer, "columns": columns}


@_bake.register
def _(step: ImputeMode, state, df):
    imputer = state["imputer"]
    if imputer is None:
        return df
    columns = state["columns"]
    filled = imputer.transform(_nominal_block(df, columns))
    for i, col in enumerate(columns):
        if isinstance(df[col].dtype, pd.CategoricalDtype):
            df[col] = pd.Categorical(filled[:, i], categories=df[col].cat.categories)
        else:
            df[col] = filled[:, i]
    return df


@_prep.register
def _(step: ImputeMean, df, columns):
    if not columns:
        return {"imputer": None}
    _require_observed(step, df, columns)
    imputer = SimpleImputer(strategy="mean")
    imputer.fit(df[columns])
    return {"imputer": imputer, "columns": columns}


@_bake.register
def _(step: ImputeMean, state, df):
    imputer = state["imputer"]
    if imputer is None:
        return df
    columns = state["columns"]
    df[columns] = imputer.transform(df[columns])
    return df


@_prep.register
def _(step: ZeroVariance, df, columns):
    numeric = [c for c in columns if _is_numeric(df[c])]
    drop = [c for c in columns if c not in numeric and df[c].nunique(dropna=True) <= 1]
    selector = None
    if numeric:
        selector = VarianceThreshold(0.0)
        try:
            keep = selector.fit(df[numeric]).get_support()
        except ValueError as exc:
            # VarianceThreshold refuses to fit when no column varies
            if "variance threshold" not in str(exc):
                raise
            keep = np.zeros(len(numeric), dtype=bool)
        drop += [c for c, k in zip(numeric, keep) if not k]
    return {"selector": selector, "drop": drop}


@_prep.register
def _(step: Correlation, df, columns):
    # Earlier columns win: a column is removed when it is too correlated
    # with any column before it that is still kept.
    corr = df[columns].corr().abs() if columns else pd.DataFrame()
    drop: List[str] = []
    for i, first in enumerate(columns):
        if first in drop:
            continue
        for second in columns[i + 1:]:
            if second in drop:
                continue
            r = corr.loc[first, second]
            if not pd.isna(r) and r > step.threshold:
                drop.append(second)
    return {"drop": drop}


@_bake.register(ZeroVariance)
@_bake.register(Correlation)
def _(step, state, df):
    return df.drop(columns=state["drop"])


def _levels(s: pd.Series) -> List[Any]:
    if isinstance(s.dtype, pd.CategoricalDtype):
        present = set(s.dropna().unique())
        return [lvl for lvl in s.cat.categories if lvl in present]
    return sorted(s.dropna().unique(), key=str)


@_prep.register
def _(step: Dummy, df, columns):
    if not columns:
        return {"encoder": None}
    encoder = OneHotEncoder(
        categories=[_levels(df[c]) for c in columns],
        drop=None if step.one_hot else "first",
        handle_unknown="ignore",
        sparse_output=False,
        dtype=int,
    )
    encoder.fit(_nominal_block(df, columns))
    names = [str(n) for n in encoder.get_feature_names_out(columns)]

    remaining = {str(c) for c in df.columns if c not in columns}
    clashes = sorted({n for n in names if n in remaining or names.count(n) > 1})
    if clashes:
        raise SchemaError(f"Dummy: indicator names collide with other columns: {clashes}")
    return {"encoder": encoder, "columns": columns, "names": names}


@_bake.register
def _(step: Dummy, state, df):
    encoder = state["encoder"]
    if encoder is None:
        return df
    columns = state["columns"]
    with warnings.catch_warnings():
        # unseen levels are encoded as all zeros
        warnings.filterwarnings("ignore", message="Found unknown categories")
        encoded = encoder.transform(_nominal_block(df, columns))
    dummies = pd.DataFrame(encoded, columns=state["names"], index=df.index)
    return pd.concat([df.drop(columns=columns), dummies], axis=1)


@_prep.register
def _(step: Normalize, df, columns):
    if not columns:
        return {"scaler": None}
    return {"scaler": StandardScaler().fit(df[columns]), "columns": columns}


@_bake.register
def _(step: Normalize, state, df):
    scaler = state["scaler"]
    if scaler is None:
        return df
    columns = state["columns"]
    df[columns] = scaler.transform(df[columns])
    return df


# ---- recipe ------------------------------------------------------------

@dataclass(frozen=True)
class FittedStep:
    step: Step
    columns: Tuple[str, ...]
    state: Dict[str, Any]


@dataclass(frozen=True)
class Recipe:
    """Ordered preprocessing steps for one outcome column."""
    target: str
    steps: Tuple[Step, ...] = ()

    def add(self, step: Step) -> "Recipe":
        return Recipe(self.target, self.steps + (step,))

    def fit(self, df: pd.DataFrame) -> "FittedRecipe":
        if self.target not in df.columns:
            raise SchemaError(f"Target column '{self.target}' not found")
        if df[self.target].isna().all():
            raise DegenerateDataError(f"Target column '{self.target}' is entirely missing")

        inputs = [c for c in df.columns if c != self.target]
        current = df.copy()
        fitted: List[FittedStep] = []
        for step in self.steps:
            columns = select_columns(current, step.columns, self.target)
            state = _prep(step, current, columns)
            current = _bake(step, state, current)
            fitted.append(FittedStep(step, tuple(columns), state))

        predictors = [c for c in current.columns if c != self.target]
        logger.debug(
            f"Recipe fitted: {len(inputs)} inputs -> {len(predictors)} predictors"
        )
        return FittedRecipe(
            target=self.target,
            inputs=tuple(inputs),
            predictors=tuple(predictors),
            steps=tuple(fitted),
        )


@dataclass(frozen=True)
class FittedRecipe:
    """Recipe with learned state; applies deterministically to new tables."""
    target: str
    inputs: Tuple[str, ...]
    predictors: Tuple[str, ...]
    steps: Tuple[FittedStep, ...] = field(default_factory=tuple)

    def apply(self, df: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in self.inputs if c not in df.columns]
        if missing:
            raise SchemaError(f"Input table is missing columns expected by the recipe: {missing}")

        keep = list(self.inputs)
        if self.target in df.columns:
            keep.append(self.target)
        current = df[keep].copy()
        for fitted in self.steps:
            current = _bake(fitted.step, fitted.state, current)

        ordered = list(self.predictors)
        if self.target in current.columns:
            ordered.append(self.target)
        return current[ordered]

    bake = apply

    def matrix(self, df: pd.DataFrame) -> np.ndarray:
        """Predictor block of the applied table as a float array."""
        return self.apply(df)[list(self.predictors)].to_numpy(dtype=float)
