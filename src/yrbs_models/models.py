from __future__ import annotations

import numbers
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Union

from lightgbm import LGBMClassifier
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.tree import DecisionTreeClassifier

from .errors import InvalidHyperparameterError, UnfinalizedWorkflowError


@dataclass(frozen=True)
class Fixed:
    value: Any


@dataclass(frozen=True)
class Tunable:
    """Placeholder for a hyperparameter chosen by the tuner.

    Unset bounds fall back to the defaults in ``PARAM_RANGES``; ``mtry``'s
    upper bound is the number of predictors, known only after preprocessing.
    """
    low: Optional[float] = None
    high: Optional[float] = None
    log: Optional[bool] = None
    integer: Optional[bool] = None

    def resolve(self, name: str, n_predictors: Optional[int] = None) -> "Tunable":
        default = PARAM_RANGES.get(name, Tunable())
        low = self.low if self.low is not None else default.low
        high = self.high if self.high is not None else default.high
        if name == "mtry" and high is None:
            high = n_predictors
        if low is None or high is None:
            raise ValueError(f"Cannot resolve search range for '{name}'")
        return Tunable(
            low=low,
            high=high,
            log=bool(self.log if self.log is not None else default.log),
            integer=bool(self.integer if self.integer is not None else default.integer),
        )


Param = Union[Fixed, Tunable]


def tune(low: Optional[float] = None, high: Optional[float] = None, **kwargs) -> Tunable:
    return Tunable(low=low, high=high, **kwargs)


PARAM_RANGES: Dict[str, Tunable] = {
    "penalty": Tunable(1e-10, 1.0, log=True, integer=False),
    "cost_complexity": Tunable(1e-10, 1e-1, log=True, integer=False),
    "tree_depth": Tunable(1, 15, log=False, integer=True),
    "min_n": Tunable(2, 40, log=False, integer=True),
    "mtry": Tunable(1, None, log=False, integer=True),
}

# Sort direction that puts the simplest model first when breaking ties:
# -1 means larger values are simpler, +1 means smaller values are simpler.
SIMPLICITY: Dict[str, int] = {
    "penalty": -1,
    "cost_complexity": -1,
    "min_n": -1,
    "tree_depth": 1,
    "mtry": 1,
}

ALGORITHMS: Dict[str, Dict[str, Any]] = {
    "logistic_reg": {"params": {}, "engines": ("sklearn",)},
    "lasso_reg": {
        "params": {"penalty": None, "mixture": 1.0},
        "engines": ("sklearn",),
    },
    "decision_tree": {
        "params": {"cost_complexity": 0.01, "tree_depth": 30, "min_n": 2},
        "engines": ("sklearn",),
    },
    "rand_forest": {
        "params": {"mtry": None, "min_n": 2, "trees": 100, "importance": "none"},
        "engines": ("sklearn", "lightgbm"),
    },
}


@dataclass(frozen=True)
class ModelSpec:
    """Algorithm identity plus hyperparameters (fixed values or placeholders)."""
    algorithm: str
    params: Dict[str, Param] = field(default_factory=dict)
    mode: str = "classification"
    engine: str = "sklearn"

    def tunables(self) -> Dict[str, Tunable]:
        return {k: v for k, v in self.params.items() if isinstance(v, Tunable)}

    @property
    def is_final(self) -> bool:
        return not self.tunables()

    def value(self, name: str) -> Any:
        param = self.params.get(name)
        if param is None:
            return ALGORITHMS[self.algorithm]["params"].get(name)
        if isinstance(param, Tunable):
            raise UnfinalizedWorkflowError(f"Hyperparameter '{name}' is still marked for tuning")
        return param.value

    def set_args(self, **params: Any) -> "ModelSpec":
        _check_param_names(self.algorithm, params)
        merged = dict(self.params)
        merged.update({k: _wrap(v) for k, v in params.items()})
        return replace(self, params=merged)


def _wrap(value: Any) -> Param:
    return value if isinstance(value, (Fixed, Tunable)) else Fixed(value)


def _check_param_names(algorithm: str, params: Dict[str, Any]) -> None:
    unknown = set(params) - set(ALGORITHMS[algorithm]["params"])
    if unknown:
        raise ValueError(f"Unknown hyperparameters for {algorithm}: {sorted(unknown)}")


def specify(
    algorithm: str,
    mode: str = "classification",
    engine: Optional[str] = None,
    **params: Any,
) -> ModelSpec:
    if algorithm not in ALGORITHMS:
        raise ValueError(f"Unknown algorithm: {algorithm}")
    if mode != "classification":
        raise ValueError(f"Unsupported mode: {mode}")
    engines = ALGORITHMS[algorithm]["engines"]
    engine = engine or engines[0]
    if engine not in engines:
        raise ValueError(f"Engine '{engine}' not available for {algorithm}; choose from {engines}")
    _check_param_names(algorithm, params)
    return ModelSpec(
        algorithm=algorithm,
        params={k: _wrap(v) for k, v in params.items()},
        mode=mode,
        engine=engine,
    )


def logistic_reg(engine: str = "sklearn") -> ModelSpec:
    return specify("logistic_reg", engine=engine)


def lasso_reg(penalty: Any = None, mixture: float = 1.0, engine: str = "sklearn") -> ModelSpec:
    return specify(
        "lasso_reg",
        engine=engine,
        penalty=tune() if penalty is None else penalty,
        mixture=mixture,
    )


def decision_tree(
    cost_complexity: Any = None,
    tree_depth: Any = None,
    min_n: Any = None,
    engine: str = "sklearn",
) -> ModelSpec:
    return specify(
        "decision_tree",
        engine=engine,
        cost_complexity=tune() if cost_complexity is None else cost_complexity,
        tree_depth=tune() if tree_depth is None else tree_depth,
        min_n=tune() if min_n is None else min_n,
    )


def rand_forest(
    mtry: Any = None,
    min_n: Any = None,
    trees: int = 100,
    importance: str = "permutation",
    engine: str = "sklearn",
) -> ModelSpec:
    return specify(
        "rand_forest",
        engine=engine,
        mtry=tune() if mtry is None else mtry,
        min_n=tune() if min_n is None else min_n,
        trees=trees,
        importance=importance,
    )


# ---- estimator construction -------------------------------------------

def _require(cond: bool, message: str) -> None:
    if not cond:
        raise InvalidHyperparameterError(message)


def _is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Integral):
        return True
    return isinstance(value, numbers.Real) and float(value).is_integer()


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def build_estimator(spec: ModelSpec, n_rows: int, n_predictors: int, seed: int = 42):
    """Validate a finalized spec and return the unfitted estimator for its engine."""
    if not spec.is_final:
        raise UnfinalizedWorkflowError(
            f"Cannot fit {spec.algorithm}: unresolved tunable parameters {sorted(spec.tunables())}"
        )

    if spec.algorithm == "logistic_reg":
        return LogisticRegression(penalty=None, max_iter=5000)

    if spec.algorithm == "lasso_reg":
        penalty = spec.value("penalty")
        mixture = spec.value("mixture")
        _require(_is_real(penalty) and penalty >= 0, f"penalty must be a number >= 0, got {penalty!r}")
        _require(_is_real(mixture) and 0 <= mixture <= 1, f"mixture must be a number in [0, 1], got {mixture!r}")
        if penalty == 0:
            return LogisticRegression(penalty=None, max_iter=5000)
        # glmnet scales the penalty by the number of rows
        C = 1.0 / (n_rows * penalty)
        if mixture == 1:
            return LogisticRegression(penalty="l1", C=C, solver="saga", max_iter=10000, random_state=seed)
        return LogisticRegression(
            penalty="elasticnet", C=C, l1_ratio=mixture, solver="saga", max_iter=10000, random_state=seed
        )

    min_n = spec.value("min_n")
    _require(_is_int(min_n) and min_n >= 1, f"min_n must be a positive integer, got {min_n}")
    min_n = int(min_n)

    if spec.algorithm == "decision_tree":
        ccp = spec.value("cost_complexity")
        depth = spec.value("tree_depth")
        _require(_is_real(ccp) and ccp >= 0, f"cost_complexity must be a number >= 0, got {ccp!r}")
        _require(_is_int(depth) and depth >= 1, f"tree_depth must be a positive integer, got {depth}")
        return DecisionTreeClassifier(
            ccp_alpha=float(ccp),
            max_depth=int(depth),
            min_samples_split=max(2, min_n),
            random_state=seed,
        )

    if spec.algorithm == "rand_forest":
        mtry = spec.value("mtry")
        trees = spec.value("trees")
        importance = spec.value("importance")
        if mtry is None:
            mtry = max(1, int(n_predictors ** 0.5))
        _require(_is_int(mtry) and mtry >= 1, f"mtry must be a positive integer, got {mtry!r}")
        # clamp to the predictors this particular fit sees
        mtry = min(int(mtry), n_predictors)
        _require(_is_int(trees) and trees >= 1, f"trees must be a positive integer, got {trees}")
        _require(
            importance in ("none", "permutation", "impurity"),
            f"importance must be one of none/permutation/impurity, got {importance}",
        )
        if spec.engine == "lightgbm":
            return LGBMClassifier(
                boosting_type="rf",
                n_estimators=int(trees),
                colsample_bynode=int(mtry) / n_predictors,
                min_child_samples=min_n,
                subsample=0.632,
                subsample_freq=1,
                random_state=seed,
                n_jobs=1,
                verbosity=-1,
            )
        return RandomForestClassifier(
            n_estimators=int(trees),
            max_features=int(mtry),
            min_samples_split=max(2, min_n),
            random_state=seed,
            n_jobs=1,
        )

    raise ValueError(f"Unknown algorithm: {spec.algorithm}")
