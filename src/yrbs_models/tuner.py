import itertools
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import joblib
import numpy as np
import optuna
import pandas as pd
from joblib import Parallel, delayed
from scipy.stats import qmc

from .data_loader import Fold
from .errors import InvalidHyperparameterError
from .evaluator import get_metric
from .models import SIMPLICITY, Tunable
from .utils.logger import get_logger
from .workflow import Workflow

Grid = Union[None, int, pd.DataFrame]


def _levels(t: Tunable, n: int) -> np.ndarray:
    if t.log:
        values = np.logspace(np.log10(t.low), np.log10(t.high), n)
    else:
        values = np.linspace(t.low, t.high, n)
    if t.integer:
        values = np.unique(np.round(values).astype(int))
    return values


def grid_regular(space: Mapping[str, Tunable], levels: Union[int, Mapping[str, int]] = 3) -> pd.DataFrame:
    """Cartesian product of evenly spaced levels (log10-spaced for log ranges)."""
    names = list(space)
    per_param = []
    for name in names:
        n = levels[name] if isinstance(levels, Mapping) else levels
        per_param.append(_levels(space[name], n))
    return pd.DataFrame(list(itertools.product(*per_param)), columns=names)


def grid_latin_hypercube(space: Mapping[str, Tunable], size: int, seed: int = 42) -> pd.DataFrame:
    """Space-filling sample: each parameter range is cut into `size` strata, one draw per stratum."""
    names = list(space)
    sample = qmc.LatinHypercube(d=len(names), seed=seed).random(size)
    columns = {}
    for j, name in enumerate(names):
        t, u = space[name], sample[:, j]
        if t.log:
            lo, hi = np.log10(t.low), np.log10(t.high)
            values = 10 ** (lo + u * (hi - lo))
            if t.integer:
                values = np.clip(np.round(values), t.low, t.high).astype(int)
        elif t.integer:
            span = int(t.high) - int(t.low) + 1
            values = np.minimum(int(t.low) + np.floor(u * span), int(t.high)).astype(int)
        else:
            values = t.low + u * (t.high - t.low)
        columns[name] = values
    return pd.DataFrame(columns).drop_duplicates().reset_index(drop=True)


def _evaluate_cell(
    workflow: Workflow,
    train: pd.DataFrame,
    fold: Fold,
    params: Dict[str, Any],
    metric: str,
    seed: int,
) -> Dict[str, Any]:
    """Fit on the fold's analysis rows and score its assessment rows."""
    fn, _ = get_metric(metric)
    try:
        fitted = workflow.finalize(params).fit(train.iloc[fold.train_idx], seed=seed)
    except InvalidHyperparameterError as e:
        return {".estimate": np.nan, ".note": str(e)}
    assess = train.iloc[fold.assess_idx]
    prob = fitted.predict_proba(assess)
    value = fn(assess[workflow.target].astype(object).to_numpy(), prob, fitted.event)
    return {".estimate": float(value), ".note": ""}


@dataclass
class TuningResult:
    """Per-fold metric estimates for every candidate that was tried."""
    metrics: pd.DataFrame
    params: List[str]
    metric: str
    direction: str

    def collect_metrics(self) -> pd.DataFrame:
        grouped = self.metrics.groupby(".config", sort=False)
        summary = grouped[self.params].first()
        summary["mean"] = grouped[".estimate"].mean()
        summary["n"] = grouped[".estimate"].count()
        summary["std_err"] = grouped[".estimate"].std() / np.sqrt(summary["n"])
        summary["n_failed"] = grouped[".estimate"].apply(lambda s: int(s.isna().sum()))
        summary.insert(0, ".metric", self.metric)
        return summary.reset_index()

    def _ranked(self) -> pd.DataFrame:
        summary = self.collect_metrics()
        summary = summary.loc[summary["n"] > 0].copy()
        sign = -1 if self.direction == "maximize" else 1
        keys = ["_score"]
        summary["_score"] = sign * summary["mean"]
        for p in self.params:
            if p in SIMPLICITY:
                summary[f"_simple_{p}"] = SIMPLICITY[p] * summary[p].astype(float)
                keys.append(f"_simple_{p}")
        summary["_order"] = np.arange(len(summary))
        keys.append("_order")
        return summary.sort_values(keys, kind="mergesort")

    def show_best(self, n: int = 5) -> pd.DataFrame:
        ranked = self._ranked()
        return ranked.drop(columns=[c for c in ranked.columns if c.startswith("_")]).head(n).reset_index(drop=True)

    def _as_params(self, row: pd.Series) -> Dict[str, Any]:
        out = {p: row[p].item() if isinstance(row[p], np.generic) else row[p] for p in self.params}
        out[".config"] = row[".config"]
        return out

    def select_best(self) -> Dict[str, Any]:
        """Candidate with the best mean metric; ties go to the simpler model, then candidate order."""
        best = self.show_best(1)
        if best.empty:
            raise ValueError("All tuning candidates failed; nothing to select")
        return self._as_params(best.iloc[0])

    def select_by_one_std_err(self) -> Dict[str, Any]:
        """Simplest candidate whose mean is within one standard error of the best."""
        ranked = self._ranked()
        if ranked.empty:
            raise ValueError("All tuning candidates failed; nothing to select")
        best = ranked.iloc[0]
        se = 0.0 if pd.isna(best["std_err"]) else best["std_err"]
        if self.direction == "maximize":
            within = ranked.loc[ranked["mean"] >= best["mean"] - se]
        else:
            within = ranked.loc[ranked["mean"] <= best["mean"] + se]
        keys = [c for c in within.columns if c.startswith("_simple_")] + ["_order"]
        simplest = within.sort_values(keys, kind="mergesort").iloc[0]
        return self._as_params(simplest)

    def save(self, path: str) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        joblib.dump(self, path)

    @staticmethod
    def load(path: str) -> "TuningResult":
        return joblib.load(path)


class Tuner:
    """Cross-validated hyperparameter search for a workflow with tunable placeholders."""

    def __init__(
        self,
        metric: str = "roc_auc",
        n_jobs: int = 1,
        random_state: int = 42,
        verbose: bool = True,
    ):
        _, self.direction = get_metric(metric)
        self.metric = metric
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose
        self.logger = get_logger(self.__class__.__name__)

    def resolve_space(self, workflow: Workflow, train: pd.DataFrame) -> Dict[str, Tunable]:
        tunables = workflow.tunables()
        if not tunables:
            raise ValueError(f"{workflow.spec.algorithm} workflow has no tunable parameters")
        n_predictors = None
        if any(t.high is None for t in tunables.values()):
            n_predictors = len(workflow.recipe.fit(train).predictors)
        return {name: t.resolve(name, n_predictors) for name, t in tunables.items()}

    def make_grid(
        self,
        workflow: Workflow,
        train: pd.DataFrame,
        grid: Grid = None,
        levels: Optional[Union[int, Mapping[str, int]]] = None,
    ) -> pd.DataFrame:
        space = self.resolve_space(workflow, train)
        if isinstance(grid, pd.DataFrame):
            missing = sorted(set(space) - set(grid.columns))
            if missing:
                raise ValueError(f"Grid is missing tunable parameters {missing}")
            return grid[list(space)].reset_index(drop=True)
        if levels is not None:
            return grid_regular(space, levels)
        return grid_latin_hypercube(space, size=grid or 10, seed=self.random_state)

    def _run(
        self,
        workflow: Workflow,
        train: pd.DataFrame,
        folds: Sequence[Fold],
        candidates: List[Dict[str, Any]],
        configs: List[str],
    ) -> List[Dict[str, Any]]:
        cells = [
            (config, params, k, fold)
            for config, params in zip(configs, candidates)
            for k, fold in enumerate(folds, start=1)
        ]
        results = Parallel(n_jobs=self.n_jobs)(
            delayed(_evaluate_cell)(workflow, train, fold, params, self.metric, self.random_state)
            for _, params, _, fold in cells
        )
        rows = []
        for (config, params, k, _), res in zip(cells, results):
            rows.append({".config": config, "id": f"Fold{k}", **params, ".metric": self.metric, **res})
        return rows

    def tune(
        self,
        workflow: Workflow,
        train: pd.DataFrame,
        folds: Sequence[Fold],
        grid: Grid = None,
        levels: Optional[Union[int, Mapping[str, int]]] = None,
    ) -> TuningResult:
        """Evaluate every candidate on every fold.

        `grid` is an explicit DataFrame of candidates, or the size of a
        space-filling sample (default 10). Passing `levels` builds a regular
        grid instead.
        """
        candidates_df = self.make_grid(workflow, train, grid, levels)
        params = list(candidates_df.columns)
        candidates = candidates_df.to_dict(orient="records")
        width = len(str(len(candidates)))
        configs = [f"Candidate{i:0{width}d}" for i in range(1, len(candidates) + 1)]

        if self.verbose:
            self.logger.info(
                f"Tuning {workflow.spec.algorithm}: {len(candidates)} candidates x "
                f"{len(folds)} folds ({self.metric})"
            )

        rows = self._run(workflow, train, folds, candidates, configs)
        result = TuningResult(
            metrics=pd.DataFrame(rows), params=params, metric=self.metric, direction=self.direction
        )
        self._log_outcome(result)
        return result

    def search(
        self,
        workflow: Workflow,
        train: pd.DataFrame,
        folds: Sequence[Fold],
        n_trials: int = 20,
    ) -> TuningResult:
        """Adaptive search with Optuna's TPE sampler over the same parameter space."""
        space = self.resolve_space(workflow, train)
        rows: List[Dict[str, Any]] = []

        def suggest(trial: optuna.Trial) -> Dict[str, Any]:
            params = {}
            for name, t in space.items():
                if t.integer:
                    params[name] = trial.suggest_int(name, int(t.low), int(t.high), log=t.log)
                else:
                    params[name] = trial.suggest_float(name, t.low, t.high, log=t.log)
            return params

        def objective(trial: optuna.Trial) -> float:
            params = suggest(trial)
            trial_rows = self._run(workflow, train, folds, [params], [f"Iter{trial.number + 1}"])
            rows.extend(trial_rows)
            values = [r[".estimate"] for r in trial_rows if not np.isnan(r[".estimate"])]
            if not values:
                raise optuna.TrialPruned()
            return float(np.mean(values))

        if self.verbose:
            self.logger.info(
                f"Starting Optuna search for {workflow.spec.algorithm} "
                f"({n_trials} trials, {len(folds)}-fold CV)"
            )

        optuna.logging.set_verbosity(optuna.logging.WARNING)
        sampler = optuna.samplers.TPESampler(seed=self.random_state)
        study = optuna.create_study(direction=self.direction, sampler=sampler)
        study.optimize(objective, n_trials=n_trials)

        result = TuningResult(
            metrics=pd.DataFrame(rows), params=list(space), metric=self.metric, direction=self.direction
        )
        self._log_outcome(result)
        return result

    def _log_outcome(self, result: TuningResult) -> None:
        if not self.verbose:
            return
        failed = int(result.metrics[".estimate"].isna().sum())
        if failed:
            self.logger.warning(f"{failed} fold evaluations failed (invalid hyperparameters)")
        best = result.show_best(1)
        if not best.empty:
            row = best.iloc[0]
            self.logger.info(f"Best CV {self.metric}: {row['mean']:.4f} ({row['.config']})")
