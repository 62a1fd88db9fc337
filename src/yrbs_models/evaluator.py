import json
import os
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import joblib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from sklearn import metrics as skm

from .errors import DegenerateDataError
from .utils.logger import get_logger


def _event_mask(truth: Sequence, event: Any) -> np.ndarray:
    return np.asarray(truth, dtype=object) == event


def roc_curve(truth: Sequence, prob: Sequence[float], event: Any) -> pd.DataFrame:
    """ROC points from (0, 0) to (1, 1), one per distinct predicted probability.

    Thresholds run from high to low, so both rates are non-decreasing.
    """
    y = _event_mask(truth, event)
    if y.all() or not y.any():
        raise DegenerateDataError("ROC curve needs both event and non-event rows")
    fpr, tpr, thresholds = skm.roc_curve(
        y.astype(int), np.asarray(prob, dtype=float), drop_intermediate=False
    )
    return pd.DataFrame({"threshold": thresholds, "fpr": fpr, "tpr": tpr})


def roc_auc(curve: pd.DataFrame) -> float:
    """Trapezoidal area under an ROC curve."""
    return float(np.clip(skm.auc(curve["fpr"], curve["tpr"]), 0.0, 1.0))


def roc_auc_score(truth: Sequence, prob: Sequence[float], event: Any) -> float:
    return roc_auc(roc_curve(truth, prob, event))


def accuracy(truth: Sequence, prob: Sequence[float], event: Any, threshold: float = 0.5) -> float:
    y = _event_mask(truth, event)
    return float(np.mean((np.asarray(prob, dtype=float) >= threshold) == y))


def mn_log_loss(truth: Sequence, prob: Sequence[float], event: Any) -> float:
    y = _event_mask(truth, event).astype(int)
    return float(skm.log_loss(y, np.asarray(prob, dtype=float), labels=[0, 1]))


# name -> (function(truth, prob, event), direction)
METRICS: Dict[str, Tuple[Callable[..., float], str]] = {
    "roc_auc": (roc_auc_score, "maximize"),
    "accuracy": (accuracy, "maximize"),
    "mn_log_loss": (mn_log_loss, "minimize"),
}


def get_metric(name: str) -> Tuple[Callable[..., float], str]:
    if name not in METRICS:
        raise ValueError(f"Unknown metric '{name}'; choose from {sorted(METRICS)}")
    return METRICS[name]


def confusion_matrix(truth: Sequence, pred_class: Sequence, levels: Sequence) -> pd.DataFrame:
    """2x2 counts with predictions as rows and truth as columns, event level first."""
    levels = list(levels)
    cm = skm.confusion_matrix(
        np.asarray(truth, dtype=object), np.asarray(pred_class, dtype=object), labels=levels
    )
    return pd.DataFrame(
        cm.T,
        index=pd.Index(levels, name="Prediction"),
        columns=pd.Index(levels, name="Truth"),
    )


class Evaluator:
    """Score fitted workflows, save metrics JSON, ROC and confusion-matrix figures."""

    def __init__(self, output_dir: str = "artifacts", verbose: bool = True):
        self.output_dir = output_dir
        self.verbose = verbose
        self.logger = get_logger(self.__class__.__name__)

    confusion_matrix = staticmethod(confusion_matrix)
    roc_curve = staticmethod(roc_curve)
    roc_auc = staticmethod(roc_auc)

    def feature_importance(self, fitted) -> pd.DataFrame:
        """Ranked (predictor, importance) table for the fitted model."""
        algorithm = fitted.workflow.spec.algorithm
        estimator = fitted.estimator
        predictors = list(fitted.predictors)

        if fitted.importance is not None:
            scores = fitted.importance
        elif algorithm == "decision_tree" or (
            algorithm == "rand_forest" and hasattr(estimator, "feature_importances_")
        ):
            scores = pd.Series(estimator.feature_importances_, index=predictors)
        elif algorithm in ("logistic_reg", "lasso_reg"):
            scores = pd.Series(np.abs(estimator.coef_[0]), index=predictors)
        else:
            raise ValueError(f"No importance available for {algorithm}")

        out = (
            scores.rename("importance")
            .rename_axis("predictor")
            .reset_index()
            .sort_values("importance", ascending=False, kind="mergesort")
            .reset_index(drop=True)
        )
        return out

    def coefficients(self, fitted) -> pd.DataFrame:
        """Intercept and coefficients of a (lasso) logistic fit, on the event log-odds scale."""
        estimator = fitted.estimator
        if not hasattr(estimator, "coef_"):
            raise ValueError(f"{fitted.workflow.spec.algorithm} has no coefficients")
        terms = ["(Intercept)"] + list(fitted.predictors)
        estimates = np.concatenate([estimator.intercept_, estimator.coef_[0]])
        return pd.DataFrame({"term": terms, "estimate": estimates})

    def plot_roc(self, curve: pd.DataFrame, name: str, auc: Optional[float] = None) -> str:
        """Plot the ROC curve; saves a PNG and the pickled figure. Returns the PNG path."""
        fig, ax = plt.subplots(figsize=(5, 5))
        sns.lineplot(data=curve, x="fpr", y="tpr", ax=ax, estimator=None, sort=False)
        ax.plot([0, 1], [0, 1], linestyle="--", color="grey")
        ax.set_xlabel("1 - specificity")
        ax.set_ylabel("sensitivity")
        title = f"ROC: {name}"
        if auc is not None:
            title += f" (AUC={auc:.3f})"
        ax.set_title(title)
        ax.set_aspect("equal")

        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, f"{name}_roc.png")
        fig.tight_layout()
        fig.savefig(path, dpi=200)
        joblib.dump(fig, os.path.join(self.output_dir, f"{name}_roc.joblib"))
        plt.close(fig)

        if self.verbose:
            self.logger.info(f"Saved ROC curve: {path}")
        return path

    def plot_confusion_matrix(self, cm: pd.DataFrame, name: str) -> str:
        plt.figure(figsize=(5, 4))
        sns.heatmap(cm, annot=True, fmt="d", cmap="Blues")
        plt.title(f"Confusion Matrix: {name}")

        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, f"{name}_confusion_matrix.png")
        plt.tight_layout()
        plt.savefig(path, dpi=200)
        plt.close()

        if self.verbose:
            self.logger.info(f"Saved confusion matrix: {path}")
        return path

    def evaluate(self, fitted, df: pd.DataFrame, name: str, plot: bool = True) -> Dict[str, float]:
        """Predict on df, compute metrics, save JSON and figures."""
        target = fitted.workflow.target
        truth = df[target].astype(object).to_numpy()
        preds = fitted.predict(df)
        event, other = fitted.levels
        prob = preds[f".pred_{event}"].to_numpy()

        cm = confusion_matrix(truth, preds[".pred_class"].astype(object), fitted.levels)
        curve = roc_curve(truth, prob, event)
        auc = roc_auc(curve)

        tp = cm.loc[event, event]
        fn = cm.loc[other, event]
        tn = cm.loc[other, other]
        fp = cm.loc[event, other]
        metrics: Dict[str, float] = {
            "roc_auc": auc,
            "accuracy": float((tp + tn) / cm.to_numpy().sum()),
            "sensitivity": float(tp / (tp + fn)) if (tp + fn) else float("nan"),
            "specificity": float(tn / (tn + fp)) if (tn + fp) else float("nan"),
            "mn_log_loss": mn_log_loss(truth, prob, event),
            "n": int(cm.to_numpy().sum()),
        }

        os.makedirs(self.output_dir, exist_ok=True)
        metrics_path = os.path.join(self.output_dir, f"{name}_metrics.json")
        with open(metrics_path, "w") as f:
            json.dump(metrics, f, indent=4)

        if self.verbose:
            self.logger.info(f"{name}: ROC-AUC={auc:.4f}, accuracy={metrics['accuracy']:.4f}")
            self.logger.info(f"Saved metrics: {metrics_path}")

        if plot:
            self.plot_roc(curve, name, auc)
            self.plot_confusion_matrix(cm, name)

        return metrics
