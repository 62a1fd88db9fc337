"""
YRBS weapon-carrying classifiers — preprocess, tune, fit, evaluate

This package fits and compares logistic regression, lasso logistic
regression, a decision tree and a random forest predicting weapon
carrying at school from Youth Risk Behavior Survey predictors.

Modules:
    config       — Load YAML configuration safely.
    data_loader  — Read the survey table; train/test split and CV folds.
    recipe       — Declarative fit-once/apply-many preprocessing steps.
    models       — Model specifications with fixed or tunable hyperparameters.
    workflow     — Pair a recipe with a spec; fit and predict.
    tuner        — Grid / space-filling / Optuna cross-validated tuning.
    evaluator    — Confusion matrix, ROC curve, AUC, feature importance.
    cache        — Hash-keyed memoization of tuning and fitting results.
    families     — The four model families compared.
    pipeline     — Orchestrates all components.
    utils.logger — Unified timestamped console logger.
"""

from .config import Config
from .data_loader import DataLoader, DataSplit, Fold
from .recipe import Correlation, Dummy, ImputeMean, ImputeMode, Normalize, Recipe, ZeroVariance
from .models import Fixed, Tunable, decision_tree, lasso_reg, logistic_reg, rand_forest, specify, tune
from .workflow import FittedWorkflow, Workflow, compose
from .tuner import Tuner, TuningResult, grid_latin_hypercube, grid_regular
from .evaluator import Evaluator
from .cache import ArtifactCache, DiskBackend, MemoryBackend
from .pipeline import PipelineRunner

__all__ = [
    "Config",
    "DataLoader",
    "DataSplit",
    "Fold",
    "Recipe",
    "ImputeMode",
    "ImputeMean",
    "ZeroVariance",
    "Correlation",
    "Dummy",
    "Normalize",
    "Fixed",
    "Tunable",
    "tune",
    "specify",
    "logistic_reg",
    "lasso_reg",
    "decision_tree",
    "rand_forest",
    "Workflow",
    "FittedWorkflow",
    "compose",
    "Tuner",
    "TuningResult",
    "grid_regular",
    "grid_latin_hypercube",
    "Evaluator",
    "ArtifactCache",
    "MemoryBackend",
    "DiskBackend",
    "PipelineRunner",
]
