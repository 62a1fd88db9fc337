"""The four model families compared on the weapon-carrying outcome.

Each family is one recipe + one model spec plus the way its placeholders are
searched. They share the same base recipe; lasso additionally normalizes.
"""

from typing import Any, Dict, Tuple

from .models import decision_tree, lasso_reg, logistic_reg, rand_forest
from .recipe import Correlation, Dummy, ImputeMean, ImputeMode, Normalize, Recipe, ZeroVariance
from .workflow import Workflow, compose


def base_recipe(target: str, corr_threshold: float = 0.7) -> Recipe:
    return (
        Recipe(target)
        .add(ImputeMode())
        .add(ImputeMean())
        .add(ZeroVariance())
        .add(Correlation(threshold=corr_threshold))
        .add(Dummy())
    )


def logistic(target: str, settings: Dict[str, Any], corr_threshold: float) -> Workflow:
    return compose(base_recipe(target, corr_threshold), logistic_reg())


def lasso(target: str, settings: Dict[str, Any], corr_threshold: float) -> Workflow:
    recipe = base_recipe(target, corr_threshold).add(Normalize())
    return compose(recipe, lasso_reg(mixture=settings.get("mixture", 1.0)))


def tree(target: str, settings: Dict[str, Any], corr_threshold: float) -> Workflow:
    return compose(base_recipe(target, corr_threshold), decision_tree())


def forest(target: str, settings: Dict[str, Any], corr_threshold: float) -> Workflow:
    spec = rand_forest(
        trees=settings.get("trees", 100),
        importance=settings.get("importance", "permutation"),
        engine=settings.get("engine", "sklearn"),
    )
    return compose(base_recipe(target, corr_threshold), spec)


FAMILIES = {
    "logistic": logistic,
    "lasso": lasso,
    "tree": tree,
    "forest": forest,
}

# How each family's placeholders are searched unless the config overrides it.
DEFAULT_SEARCH: Dict[str, Dict[str, Any]] = {
    "logistic": {},
    "lasso": {"levels": 30},
    "tree": {"levels": 4},
    "forest": {"grid": 10},
}


def build(name: str, target: str, settings: Dict[str, Any], corr_threshold: float = 0.7) -> Tuple[Workflow, Dict[str, Any]]:
    """Return the family's workflow and its search options (grid / levels / n_trials / select)."""
    if name not in FAMILIES:
        raise ValueError(f"Unknown model family '{name}'; choose from {sorted(FAMILIES)}")
    workflow = FAMILIES[name](target, settings, corr_threshold)
    search = dict(DEFAULT_SEARCH[name])
    for key in ("grid", "levels", "n_trials", "select"):
        if key in settings:
            search[key] = settings[key]
    if "grid" in settings and "levels" not in settings:
        search.pop("levels", None)
    return workflow, search
