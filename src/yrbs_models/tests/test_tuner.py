import numpy as np
import pandas as pd
import pytest

from yrbs_models.families import base_recipe
from yrbs_models.models import Tunable, decision_tree, lasso_reg, logistic_reg, rand_forest, tune
from yrbs_models.recipe import Normalize
from yrbs_models.tuner import Tuner, TuningResult, grid_latin_hypercube, grid_regular
from yrbs_models.workflow import compose

TARGET = "weapon_school"


def _result(rows, params, direction="maximize"):
    return TuningResult(metrics=pd.DataFrame(rows), params=params, metric="roc_auc", direction=direction)


def test_grid_regular_is_cartesian_product():
    space = {
        "cost_complexity": tune().resolve("cost_complexity"),
        "tree_depth": tune().resolve("tree_depth"),
        "min_n": tune().resolve("min_n"),
    }
    grid = grid_regular(space, levels=4)
    assert len(grid) == 64
    assert sorted(grid["tree_depth"].unique()) == [1, 6, 10, 15]
    np.testing.assert_allclose(sorted(grid["cost_complexity"].unique()), [1e-10, 1e-7, 1e-4, 1e-1])


def test_grid_latin_hypercube_stays_in_range():
    space = {"penalty": tune().resolve("penalty"), "min_n": tune().resolve("min_n")}
    grid = grid_latin_hypercube(space, size=8, seed=1)
    assert 0 < len(grid) <= 8
    assert grid["penalty"].between(1e-10, 1.0).all()
    assert grid["min_n"].between(2, 40).all()
    pd.testing.assert_frame_equal(grid, grid_latin_hypercube(space, size=8, seed=1))


def test_grid_latin_hypercube_rounds_log_scaled_integers():
    space = {"min_n": Tunable(2, 40, log=True, integer=True)}
    grid = grid_latin_hypercube(space, size=5, seed=3)
    assert len(grid) > 0
    assert pd.api.types.is_integer_dtype(grid["min_n"])
    assert grid["min_n"].between(2, 40).all()


def test_top_mtry_is_scored_on_every_fold_when_a_fold_loses_a_level(split):
    train = split.train.copy()
    train["region"] = np.where(np.arange(len(train)) % 2, "north", "south")
    train.loc[train.index[0], "region"] = "zzz_rare"

    wf = compose(base_recipe(TARGET), rand_forest(trees=10, importance="none"))
    predictors = wf.recipe.fit(train).predictors
    n_predictors = len(predictors)
    assert "region_zzz_rare" in predictors

    grid = pd.DataFrame({"mtry": [n_predictors - 1, n_predictors], "min_n": [5, 5]})
    summary = Tuner(verbose=False).tune(wf, train, split.folds, grid=grid).collect_metrics()

    assert (summary["n"] == 5).all()
    assert (summary["n_failed"] == 0).all()


def test_tree_tuning_grid_has_one_row_per_candidate(split):
    wf = compose(base_recipe(TARGET), decision_tree())
    result = Tuner(random_state=42, verbose=False).tune(wf, split.train, split.folds, levels=4)

    summary = result.collect_metrics()
    assert len(summary) == 64
    assert (summary["n"] == 5).all()
    assert len(result.metrics) == 64 * 5
    assert set(result.metrics["id"]) == {f"Fold{k}" for k in range(1, 6)}


def test_select_best_returns_maximum_mean_among_non_failed():
    rows = []
    for config, depth, values in [
        ("Candidate1", 2, [0.60, 0.62]),
        ("Candidate2", 4, [0.80, 0.70]),
        ("Candidate3", 6, [np.nan, np.nan]),
        ("Candidate4", 8, [0.70, 0.71]),
    ]:
        for k, v in enumerate(values, start=1):
            rows.append({".config": config, "id": f"Fold{k}", "tree_depth": depth, ".estimate": v})

    best = _result(rows, ["tree_depth"]).select_best()
    assert best == {"tree_depth": 4, ".config": "Candidate2"}


def test_select_best_breaks_ties_by_simplicity():
    rows = [
        {".config": "Candidate1", "id": "Fold1", "penalty": 0.001, ".estimate": 0.75},
        {".config": "Candidate2", "id": "Fold1", "penalty": 0.1, ".estimate": 0.75},
        {".config": "Candidate3", "id": "Fold1", "penalty": 0.01, ".estimate": 0.70},
    ]
    assert _result(rows, ["penalty"]).select_best()["penalty"] == 0.1


def test_select_best_minimizes_log_loss():
    rows = [
        {".config": "Candidate1", "id": "Fold1", "min_n": 5, ".estimate": 0.4},
        {".config": "Candidate2", "id": "Fold1", "min_n": 10, ".estimate": 0.3},
    ]
    assert _result(rows, ["min_n"], direction="minimize").select_best()["min_n"] == 10


def test_select_by_one_std_err_prefers_simpler_model():
    rows = []
    for config, penalty, values in [
        ("Candidate1", 0.001, [0.80, 0.76]),
        ("Candidate2", 0.05, [0.79, 0.75]),
        ("Candidate3", 0.5, [0.60, 0.58]),
    ]:
        for k, v in enumerate(values, start=1):
            rows.append({".config": config, "id": f"Fold{k}", "penalty": penalty, ".estimate": v})

    result = _result(rows, ["penalty"])
    assert result.select_best()["penalty"] == 0.001
    assert result.select_by_one_std_err()["penalty"] == 0.05


def test_select_best_with_all_failed_raises():
    rows = [{".config": "Candidate1", "id": "Fold1", "min_n": -1, ".estimate": np.nan}]
    with pytest.raises(ValueError):
        _result(rows, ["min_n"]).select_best()


def test_invalid_candidate_is_recorded_without_aborting_sweep(split):
    wf = compose(base_recipe(TARGET), decision_tree(cost_complexity=0.01, tree_depth=3))
    grid = pd.DataFrame({"min_n": [-3, 5, 10]})
    result = Tuner(verbose=False).tune(wf, split.train, split.folds, grid=grid)

    summary = result.collect_metrics().set_index(".config")
    assert summary.loc["Candidate1", "n"] == 0
    assert summary.loc["Candidate1", "n_failed"] == 5
    assert (result.metrics.loc[result.metrics["min_n"] == -3, ".note"] != "").all()
    assert summary.loc["Candidate2", "n"] == 5
    assert result.select_best()["min_n"] in (5, 10)


def test_space_filling_grid_resolves_mtry_from_predictors(split):
    wf = compose(base_recipe(TARGET), rand_forest(trees=10))
    tuner = Tuner(verbose=False)
    grid = tuner.make_grid(wf, split.train, grid=5)
    n_predictors = len(wf.recipe.fit(split.train).predictors)
    assert grid["mtry"].between(1, n_predictors).all()


def test_tune_requires_placeholders(split):
    with pytest.raises(ValueError):
        Tuner(verbose=False).tune(compose(base_recipe(TARGET), logistic_reg()), split.train, split.folds)


def test_explicit_grid_must_cover_tunables(split):
    wf = compose(base_recipe(TARGET), decision_tree())
    with pytest.raises(ValueError, match="missing"):
        Tuner(verbose=False).tune(wf, split.train, split.folds, grid=pd.DataFrame({"min_n": [5]}))


def test_optuna_search_records_each_trial(split):
    wf = compose(
        base_recipe(TARGET).add(Normalize()),
        lasso_reg(penalty=Tunable(1e-4, 1e-1)),
    )
    result = Tuner(verbose=False).search(wf, split.train, split.folds[:2], n_trials=3)
    summary = result.collect_metrics()
    assert len(summary) == 3
    assert summary["penalty"].between(1e-4, 1e-1).all()
    assert 0.0 <= result.select_best()["penalty"] <= 1e-1


def test_tuning_result_save_and_load(tmp_path):
    rows = [{".config": "Candidate1", "id": "Fold1", "min_n": 5, ".estimate": 0.7}]
    result = _result(rows, ["min_n"])
    path = str(tmp_path / "tuning.joblib")
    result.save(path)
    pd.testing.assert_frame_equal(TuningResult.load(path).collect_metrics(), result.collect_metrics())
