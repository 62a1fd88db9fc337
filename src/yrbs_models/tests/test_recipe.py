import numpy as np
import pandas as pd
import pytest
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from yrbs_models.errors import DegenerateDataError, SchemaError
from yrbs_models.recipe import (
    Correlation,
    Dummy,
    ImputeMean,
    ImputeMode,
    Normalize,
    Recipe,
    ZeroVariance,
    select_columns,
)


def _make_small_X():
    return pd.DataFrame(
        {
            "hours_sleep": [7.0, np.nan, 5.0, 8.0],
            "fights": [0.0, 2.0, np.nan, 1.0],
            "sex": ["Male", "Female", None, "Female"],
            "grade": ["9", "10", "10", None],
            "y": ["Yes", "No", "No", "Yes"],
        }
    )


def _full_recipe():
    return (
        Recipe("y")
        .add(ImputeMode())
        .add(ImputeMean())
        .add(ZeroVariance())
        .add(Correlation())
        .add(Dummy())
    )


def test_selectors_never_pick_the_target():
    df = _make_small_X()
    assert select_columns(df, "all_numeric_predictors", "y") == ["hours_sleep", "fights"]
    assert select_columns(df, "all_nominal_predictors", "y") == ["sex", "grade"]
    assert "y" not in select_columns(df, "all_predictors", "y")
    assert select_columns(df, ("fights", "y"), "y") == ["fights"]


def test_unknown_selector_columns_raise_schema_error():
    with pytest.raises(SchemaError):
        select_columns(_make_small_X(), ("missing",), "y")


def test_fitted_recipe_is_idempotent_on_training_data():
    df = _make_small_X()
    fitted = _full_recipe().fit(df)
    pd.testing.assert_frame_equal(fitted.apply(df), fitted.apply(df))


def test_mean_imputation_fills_missing_and_keeps_observed_values():
    df = _make_small_X()
    out = Recipe("y").add(ImputeMean()).fit(df).apply(df)

    assert not out[["hours_sleep", "fights"]].isna().any().any()
    observed = df["hours_sleep"].notna()
    pd.testing.assert_series_equal(out.loc[observed, "hours_sleep"], df.loc[observed, "hours_sleep"])
    assert out.loc[1, "hours_sleep"] == pytest.approx((7.0 + 5.0 + 8.0) / 3)


def test_mean_imputation_uses_training_values_on_new_data():
    train = _make_small_X()
    fitted = Recipe("y").add(ImputeMean()).fit(train)
    new = pd.DataFrame(
        {"hours_sleep": [np.nan], "fights": [np.nan], "sex": ["Male"], "grade": ["9"]}
    )
    out = fitted.apply(new)
    assert out.loc[0, "fights"] == pytest.approx(1.0)


def test_mode_imputation_uses_training_mode():
    df = _make_small_X()
    out = Recipe("y").add(ImputeMode()).fit(df).apply(df)
    assert out.loc[2, "sex"] == "Female"
    assert out.loc[3, "grade"] == "10"


def test_impute_all_missing_column_is_degenerate():
    df = _make_small_X().assign(fights=np.nan)
    with pytest.raises(DegenerateDataError, match="fights"):
        Recipe("y").add(ImputeMean()).fit(df)


def test_zero_variance_drops_constant_predictors():
    df = _make_small_X().assign(state="TX", const=1.0)
    fitted = Recipe("y").add(ZeroVariance()).fit(df)
    assert "state" not in fitted.predictors
    assert "const" not in fitted.predictors
    assert "fights" in fitted.predictors


def test_correlation_filter_scenario_ten_predictors_one_pair():
    rng = np.random.default_rng(3)
    n = 300
    df = pd.DataFrame({f"x{i}": rng.normal(size=n) for i in range(10)})
    df["x7"] = df["x2"] * 0.95 + rng.normal(scale=0.3, size=n) * 0.1
    assert df["x2"].corr(df["x7"]) > 0.9
    df["y"] = rng.choice(["Yes", "No"], n)

    fitted = Recipe("y").add(Correlation(threshold=0.7)).fit(df)

    assert len(fitted.predictors) == 9
    assert "x2" in fitted.predictors
    assert "x7" not in fitted.predictors


def test_correlation_filter_keeps_exactly_one_of_each_correlated_pair():
    rng = np.random.default_rng(5)
    a = rng.normal(size=200)
    b = rng.normal(size=200)
    df = pd.DataFrame(
        {
            "a": a,
            "b": b,
            "a_copy": -a + rng.normal(scale=0.05, size=200),
            "b_copy": b + rng.normal(scale=0.05, size=200),
            "y": rng.choice(["Yes", "No"], 200),
        }
    )
    kept = set(Recipe("y").add(Correlation()).fit(df).predictors)
    assert kept == {"a", "b"}


def test_dummy_encoding_drops_reference_level():
    df = _make_small_X()
    fitted = Recipe("y").add(ImputeMode()).add(Dummy()).fit(df)
    out = fitted.apply(df)

    assert "grade_9" in out.columns
    assert "grade_10" not in out.columns  # "10" sorts first and is the reference
    assert "sex_Male" in out.columns
    assert "sex" not in out.columns
    assert set(out["sex_Male"].unique()) <= {0, 1}


def test_dummy_one_hot_keeps_all_levels_and_unseen_levels_are_zero():
    df = _make_small_X()
    fitted = Recipe("y").add(ImputeMode()).add(Dummy(one_hot=True)).fit(df)
    new = pd.DataFrame({"hours_sleep": [6.0], "fights": [0.0], "sex": ["Other"], "grade": ["9"]})
    out = fitted.apply(new)
    assert out.loc[0, ["sex_Female", "sex_Male"]].sum() == 0


def test_dummy_respects_categorical_level_order():
    df = pd.DataFrame(
        {
            "grade": pd.Categorical(["12", "9", "10"], categories=["9", "10", "12"]),
            "y": ["Yes", "No", "Yes"],
        }
    )
    fitted = Recipe("y").add(Dummy()).fit(df)
    assert fitted.predictors == ("grade_10", "grade_12")


def test_normalize_centres_and_scales():
    df = _make_small_X()
    out = Recipe("y").add(ImputeMean()).add(Normalize()).fit(df).apply(df)
    assert out["fights"].mean() == pytest.approx(0.0, abs=1e-12)
    assert out["fights"].std(ddof=0) == pytest.approx(1.0)


def test_fit_fails_without_target():
    with pytest.raises(SchemaError, match="Target"):
        _full_recipe().fit(_make_small_X().drop(columns="y"))


def test_fit_fails_when_target_all_missing():
    with pytest.raises(DegenerateDataError):
        _full_recipe().fit(_make_small_X().assign(y=None))


def test_apply_fails_when_expected_column_missing():
    df = _make_small_X()
    fitted = _full_recipe().fit(df)
    with pytest.raises(SchemaError, match="fights"):
        fitted.apply(df.drop(columns="fights"))


def test_apply_without_target_column():
    df = _make_small_X()
    fitted = _full_recipe().fit(df)
    out = fitted.apply(df.drop(columns="y"))
    assert list(out.columns) == list(fitted.predictors)


def test_apply_does_not_mutate_input():
    df = _make_small_X()
    before = df.copy(deep=True)
    _full_recipe().fit(df).apply(df)
    pd.testing.assert_frame_equal(df, before)


def test_steps_keep_their_fitted_transformers():
    df = _make_small_X()
    fitted = Recipe("y").add(ImputeMode()).add(ImputeMean()).add(Dummy()).add(Normalize()).fit(df)
    states = [s.state for s in fitted.steps]
    assert isinstance(states[0]["imputer"], SimpleImputer)
    assert states[1]["imputer"].strategy == "mean"
    assert isinstance(states[2]["encoder"], OneHotEncoder)
    assert isinstance(states[3]["scaler"], StandardScaler)


def test_zero_variance_drops_every_numeric_column_when_none_vary():
    df = pd.DataFrame({"a": [1.0, 1.0, 1.0], "b": [2.0, 2.0, 2.0], "sex": ["F", "M", "F"], "y": ["Yes", "No", "Yes"]})
    fitted = Recipe("y").add(ZeroVariance()).fit(df)
    assert fitted.predictors == ("sex",)


def test_dummy_names_that_collide_raise_schema_error():
    df = pd.DataFrame(
        {
            "a": ["x", "b_c", "x", "b_c"],
            "a_b": ["c", "d", "d", "c"],
            "y": ["Yes", "No", "No", "Yes"],
        }
    )
    with pytest.raises(SchemaError, match="a_b_c"):
        Recipe("y").add(Dummy(one_hot=True)).fit(df)
