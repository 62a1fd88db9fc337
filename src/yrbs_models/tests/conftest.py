import numpy as np
import pandas as pd
import pytest

from yrbs_models.data_loader import DataLoader


def make_survey(n: int = 240, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    fights = rng.poisson(1.0, n).astype(float)
    bullied = rng.choice(["Yes", "No"], n, p=[0.3, 0.7])
    sex = rng.choice(["Female", "Male"], n)
    grade = rng.choice(["9", "10", "11", "12"], n)
    sleep = rng.normal(7, 1, n)
    age = rng.integers(14, 19, n).astype(float)

    logit = -1.5 + 0.9 * fights + 0.8 * (bullied == "Yes") + 0.5 * (sex == "Male")
    prob = 1 / (1 + np.exp(-logit))
    outcome = np.where(rng.uniform(size=n) < prob, "Yes", "No")

    df = pd.DataFrame(
        {
            "age": age,
            "sex": sex,
            "grade": grade,
            "bullied": bullied,
            "fights": fights,
            "hours_sleep": sleep,
            "weapon_school": outcome,
        }
    )
    df.loc[rng.choice(n, 12, replace=False), "hours_sleep"] = np.nan
    df.loc[rng.choice(n, 10, replace=False), "bullied"] = None
    return df


@pytest.fixture
def survey() -> pd.DataFrame:
    return DataLoader(path="unused").prepare(make_survey(), target="weapon_school", positive="Yes")


@pytest.fixture
def split(survey):
    return DataLoader(path="unused").split(survey, target="weapon_school", seed=42, test_size=0.25, v=5)
