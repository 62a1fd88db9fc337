import os
from dataclasses import dataclass
from typing import Iterable, List, Optional

import joblib
import numpy as np
import pandas as pd
from sklearn.model_selection import StratifiedKFold, train_test_split

from .errors import DegenerateDataError, SchemaError
from .utils.logger import get_logger


@dataclass(frozen=True)
class Fold:
    """Row positions (into the training partition) of one CV split."""
    train_idx: np.ndarray
    assess_idx: np.ndarray


@dataclass
class DataSplit:
    """Full analysis table plus its train/test partitions and CV folds."""
    analysis: pd.DataFrame
    train: pd.DataFrame
    test: Optional[pd.DataFrame]
    folds: List[Fold]

    _FILES = ("analysis", "train", "test", "folds")

    def save(self, directory: str) -> None:
        os.makedirs(directory, exist_ok=True)
        for name in self._FILES:
            joblib.dump(getattr(self, name), os.path.join(directory, f"{name}.joblib"))

    @classmethod
    def load(cls, directory: str) -> "DataSplit":
        parts = {}
        for name in cls._FILES:
            path = os.path.join(directory, f"{name}.joblib")
            if not os.path.exists(path):
                raise FileNotFoundError(f"Missing split artifact: {path}")
            parts[name] = joblib.load(path)
        return cls(**parts)

    @classmethod
    def exists(cls, directory: str) -> bool:
        return all(
            os.path.exists(os.path.join(directory, f"{name}.joblib"))
            for name in cls._FILES
        )


class DataLoader:
    """Loads the survey table and splits it into train/test/fold partitions."""

    def __init__(self, path: str, sample_size: Optional[int] = None, random_state: int = 42):
        self.path = path
        self.sample_size = sample_size
        self.random_state = random_state
        self.logger = get_logger(self.__class__.__name__)

    def load(self) -> pd.DataFrame:
        ext = os.path.splitext(self.path)[1].lower()
        if ext == ".csv":
            df = pd.read_csv(self.path)
        elif ext == ".parquet":
            df = pd.read_parquet(self.path)
        elif ext in (".joblib", ".pkl", ".pickle"):
            df = joblib.load(self.path)
        else:
            raise ValueError(f"Unsupported dataset format: {ext}")
        if self.sample_size:
            df = df.sample(self.sample_size, random_state=self.random_state)
        self.logger.info(f"Loaded dataset: {df.shape[0]:,} rows x {df.shape[1]} cols")
        return df

    def prepare(
        self,
        df: pd.DataFrame,
        target: str,
        positive: str,
        drop: Iterable[str] = (),
    ) -> pd.DataFrame:
        """Drop unlabeled rows and make the outcome a categorical with the event level first."""
        if target not in df.columns:
            raise SchemaError(f"Target column '{target}' not found")
        out = df.drop(columns=[c for c in drop if c in df.columns])
        out = out.loc[out[target].notna()].reset_index(drop=True)
        if out.empty:
            raise DegenerateDataError(f"Target column '{target}' is entirely missing")

        values = out[target].astype(str)
        levels = sorted(values.unique())
        if positive not in levels:
            raise DegenerateDataError(
                f"Positive level '{positive}' not present in '{target}' (levels: {levels})"
            )
        levels.remove(positive)
        out[target] = pd.Categorical(values, categories=[positive] + levels)
        self.logger.info(f"Prepared outcome '{target}': {out[target].value_counts().to_dict()}")
        return out

    def split(
        self,
        df: pd.DataFrame,
        target: str,
        seed: int,
        test_size: Optional[float] = 0.2,
        v: int = 5,
    ) -> DataSplit:
        """Stratified train/test split followed by stratified V-fold CV on train."""
        if target not in df.columns:
            raise SchemaError(f"Target column '{target}' not found")

        if test_size:
            train, test = train_test_split(
                df, test_size=test_size, stratify=df[target], random_state=seed
            )
            train = train.reset_index(drop=True)
            test = test.reset_index(drop=True)
        else:
            train, test = df.reset_index(drop=True), None

        if train.empty:
            raise DegenerateDataError("Training partition is empty")

        skf = StratifiedKFold(n_splits=v, shuffle=True, random_state=seed)
        folds = [
            Fold(train_idx=tr, assess_idx=te)
            for tr, te in skf.split(np.zeros(len(train)), train[target])
        ]

        n_test = 0 if test is None else len(test)
        self.logger.info(f"Split: train={len(train):,}, test={n_test:,}, folds={v}")
        return DataSplit(analysis=df, train=train, test=test, folds=folds)
