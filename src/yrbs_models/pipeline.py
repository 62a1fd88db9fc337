import os
from typing import Any, Dict, Iterable, Optional

import joblib
import pandas as pd

from .cache import ArtifactCache, DiskBackend
from .config import Config
from .data_loader import DataLoader, DataSplit
from .evaluator import Evaluator
from .families import FAMILIES, build
from .tuner import Tuner
from .utils.logger import get_logger


class PipelineRunner:
    """Fit and compare the weapon-carrying classifiers.

    Steps (each family runs independently):
      1. Load the survey table, split into train/test and CV folds (reused if saved)
      2. Build the family's recipe + model spec
      3. Tune placeholders by cross-validated ROC-AUC (cached)
      4. Finalize with the best candidate and fit on the training set (cached)
      5. Evaluate on train and test: metrics JSON, ROC and confusion matrix figures
      6. Write feature importance and a cross-family comparison table"""

    def __init__(self, config_path: str, cache: Optional[ArtifactCache] = None):
        self.config = Config.from_yaml(config_path)
        self.logger = get_logger(self.__class__.__name__)
        self.output_dir = self.config.output.get("dir", "artifacts")
        self.cache = cache or ArtifactCache(
            DiskBackend(self.config.output.get("cache_dir", os.path.join(self.output_dir, "cache")))
        )

    def load_split(self) -> DataSplit:
        cfg = self.config
        split_dir = cfg.data.get("split_dir", os.path.join(self.output_dir, "split"))
        if DataSplit.exists(split_dir):
            self.logger.info(f"Reusing saved split: {split_dir}")
            return DataSplit.load(split_dir)

        loader = DataLoader(cfg.data["path"], cfg.data.get("sample_size"), random_state=cfg.seed)
        df = loader.prepare(
            loader.load(),
            target=cfg.data["target"],
            positive=str(cfg.data["positive"]),
            drop=cfg.data.get("drop", []),
        )
        split = loader.split(
            df,
            target=cfg.data["target"],
            seed=cfg.seed,
            test_size=cfg.validation.get("test_size", 0.2),
            v=cfg.validation.get("v", 5),
        )
        split.save(split_dir)
        self.logger.info(f"Saved split: {split_dir}")
        # reload so cache keys hash the persisted partitions on every run
        return DataSplit.load(split_dir)

    def run_family(self, name: str, split: DataSplit) -> Dict[str, Any]:
        cfg = self.config
        seed = cfg.seed
        workflow, search = build(
            name,
            cfg.data["target"],
            cfg.family(name),
            cfg.preprocessing.get("correlation_threshold", 0.7),
        )
        dataset_id = joblib.hash(split.train)
        row: Dict[str, Any] = {"model": name}

        if workflow.tunables():
            tuner = Tuner(
                metric=cfg.validation.get("metric", "roc_auc"),
                n_jobs=cfg.validation.get("n_jobs", 1),
                random_state=seed,
            )

            def compute():
                if "n_trials" in search:
                    return tuner.search(workflow, split.train, split.folds, search["n_trials"])
                return tuner.tune(
                    workflow, split.train, split.folds,
                    grid=search.get("grid"), levels=search.get("levels"),
                )

            key = (workflow, dataset_id, split.folds, search, tuner.metric, seed)
            result = self.cache.get_or_compute(f"{name}_tuning", key, compute)

            os.makedirs(self.output_dir, exist_ok=True)
            result.collect_metrics().to_csv(
                os.path.join(self.output_dir, f"{name}_tuning.csv"), index=False
            )
            if search.get("select") == "one_std_err":
                best = result.select_by_one_std_err()
            else:
                best = result.select_best()
            self.logger.info(f"{name}: selected {best}")
            workflow = workflow.finalize(best)
            row.update({k: v for k, v in best.items() if k != ".config"})
        else:
            self.logger.info(f"{name}: no tunable parameters; fitting directly")

        fitted = self.cache.get_or_compute(
            f"{name}_fit", (workflow, dataset_id, seed), lambda: workflow.fit(split.train, seed=seed)
        )
        fitted.save(os.path.join(self.output_dir, f"{name}_model.joblib"))

        evaluator = Evaluator(self.output_dir)
        train_metrics = evaluator.evaluate(fitted, split.train, f"{name}_train")
        row.update({f"train_{k}": v for k, v in train_metrics.items()})
        if split.test is not None:
            test_metrics = evaluator.evaluate(fitted, split.test, f"{name}_test")
            row.update({f"test_{k}": v for k, v in test_metrics.items()})

        if workflow.spec.algorithm in ("decision_tree", "rand_forest"):
            importance = evaluator.feature_importance(fitted)
            path = os.path.join(self.output_dir, f"{name}_importance.csv")
            importance.to_csv(path, index=False)
            top = ", ".join(importance["predictor"].head(5))
            self.logger.info(f"{name}: top predictors: {top}")

        return row

    def run(self, families: Optional[Iterable[str]] = None) -> pd.DataFrame:
        self.logger.info("Starting weapon-carrying model comparison")
        split = self.load_split()

        names = list(families) if families else list(FAMILIES)
        rows = []
        for name in names:
            self.logger.info(f"=== {name} ===")
            rows.append(self.run_family(name, split))

        comparison = pd.DataFrame(rows)
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, "model_comparison.csv")
        comparison.to_csv(path, index=False)
        self.logger.info(f"Saved comparison: {path}")
        self.logger.info("Pipeline finished")
        return comparison
