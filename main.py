import argparse

from yrbs_models.pipeline import PipelineRunner


def main() -> None:
    """Run the weapon-carrying model comparison."""
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("config", nargs="?", default="config/default.yaml")
    parser.add_argument("--models", nargs="*", help="Subset of: logistic lasso tree forest")
    args = parser.parse_args()

    runner = PipelineRunner(args.config)
    runner.run(args.models)


if __name__ == "__main__":
    main()
