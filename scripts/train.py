#!/usr/bin/env python3
"""
Training script for order-book direction models.

Registers the configuration and dataset in a JSON record store under the
output directory, trains one run, evaluates it and optionally backtests and
exports it.

Usage:
    # Train on a snapshot file
    python scripts/train.py --config configs/mlp.yaml --data data/btc.csv

    # Train on a simulated random-walk series
    python scripts/train.py --config configs/mlp.yaml --simulate 2000

    # Override parameters, backtest and export
    python scripts/train.py --config configs/mlp.yaml --data data/btc.csv \\
        --epochs 50 --batch-size 64 --backtest --export torch

    # Continue a cancelled or failed run from its last checkpoint
    python scripts/train.py --config configs/mlp.yaml --resume <run_id>
"""

import argparse
import logging
import sys
from pathlib import Path

from obtrainer import set_seed, setup_logging
from obtrainer.config import ExperimentConfig, load_config, save_config
from obtrainer.data import save_snapshots, simulate_snapshots
from obtrainer.errors import InvalidConfigurationError, NotFoundError
from obtrainer.experiments import DatasetRecord, ModelConfiguration, ModelStore, RunStatus, UnitOfWork
from obtrainer.training import MetricLogger, ModelEvaluator, ProgressCallback, TrainingService


def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Train order-book direction models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to experiment configuration file (YAML or JSON). Defaults if omitted.",
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--data", type=str, default=None, help="Snapshot file (.csv, .json, .jsonl)")
    source.add_argument("--simulate", type=int, default=None, help="Train on N simulated snapshots")
    source.add_argument("--resume", type=str, default=None, help="Run id to resume")

    parser.add_argument("--symbol", type=str, default=None, help="Symbol filter for --data")
    parser.add_argument("--output-dir", type=str, default=None, help="Override output directory")
    parser.add_argument("--epochs", type=int, default=None, help="Override number of training epochs")
    parser.add_argument("--batch-size", type=int, default=None, help="Override batch size")
    parser.add_argument("--learning-rate", "--lr", type=float, default=None, help="Override learning rate")
    parser.add_argument("--seed", type=int, default=None, help="Override random seed")

    parser.add_argument("--backtest", action="store_true", help="Backtest the trained model")
    parser.add_argument(
        "--export",
        type=str,
        choices=["torch", "json"],
        default=None,
        help="Export the trained model in this format",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bar")

    return parser.parse_args()


def apply_overrides(config: ExperimentConfig, args) -> ExperimentConfig:
    """Apply command-line overrides to configuration."""
    if args.output_dir is not None:
        config.output_dir = args.output_dir
    if args.epochs is not None:
        config.train.epochs = args.epochs
    if args.batch_size is not None:
        config.train.batch_size = args.batch_size
    if args.learning_rate is not None:
        config.train.learning_rate = args.learning_rate
    if args.seed is not None:
        config.train.seed = args.seed
    return config


def main():
    """Main entry point."""
    args = parse_args()

    try:
        config = load_config(args.config) if args.config else ExperimentConfig()
    except (FileNotFoundError, InvalidConfigurationError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    config = apply_overrides(config, args)

    output_dir = Path(config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    setup_logging(output_dir, args.log_level)
    logger = logging.getLogger(__name__)

    logger.info(f"Starting experiment: {config.name}")
    save_config(config, str(output_dir / "config.yaml"))
    set_seed(config.train.seed)

    uow = UnitOfWork.json_store(output_dir / "store")

    def run_callbacks():
        callbacks = [MetricLogger(log_file=output_dir / "training_history.json")]
        if not args.no_progress:
            callbacks.append(ProgressCallback())
        return callbacks

    service = TrainingService(
        uow, ModelStore(output_dir / "models"), callback_factory=run_callbacks
    )

    if args.resume:
        try:
            service.resume(args.resume, run_remaining_epochs=True)
        except (NotFoundError, ValueError) as e:
            logger.error(f"Cannot resume run {args.resume}: {e}")
            sys.exit(1)
        run = service.get_result(args.resume)
    else:
        if args.simulate is not None:
            data_path = output_dir / "simulated_snapshots.csv"
            save_snapshots(simulate_snapshots(count=args.simulate, seed=config.train.seed), data_path)
        elif args.data is not None:
            data_path = Path(args.data)
        else:
            logger.error("One of --data, --simulate or --resume is required")
            sys.exit(1)

        configuration = uow.configurations.add(
            ModelConfiguration(name=config.name, description=config.description, hyperparameters=config.to_dict())
        )
        dataset = uow.datasets.add(
            DatasetRecord(name=data_path.stem, file_path=str(data_path), symbol=args.symbol)
        )
        uow.commit()
        run = service.start_run(configuration.id, dataset.id)

    logger.info(f"Run {run.id}: {run.status.value} after {run.epochs_completed} epochs")
    if run.status != RunStatus.COMPLETED:
        logger.error(f"Run did not complete: {run.error_message}")
        sys.exit(1)

    evaluator = ModelEvaluator(service)
    logger.info("\n" + "=" * 60)
    logger.info("FINAL EVALUATION")
    logger.info("=" * 60)
    logger.info("\n" + evaluator.evaluate(run.id).summary())

    if args.backtest:
        result = evaluator.backtest(run.id)
        logger.info(
            f"Backtest: final value={result.final_value:.2f}, return={result.total_return:.4%}, "
            f"sharpe={result.sharpe_ratio:.4f}, trades={result.number_of_trades} "
            f"({result.winning_trades} winning, {result.losing_trades} losing)"
        )

    if args.export:
        path = service.export(run.id, args.export)
        logger.info(f"Exported model to {path}")

    logger.info(f"\nExperiment completed. Outputs saved to: {output_dir}")


if __name__ == "__main__":
    main()
