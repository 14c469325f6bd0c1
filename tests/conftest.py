"""
Shared fixtures: synthetic order-book series and a wired TrainingService.
"""

from datetime import datetime, timedelta

import pytest

from obtrainer.config import FeatureConfig
from obtrainer.data import Snapshot, simulate_snapshots
from obtrainer.experiments import DatasetRecord, ModelConfiguration, ModelStore, UnitOfWork
from obtrainer.training import TrainingService


def make_snapshots(mids, symbol="TEST", spread=0.02, start=None):
    """Snapshots with the given mid prices at 1-minute spacing."""
    start = start or datetime(2024, 1, 1, 9, 30)
    return [
        Snapshot(
            symbol=symbol,
            timestamp=start + timedelta(minutes=i),
            best_bid_price=mid - spread / 2,
            best_ask_price=mid + spread / 2,
            best_bid_quantity=5.0 + i % 3,
            best_ask_quantity=4.0 + i % 2,
            bid_levels=10,
            ask_levels=8,
            total_bid_volume=200.0,
            total_ask_volume=150.0,
        )
        for i, mid in enumerate(mids)
    ]


@pytest.fixture
def snapshot_factory():
    return make_snapshots


@pytest.fixture
def snapshots():
    """200-step random-walk series."""
    return simulate_snapshots(count=200, seed=7)


@pytest.fixture
def feature_config():
    return FeatureConfig(window_size=10, horizon=5, threshold=0.001)


@pytest.fixture
def fast_hyperparameters():
    """Stored hyperparameters for quick ClassPrior runs."""
    return {
        "features": {"window_size": 10, "horizon": 5, "threshold": 0.001},
        "model": {"model_type": "class_prior"},
        "train": {"epochs": 4, "batch_size": 16, "early_stopping_patience": 10},
        "backtest": {"lookback": 5, "confidence_threshold": 0.0},
    }


@pytest.fixture
def uow():
    return UnitOfWork.in_memory()


@pytest.fixture
def model_store(tmp_path):
    return ModelStore(tmp_path / "models")


@pytest.fixture
def service(uow, model_store, snapshots):
    """TrainingService reading the simulated series for every dataset."""
    service = TrainingService(uow, model_store, snapshot_provider=lambda dataset: snapshots)
    yield service
    service.shutdown()


@pytest.fixture
def registered(uow, fast_hyperparameters):
    """(configuration id, dataset id) of a fast configuration and a dataset."""
    configuration = uow.configurations.add(
        ModelConfiguration(name="prior", hyperparameters=fast_hyperparameters)
    )
    dataset = uow.datasets.add(DatasetRecord(name="simulated", symbol="BTCUSDT"))
    uow.commit()
    return configuration.id, dataset.id
