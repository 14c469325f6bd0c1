"""
Order-book snapshot records and loaders.

Data Contract:
    One row per top-of-book observation with columns
        symbol, timestamp,
        best_bid_price, best_ask_price, best_bid_quantity, best_ask_quantity,
        bid_levels, ask_levels, total_bid_volume, total_ask_volume
    camelCase column names (bestBidPrice, ...) are accepted as well.
    mid_price and spread are always derived, never read.

Files are CSV or JSON (a list of records, or JSON lines). Loaded snapshots
are sorted by timestamp.

Design principles:
- Immutable: snapshots are frozen once ingested
- Validated: missing required columns fail loudly on load
- Deterministic: simulated series depend only on their seed
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Union
import logging
import re

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


REQUIRED_COLUMNS = (
    "timestamp",
    "best_bid_price",
    "best_ask_price",
    "best_bid_quantity",
    "best_ask_quantity",
)

OPTIONAL_COLUMNS = {
    "symbol": "",
    "bid_levels": 0,
    "ask_levels": 0,
    "total_bid_volume": 0.0,
    "total_ask_volume": 0.0,
}


# =============================================================================
# Snapshot record
# =============================================================================


@dataclass(frozen=True)
class Snapshot:
    """
    One order-book observation.

    Ordered by timestamp within a symbol. mid_price and spread are derived
    from the best bid/ask so they can never disagree with them.
    """

    symbol: str
    timestamp: datetime
    best_bid_price: float
    best_ask_price: float
    best_bid_quantity: float
    best_ask_quantity: float
    bid_levels: int = 0
    ask_levels: int = 0
    total_bid_volume: float = 0.0
    total_ask_volume: float = 0.0

    @property
    def mid_price(self) -> float:
        """(best_bid + best_ask) / 2."""
        return (self.best_bid_price + self.best_ask_price) / 2.0

    @property
    def spread(self) -> float:
        """best_ask - best_bid."""
        return self.best_ask_price - self.best_bid_price

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "best_bid_price": self.best_bid_price,
            "best_ask_price": self.best_ask_price,
            "best_bid_quantity": self.best_bid_quantity,
            "best_ask_quantity": self.best_ask_quantity,
            "bid_levels": self.bid_levels,
            "ask_levels": self.ask_levels,
            "total_bid_volume": self.total_bid_volume,
            "total_ask_volume": self.total_ask_volume,
            "mid_price": self.mid_price,
            "spread": self.spread,
        }


def sort_snapshots(snapshots: Iterable[Snapshot]) -> List[Snapshot]:
    """Return snapshots ordered by timestamp (stable for equal timestamps)."""
    return sorted(snapshots, key=lambda s: s.timestamp)


# =============================================================================
# Loading
# =============================================================================


def _normalize_column(name: str) -> str:
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", str(name).strip())
    return name.replace(" ", "_").replace("-", "_").lower()


def snapshots_from_frame(frame: pd.DataFrame) -> List[Snapshot]:
    """
    Convert a DataFrame of order-book rows to sorted Snapshots.

    Raises:
        ValueError: If a required column is missing.
    """
    frame = frame.rename(columns=_normalize_column)
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"Snapshot data missing required columns: {missing}")

    frame = frame.copy()
    for column, default in OPTIONAL_COLUMNS.items():
        if column not in frame.columns:
            frame[column] = default
    frame["timestamp"] = pd.to_datetime(frame["timestamp"])
    frame = frame.sort_values("timestamp", kind="mergesort")

    snapshots = [
        Snapshot(
            symbol=str(row.symbol),
            timestamp=row.timestamp.to_pydatetime(),
            best_bid_price=float(row.best_bid_price),
            best_ask_price=float(row.best_ask_price),
            best_bid_quantity=float(row.best_bid_quantity),
            best_ask_quantity=float(row.best_ask_quantity),
            bid_levels=int(row.bid_levels),
            ask_levels=int(row.ask_levels),
            total_bid_volume=float(row.total_bid_volume),
            total_ask_volume=float(row.total_ask_volume),
        )
        for row in frame.itertuples(index=False)
    ]
    return snapshots


def load_snapshots(
    path: Union[str, Path],
    symbol: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Snapshot]:
    """
    Load snapshots from a CSV or JSON file.

    Args:
        path: File path (.csv, .json or .jsonl).
        symbol: Keep only rows for this symbol.
        start: Inclusive lower timestamp bound.
        end: Inclusive upper timestamp bound.

    Returns:
        Snapshots sorted by timestamp.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the format is unsupported or columns are missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        frame = pd.read_csv(path)
    elif suffix == ".json":
        frame = pd.read_json(path, orient="records")
    elif suffix == ".jsonl":
        frame = pd.read_json(path, orient="records", lines=True)
    else:
        raise ValueError(f"Unsupported snapshot format: {path}. Use .csv, .json or .jsonl")

    snapshots = filter_snapshots(snapshots_from_frame(frame), symbol, start, end)
    logger.info(f"Loaded {len(snapshots)} snapshots from {path}")
    return snapshots


def filter_snapshots(
    snapshots: Iterable[Snapshot],
    symbol: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Snapshot]:
    """Select snapshots by symbol and inclusive time range."""
    selected = []
    for snapshot in snapshots:
        if symbol is not None and snapshot.symbol != symbol:
            continue
        if start is not None and snapshot.timestamp < start:
            continue
        if end is not None and snapshot.timestamp > end:
            continue
        selected.append(snapshot)
    return selected


def save_snapshots(snapshots: Iterable[Snapshot], path: Union[str, Path]) -> None:
    """Write snapshots to CSV (derived columns included for inspection)."""
    frame = pd.DataFrame([s.to_dict() for s in snapshots])
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False)


# =============================================================================
# Synthetic data
# =============================================================================


def simulate_snapshots(
    symbol: str = "BTCUSDT",
    count: int = 1000,
    start: Optional[datetime] = None,
    initial_price: float = 100.0,
    volatility: float = 0.002,
    seed: int = 42,
) -> List[Snapshot]:
    """
    Generate a random-walk order-book series at 1-minute spacing.

    Args:
        symbol: Symbol stamped on every snapshot.
        count: Number of snapshots.
        start: Timestamp of the first snapshot (default 2024-01-01 00:00).
        initial_price: Starting mid price.
        volatility: Standard deviation of per-step log returns.
        seed: Random seed.

    Returns:
        Snapshots sorted by timestamp.
    """
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")
    rng = np.random.default_rng(seed)
    start = start or datetime(2024, 1, 1)

    log_returns = rng.normal(0.0, volatility, size=count)
    mids = initial_price * np.exp(np.cumsum(log_returns))
    half_spreads = mids * rng.uniform(0.0001, 0.0005, size=count)
    bid_qty = rng.uniform(1.0, 10.0, size=count)
    ask_qty = rng.uniform(1.0, 10.0, size=count)
    bid_levels = rng.integers(5, 21, size=count)
    ask_levels = rng.integers(5, 21, size=count)
    bid_volume = rng.uniform(50.0, 500.0, size=count)
    ask_volume = rng.uniform(50.0, 500.0, size=count)

    return [
        Snapshot(
            symbol=symbol,
            timestamp=start + timedelta(minutes=i),
            best_bid_price=float(mids[i] - half_spreads[i]),
            best_ask_price=float(mids[i] + half_spreads[i]),
            best_bid_quantity=float(bid_qty[i]),
            best_ask_quantity=float(ask_qty[i]),
            bid_levels=int(bid_levels[i]),
            ask_levels=int(ask_levels[i]),
            total_bid_volume=float(bid_volume[i]),
            total_ask_volume=float(ask_volume[i]),
        )
        for i in range(count)
    ]
