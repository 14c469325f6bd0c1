"""
Record repositories and the unit of work that groups them.

Repository contract:
    get(id)            - record or None
    find(predicate)    - records matching a predicate, in insertion order
    add(record)        - stage a new record (ValueError on duplicate id)
    update(record)     - stage a change to an existing record
    delete(id)         - stage removal; returns whether the id existed
    commit()           - make staged writes durable

Every operation takes the repository lock, so concurrent training runs can
share one unit of work.

Directory structure of JsonRepository:
    base_dir/
    ├── index.json   # id -> summary metadata for fast listing
    ├── {id}.json    # one file per record
    └── ...
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Set, Type, TypeVar, Union
import json
import logging
import threading

from obtrainer.experiments.records import (
    DatasetRecord,
    EpochMetric,
    ModelConfiguration,
    TrainingRun,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository(ABC, Generic[T]):
    """Abstract record store keyed by the record's `id`."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[T]:
        pass

    @abstractmethod
    def find(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        pass

    @abstractmethod
    def add(self, record: T) -> T:
        pass

    @abstractmethod
    def update(self, record: T) -> T:
        pass

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self.find())


class InMemoryRepository(Repository[T]):
    """Dict-backed repository. commit() is a no-op."""

    def __init__(self):
        self._records: Dict[str, T] = {}
        self._lock = threading.RLock()

    def get(self, record_id: str) -> Optional[T]:
        with self._lock:
            return self._records.get(record_id)

    def find(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        with self._lock:
            records = list(self._records.values())
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def add(self, record: T) -> T:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Record {record.id} already exists")
            self._records[record.id] = record
            return record

    def update(self, record: T) -> T:
        with self._lock:
            if record.id not in self._records:
                raise KeyError(f"Record {record.id} does not exist")
            self._records[record.id] = record
            return record

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def commit(self) -> None:
        pass


class JsonRepository(InMemoryRepository[T]):
    """
    JSON-file repository: reads everything at construction, buffers writes
    until commit().

    Args:
        base_dir: Directory holding the record files.
        record_cls: Record type with `to_dict()` and `from_dict()`.
    """

    def __init__(self, base_dir: Union[str, Path], record_cls: Type[T]):
        super().__init__()
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.record_cls = record_cls
        self._index_path = self.base_dir / "index.json"
        self._dirty: Set[str] = set()
        self._deleted: Set[str] = set()
        self._index: Dict[str, Dict[str, Any]] = {}
        self._load()

    def _record_path(self, record_id: str) -> Path:
        return self.base_dir / f"{record_id}.json"

    def _load(self) -> None:
        if not self._index_path.exists():
            return
        try:
            with open(self._index_path) as f:
                index = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load index {self._index_path}: {e}. Starting fresh.")
            return

        for record_id in index:
            path = self._record_path(record_id)
            try:
                with open(path) as f:
                    data = json.load(f)
                self._records[record_id] = self.record_cls.from_dict(data)
                self._index[record_id] = _summary(data)
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable record {path}: {e}")
        logger.debug(f"Loaded {len(self._records)} {self.record_cls.__name__} records from {self.base_dir}")

    def add(self, record: T) -> T:
        with self._lock:
            super().add(record)
            self._dirty.add(record.id)
            self._deleted.discard(record.id)
            return record

    def update(self, record: T) -> T:
        with self._lock:
            super().update(record)
            self._dirty.add(record.id)
            return record

    def delete(self, record_id: str) -> bool:
        with self._lock:
            existed = super().delete(record_id)
            if existed:
                self._dirty.discard(record_id)
                self._deleted.add(record_id)
            return existed

    def commit(self) -> None:
        """
        Write dirty records, remove deleted ones and refresh the index.

        Only changed records are serialized; index.json is rewritten only
        when one of its entries changed, and a commit with nothing pending
        touches no file.
        """
        with self._lock:
            if not self._dirty and not self._deleted:
                return

            index_changed = False
            for record_id in self._dirty:
                data = self._records[record_id].to_dict()
                with open(self._record_path(record_id), "w") as f:
                    json.dump(data, f, indent=2)
                summary = _summary(data)
                if self._index.get(record_id) != summary:
                    self._index[record_id] = summary
                    index_changed = True
            for record_id in self._deleted:
                self._record_path(record_id).unlink(missing_ok=True)
                if self._index.pop(record_id, None) is not None:
                    index_changed = True

            if index_changed:
                with open(self._index_path, "w") as f:
                    json.dump(self._index, f, indent=2)

            logger.debug(
                f"Committed {len(self._dirty)} writes and {len(self._deleted)} deletes "
                f"to {self.base_dir}"
            )
            self._dirty.clear()
            self._deleted.clear()


def _summary(data: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("name", "status", "configuration_id", "run_id", "epoch", "kind", "created_at", "started_at")
    return {k: data[k] for k in keys if k in data}


class UnitOfWork:
    """
    The four record repositories plus an atomic commit over all of them.

    Example:
        >>> uow = UnitOfWork.in_memory()
        >>> uow.configurations.add(ModelConfiguration(name="baseline"))
        >>> uow.commit()
    """

    def __init__(
        self,
        configurations: Repository[ModelConfiguration],
        datasets: Repository[DatasetRecord],
        runs: Repository[TrainingRun],
        metrics: Repository[EpochMetric],
    ):
        self.configurations = configurations
        self.datasets = datasets
        self.runs = runs
        self.metrics = metrics
        self._lock = threading.RLock()

    @classmethod
    def in_memory(cls) -> "UnitOfWork":
        return cls(
            InMemoryRepository(),
            InMemoryRepository(),
            InMemoryRepository(),
            InMemoryRepository(),
        )

    @classmethod
    def json_store(cls, base_dir: Union[str, Path]) -> "UnitOfWork":
        base_dir = Path(base_dir)
        return cls(
            JsonRepository(base_dir / "configurations", ModelConfiguration),
            JsonRepository(base_dir / "datasets", DatasetRecord),
            JsonRepository(base_dir / "runs", TrainingRun),
            JsonRepository(base_dir / "metrics", EpochMetric),
        )

    def commit(self) -> None:
        with self._lock:
            for repository in (self.configurations, self.datasets, self.runs, self.metrics):
                repository.commit()
