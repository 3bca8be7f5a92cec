"""Dataset persistence: load and save named JSON datasets."""

import asyncio
import copy
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

import structlog

logger = structlog.get_logger(__name__)


class Persistence(ABC):
    """Named dataset storage used by the subscription store and caches."""

    @abstractmethod
    def load(self, name: str, default: Any) -> Any:
        """Load a dataset, returning ``default`` when it is missing or unreadable."""

    @abstractmethod
    def save(self, name: str, value: Any) -> None:
        """Persist a dataset. May return before the write completes."""

    async def flush(self) -> None:
        """Wait until every pending write has completed."""


class MemoryPersistence(Persistence):
    """In-process persistence, used by tests and dry runs."""

    def __init__(self) -> None:
        self.datasets: Dict[str, Any] = {}
        self.save_count = 0

    def load(self, name: str, default: Any) -> Any:
        if name not in self.datasets:
            return default
        return copy.deepcopy(self.datasets[name])

    def save(self, name: str, value: Any) -> None:
        self.datasets[name] = copy.deepcopy(value)
        self.save_count += 1


class JsonFilePersistence(Persistence):
    """One JSON file per dataset with coalesced write-behind.

    ``save`` serializes immediately so later mutations of ``value`` do not leak
    into the write. When an event loop is running, the file write is handed to
    a worker thread; repeated saves of the same dataset collapse into the
    latest payload. Without a running loop the write happens inline.
    """

    def __init__(self, data_dir: Path) -> None:
        """Initialize file persistence.

        Args:
            data_dir: Directory holding ``<dataset>.json`` files
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._pending: Dict[str, str] = {}
        self._writers: Dict[str, asyncio.Task] = {}

        logger.info("Initialized JsonFilePersistence", data_dir=str(self.data_dir))

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def load(self, name: str, default: Any) -> Any:
        path = self.path_for(name)
        if not path.exists():
            return default

        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read dataset", dataset=name, path=str(path), error=str(e))
            return default

    def save(self, name: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, indent=2)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(name, payload)
            return

        self._pending[name] = payload
        if name not in self._writers:
            self._writers[name] = loop.create_task(self._drain(name))

    async def _drain(self, name: str) -> None:
        try:
            while name in self._pending:
                payload = self._pending.pop(name)
                try:
                    await asyncio.to_thread(self._write, name, payload)
                except OSError as e:
                    logger.error("Failed to write dataset", dataset=name, error=str(e))
        finally:
            self._writers.pop(name, None)

    def _write(self, name: str, payload: str) -> None:
        path = self.path_for(name)
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp_path, path)
        logger.debug("Wrote dataset", dataset=name, bytes=len(payload))

    async def flush(self) -> None:
        while self._writers:
            await asyncio.gather(*list(self._writers.values()))
