"""Declarative state sinks.

A sink holds the last observed attributes of every tracked object, keyed by
kind and identifier. Reconcilers never touch a sink directly; the driver
records their results and removes objects that were deleted or found
missing on the broker.
"""

from __future__ import annotations

import copy
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol

import yaml

from .config import MAX_STATE_FILE_SIZE_BYTES
from .models import ResourceKind

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1
DEFAULT_STATE_FILE = "rabbitmq-state.yaml"


class StateLoadError(Exception):
    """Raised when a state file cannot be read or parsed."""

    pass


class StateSink(Protocol):
    """Storage for observed object state."""

    def get(self, kind: ResourceKind, identifier: str) -> dict[str, Any] | None: ...

    def put(self, kind: ResourceKind, identifier: str, attributes: dict[str, Any]) -> None: ...

    def remove(self, kind: ResourceKind, identifier: str) -> bool: ...

    def items(
        self, kind: ResourceKind | None = None
    ) -> Iterator[tuple[ResourceKind, str, dict[str, Any]]]: ...


class InMemoryStateSink:
    """Thread-safe in-memory sink."""

    def __init__(self, initial: dict[str, dict[str, dict[str, Any]]] | None = None) -> None:
        self._lock = threading.Lock()
        self._objects: dict[ResourceKind, dict[str, dict[str, Any]]] = {
            kind: {} for kind in ResourceKind
        }
        for kind_name, objects in (initial or {}).items():
            self._objects[ResourceKind(kind_name)].update(copy.deepcopy(objects))

    def get(self, kind: ResourceKind, identifier: str) -> dict[str, Any] | None:
        with self._lock:
            attributes = self._objects[kind].get(identifier)
            return copy.deepcopy(attributes) if attributes is not None else None

    def put(self, kind: ResourceKind, identifier: str, attributes: dict[str, Any]) -> None:
        with self._lock:
            self._objects[kind][identifier] = copy.deepcopy(attributes)
            self._changed()

    def remove(self, kind: ResourceKind, identifier: str) -> bool:
        """Drop an object. Returns False if it was not tracked."""
        with self._lock:
            removed = self._objects[kind].pop(identifier, None) is not None
            if removed:
                self._changed()
            return removed

    def items(
        self, kind: ResourceKind | None = None
    ) -> Iterator[tuple[ResourceKind, str, dict[str, Any]]]:
        with self._lock:
            kinds = [kind] if kind is not None else list(ResourceKind)
            snapshot = [
                (k, identifier, copy.deepcopy(attributes))
                for k in kinds
                for identifier, attributes in sorted(self._objects[k].items())
            ]
        return iter(snapshot)

    def to_dict(self) -> dict[str, dict[str, dict[str, Any]]]:
        with self._lock:
            return {
                kind.value: copy.deepcopy(objects)
                for kind, objects in self._objects.items()
                if objects
            }

    def _changed(self) -> None:
        """Hook called with the lock held after every mutation."""
        pass


class YamlStateFile(InMemoryStateSink):
    """Sink persisted to a YAML file, rewritten atomically on every change."""

    def __init__(self, path: Path) -> None:
        self._path = path
        super().__init__(self._load(path))

    @staticmethod
    def _load(path: Path) -> dict[str, dict[str, dict[str, Any]]]:
        if not path.exists():
            return {}

        try:
            if path.stat().st_size > MAX_STATE_FILE_SIZE_BYTES:
                raise StateLoadError(
                    f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: {path}"
                )
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise StateLoadError(f"Invalid YAML in state file {path}: {e}") from e
        except OSError as e:
            raise StateLoadError(f"Cannot read state file {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict) or not isinstance(data.get("objects", {}), dict):
            raise StateLoadError(f"State file {path} must contain an 'objects' mapping")

        objects = data.get("objects") or {}
        valid_kinds = {k.value for k in ResourceKind}
        unknown = set(objects) - valid_kinds
        if unknown:
            raise StateLoadError(f"Unknown kinds in state file {path}: {sorted(unknown)}")
        return objects

    def _changed(self) -> None:
        document = {
            "version": STATE_FORMAT_VERSION,
            "objects": {
                kind.value: objects for kind, objects in self._objects.items() if objects
            },
        }
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".state-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(document, handle, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("State file written", extra={"path": str(self._path)})
