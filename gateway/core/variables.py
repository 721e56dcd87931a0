# gateway/core/variables.py
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Mapping, Optional

TIME_SUFFIX = "_time"
_SCALARS = (str, int, float, bool, type(None))


def check_plain(name: str, value: Any, _seen: Optional[set] = None) -> None:
    """
    Variables hold JSON-shaped data only: scalars, strings, lists/tuples and
    dicts of those. Anything else (functions, timer handles, capabilities)
    raises TypeError.
    """
    if isinstance(value, _SCALARS):
        return
    if not isinstance(value, (list, tuple, dict)):
        raise TypeError(f"Variable '{name}' cannot hold a {type(value).__name__}")

    seen = _seen if _seen is not None else set()
    if id(value) in seen:
        raise TypeError(f"Variable '{name}' cannot contain itself")
    seen.add(id(value))
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, _SCALARS):
                raise TypeError(f"Variable '{name}' has a non-scalar key of type {type(k).__name__}")
            check_plain(name, v, seen)
    else:
        for item in value:
            check_plain(name, item, seen)
    seen.discard(id(value))


def _export(value: Any, seen: set) -> Any:
    """Detached copy for readers; values that slipped in by in-place mutation become their repr."""
    if isinstance(value, _SCALARS):
        return value
    if not isinstance(value, (list, tuple, dict)):
        return repr(value)
    if id(value) in seen:
        return "[...]"
    seen.add(id(value))
    try:
        if isinstance(value, dict):
            return {k if isinstance(k, _SCALARS) else repr(k): _export(v, seen) for k, v in value.items()}
        return [_export(v, seen) for v in value]
    finally:
        seen.discard(id(value))


def _is_empty_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) == 0


def default_for(value: Any) -> Any:
    """Type-appropriate reset value used by dashboard 'delete' requests."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return 0
    if isinstance(value, (list, tuple)):
        return []
    if isinstance(value, dict):
        return {}
    if isinstance(value, str):
        return ""
    return None


class ProjectVariables:
    """
    One project's variable partition.

    Writes are serialized by a re-entrant lock. Resetting an array variable `X`
    to an empty sequence also resets its `X_time` companion (when present)
    under the same lock, so readers never see one without the other.
    """

    def __init__(self, project_id: str):
        self.project_id = project_id
        self._values: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def read(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(name, default)

    def write(self, name: str, value: Any) -> None:
        with self._lock:
            self._write_locked(name, value)

    def update(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            for name, value in values.items():
                self._write_locked(str(name), value)

    def initialize(self, name: str, value: Any) -> bool:
        with self._lock:
            if name in self._values:
                return False
            self._write_locked(name, value)
            return True

    def append(self, name: str, value: Any) -> int:
        with self._lock:
            current = self._values.get(name)
            if current is None:
                current = []
            elif not isinstance(current, list):
                raise TypeError(f"Variable '{name}' is not an array (got {type(current).__name__})")
            check_plain(name, value)
            current.append(value)
            self._values[name] = current
            return len(current)

    def reset_to_default(self, name: str) -> Any:
        with self._lock:
            if name not in self._values:
                return None
            value = default_for(self._values[name])
            self._write_locked(name, value)
            return value

    def reset_arrays(self, names: Iterable[str]) -> None:
        """Reset each array variable (and its `_time` companion) to empty."""
        with self._lock:
            for name in names:
                self._write_locked(name, [])

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {name: _export(value, set()) for name, value in self._values.items()}

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._values)

    def _write_locked(self, name: str, value: Any) -> None:
        check_plain(name, value)
        if isinstance(value, tuple):
            value = list(value)
        self._values[name] = value

        if _is_empty_sequence(value) and not name.endswith(TIME_SUFFIX):
            companion = name + TIME_SUFFIX
            if companion in self._values:
                self._values[companion] = []


class GlobalVariableStore:
    """
    Project-partitioned variable space shared by board scripts, transport
    ingestion callbacks and live dashboard readers.

    Partitions are created on demand and only removed by drop_project().
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None):
        self._projects: Dict[str, ProjectVariables] = {}
        self._lock = threading.Lock()
        self._log = logger or logging.getLogger(__name__)

    def ensure_project(self, project_id: str) -> ProjectVariables:
        key = str(project_id)
        with self._lock:
            part = self._projects.get(key)
            if part is None:
                part = ProjectVariables(key)
                self._projects[key] = part
                self._log.debug("PROJECT_PARTITION_CREATED project=%s", key)
            return part

    def partition(self, project_id: str) -> Optional[ProjectVariables]:
        with self._lock:
            return self._projects.get(str(project_id))

    def has_project(self, project_id: str) -> bool:
        with self._lock:
            return str(project_id) in self._projects

    def projects(self) -> list[str]:
        with self._lock:
            return sorted(self._projects)

    def drop_project(self, project_id: str) -> bool:
        with self._lock:
            removed = self._projects.pop(str(project_id), None) is not None
        if removed:
            self._log.info("PROJECT_PARTITION_DROPPED project=%s", project_id)
        return removed

    # ---- convenience pass-throughs ----

    def read(self, project_id: str, name: str, default: Any = None) -> Any:
        part = self.partition(project_id)
        if part is None:
            return default
        return part.read(name, default)

    def write(self, project_id: str, name: str, value: Any) -> None:
        self.ensure_project(project_id).write(name, value)

    def update(self, project_id: str, values: Mapping[str, Any]) -> None:
        self.ensure_project(project_id).update(values)

    def initialize(self, project_id: str, name: str, value: Any) -> bool:
        return self.ensure_project(project_id).initialize(name, value)

    def append(self, project_id: str, name: str, value: Any) -> int:
        return self.ensure_project(project_id).append(name, value)

    def reset_to_default(self, project_id: str, name: str) -> Any:
        part = self.partition(project_id)
        if part is None:
            return None
        return part.reset_to_default(name)

    def snapshot(self, project_id: str) -> Dict[str, Any]:
        part = self.partition(project_id)
        return part.snapshot() if part is not None else {}
