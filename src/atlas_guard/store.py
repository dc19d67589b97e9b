from __future__ import annotations

"""Key-value backends and the namespaced accessor with legacy-prefix fallback."""

import json
import re
import time
from pathlib import Path
from typing import Any, Iterable, Protocol


CURRENT_PREFIX = "atlas_"
LEGACY_PREFIX = "antigravity_"
# Read priority order; never reversed.
NAMESPACE_PREFIXES: tuple[str, ...] = (CURRENT_PREFIX, LEGACY_PREFIX)
STORE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,199}$")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...


class InMemoryStore:
    """Process-local store used for embedding and tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class FileStore:
    """One `<key>.json` file per key under a root directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not isinstance(key, str) or not STORE_KEY_PATTERN.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> str | None:
        try:
            path = self._path(key)
        except ValueError:
            return None
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.parent / f".{path.name}.tmp"
        for attempt in range(5):
            temp_path.write_text(value, encoding="utf-8")
            try:
                temp_path.replace(path)
                return
            except PermissionError:
                if attempt == 4:
                    raise
                # On Windows, AV/indexers can briefly lock newly-written temp files.
                time.sleep(0.02 * (attempt + 1))

    def remove(self, key: str) -> None:
        try:
            path = self._path(key)
        except ValueError:
            return
        if path.exists():
            path.unlink()

    def keys(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(path.stem for path in self.root.glob("*.json") if not path.name.startswith("."))


def parse_json(raw: str | None) -> Any | None:
    """Attempt-parse: corrupt or missing input becomes `None`, never an exception."""

    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        return None


class NamespacedStore:
    """Resolve logical keys against the current prefix, then the legacy prefix."""

    def __init__(self, backend: KeyValueStore, prefixes: Iterable[str] = NAMESPACE_PREFIXES) -> None:
        self.backend = backend
        self.prefixes = tuple(prefixes)
        if not self.prefixes:
            raise ValueError("At least one namespace prefix is required.")

    @property
    def current_prefix(self) -> str:
        return self.prefixes[0]

    def physical_keys(self, logical_key: str) -> list[str]:
        return [f"{prefix}{logical_key}" for prefix in self.prefixes]

    def current_key(self, logical_key: str) -> str:
        return f"{self.current_prefix}{logical_key}"

    def _get(self, physical_key: str) -> str | None:
        try:
            value = self.backend.get(physical_key)
        except Exception:  # noqa: BLE001
            return None
        if not isinstance(value, str) or value == "":
            return None
        return value

    def read(self, logical_key: str) -> str | None:
        for physical_key in self.physical_keys(logical_key):
            value = self._get(physical_key)
            if value is not None:
                return value
        return None

    def read_json(self, logical_key: str) -> Any | None:
        # A present-but-corrupt current value does not fall through to legacy.
        return parse_json(self.read(logical_key))

    def has_current(self, logical_key: str) -> bool:
        return self._get(self.current_key(logical_key)) is not None

    def legacy_value(self, logical_key: str) -> str | None:
        for physical_key in self.physical_keys(logical_key)[1:]:
            value = self._get(physical_key)
            if value is not None:
                return value
        return None
