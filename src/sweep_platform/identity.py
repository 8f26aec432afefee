"""Parameter identity stores and variation IDs.

Each varied location of an input folder owns an identity store: a table of
parameter rows keyed by the exact little-endian float64 bytes of the row.
Row 0 holds the folder's base values and always exists.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
import sqlite3
import threading
from typing import Any, Optional, Union

import numpy as np

from sweep_platform.errors import IdentityStoreError, VariationError
from sweep_platform.locations import Location, XMLPath, as_location
from sweep_platform.logging_utils import get_logger
from sweep_platform.variations import infer_scalar_type, sqlite_data_type

BASE_VARIATION_ID = 0
UNUSED_VARIATION_ID = -1
PAR_KEY_COLUMN = "par_key"

_LOGGER = get_logger("identity")


# ---------------------------------------------------------------------------
# Variation IDs


class VariationID(Mapping):
    """Immutable mapping from location to variation ID within that location."""

    __slots__ = ("_ids", "_hash")

    def __init__(self, ids: Union[Mapping[Any, int], Iterable[tuple[Any, int]]] = ()) -> None:
        items = ids.items() if isinstance(ids, Mapping) else ids
        normalized = {as_location(loc): int(value) for loc, value in items}
        self._ids = dict(sorted(normalized.items(), key=lambda item: item[0].value))
        self._hash = hash(tuple(self._ids.items()))

    def __getitem__(self, location: Any) -> int:
        return self._ids[as_location(location)]

    def __iter__(self) -> Iterator[Location]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if isinstance(other, VariationID):
            return self._ids == other._ids
        return NotImplemented

    def replace(self, **updates: int) -> "VariationID":
        ids = dict(self._ids)
        for key, value in updates.items():
            ids[as_location(key)] = int(value)
        return VariationID(ids)

    def to_dict(self) -> dict[str, int]:
        return {loc.value: value for loc, value in self._ids.items()}

    def __repr__(self) -> str:
        inner = ", ".join(f"{loc.value}={value}" for loc, value in self._ids.items())
        return f"VariationID({inner})"


# ---------------------------------------------------------------------------
# Parameter keys


def key_value(value: Any) -> float:
    """Return the float used in a parameter key; booleans become 1.0/0.0."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return 1.0
        if lowered == "false":
            return 0.0
        try:
            return float(value)
        except ValueError as exc:
            raise VariationError(
                f"Value {value!r} cannot be part of a numeric parameter key.",
                context={"value": value},
            ) from exc
    if isinstance(value, (int, float)):
        return float(value)
    raise VariationError(
        f"Value of type {type(value).__name__!r} cannot be part of a parameter key."
    )


def par_key(values: Sequence[Any]) -> bytes:
    """Exact byte identity of a parameter row."""
    return np.asarray([key_value(v) for v in values], dtype="<f8").tobytes()


def storage_value(value: Any) -> Any:
    """Representation written to the store; booleans are stored as text."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


# ---------------------------------------------------------------------------
# Default values


class DefaultValueSource(ABC):
    """Source of a folder's current base value for a target."""

    @abstractmethod
    def default_value(self, target: XMLPath) -> Any:
        """Return the base value of ``target``."""


class MappingDefaults(DefaultValueSource):
    """Defaults backed by a mapping keyed by XMLPath or column name."""

    def __init__(self, values: Mapping[Any, Any]) -> None:
        self._values: dict[str, Any] = {}
        for key, value in values.items():
            name = key.column_name if isinstance(key, XMLPath) else str(key)
            self._values[name] = value

    def default_value(self, target: XMLPath) -> Any:
        try:
            return self._values[target.column_name]
        except KeyError as exc:
            raise VariationError(
                f"No default value for target {target.column_name!r}.",
                context={"target": target.column_name},
            ) from exc


class CallableDefaults(DefaultValueSource):
    def __init__(self, func: Callable[[XMLPath], Any]) -> None:
        self._func = func

    def default_value(self, target: XMLPath) -> Any:
        return self._func(target)


def as_default_source(value: Any) -> DefaultValueSource:
    if isinstance(value, DefaultValueSource):
        return value
    if isinstance(value, Mapping):
        return MappingDefaults(value)
    if callable(value):
        return CallableDefaults(value)
    raise TypeError("defaults must be a DefaultValueSource, mapping, or callable.")


# ---------------------------------------------------------------------------
# Identity stores


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    value_type: type
    default: Any

    @property
    def sql_type(self) -> str:
        return sqlite_data_type(self.value_type)


class IdentityStore(ABC):
    """Deduplicating store of parameter rows for one (location, folder)."""

    @abstractmethod
    def columns(self) -> list[str]:
        """Return target column names in storage order."""

    @abstractmethod
    def add_columns(self, specs: Sequence[ColumnSpec]) -> None:
        """Add target columns, backfilling every stored row with the default."""

    @abstractmethod
    def lookup_or_create_many(self, rows: Sequence[Mapping[str, Any]]) -> list[tuple[int, bool]]:
        """Resolve full rows to IDs in one transaction; flag newly created rows."""

    @abstractmethod
    def row_values(self, variation_id: int) -> dict[str, Any]:
        """Return the stored values of a row by column name."""

    def lookup_or_create(self, key: bytes, row: Mapping[str, Any]) -> int:
        expected = par_key([row[name] for name in self.columns()])
        if key != expected:
            raise IdentityStoreError("Parameter key does not match row values.")
        return self.lookup_or_create_many([row])[0][0]


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteIdentityStore(IdentityStore):
    """Identity store persisted in one SQLite table."""

    def __init__(self, path: Union[str, Path], location: Union[Location, str]) -> None:
        self.location = as_location(location)
        self.path = str(path)
        self._lock = threading.RLock()
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            self.path, check_same_thread=False, isolation_level=None
        )
        if self.path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._table = _quote(self.location.table_name)
        self._id_column = _quote(self.location.id_column)
        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                yield cur
            except Exception:
                cur.execute("ROLLBACK")
                raise
            else:
                cur.execute("COMMIT")
            finally:
                cur.close()

    def _ensure_schema(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                f"{self._id_column} INTEGER PRIMARY KEY, "
                f"{PAR_KEY_COLUMN} BLOB UNIQUE NOT NULL)"
            )
            cur.execute(
                f"INSERT OR IGNORE INTO {self._table} ({self._id_column}, {PAR_KEY_COLUMN}) "
                "VALUES (?, ?)",
                (BASE_VARIATION_ID, b""),
            )

    def _columns(self, cur: sqlite3.Cursor) -> list[str]:
        cur.execute(f"PRAGMA table_info({self._table})")
        reserved = {self.location.id_column, PAR_KEY_COLUMN}
        return [row[1] for row in cur.fetchall() if row[1] not in reserved]

    def columns(self) -> list[str]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                return self._columns(cur)
            finally:
                cur.close()

    def add_columns(self, specs: Sequence[ColumnSpec]) -> None:
        if not specs:
            return
        with self._transaction() as cur:
            existing = set(self._columns(cur))
            new_specs = [spec for spec in specs if spec.name not in existing]
            if not new_specs:
                return
            for spec in new_specs:
                cur.execute(
                    f"ALTER TABLE {self._table} ADD COLUMN {_quote(spec.name)} {spec.sql_type}"
                )
                cur.execute(
                    f"UPDATE {self._table} SET {_quote(spec.name)} = ?",
                    (storage_value(spec.default),),
                )
            # new columns are appended, so every key gets the same suffix
            suffix = par_key([spec.default for spec in new_specs])
            cur.execute(f"SELECT {self._id_column}, {PAR_KEY_COLUMN} FROM {self._table}")
            updates = [(bytes(old) + suffix, row_id) for row_id, old in cur.fetchall()]
            cur.executemany(
                f"UPDATE {self._table} SET {PAR_KEY_COLUMN} = ? WHERE {self._id_column} = ?",
                updates,
            )
        _LOGGER.info(
            "Added %d column(s) to %s: %s",
            len(new_specs),
            self.location.table_name,
            ", ".join(spec.name for spec in new_specs),
        )

    def lookup_or_create_many(self, rows: Sequence[Mapping[str, Any]]) -> list[tuple[int, bool]]:
        results: list[tuple[int, bool]] = []
        with self._transaction() as cur:
            columns = self._columns(cur)
            placeholders = ", ".join("?" for _ in range(len(columns) + 1))
            column_sql = ", ".join([*(_quote(c) for c in columns), PAR_KEY_COLUMN])
            insert_sql = (
                f"INSERT OR IGNORE INTO {self._table} ({column_sql}) VALUES ({placeholders})"
            )
            select_sql = (
                f"SELECT {self._id_column} FROM {self._table} WHERE {PAR_KEY_COLUMN} = ?"
            )
            for row in rows:
                missing = [c for c in columns if c not in row]
                if missing:
                    raise IdentityStoreError(
                        f"Row is missing columns of {self.location.table_name}: {missing}"
                    )
                values = [row[c] for c in columns]
                key = par_key(values)
                cur.execute(insert_sql, [*(storage_value(v) for v in values), key])
                if cur.rowcount == 1:
                    results.append((int(cur.lastrowid), True))
                    continue
                cur.execute(select_sql, (key,))
                found = cur.fetchone()
                if found is None:
                    raise IdentityStoreError(
                        f"Could not resolve parameter row in {self.location.table_name}."
                    )
                results.append((int(found[0]), False))
        return results

    def row_values(self, variation_id: int) -> dict[str, Any]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                columns = self._columns(cur)
                if not columns:
                    found = cur.execute(
                        f"SELECT {self._id_column} FROM {self._table} WHERE {self._id_column} = ?",
                        (int(variation_id),),
                    ).fetchone()
                    if found is None:
                        raise IdentityStoreError(
                            f"Unknown {self.location.id_column} {variation_id}."
                        )
                    return {}
                column_sql = ", ".join(_quote(c) for c in columns)
                found = cur.execute(
                    f"SELECT {column_sql} FROM {self._table} WHERE {self._id_column} = ?",
                    (int(variation_id),),
                ).fetchone()
            finally:
                cur.close()
        if found is None:
            raise IdentityStoreError(f"Unknown {self.location.id_column} {variation_id}.")
        return dict(zip(columns, found))

    def count(self) -> int:
        with self._lock:
            return int(self._conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()[0])


# ---------------------------------------------------------------------------
# Input bindings


@dataclass(frozen=True)
class LocationInput:
    """Folder bound to one location, with its identity store and defaults."""

    folder: str
    store: IdentityStore
    defaults: DefaultValueSource

    def __post_init__(self) -> None:
        object.__setattr__(self, "defaults", as_default_source(self.defaults))

    def column_spec(self, target: XMLPath, value_type: Optional[type] = None) -> ColumnSpec:
        default = self.defaults.default_value(target)
        if value_type is None:
            value_type = infer_scalar_type(default)
        return ColumnSpec(target.column_name, value_type, default)


@dataclass
class InputFolders:
    """Location inputs of one campaign; locations without an input are unused."""

    inputs: dict[Location, LocationInput] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.inputs = {as_location(loc): value for loc, value in self.inputs.items()}

    def is_used(self, location: Location) -> bool:
        return location in self.inputs

    def __getitem__(self, location: Any) -> LocationInput:
        location = as_location(location)
        try:
            return self.inputs[location]
        except KeyError as exc:
            raise VariationError(
                f"Location {location.value!r} is not in use by these inputs.",
                user_message=(
                    f"Cannot vary a target in {location.value!r}: no input folder is "
                    "configured for that location."
                ),
                context={"location": location.value},
            ) from exc

    @property
    def locations(self) -> list[Location]:
        return [loc for loc in Location if loc in self.inputs]

    def base_variation_id(self) -> VariationID:
        return VariationID(
            {
                loc: BASE_VARIATION_ID if loc in self.inputs else UNUSED_VARIATION_ID
                for loc in Location
            }
        )


__all__ = [
    "BASE_VARIATION_ID",
    "UNUSED_VARIATION_ID",
    "PAR_KEY_COLUMN",
    "VariationID",
    "key_value",
    "par_key",
    "storage_value",
    "DefaultValueSource",
    "MappingDefaults",
    "CallableDefaults",
    "as_default_source",
    "ColumnSpec",
    "IdentityStore",
    "SQLiteIdentityStore",
    "LocationInput",
    "InputFolders",
]
