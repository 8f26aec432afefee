"""Named sampling methods and simulation backends."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Optional

from sweep_platform.errors import BackendError, ConfigError

KINDS = ("method", "backend")


class Registry:
    """Plugins grouped by kind; names are unique within a kind."""

    def __init__(self, kinds: Iterable[str] = KINDS) -> None:
        self._entries: dict[str, dict[str, Any]] = {kind: {} for kind in kinds}

    def _bucket(self, kind: str) -> dict[str, Any]:
        try:
            return self._entries[kind]
        except KeyError:
            raise KeyError(
                f"Unknown registry kind {kind!r}. Known kinds: {_joined(self._entries)}."
            ) from None

    def register(
        self,
        kind: str,
        name: str,
        obj: Any = None,
        *,
        overwrite: bool = False,
    ) -> Any:
        """Register ``obj``; without ``obj`` this returns a decorator."""
        if not isinstance(name, str) or not name.strip():
            raise TypeError("Registry names must be non-empty strings.")
        bucket = self._bucket(kind)

        def _add(target: Any) -> Any:
            if name in bucket and not overwrite:
                raise ValueError(f"{kind} {name!r} is already registered.")
            bucket[name] = target
            return target

        if obj is None:
            return _add
        return _add(obj)

    def get(self, kind: str, name: str) -> Any:
        bucket = self._bucket(kind)
        if name not in bucket:
            raise KeyError(f"{kind} {name!r} is not registered. Available: {_joined(bucket)}.")
        return bucket[name]

    def names(self, kind: str) -> list[str]:
        return sorted(self._bucket(kind))


def _joined(names: Iterable[str]) -> str:
    return ", ".join(sorted(names)) or "<none>"


_REGISTRY = Registry()


def default_registry() -> Registry:
    return _REGISTRY


def register(kind: str, name: str, obj: Any = None, *, overwrite: bool = False) -> Any:
    return _REGISTRY.register(kind, name, obj, overwrite=overwrite)


def _resolve(
    kind: str,
    name: str,
    registry: Optional[Registry],
    error: Callable[..., Exception],
    label: str,
) -> Any:
    registry = registry or _REGISTRY
    try:
        return registry.get(kind, name)
    except KeyError as exc:
        available = _joined(registry.names(kind))
        raise error(
            f"{label} {name!r} is not registered. Available: {available}.",
            context={"kind": kind},
        ) from exc


def resolve_backend(name: str, *, registry: Optional[Registry] = None) -> Any:
    return _resolve("backend", name, registry, BackendError, "Backend")


def resolve_method(name: str, *, registry: Optional[Registry] = None) -> Any:
    return _resolve("method", name, registry, ConfigError, "Sampling method")


__all__ = [
    "KINDS",
    "Registry",
    "default_registry",
    "register",
    "resolve_backend",
    "resolve_method",
]
