"""Monads, replicate simulations, and sampling execution."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
import threading
from typing import Any, Optional

from sweep_platform.backends.base import Simulation, SimulationBackend
from sweep_platform.errors import ValidationError
from sweep_platform.identity import InputFolders, VariationID
from sweep_platform.logging_utils import get_logger
from sweep_platform.store import ArtifactStore


@dataclass(frozen=True)
class Monad:
    """Sample unit: one parameter vector, run as one or more replicates."""

    monad_id: int
    variation_id: VariationID


class MonadRegistry:
    """Assigns one monad per distinct VariationID and tracks its simulations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_variation: dict[VariationID, Monad] = {}
        self._by_id: dict[int, Monad] = {}
        self._simulations: dict[int, list[int]] = {}
        self._next_monad_id = 1
        self._next_simulation_id = 1

    def monad_for(self, variation_id: VariationID) -> Monad:
        with self._lock:
            monad = self._by_variation.get(variation_id)
            if monad is None:
                monad = Monad(self._next_monad_id, variation_id)
                self._next_monad_id += 1
                self._by_variation[variation_id] = monad
                self._by_id[monad.monad_id] = monad
                self._simulations[monad.monad_id] = []
            return monad

    def get(self, monad_id: int) -> Monad:
        with self._lock:
            try:
                return self._by_id[monad_id]
            except KeyError as exc:
                raise ValidationError(f"Unknown monad {monad_id}.") from exc

    def simulation_ids(self, monad_id: int) -> list[int]:
        with self._lock:
            return list(self._simulations.get(monad_id, []))

    def reserve_simulation_ids(self, count: int) -> list[int]:
        """Allocate simulation IDs without attaching them to a monad."""
        with self._lock:
            ids = list(range(self._next_simulation_id, self._next_simulation_id + count))
            self._next_simulation_id += count
            return ids

    def attach_simulations(self, monad_id: int, simulation_ids: Sequence[int]) -> None:
        """Record completed simulations as replicates of ``monad_id``."""
        with self._lock:
            if monad_id not in self._by_id:
                raise ValidationError(f"Unknown monad {monad_id}.")
            self._simulations[monad_id].extend(simulation_ids)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)


@dataclass(frozen=True)
class CampaignContext:
    """Shared campaign execution context."""

    inputs: InputFolders
    backend: SimulationBackend
    monads: MonadRegistry = field(default_factory=MonadRegistry)
    store: Optional[ArtifactStore] = None
    max_workers: int = 1
    logger: Optional[logging.Logger] = None

    def get_logger(self) -> logging.Logger:
        return self.logger or get_logger("campaign")


@dataclass
class Sampling:
    """Monads of one run and the simulations used for each of them."""

    monad_ids: list[int]
    simulation_ids: dict[int, list[int]]
    n_replicates: int

    @property
    def all_simulation_ids(self) -> list[int]:
        return [sim_id for monad_id in self.monad_ids for sim_id in self.simulation_ids[monad_id]]


def resolve_parameters(inputs: InputFolders, variation_id: VariationID) -> dict[str, dict[str, Any]]:
    parameters: dict[str, dict[str, Any]] = {}
    for location in inputs.locations:
        value = variation_id.get(location)
        if value is None or value < 0:
            continue
        parameters[location.value] = inputs[location].store.row_values(value)
    return parameters


def monads_for(
    context: CampaignContext,
    variation_ids: Sequence[Sequence[VariationID]],
) -> list[list[Monad]]:
    """Map a matrix of VariationIDs to a matrix of monads of the same shape."""
    return [[context.monads.monad_for(vid) for vid in row] for row in variation_ids]


def _unique_monads(monads: Iterable[Monad]) -> list[Monad]:
    seen: set[int] = set()
    unique = []
    for monad in monads:
        if monad.monad_id in seen:
            continue
        seen.add(monad.monad_id)
        unique.append(monad)
    return unique


def run_simulations(
    context: CampaignContext,
    simulations: Sequence[Simulation],
    *,
    completed: Optional[set[int]] = None,
) -> None:
    """Run ``simulations``; IDs that finish are added to ``completed``.

    The first backend failure propagates once the pool has drained.
    """
    if not simulations:
        return

    def _run(simulation: Simulation) -> None:
        context.backend.run(simulation)
        if completed is not None:
            completed.add(simulation.simulation_id)

    if context.max_workers <= 1 or len(simulations) == 1:
        for simulation in simulations:
            _run(simulation)
        return
    with ThreadPoolExecutor(max_workers=context.max_workers) as pool:
        futures = [pool.submit(_run, sim) for sim in simulations]
        for future in as_completed(futures):
            future.result()


def run_sampling(
    context: CampaignContext,
    monads: Iterable[Monad],
    *,
    n_replicates: int = 1,
    use_previous: bool = True,
) -> Sampling:
    """Ensure ``n_replicates`` simulations per unique monad and run new ones.

    Only simulations that ran to completion become replicates of their
    monad, so a failed run is retried by the next call.
    """
    if isinstance(n_replicates, bool) or not isinstance(n_replicates, int) or n_replicates < 1:
        raise ValidationError(f"n_replicates must be a positive integer, got {n_replicates!r}.")
    unique = _unique_monads(monads)
    simulation_ids: dict[int, list[int]] = {}
    new_ids_by_monad: dict[int, list[int]] = {}
    to_run: list[Simulation] = []
    n_reused = 0
    for monad in unique:
        chosen: list[int] = []
        if use_previous:
            chosen = context.monads.simulation_ids(monad.monad_id)[:n_replicates]
            n_reused += len(chosen)
        new_ids = context.monads.reserve_simulation_ids(n_replicates - len(chosen))
        if new_ids:
            parameters = resolve_parameters(context.inputs, monad.variation_id)
            to_run.extend(
                Simulation(sim_id, monad.monad_id, monad.variation_id, parameters)
                for sim_id in new_ids
            )
            new_ids_by_monad[monad.monad_id] = new_ids
        simulation_ids[monad.monad_id] = chosen + new_ids

    context.get_logger().info(
        "Sampling %d monad(s) x %d replicate(s): running %d simulation(s), reusing %d.",
        len(unique),
        n_replicates,
        len(to_run),
        n_reused,
    )
    completed: set[int] = set()
    try:
        run_simulations(context, to_run, completed=completed)
    finally:
        for monad_id, new_ids in new_ids_by_monad.items():
            done = [sim_id for sim_id in new_ids if sim_id in completed]
            if done:
                context.monads.attach_simulations(monad_id, done)
        n_failed = len(to_run) - len(completed)
        if n_failed:
            context.get_logger().warning(
                "%d simulation(s) did not complete and were not recorded.", n_failed
            )
    return Sampling(
        monad_ids=[monad.monad_id for monad in unique],
        simulation_ids=simulation_ids,
        n_replicates=n_replicates,
    )


__all__ = [
    "Monad",
    "MonadRegistry",
    "CampaignContext",
    "Sampling",
    "resolve_parameters",
    "monads_for",
    "run_simulations",
    "run_sampling",
]
