import pytest

from sweep_platform.backends import DummyBackend, Simulation
from sweep_platform.campaign import (
    CampaignContext,
    MonadRegistry,
    monads_for,
    resolve_parameters,
    run_sampling,
)
from sweep_platform.errors import BackendError, ValidationError
from sweep_platform.materialize import add_variations
from sweep_platform.sampling import GridVariation
from sweep_platform.variations import DiscreteVariation


def _context(make_inputs, **kwargs) -> CampaignContext:
    inputs = make_inputs({"config": {"overall/a": 0, "overall/b": 0.5}})
    return CampaignContext(inputs=inputs, backend=DummyBackend(), **kwargs)


def _grid_monads(context: CampaignContext):
    result = add_variations(
        GridVariation(),
        context.inputs,
        [DiscreteVariation(["overall", "a"], [1, 2, 3])],
    )
    return monads_for(context, [result.variation_ids])[0]


def test_monad_registry_dedups_variation_ids(make_inputs) -> None:
    context = _context(make_inputs)
    base = context.inputs.base_variation_id()
    [[first, second]] = monads_for(context, [[base, base]])
    assert first is second
    assert first.monad_id == 1
    assert context.monads.get(1) is first
    with pytest.raises(ValidationError):
        context.monads.get(99)


def test_run_sampling_runs_each_replicate_once(make_inputs) -> None:
    context = _context(make_inputs)
    monads = _grid_monads(context)
    sampling = run_sampling(context, monads + monads, n_replicates=2)
    assert sampling.monad_ids == [m.monad_id for m in monads]
    assert len(sampling.all_simulation_ids) == 6
    assert context.backend.run_count == 6
    outputs = [context.backend.output(sampling.simulation_ids[m.monad_id][0]) for m in monads]
    assert outputs == [1.0, 2.0, 3.0]


def test_run_sampling_reuses_previous_simulations(make_inputs) -> None:
    context = _context(make_inputs)
    monads = _grid_monads(context)
    first = run_sampling(context, monads, n_replicates=2)
    reused = run_sampling(context, monads, n_replicates=2)
    assert reused.simulation_ids == first.simulation_ids
    assert context.backend.run_count == 6

    more = run_sampling(context, monads, n_replicates=3)
    assert context.backend.run_count == 9
    for monad in monads:
        assert more.simulation_ids[monad.monad_id][:2] == first.simulation_ids[monad.monad_id]

    fresh = run_sampling(context, monads, n_replicates=1, use_previous=False)
    assert context.backend.run_count == 12
    for monad in monads:
        assert fresh.simulation_ids[monad.monad_id][0] not in more.simulation_ids[monad.monad_id]


def test_run_sampling_in_threads(make_inputs) -> None:
    context = _context(make_inputs, max_workers=4)
    monads = _grid_monads(context)
    sampling = run_sampling(context, monads, n_replicates=4)
    assert context.backend.run_count == 12
    assert all(context.backend.has_output(sim_id) for sim_id in sampling.all_simulation_ids)


def test_run_sampling_validates_replicates(make_inputs) -> None:
    context = _context(make_inputs)
    with pytest.raises(ValidationError):
        run_sampling(context, [], n_replicates=0)


def test_resolve_parameters_reads_location_rows(make_inputs) -> None:
    context = _context(make_inputs)
    monads = _grid_monads(context)
    assert resolve_parameters(context.inputs, monads[2].variation_id) == {
        "config": {"overall/a": 3}
    }
    assert len(MonadRegistry()) == 0


def test_dummy_backend_reports_model_failures(make_inputs) -> None:
    context = _context(make_inputs)
    backend = DummyBackend(model=lambda params: params["missing"])
    simulation = Simulation(1, 1, context.inputs.base_variation_id(), {"config": {"x": 1.0}})
    with pytest.raises(BackendError):
        backend.run(simulation)
    with pytest.raises(BackendError):
        backend.output(1)
    with pytest.raises(BackendError):
        DummyBackend().run(Simulation(2, 1, context.inputs.base_variation_id(), {"config": {"x": "slow"}}))


def test_failed_simulations_are_not_reused(make_inputs) -> None:
    failures = [True]

    def _flaky_model(params):
        if failures:
            failures.pop()
            raise RuntimeError("solver diverged")
        return params["overall/a"]

    inputs = make_inputs({"config": {"overall/a": 0, "overall/b": 0.5}})
    context = CampaignContext(inputs=inputs, backend=DummyBackend(model=_flaky_model))
    [monad] = _grid_monads(context)[:1]
    with pytest.raises(BackendError):
        run_sampling(context, [monad])
    assert context.monads.simulation_ids(monad.monad_id) == []

    retried = run_sampling(context, [monad])
    [sim_id] = retried.simulation_ids[monad.monad_id]
    assert context.backend.has_output(sim_id)
    assert context.backend.output(sim_id) == 1.0
    assert context.monads.simulation_ids(monad.monad_id) == [sim_id]
