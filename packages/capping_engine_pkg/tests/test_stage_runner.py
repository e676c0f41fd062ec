# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

import sys
import threading
from pathlib import Path

import pytest
from hostcap_capping_engine.errors import (
    GENERATOR_NOT_FOUND,
    SENSITIVITY_COMPUTATION_FAILED,
    STAGE_COMPUTATION_FAILED,
    TEMPORARY_LIMIT_NOT_FOUND,
    ComputationCancelledError,
    DcLoadflowNotAllowedError,
    OracleUnavailableError,
    VariantNotFoundError,
)
from hostcap_capping_engine.sensitivity_oracle import SensitivityOutcome, SensitivityValue
from hostcap_capping_engine.stage_runner import (
    MAX_ITERATION_IN_STAGE,
    apply_stage,
    run_stage,
    run_stages,
    stage_variant_id,
)
from hostcap_interfaces.capping_definition import CappingInputData, EnergySource, MonitoredBranchGroup
from hostcap_interfaces.capping_results import BASECASE_KEY, StageStatus

sys.path.insert(0, str(Path(__file__).parent))
from fake_grid import FailingOracle, FakeGrid, LinearOracle, SlowOracle


def test_apply_stage(grid: FakeGrid, input_data: CappingInputData) -> None:
    grid.clone_variant("InitialState", "v")
    apply_stage(grid, input_data.stage_selections[0], input_data)
    assert grid.get_generator("W1").target_p == 200.0
    assert grid.get_generator("S1").target_p == 100.0
    assert grid.get_generator("H1").target_p == 300.0
    grid.remove_variant("v")
    assert grid.get_generator("W1").target_p == 50.0


def test_stage_converges(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    detail = run_stage(grid, oracle, input_data, input_data.stage_selections[0], "run_stage_0", "InitialState")

    assert detail.status == StageStatus.CONVERGED
    assert detail.iterations == 2
    assert detail.error is None
    assert detail.p_init_by_energy_source == {EnergySource.WIND: 200.0, EnergySource.SOLAR: 100.0}

    branch_result = detail.results_by_contingency[BASECASE_KEY].results_by_monitored_branch["L1"]
    assert branch_result.capping_by_energy_source == pytest.approx({EnergySource.WIND: 40.0, EnergySource.SOLAR: 20.0})
    assert branch_result.overall_capping == pytest.approx(60.0)
    # the last iteration sees the flow at the limit
    assert branch_result.intensity == pytest.approx(100.0)
    assert branch_result.p == pytest.approx(100.0)
    assert oracle.calls == ["run_stage_0", "run_stage_0"]


def test_variant_is_removed_and_base_untouched(grid: FakeGrid, oracle: LinearOracle, input_data) -> None:
    run_stage(grid, oracle, input_data, input_data.stage_selections[0], "v", "InitialState")
    assert grid.removed == ["v"]
    assert list(grid.variants) == ["InitialState"]
    assert grid.working_variant == "InitialState"
    assert grid.get_generator("W1").target_p == 50.0
    assert grid.get_generator("S1").target_p == 10.0


def test_max_iterations(grid: FakeGrid, input_data: CappingInputData) -> None:
    # the reported sensitivities overestimate the effect of the cappings, so the flow never gets below the limit
    oracle = LinearOracle(
        flows={("L1", None): {"W1": 0.01}},
        offsets={("L1", None): 148.0},
        reported={("L1", None): {"W1": 0.5}},
    )
    detail = run_stage(grid, oracle, input_data, input_data.stage_selections[0], "v", "InitialState")
    assert detail.status == StageStatus.MAX_ITERATION_REACHED
    assert detail.iterations == MAX_ITERATION_IN_STAGE
    assert len(oracle.calls) == MAX_ITERATION_IN_STAGE
    assert grid.removed == ["v"]

    branch_result = detail.results_by_contingency[BASECASE_KEY].results_by_monitored_branch["L1"]
    # W1 is capped down to zero but never further
    assert branch_result.capping_by_energy_source[EnergySource.WIND] == pytest.approx(200.0)


def test_custom_iteration_bound(grid: FakeGrid, input_data: CappingInputData) -> None:
    oracle = LinearOracle(
        flows={("L1", None): {"W1": 0.01}},
        offsets={("L1", None): 148.0},
        reported={("L1", None): {"W1": 0.5}},
    )
    detail = run_stage(grid, oracle, input_data, input_data.stage_selections[0], "v", "InitialState", max_iterations=1)
    assert detail.status == StageStatus.MAX_ITERATION_REACHED
    assert detail.iterations == 1


def test_stage_without_violation(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    detail = run_stage(grid, oracle, input_data, input_data.stage_selections[1], "v", "InitialState")
    assert detail.status == StageStatus.CONVERGED
    assert detail.iterations == 1
    assert detail.p_init_by_energy_source == {EnergySource.WIND: 100.0, EnergySource.SOLAR: 10.0}
    branch_result = detail.results_by_contingency[BASECASE_KEY].results_by_monitored_branch["L1"]
    assert branch_result.intensity == pytest.approx(52.5)
    assert branch_result.overall_capping == 0.0


def test_failed_stage_does_not_stop_the_run(grid: FakeGrid, oracle: LinearOracle, input_data) -> None:
    input_data.stage_definitions[0].generators.append("missing")
    results = run_stages(grid, oracle, input_data, run_id="run", base_variant_id="InitialState")

    failed = results.stages_detail["full"]
    assert failed.status == StageStatus.FAILED
    assert failed.error.key == GENERATOR_NOT_FOUND
    assert failed.error.message == "Generator 'missing' not found !!"
    assert results.stages_detail["half_wind"].status == StageStatus.FAILED
    assert grid.removed == ["run_stage_0", "run_stage_1"]
    assert oracle.calls == []


def test_threshold_error_fails_the_stage(grid: FakeGrid, oracle: LinearOracle, input_data) -> None:
    input_data.monitored_branches = [MonitoredBranchGroup(branches=["L1"], temporary_limit_name_n="IT1")]
    detail = run_stage(grid, oracle, input_data, input_data.stage_selections[0], "v", "InitialState")
    assert detail.status == StageStatus.FAILED
    assert detail.error.key == TEMPORARY_LIMIT_NOT_FOUND
    assert detail.error.message == "Temporary limit 'IT1' not found for branch 'L1' on side 'ONE' !!"


def test_run_stages(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    statuses = []
    results = run_stages(
        grid, oracle, input_data, run_id="run", base_variant_id="InitialState", status_update_fn=statuses.append
    )
    assert list(results.stages_detail) == ["full", "half_wind"]
    assert list(results.stages_summary) == ["full", "half_wind"]
    assert results.stages_detail["full"].status == StageStatus.CONVERGED
    assert results.stages_detail["half_wind"].status == StageStatus.CONVERGED
    assert oracle.calls == ["run_stage_0", "run_stage_0", "run_stage_1"]
    assert statuses[0] == "Starting stage full"
    assert len(statuses) == 5
    assert list(grid.variants) == ["InitialState"]

    summary = results.stages_summary["full"]
    assert summary.limiting_branch == "L1"
    assert summary.limiting_contingency is None
    assert summary.total_capping_by_energy_source == pytest.approx({EnergySource.WIND: 40.0, EnergySource.SOLAR: 20.0})


def test_inactive_stages_are_skipped(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    input_data.stage_selections[0].activated = False
    results = run_stages(grid, oracle, input_data, run_id="run", base_variant_id="InitialState")
    assert list(results.stages_detail) == ["half_wind"]
    assert grid.cloned == [stage_variant_id("run", 1)]


def test_sensitivity_failure(grid: FakeGrid, input_data: CappingInputData) -> None:
    oracle = FailingOracle(RuntimeError("solver diverged"))
    results = run_stages(grid, oracle, input_data, run_id="run", base_variant_id="InitialState")
    for detail in results.stages_detail.values():
        assert detail.status == StageStatus.FAILED
        assert detail.error.key == SENSITIVITY_COMPUTATION_FAILED
        assert "solver diverged" in detail.error.message
    assert len(oracle.calls) == 2


def test_sensitivity_timeout(grid: FakeGrid, input_data: CappingInputData) -> None:
    oracle = SlowOracle(flows={("L1", None): {"W1": 0.5, "S1": 0.25}}, delay=0.6)
    input_data.parameters.oracle_timeout_seconds = 0.2
    try:
        results = run_stages(grid, oracle, input_data, run_id="run", base_variant_id="InitialState")
    finally:
        oracle.executor.shutdown(wait=True)

    timed_out = results.stages_detail["full"]
    assert timed_out.status == StageStatus.FAILED
    assert timed_out.error.key == SENSITIVITY_COMPUTATION_FAILED
    assert "No sensitivity results after 0.2 s" in timed_out.error.message
    # the variant of the timed out stage outlives its computation
    assert oracle.events[:2] == [("start", "run_stage_0"), ("end", "run_stage_0", True)]

    # the next stage does not queue behind a stale computation
    assert results.stages_detail["half_wind"].status == StageStatus.CONVERGED
    assert oracle.events[2:] == [("start", "run_stage_1"), ("end", "run_stage_1", True)]
    assert grid.removed == ["run_stage_0", "run_stage_1"]
    assert list(grid.variants) == ["InitialState"]


def test_unexpected_error_fails_the_stage(grid: FakeGrid, input_data: CappingInputData) -> None:
    class BrokenOracle(LinearOracle):
        def compute(self, *args):
            # a value pointing to a factor that was never requested
            return SensitivityOutcome(
                values=(SensitivityValue(factor_index=99, contingency_index=-1, value=0.5, function_reference=1.0),),
                factors=(),
            )

    oracle = BrokenOracle(flows={})
    detail = run_stage(grid, oracle, input_data, input_data.stage_selections[0], "v", "InitialState")
    assert detail.status == StageStatus.FAILED
    assert detail.error.key == STAGE_COMPUTATION_FAILED
    assert grid.removed == ["v"]


def test_unavailable_oracle_ends_the_run(grid: FakeGrid, input_data: CappingInputData) -> None:
    oracle = FailingOracle(OracleUnavailableError("no connection"), immediate=True)
    with pytest.raises(OracleUnavailableError):
        run_stages(grid, oracle, input_data, run_id="run", base_variant_id="InitialState")
    assert grid.removed == ["run_stage_0"]
    assert grid.working_variant == "InitialState"


def test_dc_is_rejected(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    input_data.parameters.dc = True
    with pytest.raises(DcLoadflowNotAllowedError, match="Loadflow in DC mode not allowed !!"):
        run_stages(grid, oracle, input_data, run_id="run", base_variant_id="InitialState")
    assert grid.cloned == []


def test_unknown_base_variant(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    with pytest.raises(VariantNotFoundError):
        run_stages(grid, oracle, input_data, run_id="run", base_variant_id="missing")


def test_cancel_before_start(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    cancel_event = threading.Event()
    cancel_event.set()
    with pytest.raises(ComputationCancelledError) as excinfo:
        run_stages(grid, oracle, input_data, run_id="run", base_variant_id="InitialState", cancel_event=cancel_event)
    assert excinfo.value.results.stages_detail == {}
    assert grid.cloned == []


def test_cancel_during_stage(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    cancel_event = threading.Event()

    def status_update(message: str) -> None:
        if message == "Stage full, iteration 1":
            cancel_event.set()

    with pytest.raises(ComputationCancelledError) as excinfo:
        run_stages(
            grid,
            oracle,
            input_data,
            run_id="run",
            base_variant_id="InitialState",
            cancel_event=cancel_event,
            status_update_fn=status_update,
        )
    # the first iteration still runs, the cancellation is seen before the second one
    assert oracle.calls == ["run_stage_0"]
    partial = excinfo.value.results
    assert list(partial.stages_detail) == ["full"]
    assert partial.stages_detail["full"].status == StageStatus.CANCELLED
    assert partial.stages_summary["full"].status == StageStatus.CANCELLED
    assert grid.removed == ["run_stage_0"]
    assert list(grid.variants) == ["InitialState"]


def test_cancel_between_stages(grid: FakeGrid, oracle: LinearOracle, input_data: CappingInputData) -> None:
    cancel_event = threading.Event()

    def status_update(message: str) -> None:
        if message == "Starting stage half_wind":
            cancel_event.set()

    with pytest.raises(ComputationCancelledError) as excinfo:
        run_stages(
            grid,
            oracle,
            input_data,
            run_id="run",
            base_variant_id="InitialState",
            cancel_event=cancel_event,
            status_update_fn=status_update,
        )
    partial = excinfo.value.results
    assert partial.stages_detail["full"].status == StageStatus.CONVERGED
    assert partial.stages_detail["half_wind"].status == StageStatus.CANCELLED
