# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Run the stages of a capping computation.

Every stage runs in its own variant cloned from the base variant:
- the generation levels of the stage are applied, target_p = max_p * p_max_percent / 100
- the target P of the capping generators is snapshot
- sensitivity computation, violation analysis and capping application are repeated until no violation is left or
  MAX_ITERATION_IN_STAGE sensitivity computations ran
- the variant is removed, whatever happened

A stage that fails is reported with its diagnostic and the next stage runs. Stages run one after the other since they
share the grid.
"""

import threading
from concurrent.futures import Future, wait

from beartype.typing import Callable, Optional
from logbook import Logger
from hostcap_capping_engine.errors import (
    CappingResult,
    ComputationCancelledError,
    DcLoadflowNotAllowedError,
    Fatal,
    Ok,
    OracleUnavailableError,
    generator_not_found,
    sensitivity_computation_failed,
    stage_computation_failed,
)
from hostcap_capping_engine.factor_builder import SensitivityInputs, build_sensitivity_inputs
from hostcap_capping_engine.grid_access import Grid
from hostcap_capping_engine.result_aggregator import aggregate_results
from hostcap_capping_engine.sensitivity_oracle import SensitivityOracle, SensitivityOutcome
from hostcap_capping_engine.stage_context import StageContext
from hostcap_capping_engine.violation_analyzer import EPSILON_MAX_VARIATION, analyze_sensitivity_results
from hostcap_interfaces.capping_definition import CappingInputData, StageSelection
from hostcap_interfaces.capping_results import CappingResults, StageDetailResult, StageStatus

logger = Logger(__name__)

MAX_ITERATION_IN_STAGE = 4
"""The maximum number of sensitivity computations per stage"""


def stage_variant_id(run_id: str, stage_index: int) -> str:
    """The id of the variant a stage runs in"""
    return f"{run_id}_stage_{stage_index}"


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """Raise ComputationCancelledError if a cancellation was requested"""
    if cancel_event is not None and cancel_event.is_set():
        raise ComputationCancelledError()


def apply_stage(grid: Grid, selection: StageSelection, input_data: CappingInputData) -> CappingResult:
    """Set the target P of the generators of a stage to the selected percentage of their max P.

    Parameters
    ----------
    grid : Grid
        The grid, with the stage variant as working variant
    selection : StageSelection
        The stage to apply
    input_data : CappingInputData
        The input holding the stage definitions

    Returns
    -------
    CappingResult
        Ok(None) or Fatal if a generator does not exist
    """
    for definition_index, percent_index in zip(
        selection.stage_definition_indices, selection.p_max_percent_indices, strict=True
    ):
        definition = input_data.stage_definitions[definition_index]
        p_max_percent = definition.p_max_percents[percent_index]
        for generator_id in definition.generators:
            generator = grid.get_generator(generator_id)
            if generator is None:
                return generator_not_found(generator_id)
            grid.set_generator_target_p(generator_id, generator.max_p * p_max_percent / 100)
    return Ok(None)


def get_target_p(grid: Grid, generator_ids: list[str]) -> CappingResult:
    """Read the target P of generators, Ok(dict) or Fatal if one does not exist"""
    target_p = {}
    for generator_id in generator_ids:
        generator = grid.get_generator(generator_id)
        if generator is None:
            return generator_not_found(generator_id)
        target_p[generator_id] = generator.target_p
    return Ok(target_p)


def apply_cappings(grid: Grid, cappings: dict[str, float]) -> None:
    """Reduce the target P of every generator by its capping"""
    for generator_id, capping in cappings.items():
        generator = grid.get_generator(generator_id)
        grid.set_generator_target_p(generator_id, generator.target_p - capping)


def _await_outcome(future: Future, timeout: Optional[float]) -> SensitivityOutcome:
    """Wait for a sensitivity computation, giving up after timeout seconds.

    The stage variant must outlive the computation, so a timed out computation that already started is still waited
    for before the timeout is raised.

    Raises
    ------
    TimeoutError
        If no outcome was available after timeout seconds
    """
    try:
        return future.result(timeout=timeout)
    except TimeoutError:
        if future.done():
            raise
        if not future.cancel():
            logger.warning(f"Sensitivity computation timed out after {timeout} s, waiting for it to release the variant")
            wait([future])
        raise TimeoutError(f"No sensitivity results after {timeout} s") from None


def _fail(context: StageContext, fatal: Fatal) -> StageDetailResult:
    logger.error(f"Stage {context.stage_name} aborted: {fatal.diagnostic.message}")
    context.detail.status = StageStatus.FAILED
    context.detail.error = fatal.diagnostic.to_capping_error()
    return context.detail


def _iterate_stage(
    grid: Grid,
    oracle: SensitivityOracle,
    input_data: CappingInputData,
    selection: StageSelection,
    context: StageContext,
    cancel_event: Optional[threading.Event],
    status_update_fn: Callable[[str], None],
    max_iterations: int,
    epsilon_max_variation: float,
) -> StageDetailResult:
    applied = apply_stage(grid, selection, input_data)
    if isinstance(applied, Fatal):
        return _fail(context, applied)

    inputs_result = build_sensitivity_inputs(grid, input_data)
    if isinstance(inputs_result, Fatal):
        return _fail(context, inputs_result)
    inputs: SensitivityInputs = inputs_result.value

    target_p = get_target_p(grid, list(inputs.generator_energy_sources))
    if isinstance(target_p, Fatal):
        return _fail(context, target_p)
    context.capture_initial_target_p(target_p.value, inputs.generator_energy_sources)

    iteration = 1
    while True:
        check_cancelled(cancel_event)
        status_update_fn(f"Stage {context.stage_name}, iteration {iteration}")
        try:
            future = oracle.run(
                grid,
                context.variant_id,
                inputs.factors,
                inputs.contingencies,
                inputs.variable_sets,
                input_data.parameters,
                input_data.generators_cappings.sensitivity_threshold,
            )
            outcome = _await_outcome(future, input_data.parameters.oracle_timeout_seconds)
        except OracleUnavailableError:
            raise
        except Exception as e:
            return _fail(context, sensitivity_computation_failed(context.stage_name, str(e) or type(e).__name__))
        context.detail.iterations = iteration

        analysis = analyze_sensitivity_results(grid, outcome, inputs, context, epsilon_max_variation)
        if isinstance(analysis, Fatal):
            return _fail(context, analysis)
        analysis = analysis.value
        if analysis.no_more_limit_violation:
            logger.info(f"Stage {context.stage_name} converged after {iteration} iterations")
            context.detail.status = StageStatus.CONVERGED
            return context.detail

        logger.info(
            f"Stage {context.stage_name} iteration {iteration}: {analysis.violation_count} violations, capping "
            f"{sum(analysis.cappings.values()):.2f} MW for branch {analysis.limiting_violation.branch_id}"
        )
        apply_cappings(grid, analysis.cappings)
        iteration += 1
        if iteration > max_iterations:
            logger.warning(f"Stage {context.stage_name} reached the maximum of {max_iterations} iterations")
            context.detail.status = StageStatus.MAX_ITERATION_REACHED
            return context.detail


def run_stage(
    grid: Grid,
    oracle: SensitivityOracle,
    input_data: CappingInputData,
    selection: StageSelection,
    variant_id: str,
    base_variant_id: str,
    cancel_event: Optional[threading.Event] = None,
    status_update_fn: Optional[Callable[[str], None]] = None,
    max_iterations: int = MAX_ITERATION_IN_STAGE,
    epsilon_max_variation: float = EPSILON_MAX_VARIATION,
) -> StageDetailResult:
    """Run a single stage in its own variant.

    Parameters
    ----------
    grid : Grid
        The grid holding the base variant
    oracle : SensitivityOracle
        The sensitivity solver
    input_data : CappingInputData
        The computation input
    selection : StageSelection
        The stage to run
    variant_id : str
        The id of the variant to create for the stage, removed before returning
    base_variant_id : str
        The variant to clone from
    cancel_event : Optional[threading.Event]
        Checked before every iteration, raising ComputationCancelledError once set
    status_update_fn : Optional[Callable[[str], None]]
        Called before every iteration with a status message, e.g. to send heartbeats
    max_iterations : int
        The maximum number of sensitivity computations
    epsilon_max_variation : float
        Largest variation below which the stage counts as converged

    Returns
    -------
    StageDetailResult
        The detail results with the stage status. Failures are reported in the result, not raised.

    Raises
    ------
    ComputationCancelledError
        If cancel_event was set. The variant is removed and the partial stage result is attached.
    OracleUnavailableError
        If the sensitivity oracle can not be reached
    """
    context = StageContext(stage_name=selection.name, variant_id=variant_id)
    logger.info(f"Running stage {selection.name} in variant {variant_id}")
    grid.clone_variant(base_variant_id, variant_id)
    try:
        return _iterate_stage(
            grid=grid,
            oracle=oracle,
            input_data=input_data,
            selection=selection,
            context=context,
            cancel_event=cancel_event,
            status_update_fn=status_update_fn or (lambda _message: None),
            max_iterations=max_iterations,
            epsilon_max_variation=epsilon_max_variation,
        )
    except ComputationCancelledError:
        context.detail.status = StageStatus.CANCELLED
        raise ComputationCancelledError(results=aggregate_results({selection.name: context.detail})) from None
    except OracleUnavailableError:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error in stage {selection.name}")
        return _fail(context, stage_computation_failed(selection.name, str(e) or type(e).__name__))
    finally:
        grid.remove_variant(variant_id)


def run_stages(
    grid: Grid,
    oracle: SensitivityOracle,
    input_data: CappingInputData,
    run_id: str,
    base_variant_id: str,
    cancel_event: Optional[threading.Event] = None,
    status_update_fn: Optional[Callable[[str], None]] = None,
) -> CappingResults:
    """Run all activated stages of a capping computation, one after the other, and aggregate their results.

    Parameters
    ----------
    grid : Grid
        The grid holding the base variant
    oracle : SensitivityOracle
        The sensitivity solver
    input_data : CappingInputData
        The computation input
    run_id : str
        The id of the computation, used to name the stage variants
    base_variant_id : str
        The variant every stage is cloned from
    cancel_event : Optional[threading.Event]
        Checked before every stage and iteration
    status_update_fn : Optional[Callable[[str], None]]
        Called before every stage and iteration with a status message

    Returns
    -------
    CappingResults
        Detail and summary results for every activated stage, including failed ones

    Raises
    ------
    DcLoadflowNotAllowedError
        If the parameters request DC mode
    ComputationCancelledError
        If cancel_event was set, with the results of the finished stages attached
    OracleUnavailableError
        If the sensitivity oracle can not be reached
    """
    if input_data.parameters.dc:
        raise DcLoadflowNotAllowedError()
    status_update_fn = status_update_fn or (lambda _message: None)

    stage_details: dict[str, StageDetailResult] = {}
    for stage_index, selection in enumerate(input_data.stage_selections):
        if not selection.activated:
            logger.info(f"Skipping inactive stage {selection.name}")
            continue
        if cancel_event is not None and cancel_event.is_set():
            raise ComputationCancelledError(results=aggregate_results(stage_details))
        status_update_fn(f"Starting stage {selection.name}")
        try:
            stage_details[selection.name] = run_stage(
                grid=grid,
                oracle=oracle,
                input_data=input_data,
                selection=selection,
                variant_id=stage_variant_id(run_id, stage_index),
                base_variant_id=base_variant_id,
                cancel_event=cancel_event,
                status_update_fn=status_update_fn,
            )
        except ComputationCancelledError as e:
            if e.results is not None:
                stage_details.update(e.results.stages_detail)
            raise ComputationCancelledError(results=aggregate_results(stage_details)) from None
    return aggregate_results(stage_details)
