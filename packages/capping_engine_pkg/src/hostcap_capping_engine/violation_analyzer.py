# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Evaluate one sensitivity computation against the branch thresholds.

Every monitored (branch, contingency) pair is compared to its limit once, on the side of the first current value
reported for it. Violated pairs get a capping dispatch. Only the dispatch with the largest variation is kept and applied
before the next sensitivity computation, the other violations are evaluated again with the updated generation.
"""

import math
from dataclasses import dataclass, field

from beartype.typing import Optional
from logbook import Logger
from hostcap_capping_engine.capping_dispatcher import DispatchResult, dispatch_capping
from hostcap_capping_engine.errors import CappingResult, Ok, generator_not_found
from hostcap_capping_engine.factor_builder import SensitivityInputs
from hostcap_capping_engine.grid_access import BranchSide, Grid
from hostcap_capping_engine.sensitivity_oracle import SensitivityOutcome
from hostcap_capping_engine.stage_context import StageContext
from hostcap_interfaces.capping_definition import EnergySource
from hostcap_interfaces.capping_results import GeneratorCapping

logger = Logger(__name__)

EPSILON_MAX_VARIATION = 0.3
"""Largest variation in MW below which the stage counts as free of violations"""


@dataclass
class BranchObservation:
    """The current values of one (branch, contingency) pair, gathered from a sensitivity outcome"""

    branch_id: str
    contingency_id: Optional[str]
    side: BranchSide
    function_reference: float
    sensitivities: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class BranchViolation:
    """A violated (branch, contingency) pair and the dispatch relieving it"""

    branch_id: str
    contingency_id: Optional[str]
    delta: float
    dispatch: DispatchResult


@dataclass(frozen=True)
class IterationAnalysis:
    """The outcome of analyzing one sensitivity computation"""

    no_more_limit_violation: bool
    cappings: dict[str, float]
    """The cappings to apply, those of the violation with the largest variation. Empty if converged."""

    max_variation: float
    limiting_violation: Optional[BranchViolation]
    violation_count: int


def collect_branch_observations(
    outcome: SensitivityOutcome, inputs: SensitivityInputs, context: StageContext
) -> dict[tuple[str, Optional[str]], BranchObservation]:
    """Group the current sensitivities by (branch, contingency) and record the active power flows.

    The side of a pair is the side of its first current value, values of the other side are ignored.

    Parameters
    ----------
    outcome : SensitivityOutcome
        The sensitivity computation answer
    inputs : SensitivityInputs
        The request it answers, mapping contingency indices and holding the thresholds
    context : StageContext
        The stage context, whose detail results get the active power flows

    Returns
    -------
    dict[tuple[str, Optional[str]], BranchObservation]
        The observations in the order they were first seen
    """
    observations: dict[tuple[str, Optional[str]], BranchObservation] = {}
    active_power_seen: set[tuple[str, Optional[str]]] = set()
    for value in outcome.values:
        factor = outcome.factors[value.factor_index]
        if factor.function_id not in inputs.branch_thresholds:
            continue
        contingency_id = inputs.contingency_id(value.contingency_index)
        key = (factor.function_id, contingency_id)

        if not factor.function_type.is_current:
            if key not in active_power_seen:
                active_power_seen.add(key)
                context.branch_result(contingency_id, factor.function_id).p = value.function_reference
            continue

        if key not in observations:
            observations[key] = BranchObservation(
                branch_id=factor.function_id,
                contingency_id=contingency_id,
                side=factor.function_type.side,
                function_reference=value.function_reference,
            )
        observation = observations[key]
        if observation.side == factor.function_type.side:
            observation.sensitivities[factor.variable_id] = value.value
    return observations


def sum_by_energy_source(values: dict[str, float], energy_sources: dict[str, EnergySource]) -> dict[EnergySource, float]:
    """Sum a per generator quantity by energy source"""
    result: dict[EnergySource, float] = {}
    for generator_id, value in values.items():
        energy_source = energy_sources[generator_id]
        result[energy_source] = result.get(energy_source, 0.0) + value
    return result


def record_applied_cappings(violation: BranchViolation, inputs: SensitivityInputs, context: StageContext) -> None:
    """Accumulate the cappings of the violation chosen for application into the stage context and detail results."""
    branch_result = context.branch_result(violation.contingency_id, violation.branch_id)
    for generator_id, capping in violation.dispatch.cappings.items():
        stage_capping = context.generator_capping(generator_id)
        stage_capping.capping = capping
        stage_capping.cumulated_capping += capping

        branch_capping = branch_result.generators_capping.get(generator_id)
        if branch_capping is None:
            branch_capping = GeneratorCapping(
                generator_id=generator_id,
                energy_source=stage_capping.energy_source,
                p_init=stage_capping.p_init,
            )
            branch_result.generators_capping[generator_id] = branch_capping
        branch_capping.capping = capping
        branch_capping.cumulated_capping += capping

    capping_by_energy_source = dict(branch_result.capping_by_energy_source)
    for energy_source, capping in sum_by_energy_source(
        violation.dispatch.cappings, inputs.generator_energy_sources
    ).items():
        capping_by_energy_source[energy_source] = capping_by_energy_source.get(energy_source, 0.0) + capping
    branch_result.capping_by_energy_source = capping_by_energy_source
    branch_result.overall_capping = float(sum(capping_by_energy_source.values()))


def analyze_sensitivity_results(
    grid: Grid,
    outcome: SensitivityOutcome,
    inputs: SensitivityInputs,
    context: StageContext,
    epsilon_max_variation: float = EPSILON_MAX_VARIATION,
) -> CappingResult:
    """Compare the flows of a sensitivity outcome to the limits and dispatch the cappings of the worst violation.

    Parameters
    ----------
    grid : Grid
        The grid, providing the current target P of the generators
    outcome : SensitivityOutcome
        The answer of the sensitivity oracle
    inputs : SensitivityInputs
        The request of the stage
    context : StageContext
        The stage context, receiving the detail results and the applied cappings
    epsilon_max_variation : float
        Largest variation below which the stage counts as converged

    Returns
    -------
    CappingResult
        Ok(IterationAnalysis) or Fatal if a sensitive generator vanished from the grid
    """
    limiting_violation: Optional[BranchViolation] = None
    max_variation = -math.inf
    violation_count = 0

    for observation in collect_branch_observations(outcome, inputs, context).values():
        threshold = inputs.branch_thresholds[observation.branch_id]
        limit = threshold.limit_infos(observation.side, observation.contingency_id)
        if math.isnan(limit.value):
            continue

        branch_result = context.branch_result(observation.contingency_id, observation.branch_id)
        branch_result.intensity = observation.function_reference
        branch_result.limit_name = limit.limit_name
        branch_result.limit_value = limit.value
        branch_result.percent_overload = (
            observation.function_reference / limit.value * 100 if limit.value != 0 else None
        )
        branch_result.sensitivity_by_energy_source = sum_by_energy_source(
            observation.sensitivities, inputs.generator_energy_sources
        )

        delta = limit.value - observation.function_reference
        if delta >= 0:
            continue

        violation_count += 1
        target_p = {}
        for generator_id in observation.sensitivities:
            generator = grid.get_generator(generator_id)
            if generator is None:
                return generator_not_found(generator_id)
            target_p[generator_id] = generator.target_p
        dispatch = dispatch_capping(observation.sensitivities, abs(delta), target_p)
        logger.debug(
            f"Branch {observation.branch_id} violated under {observation.contingency_id or 'N'} by {-delta:.2f}, "
            f"variation {dispatch.variation:.2f}"
        )
        if dispatch.variation > max_variation:
            max_variation = dispatch.variation
            limiting_violation = BranchViolation(
                branch_id=observation.branch_id,
                contingency_id=observation.contingency_id,
                delta=delta,
                dispatch=dispatch,
            )

    if limiting_violation is None or max_variation < epsilon_max_variation:
        return Ok(
            IterationAnalysis(
                no_more_limit_violation=True,
                cappings={},
                max_variation=max(max_variation, 0.0),
                limiting_violation=limiting_violation,
                violation_count=violation_count,
            )
        )

    record_applied_cappings(limiting_violation, inputs, context)
    return Ok(
        IterationAnalysis(
            no_more_limit_violation=False,
            cappings=dict(limiting_violation.dispatch.cappings),
            max_variation=max_variation,
            limiting_violation=limiting_violation,
            violation_count=violation_count,
        )
    )
