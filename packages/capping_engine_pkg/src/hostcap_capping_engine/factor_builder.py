# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Build the sensitivity computation request of a stage.

Two kinds of factors are requested for every monitored side of every monitored branch:
- the active power towards each generator group, shifted as a variable set proportional to max_p. This reports the
  active power flow on the branch.
- the current towards each individual capping generator. These are used to detect violations and to attribute cappings.

N factors are computed without contingency, N-1 factors once per contingency.
"""

from dataclasses import dataclass

from beartype.typing import Optional
from logbook import Logger
from hostcap_capping_engine.errors import CappingResult, Fatal, Ok, generator_not_found
from hostcap_capping_engine.grid_access import BranchSide, Grid
from hostcap_capping_engine.sensitivity_oracle import (
    ContingencyContext,
    SensitivityFactor,
    SensitivityFunctionType,
    SensitivityVariableSet,
    WeightedVariable,
)
from hostcap_capping_engine.threshold_resolver import MonitoredBranchThreshold, resolve_threshold
from hostcap_interfaces.capping_definition import (
    CappingInputData,
    Contingency,
    EnergySource,
    GeneratorGroup,
)

logger = Logger(__name__)

VARIABLE_SET_SUFFIX = " (PROPORTIONAL_MAXP)"


@dataclass(frozen=True)
class SensitivityInputs:
    """Everything sent to the sensitivity oracle, plus the branch thresholds to evaluate its answer"""

    factors: tuple[SensitivityFactor, ...]
    variable_sets: tuple[SensitivityVariableSet, ...]
    contingencies: tuple[Contingency, ...]
    branch_thresholds: dict[str, MonitoredBranchThreshold]
    """The threshold of every branch that produced at least one factor"""

    generator_energy_sources: dict[str, EnergySource]
    """The energy source of every capping generator"""

    def contingency_id(self, contingency_index: int) -> Optional[str]:
        """Map a contingency index of a sensitivity value to its id, None for the base case"""
        if contingency_index < 0:
            return None
        return self.contingencies[contingency_index].id


def variable_set_id(group: GeneratorGroup) -> str:
    """The id of the variable set of a generator group"""
    return f"{group.name}{VARIABLE_SET_SUFFIX}"


def build_branch_factors(
    threshold: MonitoredBranchThreshold,
    variable_id: str,
    variable_set: bool,
    contingencies: tuple[Contingency, ...],
) -> list[SensitivityFactor]:
    """Build the factors of one variable against every monitored side of a branch.

    Parameters
    ----------
    threshold : MonitoredBranchThreshold
        The resolved threshold, telling which sides are monitored in N and N-1
    variable_id : str
        The generator or variable set id
    variable_set : bool
        Whether variable_id is a variable set, which yields active power instead of current factors
    contingencies : tuple[Contingency, ...]
        The contingencies of the N-1 factors

    Returns
    -------
    list[SensitivityFactor]
        The factors, side one before side two and N before N-1
    """
    factors = []
    for side in BranchSide:
        function_type = (
            SensitivityFunctionType.active_power(side) if variable_set else SensitivityFunctionType.current(side)
        )
        if threshold.n is not None and side in threshold.n.raw_limits:
            factors.append(
                SensitivityFactor(
                    function_type=function_type,
                    function_id=threshold.branch_id,
                    variable_id=variable_id,
                    variable_set=variable_set,
                    contingency_context=ContingencyContext.none(),
                )
            )
        if threshold.nm1 is not None and side in threshold.nm1.raw_limits:
            factors.extend(
                SensitivityFactor(
                    function_type=function_type,
                    function_id=threshold.branch_id,
                    variable_id=variable_id,
                    variable_set=variable_set,
                    contingency_context=ContingencyContext.specific(contingency.id),
                )
                for contingency in contingencies
            )
    return factors


def build_variable_sets(grid: Grid, input_data: CappingInputData) -> CappingResult:
    """Build one variable set per activated generator group, weighting each generator by its max_p.

    Generators of another energy source than their group are excluded with a warning.

    Returns
    -------
    CappingResult
        Ok((variable sets, energy source per capping generator)) or Fatal if a generator does not exist
    """
    variable_sets = []
    generator_energy_sources = {}
    for group in input_data.generators_cappings.groups:
        if not group.activated:
            continue
        variables = []
        for generator_id in group.generators:
            generator = grid.get_generator(generator_id)
            if generator is None:
                return generator_not_found(generator_id)
            if generator.energy_source != group.energy_source:
                logger.warning(
                    f"Generator {generator_id} has energy source {generator.energy_source.value} but is in group "
                    f"{group.name} of energy source {group.energy_source.value}, ignoring it"
                )
                continue
            variables.append(WeightedVariable(variable_id=generator_id, weight=generator.max_p))
            generator_energy_sources[generator_id] = group.energy_source
        if variables:
            variable_sets.append(SensitivityVariableSet(id=variable_set_id(group), variables=tuple(variables)))
    return Ok((tuple(variable_sets), generator_energy_sources))


def resolve_monitored_branches(grid: Grid, input_data: CappingInputData) -> CappingResult:
    """Resolve the thresholds of all branches of the activated monitored branch groups.

    Branches missing in the grid are skipped with a warning. A branch listed in more than one group keeps the
    threshold of the first group.

    Returns
    -------
    CappingResult
        Ok(list of MonitoredBranchThreshold) or the Fatal of the first branch that could not be resolved
    """
    thresholds: dict[str, MonitoredBranchThreshold] = {}
    for group in input_data.monitored_branches:
        if not group.activated:
            continue
        for branch_id in group.branches:
            if branch_id in thresholds:
                logger.warning(f"Branch {branch_id} is monitored by more than one group, keeping the first one")
                continue
            limits = grid.get_branch_limits(branch_id)
            if limits is None:
                logger.warning(f"Monitored branch {branch_id} not found in the grid, ignoring it")
                continue
            result = resolve_threshold(group, limits)
            if isinstance(result, Fatal):
                return result
            thresholds[branch_id] = result.value
    return Ok(list(thresholds.values()))


def build_sensitivity_inputs(grid: Grid, input_data: CappingInputData) -> CappingResult:
    """Build the factors, variable sets and branch thresholds of a stage.

    Parameters
    ----------
    grid : Grid
        The grid, with the working variant set to the stage variant
    input_data : CappingInputData
        The computation input

    Returns
    -------
    CappingResult
        Ok(SensitivityInputs) or Fatal if a generator is missing or a threshold can not be resolved
    """
    contingencies = []
    for contingency in input_data.contingencies:
        if contingency.is_basecase():
            logger.warning(f"Contingency {contingency.id} has no elements, ignoring it")
            continue
        contingencies.append(contingency)
    contingencies = tuple(contingencies)

    variable_sets_result = build_variable_sets(grid, input_data)
    if isinstance(variable_sets_result, Fatal):
        return variable_sets_result
    variable_sets, generator_energy_sources = variable_sets_result.value

    thresholds_result = resolve_monitored_branches(grid, input_data)
    if isinstance(thresholds_result, Fatal):
        return thresholds_result
    thresholds = thresholds_result.value

    factors = []
    factor_count_by_branch = {threshold.branch_id: 0 for threshold in thresholds}
    for threshold in thresholds:
        for variable_set in variable_sets:
            branch_factors = build_branch_factors(threshold, variable_set.id, True, contingencies)
            factor_count_by_branch[threshold.branch_id] += len(branch_factors)
            factors.extend(branch_factors)
    for threshold in thresholds:
        for generator_id in generator_energy_sources:
            branch_factors = build_branch_factors(threshold, generator_id, False, contingencies)
            factor_count_by_branch[threshold.branch_id] += len(branch_factors)
            factors.extend(branch_factors)

    branch_thresholds = {
        threshold.branch_id: threshold for threshold in thresholds if factor_count_by_branch[threshold.branch_id] > 0
    }
    logger.info(
        f"Built {len(factors)} sensitivity factors for {len(branch_thresholds)} monitored branches, "
        f"{len(generator_energy_sources)} generators and {len(contingencies)} contingencies"
    )
    return Ok(
        SensitivityInputs(
            factors=tuple(factors),
            variable_sets=variable_sets,
            contingencies=contingencies,
            branch_thresholds=branch_thresholds,
            generator_energy_sources=generator_energy_sources,
        )
    )
