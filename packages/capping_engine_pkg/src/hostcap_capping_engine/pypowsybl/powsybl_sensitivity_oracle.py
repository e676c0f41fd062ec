# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""A SensitivityOracle running the AC sensitivity analysis of pypowsybl.

pypowsybl works with factor matrices, i.e. the cross product of a list of functions and a list of variables under a
contingency context. The individual factors of the engine are therefore grouped by (function type, variable kind,
contingency context) into one matrix each and the requested factors are read back from the resulting matrices.
Variable sets are translated into pypowsybl zones.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

import pandas as pd
import pypowsybl
from beartype.typing import Optional
from logbook import Logger
from pypowsybl.sensitivity import ContingencyContextType as PowsyblContingencyContextType
from pypowsybl.sensitivity import SensitivityFunctionType as PowsyblSensitivityFunctionType
from pypowsybl.sensitivity import SensitivityVariableType
from hostcap_capping_engine.errors import DcLoadflowNotAllowedError
from hostcap_capping_engine.grid_access import Grid
from hostcap_capping_engine.pypowsybl.powsybl_grid import PowsyblGrid
from hostcap_capping_engine.sensitivity_oracle import (
    BASECASE_CONTINGENCY_INDEX,
    ContingencyStatus,
    SensitivityFactor,
    SensitivityOutcome,
    SensitivityValue,
    SensitivityVariableSet,
)
from hostcap_interfaces.capping_definition import CappingParameters, Contingency

logger = Logger(__name__)

# see https://powsybl.readthedocs.io/projects/powsybl-open-loadflow/en/latest/
OPENLOADFLOW_PARAM_SENSITIVITY = {
    "slackDistributionFailureBehavior": "LEAVE_ON_SLACK_BUS",
}


@dataclass
class FactorMatrix:
    """The factors of the engine sharing a pypowsybl factor matrix"""

    matrix_id: str
    function_type: PowsyblSensitivityFunctionType
    context_type: PowsyblContingencyContextType
    factor_indices: list[int] = field(default_factory=list)
    function_ids: list[str] = field(default_factory=list)
    variable_ids: list[str] = field(default_factory=list)
    contingency_ids: list[str] = field(default_factory=list)

    def add(self, factor_index: int, factor: SensitivityFactor) -> None:
        """Add a factor, extending the function, variable and contingency lists if needed"""
        self.factor_indices.append(factor_index)
        if factor.function_id not in self.function_ids:
            self.function_ids.append(factor.function_id)
        if factor.variable_id not in self.variable_ids:
            self.variable_ids.append(factor.variable_id)
        contingency_id = factor.contingency_context.contingency_id
        if contingency_id is not None and contingency_id not in self.contingency_ids:
            self.contingency_ids.append(contingency_id)


def build_sensitivity_parameters(parameters: CappingParameters) -> pypowsybl.sensitivity.Parameters:
    """Translate the capping parameters into pypowsybl sensitivity parameters.

    Parameters
    ----------
    parameters : CappingParameters
        The computation parameters

    Returns
    -------
    pypowsybl.sensitivity.Parameters
        The AC sensitivity parameters

    Raises
    ------
    DcLoadflowNotAllowedError
        If the parameters request DC mode
    """
    if parameters.dc:
        raise DcLoadflowNotAllowedError()
    load_flow_parameters = pypowsybl.loadflow.Parameters(
        distributed_slack=parameters.distributed_slack,
        balance_type=pypowsybl.loadflow.BalanceType.PROPORTIONAL_TO_GENERATION_P,
        dc_use_transformer_ratio=True,
        provider_parameters={**OPENLOADFLOW_PARAM_SENSITIVITY, **parameters.provider_parameters},
    )
    return pypowsybl.sensitivity.Parameters(load_flow_parameters=load_flow_parameters)


def group_factor_matrices(factors: tuple[SensitivityFactor, ...]) -> list[FactorMatrix]:
    """Group factors by function type, variable kind and contingency context type, one pypowsybl matrix per group."""
    matrices: dict[tuple, FactorMatrix] = {}
    for factor_index, factor in enumerate(factors):
        key = (factor.function_type, factor.variable_set, factor.contingency_context.context_type)
        if key not in matrices:
            matrices[key] = FactorMatrix(
                matrix_id=f"matrix_{len(matrices)}",
                function_type=PowsyblSensitivityFunctionType.__members__[factor.function_type.value],
                context_type=PowsyblContingencyContextType.__members__[factor.contingency_context.context_type.value],
            )
        matrices[key].add(factor_index, factor)
    return list(matrices.values())


def _read_matrices(
    result: pypowsybl.sensitivity.SensitivityAnalysisResult,
    matrix: FactorMatrix,
    contingency_id: Optional[str],
) -> tuple[Optional[pd.DataFrame], Optional[pd.DataFrame]]:
    sensitivities = result.get_sensitivity_matrix(matrix.matrix_id, contingency_id)
    references = result.get_reference_matrix(matrix.matrix_id, contingency_id)
    return sensitivities, references


def extract_sensitivity_values(
    result: pypowsybl.sensitivity.SensitivityAnalysisResult,
    factors: tuple[SensitivityFactor, ...],
    matrices: list[FactorMatrix],
    contingencies: tuple[Contingency, ...],
    sensitivity_threshold: float,
) -> tuple[list[SensitivityValue], list[ContingencyStatus]]:
    """Read the values of the requested factors back from the pypowsybl matrices.

    Parameters
    ----------
    result : pypowsybl.sensitivity.SensitivityAnalysisResult
        The pypowsybl result
    factors : tuple[SensitivityFactor, ...]
        The requested factors
    matrices : list[FactorMatrix]
        The matrices the factors were grouped into
    contingencies : tuple[Contingency, ...]
        The contingencies of the request, defining the contingency indices
    sensitivity_threshold : float
        Values with an absolute sensitivity below this threshold are dropped

    Returns
    -------
    tuple[list[SensitivityValue], list[ContingencyStatus]]
        The values in factor order and the status of every contingency that appears in a factor
    """
    contingency_indices = {contingency.id: index for index, contingency in enumerate(contingencies)}
    values = []
    statuses: dict[str, str] = {}
    for matrix in matrices:
        cache: dict[Optional[str], tuple[Optional[pd.DataFrame], Optional[pd.DataFrame]]] = {}
        for factor_index in matrix.factor_indices:
            factor = factors[factor_index]
            contingency_id = factor.contingency_context.contingency_id
            if contingency_id not in cache:
                cache[contingency_id] = _read_matrices(result, matrix, contingency_id)
                if contingency_id is not None:
                    statuses[contingency_id] = "SUCCESS" if cache[contingency_id][0] is not None else "FAILURE"
            sensitivities, references = cache[contingency_id]
            if sensitivities is None or references is None:
                continue
            value = float(sensitivities.loc[factor.variable_id, factor.function_id])
            if abs(value) < sensitivity_threshold:
                continue
            values.append(
                SensitivityValue(
                    factor_index=factor_index,
                    contingency_index=(
                        BASECASE_CONTINGENCY_INDEX if contingency_id is None else contingency_indices[contingency_id]
                    ),
                    value=value,
                    function_reference=float(references.iloc[0][factor.function_id]),
                )
            )
    values.sort(key=lambda sensitivity_value: sensitivity_value.factor_index)
    return values, [ContingencyStatus(contingency_id=key, status=status) for key, status in statuses.items()]


def run_powsybl_sensitivity(
    network: pypowsybl.network.Network,
    variant_id: str,
    factors: tuple[SensitivityFactor, ...],
    contingencies: tuple[Contingency, ...],
    variable_sets: tuple[SensitivityVariableSet, ...],
    parameters: CappingParameters,
    sensitivity_threshold: float,
) -> SensitivityOutcome:
    """Run an AC sensitivity analysis on a variant of a network.

    Parameters
    ----------
    network : pypowsybl.network.Network
        The network
    variant_id : str
        The variant to compute on
    factors : tuple[SensitivityFactor, ...]
        The requested factors
    contingencies : tuple[Contingency, ...]
        The contingencies referenced by the factors
    variable_sets : tuple[SensitivityVariableSet, ...]
        The variable sets referenced by the factors
    parameters : CappingParameters
        The computation parameters
    sensitivity_threshold : float
        Values with an absolute sensitivity below this threshold are dropped

    Returns
    -------
    SensitivityOutcome
        The computed values
    """
    sensitivity_parameters = build_sensitivity_parameters(parameters)
    if network.get_working_variant_id() != variant_id:
        network.set_working_variant(variant_id)

    analysis = pypowsybl.sensitivity.create_ac_analysis()
    for contingency in contingencies:
        if contingency.is_multi_outage():
            analysis.add_multiple_elements_contingency(contingency.elements, contingency.id)
        else:
            analysis.add_single_element_contingency(contingency.elements[0], contingency.id)

    zones = []
    for variable_set in variable_sets:
        zone = pypowsybl.sensitivity.create_empty_zone(variable_set.id)
        for variable in variable_set.variables:
            zone.add_injection(variable.variable_id, variable.weight)
        zones.append(zone)
    if zones:
        analysis.set_zones(zones)

    matrices = group_factor_matrices(factors)
    for matrix in matrices:
        analysis.add_factor_matrix(
            matrix.function_ids,
            matrix.variable_ids,
            matrix.contingency_ids,
            matrix.context_type,
            matrix.function_type,
            sensitivity_variable_type=SensitivityVariableType.INJECTION_ACTIVE_POWER,
            matrix_id=matrix.matrix_id,
        )

    logger.info(
        f"Running sensitivity analysis on variant {variant_id} with {len(factors)} factors in {len(matrices)} matrices"
    )
    result = analysis.run(network, sensitivity_parameters, parameters.provider)
    values, statuses = extract_sensitivity_values(result, factors, matrices, contingencies, sensitivity_threshold)
    return SensitivityOutcome(values=tuple(values), factors=factors, contingency_statuses=tuple(statuses))


class PowsyblSensitivityOracle:
    """Runs pypowsybl sensitivity analyses in a background thread, one at a time"""

    def __init__(self) -> None:
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="powsybl_sensitivity")

    def run(
        self,
        grid: Grid,
        variant_id: str,
        factors: tuple[SensitivityFactor, ...],
        contingencies: tuple[Contingency, ...],
        variable_sets: tuple[SensitivityVariableSet, ...],
        parameters: CappingParameters,
        sensitivity_threshold: float,
    ) -> Future:
        """Start a sensitivity analysis, the future resolves to a SensitivityOutcome"""
        if not isinstance(grid, PowsyblGrid):
            raise TypeError(f"The powsybl sensitivity oracle needs a PowsyblGrid, got {type(grid).__name__}")
        if parameters.dc:
            raise DcLoadflowNotAllowedError()
        return self.executor.submit(
            run_powsybl_sensitivity,
            grid.network,
            variant_id,
            factors,
            contingencies,
            variable_sets,
            parameters,
            sensitivity_threshold,
        )

    def close(self) -> None:
        """Shut the background thread down"""
        self.executor.shutdown(wait=True)
