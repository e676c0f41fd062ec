# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Defines the results of a hosting capacity capping computation.

The detail results form a tree Stage -> Contingency -> Monitored branch, holding for every monitored branch the flow, the
limit it was compared to and the cappings attributed to the generators. The base case uses the key BASECASE_KEY in the
contingency level. The summary results fold the detail results per stage and keep the single worst branch/contingency
pair.

The summary can be converted into a pandas DataFrame following the StageSummarySchema, see capping_result_helpers.py.
"""

from enum import Enum

import pandera as pa
from beartype.typing import Optional
from pandera.typing import Index, Series
from pydantic import BaseModel, Field
from hostcap_interfaces.capping_definition import EnergySource

BASECASE_KEY = ""
"""The contingency key under which base case (N) results are stored"""


class StageStatus(Enum):
    """The outcome of a single stage of the capping computation"""

    CONVERGED = "CONVERGED"
    """No violation above the variation tolerance is left"""

    MAX_ITERATION_REACHED = "MAX_ITERATION_REACHED"
    """The iteration bound was hit with violations left. The last known cappings are reported."""

    FAILED = "FAILED"
    """The stage was aborted because of a configuration or sensitivity computation error"""

    CANCELLED = "CANCELLED"
    """The computation was cancelled while this stage was running"""


class CappingError(BaseModel):
    """A structured diagnostic describing why a stage failed"""

    key: str
    """A stable key identifying the kind of error, e.g. monitoredBranchTemporaryLimitNotFound"""

    message: str
    """The rendered human readable message"""

    values: dict[str, str] = {}
    """The values that were substituted into the message template"""


class GeneratorCapping(BaseModel):
    """The curtailment of a single generator within one stage"""

    generator_id: str
    """The grid id of the generator"""

    energy_source: EnergySource
    """The energy source of the generator"""

    p_init: float
    """The target P of the generator after applying the stage, before any capping"""

    capping: float = Field(default=0.0, exclude=True)
    """The capping attributed to the generator for the latest violation. Not serialized."""

    cumulated_capping: float = 0.0
    """The sum of all cappings applied to this generator within the stage"""


class MonitoredBranchDetailResult(BaseModel):
    """The state of a monitored branch under one contingency"""

    intensity: Optional[float] = None
    """The current on the branch in A"""

    limit_name: Optional[str] = None
    """The name of the limit the current was compared to"""

    limit_value: Optional[float] = None
    """The limit value in A, after applying the coefficient"""

    percent_overload: Optional[float] = None
    """intensity / limit_value in percent"""

    p: Optional[float] = None
    """The active power flow on the branch in MW"""

    capping_by_energy_source: dict[EnergySource, float] = {}
    """The cumulated capping attributed to this branch, per energy source"""

    overall_capping: float = 0.0
    """The sum of capping_by_energy_source"""

    sensitivity_by_energy_source: dict[EnergySource, float] = {}
    """The sum of the current sensitivities of the generators of each energy source on this branch"""

    generators_capping: dict[str, GeneratorCapping] = {}
    """The cappings attributed to this branch, per generator id"""


class ContingencyStageDetailResult(BaseModel):
    """The monitored branch results under one contingency"""

    results_by_monitored_branch: dict[str, MonitoredBranchDetailResult] = {}
    """The results per monitored branch id"""


class StageDetailResult(BaseModel):
    """The detailed results of one stage"""

    status: StageStatus = StageStatus.CONVERGED
    """How the stage ended"""

    iterations: int = 0
    """The number of sensitivity computations that were run"""

    error: Optional[CappingError] = None
    """If the stage failed, why"""

    p_init_by_energy_source: dict[EnergySource, float] = {}
    """The sum of the initial target P of the capping generators, per energy source"""

    results_by_contingency: dict[str, ContingencyStageDetailResult] = {}
    """The results per contingency id, the base case is stored under BASECASE_KEY"""


class StageSummaryContingencyResult(BaseModel):
    """The worst monitored branch of a stage under one contingency"""

    limit_violated: bool = False
    """Whether any monitored branch was capped under this contingency"""

    monitored_equipment_with_max_limit: Optional[str] = None
    """The branch with the largest overall capping"""

    monitored_equipment_power: Optional[float] = None
    """The active power on that branch in MW"""

    percent_overload: Optional[float] = None
    """The overload of that branch in percent of its limit"""

    capping: float = 0.0
    """The overall capping attributed to that branch"""

    p_lim: Optional[float] = None
    """The total initial P of the capping generators minus the capping, i.e. the hostable generation"""


class StageSummaryResult(BaseModel):
    """The summary of one stage, keeping the single worst branch/contingency pair"""

    stage_name: str
    """The display name of the stage"""

    status: StageStatus
    """How the stage ended"""

    p_init_by_energy_source: dict[EnergySource, float] = {}
    """The sum of the initial target P of the capping generators, per energy source"""

    total_capping_by_energy_source: dict[EnergySource, float] = {}
    """The capping per energy source applied during the stage, summed over all branches and contingencies"""

    p_lim_n: float = 0.0
    """The largest overall capping of any branch in the base case"""

    p_lim_nm1: float = 0.0
    """The largest overall capping of any branch under any contingency"""

    limiting_branch: Optional[str] = None
    """The monitored branch with the largest overall capping, None if nothing was capped"""

    limiting_contingency: Optional[str] = None
    """The contingency under which limiting_branch was capped, None for the base case"""

    limit_value: Optional[float] = None
    """The limit value of the limiting branch"""

    percent_overload: Optional[float] = None
    """The overload of the limiting branch in percent"""

    results_by_contingency: dict[str, StageSummaryContingencyResult] = {}
    """The worst branch per contingency id, the base case is stored under BASECASE_KEY"""


class CappingResults(BaseModel):
    """All results of a capping computation"""

    stages_detail: dict[str, StageDetailResult] = {}
    """The detail results per stage name, in computation order"""

    stages_summary: dict[str, StageSummaryResult] = {}
    """The summary results per stage name, in computation order"""


class StageSummarySchema(pa.DataFrameModel):
    """A schema for the stage summary table, one row per stage."""

    stage_name: Index[str]
    """The display name of the stage"""

    status: Series[str] = pa.Field(isin=[status.value for status in StageStatus])
    """The stage status"""

    limiting_branch: Series[str] = pa.Field(nullable=True)
    """The limiting monitored branch"""

    limiting_contingency: Series[str] = pa.Field(nullable=True)
    """The contingency of the limiting branch, null for the base case"""

    percent_overload: Series[float] = pa.Field(nullable=True)
    """The overload of the limiting branch in percent"""

    p_init: Series[float]
    """The total initial target P of all capping generators"""

    total_capping: Series[float] = pa.Field(ge=0)
    """The total capping applied during the stage"""

    p_lim_n: Series[float]
    """The largest overall capping in the base case"""

    p_lim_nm1: Series[float]
    """The largest overall capping under contingencies"""
