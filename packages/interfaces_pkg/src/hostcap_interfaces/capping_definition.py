# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""The capping definition holds everything a hosting capacity computation needs besides the grid itself.

All identifiers in here are already resolved to grid ids, i.e. filter and contingency lists have been expanded by the
caller before the computation is started. The definition consists of
- stage definitions, one per energy source, listing the generators and the candidate output levels
- stage selections, combining one output level per stage definition into a concrete scenario
- the capping generator groups, i.e. the generators that may be curtailed
- the monitored branch groups with their threshold configuration
- the contingencies to study in addition to the base case
"""

from enum import Enum
from pathlib import Path

from beartype.typing import Optional
from fsspec import AbstractFileSystem
from fsspec.implementations.local import LocalFileSystem
from pydantic import BaseModel, Field, NonNegativeFloat, PositiveFloat, model_validator
from hostcap_interfaces.filesystem_helper import load_pydantic_model_fs, save_pydantic_model_fs


class EnergySource(Enum):
    """The energy source of a generator, named as in the powsybl network model."""

    HYDRO = "HYDRO"
    NUCLEAR = "NUCLEAR"
    WIND = "WIND"
    THERMAL = "THERMAL"
    SOLAR = "SOLAR"
    OTHER = "OTHER"


class StageDefinition(BaseModel):
    """The generators of one energy source together with the output levels that can be studied for them."""

    energy_source: EnergySource
    """The energy source of all generators in this definition"""

    generators: list[str]
    """The grid ids of the generators whose output is set by this definition"""

    p_max_percents: list[NonNegativeFloat] = Field(min_length=1)
    """Candidate output levels in percent of max_p, e.g. [100, 70]. A stage selection picks one of them."""


class StageSelection(BaseModel):
    """One concrete generation scenario, picking one output level for each referenced stage definition."""

    name: str
    """The display name of the stage, used as key in the results"""

    stage_definition_indices: list[int]
    """Indices into CappingInputData.stage_definitions"""

    p_max_percent_indices: list[int]
    """For each referenced stage definition, the index into its p_max_percents list"""

    activated: bool = True
    """Inactive stages are skipped entirely"""

    @model_validator(mode="after")
    def check_same_length(self) -> "StageSelection":
        """Check that every referenced stage definition has exactly one output level index."""
        if len(self.stage_definition_indices) != len(self.p_max_percent_indices):
            raise ValueError(
                f"Stage selection {self.name} references {len(self.stage_definition_indices)} stage definitions "
                f"but {len(self.p_max_percent_indices)} output levels"
            )
        return self


class GeneratorGroup(BaseModel):
    """A group of generators of the same energy source which can be curtailed.

    The group is represented towards the sensitivity computation as a variable set with weights proportional to max_p,
    and each generator individually to attribute cappings.
    """

    name: str
    """The name of the group, used to name its variable set"""

    energy_source: EnergySource
    """Generators of a different energy source are ignored with a warning"""

    generators: list[str]
    """The grid ids of the generators in this group"""

    activated: bool = True
    """Inactive groups do not take part in the computation"""


class GeneratorsCappings(BaseModel):
    """The curtailable generators and the sensitivity cutoff"""

    sensitivity_threshold: NonNegativeFloat = 0.01
    """Sensitivity coefficients with an absolute value below this threshold are dropped by the sensitivity computation"""

    groups: list[GeneratorGroup] = []
    """The generator groups, usually one per energy source"""


class MonitoredBranchGroup(BaseModel):
    """A group of branches whose current is monitored, sharing the same threshold configuration.

    For each of the two limit classes (N for the base case, N-1 under contingencies) either the permanent limit or a
    named temporary limit can be configured. If apply_permanent_limit is set, it takes precedence over the temporary limit
    name. A class with neither is not monitored.
    """

    branches: list[str]
    """The grid ids of the monitored branches"""

    activated: bool = True
    """Inactive groups are not monitored"""

    apply_permanent_limit_n: bool = False
    """Whether to use the permanent current limit in the base case"""

    temporary_limit_name_n: Optional[str] = None
    """The name of the temporary current limit to use in the base case, e.g. 'IT5'"""

    n_coefficient: PositiveFloat = 100.0
    """Percentage applied to the base case limit value"""

    apply_permanent_limit_nm1: bool = False
    """Whether to use the permanent current limit under contingencies"""

    temporary_limit_name_nm1: Optional[str] = None
    """The name of the temporary current limit to use under contingencies"""

    nm1_coefficient: PositiveFloat = 100.0
    """Percentage applied to the contingency limit value"""


class Contingency(BaseModel):
    """A single N-1 case, the outage of one or more grid elements"""

    id: str = Field(min_length=1)
    """The id of the contingency, used as key in the results. The empty string is reserved for the base case."""

    elements: list[str]
    """The grid ids of the elements tripped under this contingency. Empty for the base case."""

    name: str = ""
    """An optional human readable name"""

    def is_basecase(self) -> bool:
        """Check if the contingency is the N-0 base case, i.e. has no elements"""
        return len(self.elements) == 0

    def is_multi_outage(self) -> bool:
        """Check if the contingency trips more than one element"""
        return len(self.elements) > 1


class CappingParameters(BaseModel):
    """Parameters for the sensitivity computations run during the capping computation."""

    provider: str = "OpenLoadFlow"
    """The loadflow provider used by the sensitivity analysis"""

    dc: bool = False
    """Whether to run in DC mode. The capping computation monitors currents, so DC is not allowed and rejected."""

    distributed_slack: bool = True
    """Whether to distribute the slack on generators"""

    provider_parameters: dict[str, str] = {}
    """Provider specific parameters, passed through as is"""

    oracle_timeout_seconds: Optional[PositiveFloat] = None
    """How long to wait for a single sensitivity computation. None waits indefinitely."""


class CappingInputData(BaseModel):
    """Everything besides the grid needed to run a hosting capacity capping computation"""

    stage_definitions: list[StageDefinition] = []
    """The per energy source generator output levels"""

    stage_selections: list[StageSelection] = []
    """The scenarios to compute, in order"""

    generators_cappings: GeneratorsCappings = Field(default_factory=GeneratorsCappings)
    """The curtailable generators"""

    monitored_branches: list[MonitoredBranchGroup] = []
    """The monitored branches and their thresholds"""

    contingencies: list[Contingency] = []
    """The contingencies studied in addition to the base case"""

    parameters: CappingParameters = Field(default_factory=CappingParameters)
    """Parameters of the sensitivity computations"""

    @model_validator(mode="after")
    def check_stage_selection_indices(self) -> "CappingInputData":
        """Check that every stage selection only references existing stage definitions and output levels."""
        for selection in self.stage_selections:
            for definition_index, percent_index in zip(
                selection.stage_definition_indices, selection.p_max_percent_indices, strict=True
            ):
                if not 0 <= definition_index < len(self.stage_definitions):
                    raise ValueError(f"Stage selection {selection.name} references unknown definition {definition_index}")
                percents = self.stage_definitions[definition_index].p_max_percents
                if not 0 <= percent_index < len(percents):
                    raise ValueError(
                        f"Stage selection {selection.name} references output level {percent_index} "
                        f"of definition {definition_index} which only has {len(percents)}"
                    )
        return self


def load_capping_input_data_fs(filesystem: AbstractFileSystem, file_path: Path) -> CappingInputData:
    """Load the capping input data from a json file on a filesystem"""
    return load_pydantic_model_fs(filesystem=filesystem, file_path=file_path, model_class=CappingInputData)


def load_capping_input_data(filename: Path) -> CappingInputData:
    """Load the capping input data from a local json file"""
    return load_capping_input_data_fs(LocalFileSystem(), filename)


def save_capping_input_data(filename: Path, input_data: CappingInputData) -> None:
    """Save the capping input data to a local json file"""
    save_pydantic_model_fs(filesystem=LocalFileSystem(), file_path=filename, pydantic_model=input_data)
