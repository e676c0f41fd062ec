# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

import sys
from pathlib import Path

import pandera
import pytest
from hostcap_capping_engine.grid_access import (
    BranchCurrentLimits,
    GeneratorState,
    SideCurrentLimits,
    TemporaryLimit,
)
from hostcap_interfaces.capping_definition import (
    CappingInputData,
    EnergySource,
    GeneratorGroup,
    GeneratorsCappings,
    MonitoredBranchGroup,
    StageDefinition,
    StageSelection,
)

# Setup pandera
config = pandera.config.PanderaConfig(
    validation_enabled=True, validation_depth=pandera.config.ValidationDepth.SCHEMA_AND_DATA
)
pandera.config.reset_config_context(config)

sys.path.insert(0, str(Path(__file__).parent))
from fake_grid import FakeGrid, LinearOracle


@pytest.fixture
def generators() -> list[GeneratorState]:
    return [
        GeneratorState(generator_id="W1", target_p=50.0, max_p=200.0, energy_source=EnergySource.WIND),
        GeneratorState(generator_id="S1", target_p=10.0, max_p=100.0, energy_source=EnergySource.SOLAR),
        GeneratorState(generator_id="H1", target_p=300.0, max_p=400.0, energy_source=EnergySource.HYDRO),
    ]


@pytest.fixture
def branch_limits() -> list[BranchCurrentLimits]:
    return [
        BranchCurrentLimits(
            branch_id="L1",
            side_one=SideCurrentLimits(
                permanent_limit=100.0,
                temporary_limits=(TemporaryLimit(name="IT20", value=120.0), TemporaryLimit(name="IT5", value=150.0)),
            ),
        ),
        BranchCurrentLimits(
            branch_id="L2",
            side_one=SideCurrentLimits(permanent_limit=400.0),
            side_two=SideCurrentLimits(permanent_limit=500.0),
        ),
        BranchCurrentLimits(branch_id="L3"),
    ]


@pytest.fixture
def grid(generators: list[GeneratorState], branch_limits: list[BranchCurrentLimits]) -> FakeGrid:
    return FakeGrid(generators=generators, branch_limits=branch_limits)


@pytest.fixture
def input_data() -> CappingInputData:
    """Two stages running wind and solar at full power, L1 monitored on its permanent limit in N"""
    return CappingInputData(
        stage_definitions=[
            StageDefinition(energy_source=EnergySource.WIND, generators=["W1"], p_max_percents=[50.0, 100.0]),
            StageDefinition(energy_source=EnergySource.SOLAR, generators=["S1"], p_max_percents=[100.0]),
        ],
        stage_selections=[
            StageSelection(name="full", stage_definition_indices=[0, 1], p_max_percent_indices=[1, 0]),
            StageSelection(name="half_wind", stage_definition_indices=[0], p_max_percent_indices=[0]),
        ],
        generators_cappings=GeneratorsCappings(
            groups=[
                GeneratorGroup(name="wind", energy_source=EnergySource.WIND, generators=["W1"]),
                GeneratorGroup(name="solar", energy_source=EnergySource.SOLAR, generators=["S1"]),
            ]
        ),
        monitored_branches=[MonitoredBranchGroup(branches=["L1"], apply_permanent_limit_n=True)],
    )


@pytest.fixture
def oracle() -> LinearOracle:
    """L1 carries half of the wind and a quarter of the solar infeed"""
    return LinearOracle(flows={("L1", None): {"W1": 0.5, "S1": 0.25}})
