# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""The state owned by a single stage while it iterates.

A StageContext is created by the stage runner when a stage starts and dropped when it ends, so no capping or detail
result leaks from one stage into the next.
"""

from dataclasses import dataclass, field

from beartype.typing import Optional
from hostcap_interfaces.capping_definition import EnergySource
from hostcap_interfaces.capping_results import (
    BASECASE_KEY,
    ContingencyStageDetailResult,
    GeneratorCapping,
    MonitoredBranchDetailResult,
    StageDetailResult,
)


def contingency_key(contingency_id: Optional[str]) -> str:
    """The key of a contingency in the results, BASECASE_KEY for the base case"""
    return BASECASE_KEY if contingency_id is None else contingency_id


@dataclass
class StageContext:
    """Per stage arena keyed by generator, contingency and branch ids"""

    stage_name: str
    variant_id: str
    initial_target_p: dict[str, float] = field(default_factory=dict)
    """The target P of every capping generator after the stage was applied"""

    energy_sources: dict[str, EnergySource] = field(default_factory=dict)
    """The energy source of every capping generator"""

    generator_cappings: dict[str, GeneratorCapping] = field(default_factory=dict)
    """The cappings of the stage, created the first time a generator is capped"""

    detail: StageDetailResult = field(default_factory=StageDetailResult)

    def capture_initial_target_p(self, target_p: dict[str, float], energy_sources: dict[str, EnergySource]) -> None:
        """Snapshot the target P of the capping generators before any reduction"""
        self.initial_target_p = dict(target_p)
        self.energy_sources = dict(energy_sources)
        p_init_by_energy_source: dict[EnergySource, float] = {}
        for generator_id, p_init in target_p.items():
            energy_source = energy_sources[generator_id]
            p_init_by_energy_source[energy_source] = p_init_by_energy_source.get(energy_source, 0.0) + p_init
        self.detail.p_init_by_energy_source = p_init_by_energy_source

    def generator_capping(self, generator_id: str) -> GeneratorCapping:
        """The stage wide capping of a generator, created on first use"""
        if generator_id not in self.generator_cappings:
            self.generator_cappings[generator_id] = GeneratorCapping(
                generator_id=generator_id,
                energy_source=self.energy_sources[generator_id],
                p_init=self.initial_target_p[generator_id],
            )
        return self.generator_cappings[generator_id]

    def branch_result(self, contingency_id: Optional[str], branch_id: str) -> MonitoredBranchDetailResult:
        """The detail result of a branch under a contingency, created on first use"""
        contingency_result = self.detail.results_by_contingency.setdefault(
            contingency_key(contingency_id), ContingencyStageDetailResult()
        )
        return contingency_result.results_by_monitored_branch.setdefault(branch_id, MonitoredBranchDetailResult())
