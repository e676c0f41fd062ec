# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Fold the detail results of the stages into per stage summaries."""

from beartype.typing import Optional
from hostcap_interfaces.capping_definition import EnergySource
from hostcap_interfaces.capping_results import (
    BASECASE_KEY,
    CappingResults,
    StageDetailResult,
    StageSummaryContingencyResult,
    StageSummaryResult,
)


def get_total_capping_by_energy_source(detail: StageDetailResult) -> dict[EnergySource, float]:
    """Sum the cappings applied during a stage by energy source.

    Every applied capping is recorded on exactly one branch/contingency pair, so summing over all pairs gives the total.
    """
    total: dict[EnergySource, float] = {}
    for contingency_result in detail.results_by_contingency.values():
        for branch_result in contingency_result.results_by_monitored_branch.values():
            for energy_source, capping in branch_result.capping_by_energy_source.items():
                total[energy_source] = total.get(energy_source, 0.0) + capping
    return total


def build_stage_summary(stage_name: str, detail: StageDetailResult) -> StageSummaryResult:
    """Summarize a stage, keeping the worst branch per contingency and the single worst branch/contingency pair.

    The worst branch is the one with the largest overall capping.

    Parameters
    ----------
    stage_name : str
        The name of the stage
    detail : StageDetailResult
        The detail results of the stage

    Returns
    -------
    StageSummaryResult
        The summary. limiting_branch stays None if nothing was capped.
    """
    summary = StageSummaryResult(
        stage_name=stage_name,
        status=detail.status,
        p_init_by_energy_source=dict(detail.p_init_by_energy_source),
        total_capping_by_energy_source=get_total_capping_by_energy_source(detail),
    )
    p_init_total = float(sum(detail.p_init_by_energy_source.values()))

    worst_capping = 0.0
    for key, contingency_result in detail.results_by_contingency.items():
        contingency_summary = StageSummaryContingencyResult()
        limit_value: Optional[float] = None
        for branch_id, branch_result in contingency_result.results_by_monitored_branch.items():
            if branch_result.overall_capping > contingency_summary.capping:
                contingency_summary.limit_violated = True
                contingency_summary.monitored_equipment_with_max_limit = branch_id
                contingency_summary.monitored_equipment_power = branch_result.p
                contingency_summary.percent_overload = branch_result.percent_overload
                contingency_summary.capping = branch_result.overall_capping
                limit_value = branch_result.limit_value
        contingency_summary.p_lim = p_init_total - contingency_summary.capping
        summary.results_by_contingency[key] = contingency_summary

        if key == BASECASE_KEY:
            summary.p_lim_n = max(summary.p_lim_n, contingency_summary.capping)
        else:
            summary.p_lim_nm1 = max(summary.p_lim_nm1, contingency_summary.capping)

        if contingency_summary.capping > worst_capping:
            worst_capping = contingency_summary.capping
            summary.limiting_branch = contingency_summary.monitored_equipment_with_max_limit
            summary.limiting_contingency = None if key == BASECASE_KEY else key
            summary.limit_value = limit_value
            summary.percent_overload = contingency_summary.percent_overload
    return summary


def aggregate_results(stage_details: dict[str, StageDetailResult]) -> CappingResults:
    """Build the results of a computation from the detail results of its stages, keyed by stage name"""
    return CappingResults(
        stages_detail=dict(stage_details),
        stages_summary={name: build_stage_summary(name, detail) for name, detail in stage_details.items()},
    )
