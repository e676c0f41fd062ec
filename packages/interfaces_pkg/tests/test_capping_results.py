import math

import pandas as pd
import pandera as pa
import pytest
from fsspec.implementations.dirfs import DirFileSystem
from hostcap_interfaces.capping_definition import EnergySource
from hostcap_interfaces.capping_result_helpers import (
    get_stage_summary_dataframe,
    load_capping_results_fs,
    save_capping_results_fs,
)
from hostcap_interfaces.capping_results import (
    BASECASE_KEY,
    CappingError,
    CappingResults,
    ContingencyStageDetailResult,
    GeneratorCapping,
    MonitoredBranchDetailResult,
    StageDetailResult,
    StageStatus,
    StageSummaryContingencyResult,
    StageSummaryResult,
    StageSummarySchema,
)


@pytest.fixture
def results() -> CappingResults:
    detail = StageDetailResult(
        status=StageStatus.CONVERGED,
        iterations=2,
        p_init_by_energy_source={EnergySource.WIND: 100.0},
        results_by_contingency={
            BASECASE_KEY: ContingencyStageDetailResult(
                results_by_monitored_branch={
                    "line1": MonitoredBranchDetailResult(
                        intensity=230.0,
                        limit_name="permanent_limit",
                        limit_value=200.0,
                        percent_overload=115.0,
                        p=180.0,
                        capping_by_energy_source={EnergySource.WIND: 30.0},
                        overall_capping=30.0,
                        sensitivity_by_energy_source={EnergySource.WIND: 0.8},
                        generators_capping={
                            "gen1": GeneratorCapping(
                                generator_id="gen1",
                                energy_source=EnergySource.WIND,
                                p_init=100.0,
                                capping=10.0,
                                cumulated_capping=30.0,
                            )
                        },
                    )
                }
            )
        },
    )
    failed = StageDetailResult(
        status=StageStatus.FAILED,
        error=CappingError(key="generatorNotFound", message="Generator 'gen9' not found !!", values={"generator": "gen9"}),
    )
    return CappingResults(
        stages_detail={"stage_1": detail, "stage_2": failed},
        stages_summary={
            "stage_1": StageSummaryResult(
                stage_name="stage_1",
                status=StageStatus.CONVERGED,
                p_init_by_energy_source={EnergySource.WIND: 100.0},
                total_capping_by_energy_source={EnergySource.WIND: 30.0},
                p_lim_n=30.0,
                limiting_branch="line1",
                limiting_contingency=BASECASE_KEY,
                limit_value=200.0,
                percent_overload=115.0,
                results_by_contingency={
                    BASECASE_KEY: StageSummaryContingencyResult(
                        limit_violated=True,
                        monitored_equipment_with_max_limit="line1",
                        monitored_equipment_power=180.0,
                        percent_overload=115.0,
                        capping=30.0,
                        p_lim=70.0,
                    )
                },
            ),
            "stage_2": StageSummaryResult(stage_name="stage_2", status=StageStatus.FAILED),
        },
    )


def test_save_load_capping_results(tmp_path, results: CappingResults) -> None:
    fs = DirFileSystem(str(tmp_path))
    reference = save_capping_results_fs(fs, "runs/run_1.json", results)
    assert reference.relative_path == "runs/run_1.json"
    assert (tmp_path / "runs" / "run_1.json").exists()

    loaded = load_capping_results_fs(fs, reference)
    assert loaded.stages_summary == results.stages_summary
    assert loaded.stages_detail["stage_2"] == results.stages_detail["stage_2"]
    branch = loaded.stages_detail["stage_1"].results_by_contingency[BASECASE_KEY].results_by_monitored_branch["line1"]
    assert branch.capping_by_energy_source == {EnergySource.WIND: 30.0}
    # the capping of the last iteration is not stored
    assert branch.generators_capping["gen1"].capping == 0.0
    assert branch.generators_capping["gen1"].cumulated_capping == 30.0


def test_stage_summary_dataframe(results: CappingResults) -> None:
    df = get_stage_summary_dataframe(results)
    StageSummarySchema.validate(df)
    assert list(df.index) == ["stage_1", "stage_2"]

    assert df.loc["stage_1", "status"] == "CONVERGED"
    assert df.loc["stage_1", "limiting_branch"] == "line1"
    assert df.loc["stage_1", "total_capping"] == 30.0
    assert df.loc["stage_1", "p_init"] == 100.0
    assert df.loc["stage_1", "p_lim_n"] == 30.0

    assert df.loc["stage_2", "status"] == "FAILED"
    assert pd.isna(df.loc["stage_2", "limiting_branch"])
    assert math.isnan(df.loc["stage_2", "percent_overload"])
    assert df.loc["stage_2", "total_capping"] == 0.0


def test_stage_summary_schema_rejects_unknown_status(results: CappingResults) -> None:
    df = get_stage_summary_dataframe(results)
    df.loc["stage_2", "status"] = "UNKNOWN"
    with pytest.raises(pa.errors.SchemaError):
        StageSummarySchema.validate(df)


def test_empty_results() -> None:
    df = get_stage_summary_dataframe(CappingResults())
    assert df.empty
