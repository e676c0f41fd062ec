# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Capping result helpers. Holds functions to store the capping results and to tabulate the stage summaries."""

from pathlib import Path

import pandas as pd
import pandera as pa
import pandera.typing as pat
from fsspec import AbstractFileSystem
from hostcap_interfaces.capping_results import CappingResults, StageSummarySchema
from hostcap_interfaces.filesystem_helper import load_pydantic_model_fs, save_pydantic_model_fs
from hostcap_interfaces.messages.capping_service.stored_capping_reference import StoredCappingReference


def save_capping_results_fs(
    fs: AbstractFileSystem, file_path: str | Path, results: CappingResults
) -> StoredCappingReference:
    """Save capping results as json.

    Parameters
    ----------
    fs : AbstractFileSystem
        The filesystem to use to save the results. For writing to local disk, use a DirFileSystem to inject a base path:
        ```python
        from fsspec.implementations.dirfs import DirFileSystem
        fs = DirFileSystem(path="/path/to/base")
        ```
    file_path: str | Path
        The file path where to save the results to, relative to the base path or bucket of the filesystem
    results : CappingResults
        The capping results to save.

    Returns
    -------
    StoredCappingReference
        A reference to the stored capping results.
    """
    save_pydantic_model_fs(filesystem=fs, file_path=file_path, pydantic_model=results)
    return StoredCappingReference(relative_path=str(file_path))


def load_capping_results_fs(fs: AbstractFileSystem, reference: StoredCappingReference) -> CappingResults:
    """Load capping results that were stored with save_capping_results_fs.

    Parameters
    ----------
    fs : AbstractFileSystem
        The filesystem the results were saved to
    reference : StoredCappingReference
        The reference returned when saving

    Returns
    -------
    CappingResults
        The loaded results
    """
    return load_pydantic_model_fs(filesystem=fs, file_path=reference.relative_path, model_class=CappingResults)


@pa.check_types
def get_stage_summary_dataframe(results: CappingResults) -> pat.DataFrame[StageSummarySchema]:
    """Tabulate the stage summaries, one row per stage.

    Parameters
    ----------
    results : CappingResults
        The capping results holding the stage summaries

    Returns
    -------
    pat.DataFrame[StageSummarySchema]
        The summary table indexed by stage name
    """
    records = [
        {
            "stage_name": summary.stage_name,
            "status": summary.status.value,
            "limiting_branch": summary.limiting_branch,
            "limiting_contingency": summary.limiting_contingency,
            "percent_overload": summary.percent_overload if summary.percent_overload is not None else float("nan"),
            "p_init": float(sum(summary.p_init_by_energy_source.values())),
            "total_capping": float(sum(summary.total_capping_by_energy_source.values())),
            "p_lim_n": summary.p_lim_n,
            "p_lim_nm1": summary.p_lim_nm1,
        }
        for summary in results.stages_summary.values()
    ]
    columns = [
        "stage_name",
        "status",
        "limiting_branch",
        "limiting_contingency",
        "percent_overload",
        "p_init",
        "total_capping",
        "p_lim_n",
        "p_lim_nm1",
    ]
    df = pd.DataFrame.from_records(records, columns=columns).astype(
        {
            "stage_name": str,
            "status": str,
            "limiting_branch": object,
            "limiting_contingency": object,
            "percent_overload": float,
            "p_init": float,
            "total_capping": float,
            "p_lim_n": float,
            "p_lim_nm1": float,
        }
    )
    return df.set_index("stage_name")
