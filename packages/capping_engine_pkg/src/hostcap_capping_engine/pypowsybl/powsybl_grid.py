# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""A Grid backed by a pypowsybl network.

Stage variants are pypowsybl variants. The generator table is read once per working variant and kept in sync with the
updates done through set_generator_target_p. Current limits are read once, they are the same in every variant.
"""

import tempfile
from pathlib import Path

import pandas as pd
import pypowsybl
from beartype.typing import Optional
from fsspec import AbstractFileSystem
from logbook import Logger
from hostcap_capping_engine.errors import VariantNotFoundError
from hostcap_capping_engine.grid_access import (
    BranchCurrentLimits,
    BranchSide,
    GeneratorState,
    SideCurrentLimits,
    TemporaryLimit,
)
from hostcap_interfaces.capping_definition import EnergySource

logger = Logger(__name__)

POWSYBL_PERMANENT_LIMIT_NAME = "permanent_limit"


def get_current_limits(network: pypowsybl.network.Network) -> dict[str, BranchCurrentLimits]:
    """Read the current limits of all elements from the operational limits table.

    Parameters
    ----------
    network : pypowsybl.network.Network
        The network to read the limits from

    Returns
    -------
    dict[str, BranchCurrentLimits]
        The current limits per element id. Elements without any current limit are not included.
    """
    op_lim = network.get_operational_limits().reset_index()
    op_lim = op_lim[op_lim["type"] == "CURRENT"]

    sides_by_element: dict[str, dict[BranchSide, SideCurrentLimits]] = {}
    for (element_id, side_name), side_df in op_lim.groupby(["element_id", "side"], sort=False):
        if side_name not in BranchSide.__members__:
            continue
        is_permanent = side_df["name"] == POWSYBL_PERMANENT_LIMIT_NAME
        permanent = side_df.loc[is_permanent, "value"]
        temporary = side_df.loc[~is_permanent]
        sides_by_element.setdefault(element_id, {})[BranchSide[side_name]] = SideCurrentLimits(
            permanent_limit=float(permanent.iloc[0]) if len(permanent) else float("nan"),
            temporary_limits=tuple(
                TemporaryLimit(name=str(name), value=float(value))
                for name, value in zip(temporary["name"], temporary["value"], strict=True)
            ),
        )

    return {
        element_id: BranchCurrentLimits(
            branch_id=element_id,
            side_one=sides.get(BranchSide.ONE),
            side_two=sides.get(BranchSide.TWO),
        )
        for element_id, sides in sides_by_element.items()
    }


class PowsyblGrid:
    """Grid access on a pypowsybl network"""

    def __init__(self, network: pypowsybl.network.Network) -> None:
        """Wrap a network.

        Parameters
        ----------
        network : pypowsybl.network.Network
            The network. Its working variant is switched while stages run and restored when their variant is removed.
        """
        self.network = network
        self._parent_variants: dict[str, str] = {}
        self._generators: Optional[pd.DataFrame] = None
        self._branch_ids: Optional[pd.Index] = None
        self._current_limits: Optional[dict[str, BranchCurrentLimits]] = None

    def clone_variant(self, source_variant_id: str, variant_id: str) -> None:
        """Copy a variant and make the copy the working variant"""
        if source_variant_id not in self.network.get_variant_ids():
            raise VariantNotFoundError(f"Variant '{source_variant_id}' not found !!")
        self._parent_variants[variant_id] = self.network.get_working_variant_id()
        self.network.clone_variant(source_variant_id, variant_id, True)
        self.network.set_working_variant(variant_id)
        self._generators = None

    def remove_variant(self, variant_id: str) -> None:
        """Remove a variant, restoring the working variant that was active when it was cloned"""
        parent = self._parent_variants.pop(variant_id, None)
        if self.network.get_working_variant_id() == variant_id:
            if parent is None or parent == variant_id:
                parent = self.network.get_variant_ids()[0]
            self.network.set_working_variant(parent)
        self.network.remove_variant(variant_id)
        self._generators = None

    def _get_generators(self) -> pd.DataFrame:
        if self._generators is None:
            self._generators = self.network.get_generators(attributes=["target_p", "max_p", "energy_source"])
        return self._generators

    def get_generator(self, generator_id: str) -> Optional[GeneratorState]:
        """Get a generator of the working variant, None if it does not exist"""
        generators = self._get_generators()
        if generator_id not in generators.index:
            return None
        row = generators.loc[generator_id]
        return GeneratorState(
            generator_id=generator_id,
            target_p=float(row["target_p"]),
            max_p=float(row["max_p"]),
            energy_source=EnergySource(row["energy_source"]),
        )

    def set_generator_target_p(self, generator_id: str, target_p: float) -> None:
        """Set the target P of a generator in the working variant"""
        self.network.update_generators(id=[generator_id], target_p=[target_p])
        if self._generators is not None:
            self._generators.loc[generator_id, "target_p"] = target_p

    def get_branch_limits(self, branch_id: str) -> Optional[BranchCurrentLimits]:
        """Get the current limits of a line or transformer, None if it does not exist"""
        if self._branch_ids is None:
            self._branch_ids = self.network.get_branches(attributes=[]).index
        if branch_id not in self._branch_ids:
            return None
        if self._current_limits is None:
            self._current_limits = get_current_limits(self.network)
        return self._current_limits.get(branch_id, BranchCurrentLimits(branch_id=branch_id))


def load_powsybl_grid_fs(filesystem: AbstractFileSystem, file_path: Path) -> PowsyblGrid:
    """Load a network in any format pypowsybl supports from a filesystem and wrap it.

    The file is downloaded to a temporary folder first, pypowsybl only loads from local paths.

    Parameters
    ----------
    filesystem : AbstractFileSystem
        The filesystem holding the grid file
    file_path : Path
        The path of the grid file in the filesystem. The suffix selects the importer (.xiidm, .uct, .zip, ...).

    Returns
    -------
    PowsyblGrid
        The wrapped network
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        local_path = Path(temp_dir) / file_path.name
        filesystem.download(str(file_path), str(local_path))
        network = pypowsybl.network.load(str(local_path))
    logger.info(f"Loaded grid {file_path} with variants {network.get_variant_ids()}")
    return PowsyblGrid(network)
