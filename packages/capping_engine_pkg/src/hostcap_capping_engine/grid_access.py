# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""The small slice of a network model the capping engine reads and writes.

The engine only needs variants to isolate the stages, the target and max P of generators and the current limits of
branches. Any network backend can be plugged in by implementing the Grid protocol, see pypowsybl/powsybl_grid.py.
"""

import math
from dataclasses import dataclass
from enum import Enum

from beartype.typing import Optional, Protocol, runtime_checkable
from hostcap_interfaces.capping_definition import EnergySource


class BranchSide(Enum):
    """The side of a branch."""

    ONE = 1
    """line: from side, 2 winding trafo: high voltage side"""

    TWO = 2
    """line: to side, 2 winding trafo: low voltage side"""


@dataclass(frozen=True)
class TemporaryLimit:
    """A named temporary current limit"""

    name: str
    value: float


@dataclass(frozen=True)
class SideCurrentLimits:
    """The current limits on one side of a branch. permanent_limit is NaN if the side only has temporary limits."""

    permanent_limit: float = math.nan
    temporary_limits: tuple[TemporaryLimit, ...] = ()

    def get_temporary_limit(self, name: str) -> Optional[TemporaryLimit]:
        """Find a temporary limit by exact name match"""
        return next((limit for limit in self.temporary_limits if limit.name == name), None)


@dataclass(frozen=True)
class BranchCurrentLimits:
    """The current limits of both sides of a branch, None for a side without any current limit"""

    branch_id: str
    side_one: Optional[SideCurrentLimits] = None
    side_two: Optional[SideCurrentLimits] = None

    def side(self, side: BranchSide) -> Optional[SideCurrentLimits]:
        """Get the limits of one side"""
        return self.side_one if side == BranchSide.ONE else self.side_two

    def has_current_limits(self) -> bool:
        """Whether at least one side carries a current limit"""
        return self.side_one is not None or self.side_two is not None


@dataclass(frozen=True)
class GeneratorState:
    """A snapshot of the generator attributes the engine works with"""

    generator_id: str
    target_p: float
    max_p: float
    energy_source: EnergySource


@runtime_checkable
class Grid(Protocol):
    """A network handle with a variant mechanism.

    All reads and writes act on the working variant, which is the variant most recently created by clone_variant.
    """

    def clone_variant(self, source_variant_id: str, variant_id: str) -> None:
        """Copy source_variant_id into a new variant variant_id and make it the working variant"""

    def remove_variant(self, variant_id: str) -> None:
        """Remove a variant created by clone_variant and switch back to the variant it was cloned from"""

    def get_generator(self, generator_id: str) -> Optional[GeneratorState]:
        """Get a generator of the working variant, None if it does not exist"""

    def set_generator_target_p(self, generator_id: str, target_p: float) -> None:
        """Set the target P of a generator in the working variant"""

    def get_branch_limits(self, branch_id: str) -> Optional[BranchCurrentLimits]:
        """Get the current limits of a branch, None if the branch does not exist"""
