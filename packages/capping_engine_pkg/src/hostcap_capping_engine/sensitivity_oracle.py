# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""The request and response types of a sensitivity computation and the protocol of the solver computing them.

A factor ties a branch function (active power or current on one side) to a variable, which is either a single generator
or a weighted set of generators, under a contingency context. The solver answers with one value per factor and
contingency, carrying the sensitivity coefficient and the function reference, i.e. the flow the branch carries in the
current state of the variant.
"""

from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum

from beartype.typing import Optional, Protocol, runtime_checkable
from hostcap_capping_engine.grid_access import BranchSide, Grid
from hostcap_interfaces.capping_definition import CappingParameters, Contingency

BASECASE_CONTINGENCY_INDEX = -1
"""The contingency index of values computed without any outage"""


class SensitivityFunctionType(Enum):
    """The branch quantity a factor is about"""

    BRANCH_ACTIVE_POWER_1 = "BRANCH_ACTIVE_POWER_1"
    BRANCH_ACTIVE_POWER_2 = "BRANCH_ACTIVE_POWER_2"
    BRANCH_CURRENT_1 = "BRANCH_CURRENT_1"
    BRANCH_CURRENT_2 = "BRANCH_CURRENT_2"

    @classmethod
    def active_power(cls, side: BranchSide) -> "SensitivityFunctionType":
        """The active power function of a side"""
        return cls.BRANCH_ACTIVE_POWER_1 if side == BranchSide.ONE else cls.BRANCH_ACTIVE_POWER_2

    @classmethod
    def current(cls, side: BranchSide) -> "SensitivityFunctionType":
        """The current function of a side"""
        return cls.BRANCH_CURRENT_1 if side == BranchSide.ONE else cls.BRANCH_CURRENT_2

    @property
    def is_current(self) -> bool:
        """Whether this is a current function"""
        return self in (SensitivityFunctionType.BRANCH_CURRENT_1, SensitivityFunctionType.BRANCH_CURRENT_2)

    @property
    def side(self) -> BranchSide:
        """The branch side of the function"""
        if self in (SensitivityFunctionType.BRANCH_ACTIVE_POWER_1, SensitivityFunctionType.BRANCH_CURRENT_1):
            return BranchSide.ONE
        return BranchSide.TWO


class ContingencyContextType(Enum):
    """Under which contingencies a factor is computed"""

    NONE = "NONE"
    """Base case only"""

    ALL = "ALL"
    """Base case and all contingencies"""

    SPECIFIC = "SPECIFIC"
    """One given contingency"""


@dataclass(frozen=True)
class ContingencyContext:
    """The contingency context of a factor"""

    context_type: ContingencyContextType
    contingency_id: Optional[str] = None

    @classmethod
    def none(cls) -> "ContingencyContext":
        """The base case context"""
        return cls(ContingencyContextType.NONE)

    @classmethod
    def specific(cls, contingency_id: str) -> "ContingencyContext":
        """The context of a single contingency"""
        return cls(ContingencyContextType.SPECIFIC, contingency_id)


@dataclass(frozen=True)
class SensitivityFactor:
    """One requested sensitivity"""

    function_type: SensitivityFunctionType
    function_id: str
    """The branch id"""

    variable_id: str
    """The generator id, or the variable set id if variable_set is set"""

    variable_set: bool
    contingency_context: ContingencyContext


@dataclass(frozen=True)
class WeightedVariable:
    """A member of a variable set"""

    variable_id: str
    weight: float


@dataclass(frozen=True)
class SensitivityVariableSet:
    """A set of generators shifted together, proportionally to their weights"""

    id: str
    variables: tuple[WeightedVariable, ...]


@dataclass(frozen=True)
class SensitivityValue:
    """One computed sensitivity.

    contingency_index indexes into the contingencies of the request, BASECASE_CONTINGENCY_INDEX for the base case.
    """

    factor_index: int
    contingency_index: int
    value: float
    function_reference: float


@dataclass(frozen=True)
class ContingencyStatus:
    """Whether the loadflow under a contingency converged"""

    contingency_id: str
    status: str


@dataclass(frozen=True)
class SensitivityOutcome:
    """The answer of a sensitivity computation"""

    values: tuple[SensitivityValue, ...]
    factors: tuple[SensitivityFactor, ...]
    contingency_statuses: tuple[ContingencyStatus, ...] = ()


@runtime_checkable
class SensitivityOracle(Protocol):
    """A sensitivity solver.

    The solver is run against a variant of the grid and must derive the flows from the current state, so it can be run
    repeatedly on the same variant with updated target P values in between. The computation may run asynchronously, the
    returned future is awaited by the caller.
    """

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
        """Start a sensitivity computation, the future resolves to a SensitivityOutcome"""
