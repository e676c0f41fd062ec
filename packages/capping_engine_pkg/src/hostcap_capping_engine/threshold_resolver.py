# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Resolve the threshold configuration of a monitored branch group against the current limits of a branch.

There are two limit classes, N for the base case and N-1 for contingencies. For each class either the permanent limit or a
named temporary limit is configured, scaled by a percentage coefficient. Each side of the branch is resolved on its own,
a side without any current limit is not monitored.
"""

import math
from dataclasses import dataclass, field

from beartype.typing import Optional
from hostcap_capping_engine.errors import (
    CappingResult,
    Fatal,
    Ok,
    no_current_limits,
    no_permanent_limit,
    temporary_limit_not_found,
)
from hostcap_capping_engine.grid_access import BranchCurrentLimits, BranchSide
from hostcap_interfaces.capping_definition import MonitoredBranchGroup

PERMANENT_LIMIT_NAME = "permanent_limit"
"""The name the permanent limit is reported under, as in the powsybl operational limits"""


@dataclass(frozen=True)
class LimitClassThreshold:
    """The resolved limit of one limit class (N or N-1) of a branch"""

    limit_name: str
    """The temporary limit name or PERMANENT_LIMIT_NAME"""

    coefficient: float
    """Percentage applied to the raw limit values"""

    raw_limits: dict[BranchSide, float] = field(default_factory=dict)
    """The unscaled limit value per monitored side"""

    @property
    def sides(self) -> tuple[BranchSide, ...]:
        """The monitored sides, side one first"""
        return tuple(side for side in BranchSide if side in self.raw_limits)

    def limit_value(self, side: BranchSide) -> float:
        """The scaled limit of a side, NaN if the side is not monitored"""
        if side not in self.raw_limits:
            return math.nan
        return self.raw_limits[side] * self.coefficient / 100


@dataclass(frozen=True)
class LimitInfos:
    """The limit a flow is compared to"""

    limit_name: Optional[str]
    value: float


@dataclass(frozen=True)
class MonitoredBranchThreshold:
    """The resolved thresholds of a monitored branch for both limit classes"""

    branch_id: str
    n: Optional[LimitClassThreshold]
    nm1: Optional[LimitClassThreshold]

    def for_contingency(self, contingency_id: Optional[str]) -> Optional[LimitClassThreshold]:
        """The limit class applying to a contingency, the N class for the base case (None)"""
        return self.n if contingency_id is None else self.nm1

    def limit_infos(self, side: BranchSide, contingency_id: Optional[str]) -> LimitInfos:
        """The limit name and scaled value for a side under a contingency.

        Parameters
        ----------
        side : BranchSide
            The side of the branch
        contingency_id : Optional[str]
            The contingency, None for the base case

        Returns
        -------
        LimitInfos
            The limit, with a NaN value if this side is not monitored under the contingency
        """
        limit_class = self.for_contingency(contingency_id)
        if limit_class is None:
            return LimitInfos(limit_name=None, value=math.nan)
        return LimitInfos(limit_name=limit_class.limit_name, value=limit_class.limit_value(side))


def resolve_limit_class(
    limits: BranchCurrentLimits,
    apply_permanent_limit: bool,
    temporary_limit_name: Optional[str],
    coefficient: float,
) -> CappingResult:
    """Resolve one limit class of a branch.

    The permanent limit takes precedence over a temporary limit name. A class with neither is not monitored.

    Parameters
    ----------
    limits : BranchCurrentLimits
        The current limits of the branch
    apply_permanent_limit : bool
        Whether the permanent limit is monitored
    temporary_limit_name : Optional[str]
        The name of the temporary limit to monitor instead
    coefficient : float
        The percentage applied to the limit

    Returns
    -------
    CappingResult
        Ok(LimitClassThreshold) or Ok(None) if the class is not monitored, Fatal if a configured limit is missing
    """
    if not apply_permanent_limit and not temporary_limit_name:
        return Ok(None)

    raw_limits = {}
    for side in BranchSide:
        side_limits = limits.side(side)
        if side_limits is None:
            continue
        if apply_permanent_limit:
            if not math.isfinite(side_limits.permanent_limit):
                return no_permanent_limit(limits.branch_id, side.name)
            raw_limits[side] = side_limits.permanent_limit
        else:
            temporary_limit = side_limits.get_temporary_limit(temporary_limit_name)
            if temporary_limit is None:
                return temporary_limit_not_found(temporary_limit_name, limits.branch_id, side.name)
            raw_limits[side] = temporary_limit.value

    limit_name = PERMANENT_LIMIT_NAME if apply_permanent_limit else temporary_limit_name
    return Ok(LimitClassThreshold(limit_name=limit_name, coefficient=coefficient, raw_limits=raw_limits))


def resolve_threshold(group: MonitoredBranchGroup, limits: BranchCurrentLimits) -> CappingResult:
    """Resolve the N and N-1 thresholds of a branch of a monitored branch group.

    Parameters
    ----------
    group : MonitoredBranchGroup
        The group holding the threshold configuration
    limits : BranchCurrentLimits
        The current limits of the branch

    Returns
    -------
    CappingResult
        Ok(MonitoredBranchThreshold) or Fatal if the branch has no current limit at all or a configured limit is
        missing on one of its sides
    """
    if not limits.has_current_limits():
        return no_current_limits(limits.branch_id)

    n = resolve_limit_class(limits, group.apply_permanent_limit_n, group.temporary_limit_name_n, group.n_coefficient)
    if isinstance(n, Fatal):
        return n
    nm1 = resolve_limit_class(
        limits, group.apply_permanent_limit_nm1, group.temporary_limit_name_nm1, group.nm1_coefficient
    )
    if isinstance(nm1, Fatal):
        return nm1
    return Ok(MonitoredBranchThreshold(branch_id=limits.branch_id, n=n.value, nm1=nm1.value))
