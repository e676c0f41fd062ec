# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Outcomes and errors of the capping engine.

Configuration and data problems found while resolving thresholds, building factors or analyzing results do not raise.
They are returned as Fatal(diagnostic) so the stage runner can abort the current stage and carry on with the next one.
Exceptions are kept for conditions that end the whole computation (cancellation, unreachable oracle, missing base
variant, forbidden parameters).
"""

from dataclasses import dataclass, field
from string import Template

from beartype.typing import Any, Optional, Union
from hostcap_interfaces.capping_results import CappingError, CappingResults

NO_CURRENT_LIMITS = "monitoredBranchNoCurrentLimits"
NO_PERMANENT_LIMIT = "monitoredBranchNoPermanentLimit"
TEMPORARY_LIMIT_NOT_FOUND = "monitoredBranchTemporaryLimitNotFound"
GENERATOR_NOT_FOUND = "generatorNotFound"
SENSITIVITY_COMPUTATION_FAILED = "sensitivityComputationFailed"
STAGE_COMPUTATION_FAILED = "stageComputationFailed"


@dataclass(frozen=True)
class CappingDiagnostic:
    """A structured report of a stage level error.

    The message template uses ${name} placeholders which are filled from values.
    """

    key: str
    message_template: str
    values: dict[str, str] = field(default_factory=dict)

    @property
    def message(self) -> str:
        """The rendered message"""
        return Template(self.message_template).safe_substitute(self.values)

    def to_capping_error(self) -> CappingError:
        """Convert to the serializable error stored in the stage results"""
        return CappingError(key=self.key, message=self.message, values=dict(self.values))


@dataclass(frozen=True)
class Ok:
    """A successful outcome holding a value"""

    value: Any


@dataclass(frozen=True)
class Fatal:
    """A failed outcome that aborts the current stage"""

    diagnostic: CappingDiagnostic


CappingResult = Union[Ok, Fatal]


def no_current_limits(branch_id: str) -> Fatal:
    """The branch carries neither a permanent nor a temporary current limit on any side"""
    return Fatal(
        CappingDiagnostic(
            key=NO_CURRENT_LIMITS,
            message_template="Branch '${branch}' has no current limits !!",
            values={"branch": branch_id},
        )
    )


def no_permanent_limit(branch_id: str, side: str) -> Fatal:
    """The permanent limit is configured but missing on a side"""
    return Fatal(
        CappingDiagnostic(
            key=NO_PERMANENT_LIMIT,
            message_template="Branch '${branch}' has no permanent limit on side '${side}' !!",
            values={"branch": branch_id, "side": side},
        )
    )


def temporary_limit_not_found(limit_name: str, branch_id: str, side: str) -> Fatal:
    """A configured temporary limit name does not exist on a side"""
    return Fatal(
        CappingDiagnostic(
            key=TEMPORARY_LIMIT_NOT_FOUND,
            message_template="Temporary limit '${limit}' not found for branch '${branch}' on side '${side}' !!",
            values={"limit": limit_name, "branch": branch_id, "side": side},
        )
    )


def generator_not_found(generator_id: str) -> Fatal:
    """A referenced generator does not exist in the grid"""
    return Fatal(
        CappingDiagnostic(
            key=GENERATOR_NOT_FOUND,
            message_template="Generator '${generator}' not found !!",
            values={"generator": generator_id},
        )
    )


def sensitivity_computation_failed(stage_name: str, reason: str) -> Fatal:
    """The sensitivity computation raised or timed out"""
    return Fatal(
        CappingDiagnostic(
            key=SENSITIVITY_COMPUTATION_FAILED,
            message_template="Sensitivity computation failed in stage '${stage}': ${reason}",
            values={"stage": stage_name, "reason": reason},
        )
    )


def stage_computation_failed(stage_name: str, reason: str) -> Fatal:
    """An unexpected error aborted the stage"""
    return Fatal(
        CappingDiagnostic(
            key=STAGE_COMPUTATION_FAILED,
            message_template="Failure while running stage '${stage}': ${reason}",
            values={"stage": stage_name, "reason": reason},
        )
    )


class ComputationCancelledError(Exception):
    """Raised when a cancellation was requested. The stage variant has been released when this propagates.

    The results of the stages finished before the cancellation are attached, if any.
    """

    def __init__(self, message: str = "Computation cancelled", results: Optional[CappingResults] = None) -> None:
        super().__init__(message)
        self.results = results


class OracleUnavailableError(Exception):
    """Raised by a sensitivity oracle that cannot be reached at all. Ends the whole computation."""


class VariantNotFoundError(Exception):
    """Raised by a grid when the variant to clone from does not exist"""


class DcLoadflowNotAllowedError(ValueError):
    """Raised when a capping computation is requested in DC mode. Currents are only available in AC."""

    def __init__(self) -> None:
        super().__init__("Loadflow in DC mode not allowed !!")
