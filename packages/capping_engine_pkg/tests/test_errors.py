# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

from hostcap_capping_engine.errors import (
    NO_PERMANENT_LIMIT,
    CappingDiagnostic,
    ComputationCancelledError,
    no_permanent_limit,
    sensitivity_computation_failed,
)


def test_diagnostic_message() -> None:
    fatal = no_permanent_limit("line1", "TWO")
    assert fatal.diagnostic.key == NO_PERMANENT_LIMIT
    assert fatal.diagnostic.message == "Branch 'line1' has no permanent limit on side 'TWO' !!"

    error = fatal.diagnostic.to_capping_error()
    assert error.key == NO_PERMANENT_LIMIT
    assert error.message == fatal.diagnostic.message
    assert error.values == {"branch": "line1", "side": "TWO"}


def test_missing_values_stay_as_placeholders() -> None:
    diagnostic = CappingDiagnostic(key="key", message_template="${known} and ${unknown}", values={"known": "a"})
    assert diagnostic.message == "a and ${unknown}"


def test_reason_is_part_of_the_message() -> None:
    fatal = sensitivity_computation_failed("stage", "timeout after 10.0s")
    assert fatal.diagnostic.message == "Sensitivity computation failed in stage 'stage': timeout after 10.0s"


def test_cancelled_error_carries_partial_results() -> None:
    error = ComputationCancelledError()
    assert str(error) == "Computation cancelled"
    assert error.results is None
