# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Result messages of the capping worker."""

import uuid
from datetime import datetime

from beartype.typing import Literal, Union
from pydantic import BaseModel, Field, NonNegativeFloat
from hostcap_interfaces.capping_results import StageStatus
from hostcap_interfaces.messages.capping_service.stored_capping_reference import StoredCappingReference


class CappingStartedResult(BaseModel):
    """A message that is sent when the capping computation has started"""

    result_type: Literal["capping_started"] = "capping_started"
    """The discriminator for the Result Union"""


class CappingSuccessResult(BaseModel):
    """Results of a capping computation. Individual stages may still have failed, see stage_statuses."""

    results_reference: StoredCappingReference
    """The reference to the stored detail and summary results"""

    stage_statuses: dict[str, StageStatus] = {}
    """The status of every computed stage"""

    result_type: Literal["capping_success"] = "capping_success"
    """The discriminator for the Result Union"""


class CappingCancelledResult(BaseModel):
    """A message that is sent when a computation was cancelled through a CancelCappingCommand"""

    result_type: Literal["capping_cancelled"] = "capping_cancelled"
    """The discriminator for the Result Union"""


class ErrorResult(BaseModel):
    """A message that is sent if the computation failed as a whole"""

    error: str
    """The error message"""

    result_type: Literal["error"] = "error"
    """The discriminator for the Result Union"""


class CappingBaseResult(BaseModel):
    """A generic class for result, holding either a successful or an unsuccessful result"""

    computation_id: str
    """The computation_id that was sent in the StartCappingCommand"""

    instance_id: str = ""
    """The instance id of the worker that created this result"""

    runtime: NonNegativeFloat
    """The runtime in seconds until the result"""

    result: Union[ErrorResult, CappingSuccessResult, CappingCancelledResult, CappingStartedResult] = Field(
        discriminator="result_type"
    )
    """The actual result data in a discriminated union"""

    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    """A unique identifier for this result message"""

    timestamp: str = Field(default_factory=lambda: str(datetime.now()))
    """When the result was sent"""
