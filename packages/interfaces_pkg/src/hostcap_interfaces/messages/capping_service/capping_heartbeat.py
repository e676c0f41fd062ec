# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Heartbeat messages of the capping worker."""

import uuid
from datetime import datetime

from beartype.typing import Optional
from pydantic import BaseModel, Field


class CappingStatusInfo(BaseModel):
    """A status info to inform about an ongoing capping computation."""

    computation_id: str
    """The id of the capping computation."""

    runtime: float
    """The amount of time since the start of the computation."""

    message: Optional[str] = ""
    """An optional message, e.g. the stage and iteration currently running"""


class CappingHeartbeat(BaseModel):
    """A message class for heartbeats from the capping worker.

    When idle, this just sends a hello, and when computing it also conveys the current status of the computation
    """

    instance_id: str = ""
    """The instance id of the worker sending the heartbeat"""

    idle: bool
    """Whether the worker is idle"""

    status_info: Optional[CappingStatusInfo]
    """If not idle, a status update"""

    timestamp: str = Field(default_factory=lambda: str(datetime.now()))
    """When the heartbeat was sent"""

    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    """A unique identifier for this heartbeat message, used to avoid duplicates during processing"""
