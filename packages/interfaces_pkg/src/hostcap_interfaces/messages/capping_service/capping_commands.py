# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Defines the commands the backend sends to the capping worker.

Start and shutdown commands are sent on the command topic, which is consumed by one worker per message. Cancel commands
are sent on the cancel topic, which every worker listens to while computing.
"""

import uuid
from datetime import datetime

from beartype.typing import Literal, Union
from pydantic import BaseModel, Field
from hostcap_interfaces.capping_definition import CappingInputData


class StartCappingCommand(BaseModel):
    """Command with the input for starting a capping computation."""

    message_type: Literal["start_capping"] = "start_capping"
    """The command type for deserialization, don't change this"""

    computation_id: str
    """The id of the computation, used to identify the results. Should be equal to the kafka event key"""

    grid_file: str
    """The grid file to load, relative to the processed gridfile folder of the worker"""

    input_data: CappingInputData
    """The stages, generators, monitored branches and contingencies of the computation"""

    base_variant_id: str = "InitialState"
    """The network variant the stage variants are cloned from"""


class CancelCappingCommand(BaseModel):
    """Command to cancel a running capping computation."""

    message_type: Literal["cancel_capping"] = "cancel_capping"
    """The command type for deserialization, don't change this"""

    computation_id: str
    """The id of the computation to cancel"""


class ShutdownCommand(BaseModel):
    """Command to shutdown the worker."""

    message_type: Literal["shutdown"] = "shutdown"
    """The command type for deserialization, don't change this"""

    exit_code: int = 0
    """The exit code to exit with"""


class CappingServiceCommand(BaseModel):
    """Base class for all commands to the capping worker."""

    command: Union[StartCappingCommand, CancelCappingCommand, ShutdownCommand] = Field(discriminator="message_type")
    """The actual command"""

    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    """A unique identifier for the command message, used to avoid duplicate processing on worker side"""

    timestamp: str = Field(default_factory=lambda: str(datetime.now()))
    """When the command was sent"""
