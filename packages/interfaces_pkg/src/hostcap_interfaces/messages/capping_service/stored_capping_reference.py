# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""A reference to stored capping results, in a separate file because both the results messages and the helpers use it."""

from pydantic import BaseModel


class StoredCappingReference(BaseModel):
    """A reference to stored capping results on disk or in an object store.

    Detail results grow with the number of stages, contingencies and monitored branches and are too large to be sent over
    kafka. They are written with the functions in `capping_result_helpers.py` through `fsspec`, so they can live on local
    disk, in an Azure bucket, ...

    The reference contains the filename relative to the base path or bucket of the filesystem, i.e. if a DirFileSystem is
    used with base_path="/path/to/base" and relative_path is "cappings/run_1.json", the full path is
    "/path/to/base/cappings/run_1.json".
    """

    relative_path: str
    """The path of the stored results relative to the base path or bucket in the filesystem."""
