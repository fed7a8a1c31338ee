# Copyright 2026 Canonical, Ltd.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""Load a partition layout from YAML.

    version: 1
    regions:
      - kind: efi
        size: 512M
      - kind: root
        size: remaining
        encrypted: true
      - kind: swap
        size: 4G

A size is a number of MiB, a human readable size ("4G", "512MiB"),
"remaining", "remaining-minus:<size>" or "iso:<path>" to size the region
from the image at <path> ("iso:<bytes>" takes the image size directly).
"""

import logging
import os
from typing import List, Optional

import jsonschema
import yaml

from distromigrate.common.filesystem.sizes import bytes_to_mib_ceil, dehumanize_size
from distromigrate.common.types import (
    FilesystemKind,
    FixedMiB,
    RegionKind,
    RegionRequest,
    RemainingSpace,
    RemainingSpaceMinus,
)

log = logging.getLogger("distromigrate.layoutconfig")

LAYOUT_SCHEMA = {
    "type": "object",
    "properties": {
        "version": {"type": "integer", "minimum": 1, "maximum": 1},
        "regions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "kind": {"enum": [k.value for k in RegionKind]},
                    "size": {"type": ["string", "integer"]},
                    "encrypted": {"type": "boolean"},
                    "filesystem": {"enum": [f.value for f in FilesystemKind]},
                    "name": {"type": "string"},
                },
                "required": ["kind", "size"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["regions"],
    "additionalProperties": False,
}

REMAINING = "remaining"
REMAINING_MINUS = "remaining-minus:"
ISO = "iso:"


class LayoutConfigError(Exception):
    def __init__(self, message: str, region: Optional[int] = None):
        self.message = message
        self.region = region
        super().__init__(message)

    def __str__(self):
        if self.region is None:
            return f"invalid layout: {self.message}"
        return f"invalid layout in region {self.region}: {self.message}"


def parse_size(value):
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"{value!r}: cannot be negative")
        return FixedMiB(value)
    value = value.strip()
    if value == REMAINING:
        return RemainingSpace()
    if value.startswith(REMAINING_MINUS):
        reserve = dehumanize_size(value[len(REMAINING_MINUS):])
        return RemainingSpaceMinus(bytes_to_mib_ceil(reserve))
    if value.startswith(ISO):
        path = value[len(ISO):]
        if path.isdigit():
            # a byte count, for planning before the image is downloaded
            return FixedMiB.from_artifact(int(path))
        try:
            artifact_bytes = os.path.getsize(path)
        except OSError as e:
            raise ValueError(f"cannot size region from {path!r}: {e.strerror}")
        log.debug("sizing region from %s (%d bytes)", path, artifact_bytes)
        return FixedMiB.from_artifact(artifact_bytes)
    if value.isdigit():
        return FixedMiB(int(value))
    return FixedMiB.from_bytes(dehumanize_size(value))


def requests_from_data(data) -> List[RegionRequest]:
    try:
        jsonschema.validate(data, LAYOUT_SCHEMA)
    except jsonschema.ValidationError as e:
        region = None
        path = list(e.absolute_path)
        if len(path) >= 2 and path[0] == "regions":
            region = path[1]
        raise LayoutConfigError(e.message, region) from e

    requests = []
    for i, region in enumerate(data["regions"]):
        try:
            size = parse_size(region["size"])
        except ValueError as e:
            raise LayoutConfigError(str(e), i) from e
        kw = {}
        if "filesystem" in region:
            kw["filesystem"] = FilesystemKind(region["filesystem"])
        if "name" in region:
            kw["name"] = region["name"]
        requests.append(
            RegionRequest(
                RegionKind(region["kind"]),
                size,
                encrypted=region.get("encrypted", False),
                **kw,
            )
        )
    return requests


def load_layout(stream) -> List[RegionRequest]:
    try:
        data = yaml.safe_load(stream)
    except yaml.YAMLError as e:
        raise LayoutConfigError(f"not valid YAML: {e}") from e
    return requests_from_data(data)
