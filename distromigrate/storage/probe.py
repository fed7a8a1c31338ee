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

"""Gather the facts the planner needs from the machine.

This is the only place that looks at the live system. Everything is
returned as plain values; the planner never sees a device.
"""

import logging
import os
import shutil
from typing import Dict, Optional

import attr
import jsonschema
import pyudev
import yaml

from distromigrate.common.filesystem.errors import InsufficientSpaceError
from distromigrate.common.filesystem.sizes import dehumanize_size
from distromigrate.common.types import (
    DiskGeometry,
    FirmwareMode,
    FreeRegion,
    PartitionTableStyle,
)

log = logging.getLogger("distromigrate.storage.probe")

# udev reports "dos" for MBR
_UDEV_TABLE_TYPES = {
    "gpt": PartitionTableStyle.GPT,
    "dos": PartitionTableStyle.MBR,
}


class MachineConfigError(Exception):
    pass


def probe_firmware(root="/"):
    if os.path.exists(os.path.join(root, "sys/firmware/efi")):
        return FirmwareMode.UEFI
    return FirmwareMode.BIOS


def probe_geometry(device, firmware, *, context=None) -> DiskGeometry:
    if context is None:
        context = pyudev.Context()
    dev = pyudev.Devices.from_device_file(context, device)
    # the size attribute is always in 512 byte units, whatever the disk uses
    size_bytes = dev.attributes.asint("size") * 512
    sector_size = dev.attributes.asint("queue/logical_block_size")
    table_type = dev.properties.get("ID_PART_TABLE_TYPE")
    geometry = DiskGeometry(
        total_sectors=size_bytes // sector_size,
        sector_size=sector_size,
        firmware=firmware,
        table_style=_UDEV_TABLE_TYPES.get(table_type),
    )
    log.debug("probed %s: %s", device, geometry)
    return geometry


def parse_parted_free(output) -> Optional[FreeRegion]:
    """Find the largest free region in `parted -m unit s print free`."""
    sector_size = None
    best = None
    for line in output.splitlines():
        fields = line.strip().rstrip(";").split(":")
        if len(fields) >= 4 and fields[0].startswith("/dev/"):
            sector_size = int(fields[3])
            continue
        if len(fields) < 5 or fields[-1] != "free":
            continue
        start = int(fields[1].rstrip("s"))
        size = int(fields[3].rstrip("s"))
        if best is None or size > best[1]:
            best = (start, size)
    if best is None:
        return None
    if sector_size is None:
        raise ValueError("parted output has no device line")
    return FreeRegion(start_sector=best[0], size_bytes=best[1] * sector_size)


def parse_parted_partitions(output) -> Dict[int, int]:
    """Map start sector to partition number from `parted -m unit s print`."""
    partitions = {}
    for line in output.splitlines():
        fields = line.strip().rstrip(";").split(":")
        if len(fields) < 4 or not fields[0].isdigit() or fields[-1] == "free":
            continue
        partitions[int(fields[1].rstrip("s"))] = int(fields[0])
    return partitions


def probe_free_region(device, runner) -> Optional[FreeRegion]:
    cp = runner.run(["parted", "-m", "-s", device, "unit", "s", "print", "free"])
    return parse_parted_free(cp.stdout)


def wipe_free_region(geometry) -> FreeRegion:
    return FreeRegion(start_sector=0, size_bytes=geometry.size_bytes)


def volume_free_bytes(path) -> int:
    """What the volume mounted at `path` reports as free right now."""
    return shutil.disk_usage(path).free


def check_shrink_precondition(current_free_bytes, required_bytes):
    """Space can only be taken from a volume that has it free today: what
    could be freed by cleaning up does not count."""
    if current_free_bytes < required_bytes:
        return InsufficientSpaceError(required_bytes, current_free_bytes)
    return None


MACHINE_CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "device": {"type": "string"},
        "firmware": {"enum": [f.value for f in FirmwareMode]},
        "sector_size": {"type": "integer", "minimum": 1},
        "total_sectors": {"type": "integer", "minimum": 1},
        "table_style": {"enum": [s.value for s in PartitionTableStyle]},
        "free_region": {
            "type": "object",
            "properties": {
                "start_sector": {"type": "integer", "minimum": 0},
                "size": {"type": ["string", "integer"]},
            },
            "required": ["start_sector", "size"],
            "additionalProperties": False,
        },
    },
    "required": ["device", "firmware", "sector_size", "total_sectors"],
    "additionalProperties": False,
}


@attr.s(auto_attribs=True, frozen=True)
class MachineFacts:
    device: str
    geometry: DiskGeometry
    free_region: FreeRegion


def load_machine_config(stream) -> MachineFacts:
    """Load machine facts from YAML instead of probing, for dry runs."""
    try:
        data = yaml.safe_load(stream)
        jsonschema.validate(data, MACHINE_CONFIG_SCHEMA)
    except (yaml.YAMLError, jsonschema.ValidationError) as e:
        raise MachineConfigError(f"invalid machine config: {e}") from e
    table_style = data.get("table_style")
    geometry = DiskGeometry(
        total_sectors=data["total_sectors"],
        sector_size=data["sector_size"],
        firmware=FirmwareMode(data["firmware"]),
        table_style=PartitionTableStyle(table_style) if table_style else None,
    )
    free = data.get("free_region")
    if free is None:
        free_region = wipe_free_region(geometry)
    else:
        size = free["size"]
        if isinstance(size, str):
            try:
                size = dehumanize_size(size)
            except ValueError as e:
                raise MachineConfigError(f"invalid machine config: {e}") from e
        free_region = FreeRegion(start_sector=free["start_sector"], size_bytes=size)
    return MachineFacts(data["device"], geometry, free_region)
