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

# Types shared by the planner, its callers and the storage collaborators.
# Nothing in here touches a device.

import enum
from typing import Optional, Tuple, Union

import attr

from distromigrate.common.filesystem.sizes import (
    MiB,
    artifact_region_bytes,
    bytes_to_mib_ceil,
    gib_to_mib,
)

# protective MBR/header plus a 16 KiB entry array, at each end of the disk
GPT_ENTRY_ARRAY_BYTES = 16 * 1024


class FirmwareMode(enum.Enum):
    UEFI = "uefi"
    BIOS = "bios"


class PartitionTableStyle(enum.Enum):
    GPT = "gpt"
    MBR = "msdos"


class RegionKind(enum.Enum):
    EFI = "efi"
    BOOT = "boot"
    ROOT = "root"
    SWAP = "swap"
    GENERIC = "generic"


class FilesystemKind(enum.Enum):
    FAT32 = "fat32"
    EXT4 = "ext4"
    LINUX_SWAP = "linux-swap"


DEFAULT_FILESYSTEMS = {
    RegionKind.EFI: FilesystemKind.FAT32,
    RegionKind.BOOT: FilesystemKind.EXT4,
    RegionKind.ROOT: FilesystemKind.EXT4,
    RegionKind.SWAP: FilesystemKind.LINUX_SWAP,
    RegionKind.GENERIC: FilesystemKind.EXT4,
}

DEFAULT_NAMES = {
    RegionKind.EFI: "ESP",
    RegionKind.BOOT: "boot",
    RegionKind.ROOT: "root",
    RegionKind.SWAP: "swap",
    RegionKind.GENERIC: "data",
}


def _positive(inst, attribute, value):
    if value <= 0:
        raise ValueError(f"{attribute.name} must be positive, not {value!r}")


def _not_negative(inst, attribute, value):
    if value < 0:
        raise ValueError(f"{attribute.name} cannot be negative, not {value!r}")


@attr.s(auto_attribs=True, frozen=True)
class FixedMiB:
    mib: int = attr.ib(
        validator=[attr.validators.instance_of(int), _not_negative])

    @classmethod
    def from_gib(cls, gib):
        return cls(gib_to_mib(gib))

    @classmethod
    def from_bytes(cls, nbytes):
        return cls(bytes_to_mib_ceil(nbytes))

    @classmethod
    def from_artifact(cls, artifact_bytes):
        """Size a region to hold a copy of an artifact of this many bytes."""
        return cls(artifact_region_bytes(artifact_bytes) // MiB)

    @property
    def size_bytes(self):
        return self.mib * MiB


@attr.s(auto_attribs=True, frozen=True)
class RemainingSpace:
    pass


@attr.s(auto_attribs=True, frozen=True)
class RemainingSpaceMinus:
    """Whatever is left after the other regions, less `reserve_mib` which
    stays unallocated at the end of the free region."""

    reserve_mib: int = attr.ib(
        validator=[attr.validators.instance_of(int), _not_negative])

    @property
    def reserve_bytes(self):
        return self.reserve_mib * MiB


SizePolicy = Union[FixedMiB, RemainingSpace, RemainingSpaceMinus]


@attr.s(auto_attribs=True, frozen=True)
class RegionRequest:
    kind: RegionKind
    size: SizePolicy
    encrypted: bool = False
    filesystem: FilesystemKind = attr.ib(
        default=attr.Factory(
            lambda self: DEFAULT_FILESYSTEMS[self.kind], takes_self=True))
    name: str = attr.ib(
        default=attr.Factory(
            lambda self: DEFAULT_NAMES[self.kind], takes_self=True))

    @property
    def is_flexible(self):
        return isinstance(self.size, (RemainingSpace, RemainingSpaceMinus))


@attr.s(auto_attribs=True, frozen=True)
class DiskGeometry:
    total_sectors: int = attr.ib(validator=_positive)
    sector_size: int = attr.ib(validator=_positive)
    firmware: FirmwareMode
    # whatever is on the disk right now, if anything
    table_style: Optional[PartitionTableStyle] = None

    @property
    def size_bytes(self):
        return self.total_sectors * self.sector_size

    @property
    def planned_table_style(self):
        # BIOS booting from GPT needs a bios_grub partition, which we never
        # create, so the style follows the firmware.
        if self.firmware == FirmwareMode.UEFI:
            return PartitionTableStyle.GPT
        return PartitionTableStyle.MBR

    @property
    def alignment_sectors(self):
        """Sectors per 1 MiB boundary, rounded up to a whole sector."""
        return max(1, -(-MiB // self.sector_size))

    def _gpt_reserved_sectors(self):
        return 1 + -(-GPT_ENTRY_ARRAY_BYTES // self.sector_size)

    def first_usable_sector(self, style=None):
        if style is None:
            style = self.planned_table_style
        if style == PartitionTableStyle.GPT:
            return 1 + self._gpt_reserved_sectors()
        return 1

    def last_usable_sector(self, style=None):
        if style is None:
            style = self.planned_table_style
        if style == PartitionTableStyle.GPT:
            return self.total_sectors - 1 - self._gpt_reserved_sectors()
        return self.total_sectors - 1


@attr.s(auto_attribs=True, frozen=True)
class FreeRegion:
    start_sector: int
    size_bytes: int


@attr.s(auto_attribs=True, frozen=True)
class PlannedPartition:
    kind: RegionKind
    index: int
    start: int
    end: int  # inclusive
    size_bytes: int
    filesystem: FilesystemKind
    encrypted: bool = False
    name: Optional[str] = None

    @property
    def size_sectors(self):
        return self.end - self.start + 1


@attr.s(auto_attribs=True, frozen=True)
class PartitionPlan:
    table_style: PartitionTableStyle
    sector_size: int
    alignment_sectors: int
    partitions: Tuple[PlannedPartition, ...] = attr.ib(converter=tuple)

    def for_kind(self, kind):
        return [p for p in self.partitions if p.kind == kind]

    @property
    def total_bytes(self):
        return sum(p.size_bytes for p in self.partitions)


@attr.s(auto_attribs=True, frozen=True)
class FormattedPartition:
    index: int
    kind: RegionKind
    partition_device: str
    device: str
    filesystem: FilesystemKind
    mapper_name: Optional[str] = None
