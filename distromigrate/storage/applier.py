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

import logging
import subprocess
from typing import Dict, List

from distromigrate.common.types import (
    PartitionPlan,
    PartitionTableStyle,
    RegionKind,
)
from distromigrate.storage.probe import parse_parted_partitions

log = logging.getLogger("distromigrate.storage.applier")

MBR_MAX_PRIMARY = 4


class ApplyError(Exception):
    def __init__(self, cmd, stderr=""):
        self.cmd = list(cmd)
        self.stderr = stderr or ""
        super().__init__(self.cmd, self.stderr)

    def __str__(self):
        msg = "{} failed".format(" ".join(self.cmd))
        if self.stderr.strip():
            msg += ": " + self.stderr.strip()
        return msg


class DeviceBusyError(ApplyError):
    """Something still holds the disk open: unmount it or swapoff first."""


class PermissionDeniedError(ApplyError):
    """Partitioning needs root."""


class StalePartitionTableError(ApplyError):
    """The table was written but the kernel still has the old one. A
    partprobe or a reboot is needed before going on."""


class TooManyPartitionsError(ApplyError):
    """The plan does not fit the primary slots left in an msdos table."""


_STDERR_CLASSES = [
    ("unable to inform the kernel", StalePartitionTableError),
    ("re-read the partition table", StalePartitionTableError),
    ("device or resource busy", DeviceBusyError),
    ("is busy", DeviceBusyError),
    ("in use", DeviceBusyError),
    ("permission denied", PermissionDeniedError),
    ("operation not permitted", PermissionDeniedError),
]


def classify_failure(cmd, stderr) -> ApplyError:
    lowered = (stderr or "").lower()
    for needle, cls in _STDERR_CLASSES:
        if needle in lowered:
            return cls(cmd, stderr)
    return ApplyError(cmd, stderr)


def partition_device_name(disk, index):
    """/dev/sda + 1 is /dev/sda1 but /dev/nvme0n1 + 1 is /dev/nvme0n1p1."""
    if disk[-1].isdigit():
        return f"{disk}p{index}"
    return f"{disk}{index}"


def _boot_flag_index(plan):
    for kind in RegionKind.BOOT, RegionKind.ROOT:
        parts = plan.for_kind(kind)
        if parts:
            return parts[0].index
    return None


class PartitionTableApplier:
    """Write a PartitionPlan to a disk with parted.

    With `wipe` the disk gets a fresh table and the planned indices are the
    partition numbers. Without it the new partitions go into the free region
    of the existing table, parted numbers them, and the numbers are read
    back from the table before anything refers to them.
    """

    def __init__(self, device, runner, *, wipe=True):
        self.device = device
        self.runner = runner
        self.wipe = wipe

    def _parted(self, *args):
        return ["parted", "--script", self.device] + list(args)

    def _print_command(self):
        return ["parted", "-m", "-s", self.device, "unit", "s", "print"]

    def _check_primary_limit(self, plan, existing=()):
        if plan.table_style != PartitionTableStyle.MBR:
            return
        primaries = [n for n in existing if n <= MBR_MAX_PRIMARY]
        if len(primaries) + len(plan.partitions) > MBR_MAX_PRIMARY:
            raise TooManyPartitionsError(
                self._parted("mkpart"),
                "an msdos table holds {} primary partitions, {} in use and "
                "{} planned".format(
                    MBR_MAX_PRIMARY, len(primaries), len(plan.partitions)
                ),
            )

    def create_commands(self, plan: PartitionPlan) -> List[List[str]]:
        cmds = []
        if self.wipe:
            cmds.append(["wipefs", "-a", self.device])
            cmds.append(self._parted("mklabel", plan.table_style.value))
        gpt = plan.table_style == PartitionTableStyle.GPT
        for part in plan.partitions:
            # msdos tables have no names, only a primary/logical type
            name = part.name if gpt and part.name else "primary"
            cmds.append(
                self._parted(
                    "unit",
                    "s",
                    "mkpart",
                    name,
                    part.filesystem.value,
                    f"{part.start}s",
                    f"{part.end}s",
                )
            )
        return cmds

    def flag_commands(self, plan: PartitionPlan, numbers) -> List[List[str]]:
        """`numbers` maps planned index to partition number in the table."""
        cmds = []
        if plan.table_style == PartitionTableStyle.GPT:
            for part in plan.for_kind(RegionKind.EFI):
                cmds.append(
                    self._parted("set", str(numbers[part.index]), "esp", "on")
                )
        else:
            index = _boot_flag_index(plan)
            if index is not None:
                cmds.append(self._parted("set", str(numbers[index]), "boot", "on"))
        cmds.append(["udevadm", "settle"])
        return cmds

    def commands(self, plan: PartitionPlan, numbers=None) -> List[List[str]]:
        self._check_primary_limit(plan)
        if numbers is None:
            # right for a fresh table
            numbers = {part.index: part.index for part in plan.partitions}
        return self.create_commands(plan) + self.flag_commands(plan, numbers)

    def _run(self, cmd):
        try:
            return self.runner.run(cmd)
        except subprocess.CalledProcessError as e:
            raise classify_failure(cmd, e.stderr) from e
        except PermissionError as e:
            raise PermissionDeniedError(cmd, str(e)) from e

    def existing_partitions(self) -> Dict[int, int]:
        """Start sector to partition number for what is on the disk now."""
        return parse_parted_partitions(self._run(self._print_command()).stdout)

    def _new_numbers(self, plan, before):
        after = self.existing_partitions()
        numbers = {}
        for part in plan.partitions:
            number = after.get(part.start)
            if number is None or before.get(part.start) == number:
                raise ApplyError(
                    self._print_command(),
                    f"no new partition starts at sector {part.start}",
                )
            numbers[part.index] = number
        return numbers

    def apply(self, plan: PartitionPlan) -> Dict[int, str]:
        log.info(
            "writing %d partitions to %s", len(plan.partitions), self.device
        )
        if self.wipe:
            numbers = {part.index: part.index for part in plan.partitions}
            cmds = self.commands(plan, numbers)
        else:
            before = self.existing_partitions()
            self._check_primary_limit(plan, before.values())
            for cmd in self.create_commands(plan):
                self._run(cmd)
            numbers = self._new_numbers(plan, before)
            log.debug("partition numbers on %s: %s", self.device, numbers)
            cmds = self.flag_commands(plan, numbers)
        for cmd in cmds:
            self._run(cmd)
        return {
            index: partition_device_name(self.device, number)
            for index, number in numbers.items()
        }
