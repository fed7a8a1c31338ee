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

import subprocess
import unittest
from unittest import mock

from distromigrate.common.filesystem.layouts import guided_layout
from distromigrate.common.filesystem.planner import plan_or_raise
from distromigrate.common.types import (
    DiskGeometry,
    FilesystemKind,
    FirmwareMode,
    FixedMiB,
    PlannedPartition,
    RegionKind,
    RegionRequest,
)
from distromigrate.storage.formatter import (
    FormatError,
    PartitionFormatter,
    mapper_name,
    mkfs_command,
)
from distromigrate.storage.runner import DryRunCommandRunner


def make_plan(firmware=FirmwareMode.UEFI, requests=None, **kw):
    geometry = DiskGeometry((100 << 30) // 512, 512, firmware)
    if requests is None:
        requests = guided_layout(firmware, **kw)
    return plan_or_raise(geometry, geometry.size_bytes, requests)


def devices_for(plan, disk="/dev/sda"):
    return {p.index: f"{disk}{p.index}" for p in plan.partitions}


class TestMkfsCommand(unittest.TestCase):
    def test_commands(self):
        self.assertEqual(
            ["mkfs.fat", "-F32", "/dev/sda1"],
            mkfs_command(FilesystemKind.FAT32, "/dev/sda1"),
        )
        self.assertEqual(
            ["mkfs.ext4", "-F", "/dev/sda2"],
            mkfs_command(FilesystemKind.EXT4, "/dev/sda2"),
        )
        self.assertEqual(
            ["mkswap", "/dev/sda3"],
            mkfs_command(FilesystemKind.LINUX_SWAP, "/dev/sda3"),
        )


class TestMapperName(unittest.TestCase):
    def part(self, kind, index):
        return PlannedPartition(
            kind=kind,
            index=index,
            start=2048,
            end=4095,
            size_bytes=1 << 20,
            filesystem=FilesystemKind.EXT4,
            encrypted=True,
        )

    def test_kinds(self):
        self.assertEqual("cryptroot", mapper_name(self.part(RegionKind.ROOT, 2), set()))
        self.assertEqual("cryptswap", mapper_name(self.part(RegionKind.SWAP, 3), set()))
        self.assertEqual("crypt4", mapper_name(self.part(RegionKind.GENERIC, 4), set()))

    def test_clash(self):
        self.assertEqual(
            "crypt5", mapper_name(self.part(RegionKind.ROOT, 5), {"cryptroot"})
        )


class TestPartitionFormatter(unittest.TestCase):
    def test_plain(self):
        plan = make_plan(swap_mib=1024)
        runner = DryRunCommandRunner()
        formatted = PartitionFormatter(runner).format(plan, devices_for(plan))
        self.assertEqual(
            [
                ["mkfs.fat", "-F32", "/dev/sda1"],
                ["mkfs.ext4", "-F", "/dev/sda2"],
                ["mkswap", "/dev/sda3"],
            ],
            runner.commands,
        )
        self.assertEqual(
            ["/dev/sda1", "/dev/sda2", "/dev/sda3"], [f.device for f in formatted]
        )
        self.assertEqual([None, None, None], [f.mapper_name for f in formatted])

    def test_encrypted(self):
        plan = make_plan(swap_mib=1024, encrypt_root=True, encrypt_swap=True)
        runner = DryRunCommandRunner()
        formatter = PartitionFormatter(runner, passphrase="hunter2")
        formatted = formatter.format(plan, devices_for(plan))
        self.assertEqual(
            [
                ["mkfs.fat", "-F32", "/dev/sda1"],
                [
                    "cryptsetup", "luksFormat", "--batch-mode", "--key-file=-",
                    "/dev/sda2",
                ],
                ["cryptsetup", "open", "--key-file=-", "/dev/sda2", "cryptroot"],
                ["mkfs.ext4", "-F", "/dev/mapper/cryptroot"],
                [
                    "cryptsetup", "luksFormat", "--batch-mode", "--key-file=-",
                    "/dev/sda3",
                ],
                ["cryptsetup", "open", "--key-file=-", "/dev/sda3", "cryptswap"],
                ["mkswap", "/dev/mapper/cryptswap"],
            ],
            runner.commands,
        )
        self.assertEqual(
            [None, "hunter2", "hunter2", None, "hunter2", "hunter2", None],
            runner.inputs,
        )
        root = formatted[1]
        self.assertEqual("/dev/sda2", root.partition_device)
        self.assertEqual("/dev/mapper/cryptroot", root.device)
        self.assertEqual("cryptroot", root.mapper_name)

    def test_no_passphrase(self):
        plan = make_plan(encrypt_root=True)
        runner = DryRunCommandRunner()
        with self.assertRaises(FormatError):
            PartitionFormatter(runner).format(plan, devices_for(plan))

    def test_encrypted_esp_refused(self):
        plan = make_plan(
            requests=[
                RegionRequest(RegionKind.EFI, FixedMiB(512), encrypted=True),
            ]
        )
        runner = DryRunCommandRunner()
        formatter = PartitionFormatter(runner, passphrase="x")
        with self.assertRaises(FormatError):
            formatter.format(plan, devices_for(plan))
        self.assertEqual([], runner.commands)

    def test_missing_device(self):
        plan = make_plan(swap_mib=1024)
        runner = DryRunCommandRunner()
        with self.assertRaises(FormatError):
            PartitionFormatter(runner).format(plan, {1: "/dev/sda1"})
        self.assertEqual([], runner.commands)

    def test_command_failure(self):
        plan = make_plan(firmware=FirmwareMode.BIOS)
        runner = mock.Mock()
        runner.run.side_effect = subprocess.CalledProcessError(
            1, ["mkfs.ext4"], stderr="mkfs.ext4: Device size reported to be zero\n"
        )
        with self.assertRaises(FormatError) as cm:
            PartitionFormatter(runner).format(plan, devices_for(plan))
        self.assertIn("Device size reported to be zero", str(cm.exception))
