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
from typing import Dict, List, Optional

from distromigrate.common.types import (
    FilesystemKind,
    FormattedPartition,
    PartitionPlan,
    RegionKind,
)

log = logging.getLogger("distromigrate.storage.formatter")

_MAPPER_NAMES = {
    RegionKind.ROOT: "cryptroot",
    RegionKind.SWAP: "cryptswap",
    RegionKind.BOOT: "cryptboot",
}


class FormatError(Exception):
    pass


def mkfs_command(filesystem, device):
    if filesystem == FilesystemKind.FAT32:
        return ["mkfs.fat", "-F32", device]
    elif filesystem == FilesystemKind.EXT4:
        return ["mkfs.ext4", "-F", device]
    elif filesystem == FilesystemKind.LINUX_SWAP:
        return ["mkswap", device]
    raise FormatError(f"do not know how to make {filesystem}")


def mapper_name(part, used):
    name = _MAPPER_NAMES.get(part.kind, f"crypt{part.index}")
    if name in used:
        name = f"crypt{part.index}"
    return name


class PartitionFormatter:
    """Encrypt (with LUKS) and make filesystems on planned partitions."""

    def __init__(self, runner, *, passphrase: Optional[str] = None):
        self.runner = runner
        self.passphrase = passphrase

    def _run(self, cmd, input=None):
        try:
            return self.runner.run(cmd, input=input)
        except subprocess.CalledProcessError as e:
            raise FormatError(
                "{} failed: {}".format(" ".join(cmd), (e.stderr or "").strip())
            ) from e

    def _encrypt(self, device, name):
        if not self.passphrase:
            raise FormatError(f"{device} is to be encrypted but no passphrase given")
        self._run(
            ["cryptsetup", "luksFormat", "--batch-mode", "--key-file=-", device],
            input=self.passphrase,
        )
        self._run(
            ["cryptsetup", "open", "--key-file=-", device, name],
            input=self.passphrase,
        )
        return f"/dev/mapper/{name}"

    def format(
        self, plan: PartitionPlan, devices: Dict[int, str]
    ) -> List[FormattedPartition]:
        for part in plan.partitions:
            if part.encrypted and part.kind == RegionKind.EFI:
                raise FormatError("the firmware cannot read an encrypted ESP")
            if part.index not in devices:
                raise FormatError(f"no device for partition {part.index}")

        result = []
        used = set()
        for part in plan.partitions:
            raw = devices[part.index]
            target = raw
            name = None
            if part.encrypted:
                name = mapper_name(part, used)
                used.add(name)
                log.debug("encrypting %s as %s", raw, name)
                target = self._encrypt(raw, name)
            self._run(mkfs_command(part.filesystem, target))
            result.append(
                FormattedPartition(
                    index=part.index,
                    kind=part.kind,
                    partition_device=raw,
                    device=target,
                    filesystem=part.filesystem,
                    mapper_name=name,
                )
            )
        return result
