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
from typing import List, Optional

from distromigrate.common.types import (
    FirmwareMode,
    FixedMiB,
    RegionKind,
    RegionRequest,
    RemainingSpace,
)

log = logging.getLogger("distromigrate.common.filesystem.layouts")

DEFAULT_EFI_MIB = 512


def guided_layout(
    firmware: FirmwareMode,
    *,
    swap_mib: Optional[int] = None,
    swap_gib: Optional[int] = None,
    boot_mib: Optional[int] = None,
    encrypt_root: bool = False,
    encrypt_swap: bool = False,
    efi_mib: int = DEFAULT_EFI_MIB,
) -> List[RegionRequest]:
    """The layout the install scripts build when told to wipe a disk.

    An ESP on UEFI, an optional /boot, root taking whatever is left and a
    swap partition at the end. Swap can be given in MiB or in GiB; a swap
    size of zero is passed on as is and left out by the planner.
    """
    if swap_mib is not None and swap_gib is not None:
        raise ValueError("give the swap size in MiB or in GiB, not both")
    if swap_gib is not None:
        swap = FixedMiB.from_gib(swap_gib)
    else:
        swap = FixedMiB(swap_mib or 0)

    requests = []
    if firmware == FirmwareMode.UEFI:
        requests.append(RegionRequest(RegionKind.EFI, FixedMiB(efi_mib)))
    if boot_mib:
        requests.append(RegionRequest(RegionKind.BOOT, FixedMiB(boot_mib)))
    elif encrypt_root:
        log.debug("encrypted root without a separate /boot")
    requests.append(
        RegionRequest(RegionKind.ROOT, RemainingSpace(), encrypted=encrypt_root)
    )
    requests.append(RegionRequest(RegionKind.SWAP, swap, encrypted=encrypt_swap))
    return requests


def iso_layout(
    firmware: FirmwareMode, iso_bytes: int, *, efi_mib: int = DEFAULT_EFI_MIB
) -> List[RegionRequest]:
    """The migration layout: an ESP on UEFI and a partition big enough to
    hold a copy of the install image."""
    requests = []
    if firmware == FirmwareMode.UEFI:
        requests.append(RegionRequest(RegionKind.EFI, FixedMiB(efi_mib)))
    requests.append(
        RegionRequest(
            RegionKind.GENERIC, FixedMiB.from_artifact(iso_bytes), name="migrate"
        )
    )
    return requests
