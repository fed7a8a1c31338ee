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

"""Turn a list of region requests into a partition plan.

Everything here is a pure function of its arguments: the facts about the
disk are gathered by the caller and the plan is handed to an applier. All
arithmetic is done in sectors of the target disk, starts are kept on 1 MiB
boundaries and every region is rounded up to whole alignment units, so the
next region can start right after the previous one ends.
"""

import logging
from typing import Optional, Sequence, Union

from distromigrate.common.filesystem.errors import (
    AmbiguousSizingError,
    IncompatibleRegionError,
    InsufficientSpaceError,
    InvalidRegionSizeError,
    InvariantViolation,
    PlanError,
)
from distromigrate.common.filesystem.sizes import align_down, align_up
from distromigrate.common.types import (
    DiskGeometry,
    FirmwareMode,
    FixedMiB,
    PartitionPlan,
    PlannedPartition,
    RegionKind,
    RegionRequest,
    RemainingSpaceMinus,
)

log = logging.getLogger("distromigrate.common.filesystem.planner")


def _is_omitted(request):
    return (
        request.kind == RegionKind.SWAP
        and isinstance(request.size, FixedMiB)
        and request.size.mib == 0
    )


def allocatable_range(geometry, free_space_bytes, free_start_sector=0):
    """Return (first, end) sectors, end exclusive, that regions can be put
    in: the free region clipped to the usable part of the disk, starting on
    the first 1 MiB boundary at or after both."""
    style = geometry.planned_table_style
    align = geometry.alignment_sectors
    first = align_up(
        max(free_start_sector, geometry.first_usable_sector(style), align), align
    )
    free_end = free_start_sector + free_space_bytes // geometry.sector_size
    end = min(free_end, geometry.last_usable_sector(style) + 1)
    return first, max(first, end)


def _sectors_for(geometry, nbytes):
    sectors = -(-nbytes // geometry.sector_size)
    return align_up(sectors, geometry.alignment_sectors)


def plan(
    geometry: DiskGeometry,
    free_space_bytes: int,
    requests: Sequence[RegionRequest],
    *,
    free_start_sector: int = 0,
) -> Union[PartitionPlan, PlanError]:
    """Lay `requests` out in the free region of `geometry`.

    The free region starts at `free_start_sector` and is `free_space_bytes`
    long; for a disk that is going to be wiped that is the whole disk.
    Returns a PartitionPlan, or a PlanError describing why there is none.
    """
    requests = list(requests)
    for request in requests:
        if request.kind == RegionKind.EFI and geometry.firmware != FirmwareMode.UEFI:
            return IncompatibleRegionError(request.kind, geometry.firmware)

    flexible = [r for r in requests if r.is_flexible]
    if len(flexible) > 1:
        return AmbiguousSizingError([r.kind for r in flexible])

    kept = []
    for request in requests:
        if _is_omitted(request):
            log.debug("dropping zero sized %s region", request.kind.value)
            continue
        if isinstance(request.size, FixedMiB) and request.size.mib == 0:
            return InvalidRegionSizeError(request.kind)
        kept.append(request)

    ss = geometry.sector_size
    align = geometry.alignment_sectors
    first, end = allocatable_range(geometry, free_space_bytes, free_start_sector)
    available_sectors = end - first
    available = available_sectors * ss

    fixed_bytes = 0
    sizes = {}
    for i, request in enumerate(kept):
        if isinstance(request.size, FixedMiB):
            fixed_bytes += request.size.size_bytes
            sizes[i] = _sectors_for(geometry, request.size.size_bytes)
    fixed_sectors = sum(sizes.values())
    log.debug(
        "fixed regions need %s sectors, %s sectors allocatable from %s",
        fixed_sectors,
        available_sectors,
        first,
    )

    for i, request in enumerate(kept):
        if not request.is_flexible:
            continue
        reserve_bytes = 0
        if isinstance(request.size, RemainingSpaceMinus):
            reserve_bytes = request.size.reserve_bytes
        reserve_sectors = _sectors_for(geometry, reserve_bytes)
        flexible_sectors = align_down(
            available_sectors - fixed_sectors - reserve_sectors, align
        )
        if flexible_sectors <= 0:
            # the flexible region itself needs at least one alignment unit
            required = fixed_bytes + reserve_bytes + align * ss
            return InsufficientSpaceError(required, available)
        sizes[i] = flexible_sectors

    if fixed_sectors > available_sectors:
        return InsufficientSpaceError(fixed_bytes, available)

    partitions = []
    start = first
    for i, request in enumerate(kept):
        nsectors = sizes[i]
        partitions.append(
            PlannedPartition(
                kind=request.kind,
                index=len(partitions) + 1,
                start=start,
                end=start + nsectors - 1,
                size_bytes=nsectors * ss,
                filesystem=request.filesystem,
                encrypted=request.encrypted,
                name=request.name,
            )
        )
        start += nsectors

    result = PartitionPlan(
        table_style=geometry.planned_table_style,
        sector_size=ss,
        alignment_sectors=align,
        partitions=partitions,
    )
    violation = check_plan(
        result, geometry, free_space_bytes, free_start_sector=free_start_sector
    )
    if violation is not None:
        log.error("%s", violation)
        return violation
    log.info(
        "planned %d partitions on a %s table", len(partitions), result.table_style.name
    )
    return result


def plan_or_raise(geometry, free_space_bytes, requests, **kw) -> PartitionPlan:
    result = plan(geometry, free_space_bytes, requests, **kw)
    if isinstance(result, PlanError):
        raise result
    return result


def check_plan(
    plan: PartitionPlan,
    geometry: DiskGeometry,
    free_space_bytes: int,
    *,
    free_start_sector: int = 0,
) -> Optional[InvariantViolation]:
    """Check everything a plan promises. Returns the first broken promise."""
    if plan.table_style != geometry.planned_table_style:
        return InvariantViolation(
            "table style {} does not match {} firmware".format(
                plan.table_style.name, geometry.firmware.name
            )
        )
    style = plan.table_style
    first_usable = geometry.first_usable_sector(style)
    last_usable = geometry.last_usable_sector(style)
    free_end = free_start_sector + free_space_bytes // geometry.sector_size
    align = geometry.alignment_sectors
    prev = None
    for expected_index, part in enumerate(plan.partitions, 1):
        if part.index != expected_index:
            return InvariantViolation(
                "partition {} has index {}".format(expected_index, part.index)
            )
        if part.end < part.start:
            return InvariantViolation(
                "partition {} ends before it starts".format(part.index)
            )
        if part.start % align != 0:
            return InvariantViolation(
                "partition {} starts at unaligned sector {}".format(
                    part.index, part.start
                )
            )
        if part.start < first_usable or part.end > last_usable:
            return InvariantViolation(
                "partition {} ({}-{}) is outside usable sectors {}-{}".format(
                    part.index, part.start, part.end, first_usable, last_usable
                )
            )
        if part.start < free_start_sector or part.end >= free_end:
            return InvariantViolation(
                "partition {} is outside the free region".format(part.index)
            )
        if part.size_bytes != part.size_sectors * geometry.sector_size:
            return InvariantViolation(
                "partition {} size does not match its sectors".format(part.index)
            )
        if prev is not None and part.start <= prev.end:
            return InvariantViolation(
                "partition {} overlaps partition {}".format(part.index, prev.index)
            )
        prev = part
    if plan.total_bytes > free_space_bytes:
        return InvariantViolation(
            "plan uses {} bytes of {} free".format(plan.total_bytes, free_space_bytes)
        )
    return None
