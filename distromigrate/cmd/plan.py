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

import argparse
import enum
import logging
import os
import subprocess
import sys

import attr
import yaml

from distromigratecore.log import setup_console_logger, setup_logger

from distromigrate.common.filesystem.errors import InvariantViolation, PlanError
from distromigrate.common.filesystem.layouts import guided_layout, iso_layout
from distromigrate.common.filesystem.planner import plan
from distromigrate.common.filesystem.sizes import bytes_to_mib_ceil, dehumanize_size
from distromigrate.common.types import FirmwareMode, FreeRegion
from distromigrate.layoutconfig import LayoutConfigError, load_layout
from distromigrate.storage.applier import ApplyError, PartitionTableApplier
from distromigrate.storage.formatter import FormatError, PartitionFormatter
from distromigrate.storage.probe import (
    MachineConfigError,
    MachineFacts,
    check_shrink_precondition,
    load_machine_config,
    probe_firmware,
    probe_free_region,
    probe_geometry,
    volume_free_bytes,
    wipe_free_region,
)
from distromigrate.storage.runner import get_command_runner

log = logging.getLogger("distromigrate.cmd.plan")

LOGDIR = "/var/log/distromigrate"

EXIT_PLAN_ERROR = 1
EXIT_INTERNAL_ERROR = 2
EXIT_APPLY_ERROR = 3


def size_to_mib(value):
    """A plain number is MiB, anything else is a human readable size."""
    value = value.strip()
    if value.isdigit():
        return int(value)
    return bytes_to_mib_ceil(dehumanize_size(value))


def make_plan_args_parser():
    parser = argparse.ArgumentParser(
        description="Plan (and optionally write) a partition layout",
        prog="distromigrate-plan",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        dest="dry_run",
        help="do not probe or touch any disk, print the commands instead",
    )
    parser.add_argument(
        "--machine-config",
        metavar="CONFIG",
        dest="machine_config",
        type=argparse.FileType(),
        help="Don't probe. Use the disk facts in this YAML file",
    )
    parser.add_argument("--device", help="target disk, e.g. /dev/sda")
    parser.add_argument(
        "--firmware",
        choices=[f.value for f in FirmwareMode],
        help="Override the probed firmware mode",
    )
    parser.add_argument(
        "--layout",
        type=argparse.FileType(),
        help="YAML layout file; overrides the guided layout options",
    )
    parser.add_argument("--swap", default="0", help="swap size (MiB or 4G, 0 for none)")
    parser.add_argument("--boot", help="size of a separate /boot partition")
    parser.add_argument("--encrypt-root", action="store_true")
    parser.add_argument("--encrypt-swap", action="store_true")
    parser.add_argument(
        "--iso",
        help="plan a partition big enough to hold a copy of this image",
    )
    parser.add_argument(
        "--free-space", dest="free_space", help="limit the free region to this size"
    )
    parser.add_argument(
        "--free-start",
        dest="free_start",
        type=int,
        help="sector the free region starts at",
    )
    parser.add_argument(
        "--keep-table",
        action="store_true",
        help="use the largest free region instead of wiping the disk",
    )
    parser.add_argument(
        "--shrink-volume",
        metavar="PATH",
        help="check the volume mounted at PATH has the free space right now",
    )
    parser.add_argument(
        "--apply", action="store_true", help="partition and format the disk"
    )
    parser.add_argument("--passphrase-file", type=argparse.FileType())
    parser.add_argument(
        "--output-base",
        action="store",
        dest="output_base",
        default=".distromigrate",
        help="in dryrun, control basedir of files",
    )
    parser.add_argument("--debug", action="store_true")
    return parser


def plan_to_dict(partition_plan):
    def serialize(inst, field, value):
        if isinstance(value, enum.Enum):
            return value.value
        return value

    return attr.asdict(partition_plan, value_serializer=serialize)


def gather_facts(opts, runner) -> MachineFacts:
    if opts.machine_config is not None:
        facts = load_machine_config(opts.machine_config)
    else:
        firmware = probe_firmware()
        geometry = probe_geometry(opts.device, firmware)
        free_region = None
        if opts.keep_table:
            free_region = probe_free_region(opts.device, runner)
        if free_region is None:
            free_region = wipe_free_region(geometry)
        facts = MachineFacts(opts.device, geometry, free_region)

    if opts.firmware:
        facts = attr.evolve(
            facts,
            geometry=attr.evolve(facts.geometry, firmware=FirmwareMode(opts.firmware)),
        )
    free_region = facts.free_region
    if opts.free_start is not None:
        free_region = attr.evolve(free_region, start_sector=opts.free_start)
    if opts.free_space is not None:
        free_region = FreeRegion(
            free_region.start_sector, dehumanize_size(opts.free_space)
        )
    return attr.evolve(facts, free_region=free_region)


def build_requests(opts, firmware):
    if opts.layout is not None:
        return load_layout(opts.layout)
    if opts.iso is not None:
        return iso_layout(firmware, os.path.getsize(opts.iso))
    return guided_layout(
        firmware,
        swap_mib=size_to_mib(opts.swap),
        boot_mib=size_to_mib(opts.boot) if opts.boot else None,
        encrypt_root=opts.encrypt_root,
        encrypt_swap=opts.encrypt_swap,
    )


def main(argv=None):
    parser = make_plan_args_parser()
    opts = parser.parse_args(argv)
    if opts.dry_run and opts.machine_config is None:
        parser.error("--dry-run needs --machine-config")
    if opts.machine_config is None and not opts.device:
        parser.error("--device is needed unless --machine-config is given")
    if opts.dry_run and opts.apply and opts.keep_table:
        # new partition numbers can only be read back from a real table
        parser.error("--apply --keep-table cannot be a dry run")

    logdir = opts.output_base if opts.dry_run else LOGDIR
    setup_logger(dir=logdir, base="distromigrate-plan")
    setup_console_logger(debug=opts.debug)
    log.info("Arguments passed: %s", argv if argv is not None else sys.argv)

    runner = get_command_runner(opts.dry_run)
    try:
        facts = gather_facts(opts, runner)
        requests = build_requests(opts, facts.geometry.firmware)
    except (
        MachineConfigError,
        LayoutConfigError,
        LookupError,
        ValueError,
        OSError,
        subprocess.CalledProcessError,
    ) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_PLAN_ERROR

    free = facts.free_region
    result = plan(
        facts.geometry,
        free.size_bytes,
        requests,
        free_start_sector=free.start_sector,
    )
    if isinstance(result, InvariantViolation):
        print(f"unexpected failure, not continuing: {result}", file=sys.stderr)
        return EXIT_INTERNAL_ERROR
    elif isinstance(result, PlanError):
        print(f"error: {result}", file=sys.stderr)
        return EXIT_PLAN_ERROR

    if opts.shrink_volume:
        try:
            current_free = volume_free_bytes(opts.shrink_volume)
        except OSError as e:
            print(f"error: {opts.shrink_volume}: {e.strerror}", file=sys.stderr)
            return EXIT_PLAN_ERROR
        error = check_shrink_precondition(current_free, result.total_bytes)
        if error is not None:
            print(f"error: {opts.shrink_volume}: {error}", file=sys.stderr)
            return EXIT_PLAN_ERROR

    print(yaml.safe_dump({"plan": plan_to_dict(result)}, sort_keys=False), end="")

    if not opts.apply:
        return 0

    passphrase = None
    if opts.passphrase_file is not None:
        passphrase = opts.passphrase_file.read().rstrip("\n")
    applier = PartitionTableApplier(facts.device, runner, wipe=not opts.keep_table)
    formatter = PartitionFormatter(runner, passphrase=passphrase)
    try:
        devices = applier.apply(result)
        formatted = formatter.format(result, devices)
    except (ApplyError, FormatError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_APPLY_ERROR

    print(
        yaml.safe_dump(
            {"devices": {p.kind.value + str(p.index): p.device for p in formatted}},
            sort_keys=False,
        ),
        end="",
    )
    if runner.dry_run:
        print(yaml.safe_dump({"commands": runner.transcript()}, sort_keys=False), end="")
    return 0


if __name__ == "__main__":
    sys.exit(main())
