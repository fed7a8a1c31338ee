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

import math

MiB = 1024 * 1024
GiB = 1024 * 1024 * 1024

# An image copied onto its own partition needs room for filesystem
# overhead on top of its exact size.
ARTIFACT_MARGIN = 1 * GiB

HUMAN_UNITS = ["B", "K", "M", "G", "T", "P"]


def align_up(size, block_size=MiB):
    r = size % block_size
    if r:
        return size + block_size - r
    return size


def align_down(size, block_size=MiB):
    return size - size % block_size


def gib_to_mib(gib):
    """Binary GiB to MiB, as typed in by a user. Only whole GiB."""
    if isinstance(gib, bool) or not isinstance(gib, int):
        raise ValueError("{!r} is not a whole number of GiB".format(gib))
    return gib * 1024


def bytes_to_mib_ceil(nbytes):
    return align_up(nbytes, MiB) // MiB


def artifact_region_bytes(artifact_bytes):
    """Size of a region that has to hold a copy of an artifact (an ISO, a
    squashfs): the artifact rounded up to whole GiB plus one more GiB.

    Tiny artifacts are not special cased, a 100 byte file still gets 2 GiB.
    """
    if artifact_bytes < 0:
        raise ValueError("artifact size cannot be negative")
    return align_up(artifact_bytes, GiB) + ARTIFACT_MARGIN


def humanize_size(size):
    if size == 0:
        return "0B"
    p = int(math.floor(math.log(size, 2) / 10))
    # We want to truncate the non-integral part, not round to nearest.
    s = "{:.17f}".format(size / 2 ** (10 * p))
    i = s.index(".")
    s = s[: i + 4]
    return s + HUMAN_UNITS[int(p)]


def dehumanize_size(size):
    # convert human 'size' to integer
    size_in = size

    size = size.strip() if size else size
    if not size:
        raise ValueError("input cannot be empty")

    if len(size) > 2 and size[-1] in "bB" and not size[-2].isdigit():
        # accept "MiB", "GB" and friends by dropping the trailing unit noise
        size = size[:-1]
        if size[-1] in "iI":
            size = size[:-1]

    if not size[-1].isdigit():
        suffix = size[-1].upper()
        size = size[:-1]
    else:
        suffix = None

    parts = size.split(".")
    if len(parts) > 2:
        raise ValueError("{input!r} is not valid input".format(input=size_in))
    elif len(parts) == 2:
        div = 10 ** len(parts[1])
        size = parts[0] + parts[1]
    else:
        div = 1

    try:
        num = int(size)
    except ValueError:
        raise ValueError("{input!r} is not valid input".format(input=size_in))

    if suffix is not None:
        if suffix not in HUMAN_UNITS:
            raise ValueError(
                "unrecognized suffix {suffix!r} in {input!r}".format(
                    suffix=size_in[-1], input=size_in
                )
            )
        mult = 2 ** (10 * HUMAN_UNITS.index(suffix))
    else:
        mult = 1

    if num < 0:
        raise ValueError("{input!r}: cannot be negative".format(input=size_in))

    return num * mult // div
