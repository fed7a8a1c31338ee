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

import io
import os
import tempfile
import unittest

import jsonschema
from jsonschema.validators import validator_for

from distromigrate.common.types import (
    FilesystemKind,
    FixedMiB,
    RegionKind,
    RemainingSpace,
    RemainingSpaceMinus,
)
from distromigrate.layoutconfig import (
    LAYOUT_SCHEMA,
    LayoutConfigError,
    load_layout,
    parse_size,
)

GOOD = """\
version: 1
regions:
  - kind: efi
    size: 512M
  - kind: boot
    size: 1024
  - kind: root
    size: remaining
    encrypted: true
  - kind: swap
    size: 4G
    name: swap0
"""


class TestLayoutSchema(unittest.TestCase):
    def test_valid_schema(self):
        JsonValidator: jsonschema.protocols.Validator = validator_for(LAYOUT_SCHEMA)
        JsonValidator.check_schema(LAYOUT_SCHEMA)


class TestLoadLayout(unittest.TestCase):
    def test_good(self):
        requests = load_layout(io.StringIO(GOOD))
        self.assertEqual(
            [RegionKind.EFI, RegionKind.BOOT, RegionKind.ROOT, RegionKind.SWAP],
            [r.kind for r in requests],
        )
        self.assertEqual(FixedMiB(512), requests[0].size)
        self.assertEqual(FixedMiB(1024), requests[1].size)
        self.assertEqual(RemainingSpace(), requests[2].size)
        self.assertTrue(requests[2].encrypted)
        self.assertEqual(FixedMiB(4096), requests[3].size)
        self.assertEqual("swap0", requests[3].name)
        self.assertEqual(FilesystemKind.LINUX_SWAP, requests[3].filesystem)

    def test_filesystem_override(self):
        data = "regions:\n  - {kind: generic, size: 10G, filesystem: fat32}\n"
        [request] = load_layout(io.StringIO(data))
        self.assertEqual(FilesystemKind.FAT32, request.filesystem)

    def test_unknown_kind(self):
        data = "regions:\n  - {kind: home, size: 10G}\n"
        with self.assertRaises(LayoutConfigError) as cm:
            load_layout(io.StringIO(data))
        self.assertEqual(0, cm.exception.region)

    def test_unknown_key(self):
        data = "regions:\n  - {kind: root, size: 10G}\n  - {kind: swap, sise: 1G}\n"
        with self.assertRaises(LayoutConfigError) as cm:
            load_layout(io.StringIO(data))
        self.assertEqual(1, cm.exception.region)

    def test_bad_size(self):
        data = "regions:\n  - {kind: root, size: lots}\n"
        with self.assertRaises(LayoutConfigError) as cm:
            load_layout(io.StringIO(data))
        self.assertEqual(0, cm.exception.region)
        self.assertIn("region 0", str(cm.exception))

    def test_not_a_mapping(self):
        with self.assertRaises(LayoutConfigError):
            load_layout(io.StringIO("- 1\n- 2\n"))

    def test_bad_yaml(self):
        with self.assertRaises(LayoutConfigError):
            load_layout(io.StringIO("regions: [\n"))

    def test_wrong_version(self):
        with self.assertRaises(LayoutConfigError):
            load_layout(io.StringIO("version: 2\nregions: []\n"))


class TestParseSize(unittest.TestCase):
    def test_remaining_minus(self):
        self.assertEqual(RemainingSpaceMinus(8192), parse_size("remaining-minus:8G"))

    def test_plain_numbers_are_mib(self):
        self.assertEqual(FixedMiB(300), parse_size(300))
        self.assertEqual(FixedMiB(300), parse_size("300"))

    def test_human_sizes_round_up(self):
        self.assertEqual(FixedMiB(2), parse_size("1025K"))

    def test_negative(self):
        with self.assertRaises(ValueError):
            parse_size(-1)

    def test_iso(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "image.iso")
            with open(path, "wb") as fp:
                fp.truncate(3 * 1024 * 1024)
            self.assertEqual(FixedMiB(2048), parse_size("iso:" + path))

    def test_iso_bytes(self):
        # 4.3 GiB of image needs a 6 GiB region
        nbytes = 43 * (1 << 30) // 10
        self.assertEqual(FixedMiB(6144), parse_size(f"iso:{nbytes}"))

    def test_missing_iso(self):
        with self.assertRaises(ValueError):
            parse_size("iso:/nonexistent/image.iso")
