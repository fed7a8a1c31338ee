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

from distromigrate.storage.runner import (
    DryRunCommandRunner,
    LoggedCommandRunner,
    get_command_runner,
)


class TestRunners(unittest.TestCase):
    def test_get_command_runner(self):
        self.assertIsInstance(get_command_runner(True), DryRunCommandRunner)
        runner = get_command_runner(False)
        self.assertIsInstance(runner, LoggedCommandRunner)
        self.assertFalse(runner.dry_run)

    def test_dry_run_records(self):
        runner = DryRunCommandRunner(outputs={"parted": "BYT;\n"})
        cp = runner.run(["parted", "-m", "/dev/sda"])
        self.assertEqual("BYT;\n", cp.stdout)
        self.assertEqual(0, cp.returncode)
        cp = runner.run(["cryptsetup", "open", "/dev/sda2"], input="secret")
        self.assertEqual("", cp.stdout)
        self.assertEqual(
            [["parted", "-m", "/dev/sda"], ["cryptsetup", "open", "/dev/sda2"]],
            runner.commands,
        )
        self.assertEqual([None, "secret"], runner.inputs)
        self.assertEqual(
            ["parted -m /dev/sda", "cryptsetup open /dev/sda2"], runner.transcript()
        )

    @mock.patch("distromigrate.storage.runner.run_command")
    def test_logged_runs(self, m_run):
        m_run.return_value = subprocess.CompletedProcess([], 0)
        LoggedCommandRunner().run(["udevadm", "settle"], input="x")
        m_run.assert_called_once_with(["udevadm", "settle"], input="x", check=True)
