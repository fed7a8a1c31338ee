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
import shlex
import subprocess
from typing import List, Optional

from distromigratecore.utils import run_command

log = logging.getLogger("distromigrate.storage.runner")


class LoggedCommandRunner:
    """Run commands for real, failing on a non-zero exit status."""

    dry_run = False

    def run(self, cmd: List[str], *, input: Optional[str] = None):
        log.info("running %s", shlex.join(cmd))
        return run_command(cmd, input=input, check=True)


class DryRunCommandRunner(LoggedCommandRunner):
    """Record commands instead of running them.

    Commands named in `outputs` return canned stdout, which is how the
    probing code is exercised without a disk.
    """

    dry_run = True

    def __init__(self, outputs=None):
        self.commands: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.outputs = dict(outputs or {})

    def run(self, cmd: List[str], *, input: Optional[str] = None):
        log.info("not running: %s", shlex.join(cmd))
        self.commands.append(list(cmd))
        self.inputs.append(input)
        stdout = self.outputs.get(cmd[0], "")
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    def transcript(self):
        return [shlex.join(cmd) for cmd in self.commands]


def get_command_runner(dry_run):
    if dry_run:
        return DryRunCommandRunner()
    else:
        return LoggedCommandRunner()
