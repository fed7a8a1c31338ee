# Copyright 2026 Canonical, Ltd.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, version 3.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

import logging
import os
import subprocess
from typing import Sequence

log = logging.getLogger("distromigratecore.utils")


def _clean_env(env, *, locale=True):
    if env is None:
        env = os.environ.copy()
    else:
        env = env.copy()
    if locale:
        # parted and friends are parsed by us, keep their output stable.
        env["LC_ALL"] = "C"
    return env


def run_command(
    cmd: Sequence[str],
    *,
    input=None,
    stdout=subprocess.PIPE,
    stderr=subprocess.PIPE,
    encoding="utf-8",
    env=None,
    clean_locale=True,
    **kw,
) -> subprocess.CompletedProcess:
    """A wrapper around subprocess.run with logging and different defaults.

    We never ever want a subprocess to inherit our file descriptors!
    """
    if input is None:
        kw["stdin"] = subprocess.DEVNULL
    else:
        input = input.encode(encoding)
    log.debug("run_command called: %s", cmd)
    try:
        cp = subprocess.run(
            cmd,
            input=input,
            stdout=stdout,
            stderr=stderr,
            env=_clean_env(env, locale=clean_locale),
            **kw,
        )
    except subprocess.CalledProcessError as e:
        if encoding:
            if isinstance(e.stdout, bytes):
                e.stdout = e.stdout.decode(encoding, errors="replace")
            if isinstance(e.stderr, bytes):
                e.stderr = e.stderr.decode(encoding, errors="replace")
        log.debug("run_command %s", str(e))
        raise
    else:
        if encoding:
            if isinstance(cp.stdout, bytes):
                cp.stdout = cp.stdout.decode(encoding, errors="replace")
            if isinstance(cp.stderr, bytes):
                cp.stderr = cp.stderr.decode(encoding, errors="replace")
        log.debug("run_command %s exited with code %s", cp.args, cp.returncode)
        return cp
