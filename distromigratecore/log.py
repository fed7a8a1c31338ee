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

import grp
import logging
import os

_DEF_PERMS = 0o640
_DEF_GROUP = "adm"

FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"


def _log_gid():
    if os.getuid() != 0:
        return None
    try:
        return grp.getgrnam(_DEF_GROUP).gr_gid
    except KeyError:
        return None


def setup_logger(dir, base="distromigrate"):
    """Log everything at info and debug level to per-process files in `dir`.

    Returns a dict mapping level name to the log file path. A symlink
    without the pid suffix always points at the newest file.
    """
    os.makedirs(dir, exist_ok=True)
    gid = _log_gid()
    if gid is not None:
        os.chmod(dir, 0o750)
        os.chown(dir, -1, gid)

    logger = logging.getLogger("")
    logger.setLevel(logging.DEBUG)

    r = {}

    for level in "info", "debug":
        nopid_file = os.path.join(dir, "{}-{}.log".format(base, level))
        logfile = "{}.{}".format(nopid_file, os.getpid())
        handler = logging.FileHandler(logfile)
        os.chmod(logfile, _DEF_PERMS)
        if gid is not None:
            os.chown(logfile, -1, gid)
        # os.symlink cannot replace an existing file or symlink so create
        # it and then rename it over.
        tmplink = logfile + ".link"
        os.symlink(os.path.basename(logfile), tmplink)
        os.rename(tmplink, nopid_file)

        handler.setLevel(getattr(logging, level.upper()))
        handler.setFormatter(logging.Formatter(FORMAT))

        logger.addHandler(handler)
        r[level] = logfile

    return r


def setup_console_logger(debug=False):
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    logger = logging.getLogger("")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return handler
