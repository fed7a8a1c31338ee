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

# The planner hands these back as values so that callers have to look at
# them before doing anything destructive. They are still exceptions, so a
# caller that prefers to raise can.

from distromigrate.common.filesystem.sizes import humanize_size


class PlanError(Exception):
    """Base class of everything the planner can return instead of a plan."""

    user_error = True


class IncompatibleRegionError(PlanError):
    def __init__(self, kind, firmware):
        self.kind = kind
        self.firmware = firmware
        super().__init__(kind, firmware)

    def __str__(self):
        return "a {} region cannot be used with {} firmware".format(
            self.kind.value, self.firmware.value.upper()
        )


class AmbiguousSizingError(PlanError):
    def __init__(self, kinds):
        self.kinds = list(kinds)
        super().__init__(self.kinds)

    def __str__(self):
        return "only one region may use the remaining space, got {}".format(
            ", ".join(k.value for k in self.kinds)
        )


class InsufficientSpaceError(PlanError):
    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(required, available)

    def __str__(self):
        return "{} bytes ({}) needed but only {} bytes ({}) available".format(
            self.required,
            humanize_size(self.required),
            self.available,
            humanize_size(self.available),
        )


class InvalidRegionSizeError(PlanError):
    def __init__(self, kind):
        self.kind = kind
        super().__init__(kind)

    def __str__(self):
        return "a {} region cannot have a size of zero".format(self.kind.value)


class InvariantViolation(PlanError):
    """The planner produced something inconsistent. This is a bug, not
    something the user can fix by changing their input."""

    user_error = False

    def __init__(self, message):
        self.message = message
        super().__init__(message)

    def __str__(self):
        return "internal planner error: {}".format(self.message)
