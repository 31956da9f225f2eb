# Copyright Red Hat
#
# hostmount/_hostmount.py - Host mount management global definitions
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level hostmount package.
"""
import logging

_log = logging.getLogger("hostmount")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Hostmount debugging subsystem mask (legacy interface)
HOSTMOUNT_DEBUG_MOUNTER = 1
HOSTMOUNT_DEBUG_FORMAT = 2
HOSTMOUNT_DEBUG_PROPAGATION = 4
HOSTMOUNT_DEBUG_EXEC = 8
HOSTMOUNT_DEBUG_COMMAND = 16
HOSTMOUNT_DEBUG_ALL = (
    HOSTMOUNT_DEBUG_MOUNTER
    | HOSTMOUNT_DEBUG_FORMAT
    | HOSTMOUNT_DEBUG_PROPAGATION
    | HOSTMOUNT_DEBUG_EXEC
    | HOSTMOUNT_DEBUG_COMMAND
)

# Hostmount debugging subsystem names
HOSTMOUNT_SUBSYSTEM_MOUNTER = "hostmount.mounter"
HOSTMOUNT_SUBSYSTEM_FORMAT = "hostmount.format"
HOSTMOUNT_SUBSYSTEM_PROPAGATION = "hostmount.propagation"
HOSTMOUNT_SUBSYSTEM_EXEC = "hostmount.exec"
HOSTMOUNT_SUBSYSTEM_COMMAND = "hostmount.command"

_DEBUG_MASK_TO_SUBSYSTEM = {
    HOSTMOUNT_DEBUG_MOUNTER: HOSTMOUNT_SUBSYSTEM_MOUNTER,
    HOSTMOUNT_DEBUG_FORMAT: HOSTMOUNT_SUBSYSTEM_FORMAT,
    HOSTMOUNT_DEBUG_PROPAGATION: HOSTMOUNT_SUBSYSTEM_PROPAGATION,
    HOSTMOUNT_DEBUG_EXEC: HOSTMOUNT_SUBSYSTEM_EXEC,
    HOSTMOUNT_DEBUG_COMMAND: HOSTMOUNT_SUBSYSTEM_COMMAND,
}

_debug_subsystems = set()

#: How many times to retry for a consistent read of /proc/mounts.
MAX_LIST_TRIES = 3


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        # Always pass non-DEBUG messages.
        if record.levelno != logging.DEBUG:
            return True

        # Always pass DEBUG messages that aren't for a specific subsystem.
        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``hostmount`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    hostmount_log = logging.getLogger("hostmount")

    for handler in hostmount_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``hostmount`` package.

    :param mask: the logical OR of the ``HOSTMOUNT_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > HOSTMOUNT_DEBUG_ALL:
        raise ValueError(f"Invalid hostmount debug mask: {mask}")

    enabled_subsystems = []
    for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items():
        if mask & flag:
            enabled_subsystems.append(subsystem_name)

    hostmount_log = logging.getLogger("hostmount")
    for handler in hostmount_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


#
# Hostmount exception types
#


class HostmountError(Exception):
    """
    Base class for host mount management errors.
    """


class HostmountSystemError(HostmountError):
    """
    An error when calling the operating system.
    """


class HostmountReadError(HostmountError):
    """
    A kernel table could not be read consistently.
    """


class HostmountParseError(HostmountError):
    """
    Malformed content in a kernel table or in the output of an external
    program.
    """


class HostmountNotFoundError(HostmountError):
    """
    The requested path or mount does not exist.
    """


class HostmountPathError(HostmountError):
    """
    An invalid path was supplied, for example a path whose file type is not
    recognised.
    """


class HostmountCalloutError(HostmountError):
    """
    An error calling out to an external program.
    """


class HostmountToolMissingError(HostmountCalloutError):
    """
    A required external program is not installed.
    """


class HostmountUnrecoverableError(HostmountError):
    """
    A device cannot be made usable: the repair tool found errors it could
    not correct, or a read-only request found no file system to mount.
    """


class HostmountFsMismatchError(HostmountError):
    """
    The device already contains a file system other than the one requested.
    """

    def __init__(self, requested: str, existing: str, mount_error: Exception):
        """
        Initialise a new `HostmountFsMismatchError` exception.

        :param requested: The requested file system type.
        :param existing: The file system type found on the device.
        :param mount_error: The error raised by the failed mount attempt.
        """
        self.requested, self.existing = requested, existing
        self.mount_error = mount_error
        msg = (
            f"failed to mount the volume as '{requested}', it already "
            f"contains {existing}. Mount error: {mount_error}"
        )
        super().__init__(msg)


class HostmountMountError(HostmountCalloutError):
    """
    An error performing a mount operation.
    """

    def __init__(self, command: str, args, status: int, output: str):
        """
        Initialise a new `HostmountMountError` exception.

        :param command: The program that was run.
        :param args: The arguments passed to ``command``.
        :param status: The exit status of the mount program.
        :param output: The combined output of the mount program.
        """
        self.command, self.args_list = command, list(args)
        self.status, self.output = status, output
        msg = (
            f"mount failed: exit status {status}\n"
            f"Mounting command: {command}\n"
            f"Mounting arguments: {' '.join(self.args_list)}\n"
            f"Output: {output}"
        )
        super().__init__(msg)


class HostmountUmountError(HostmountCalloutError):
    """
    An error performing an unmount operation.
    """

    def __init__(self, where: str, status: int, output: str):
        """
        Initialise a new `HostmountUmountError` exception.

        :param where: The mount point for the failed umount operation.
        :param status: The exit status of the umount(8) program.
        :param output: The combined output of umount(8).
        """
        self.where, self.status, self.output = where, status, output
        msg = (
            f"Unmount failed: exit status {status}\n"
            f"Unmounting arguments: {where}\n"
            f"Output: {output}"
        )
        super().__init__(msg)


def _read_bytes(path: str) -> bytes:
    try:
        with open(path, "rb") as fp:
            return fp.read()
    except FileNotFoundError as err:
        raise HostmountNotFoundError(f"File not found: {path}") from err
    except OSError as err:
        raise HostmountSystemError(f"Error reading {path}: {err}") from err


def consistent_read(path: str, attempts: int = MAX_LIST_TRIES) -> bytes:
    """
    Read the file at ``path`` until two consecutive reads return identical
    content. Files in procfs such as /proc/mounts may change while they are
    being read, so a single read can return a torn snapshot.

    :param path: The file to read.
    :param attempts: The maximum number of re-reads to compare.
    :returns: The file content.
    :rtype: ``bytes``
    :raises HostmountReadError: If no two consecutive reads matched.
    """
    old_content = _read_bytes(path)
    for _ in range(attempts):
        new_content = _read_bytes(path)
        if new_content == old_content:
            return new_content
        old_content = new_content
    raise HostmountReadError(
        f"could not get consistent content of {path} after {attempts} attempts"
    )


__all__ = [
    "HOSTMOUNT_DEBUG_MOUNTER",
    "HOSTMOUNT_DEBUG_FORMAT",
    "HOSTMOUNT_DEBUG_PROPAGATION",
    "HOSTMOUNT_DEBUG_EXEC",
    "HOSTMOUNT_DEBUG_COMMAND",
    "HOSTMOUNT_DEBUG_ALL",
    "MAX_LIST_TRIES",
    # Debug logging - subsystem name interface
    "SubsystemFilter",
    "HOSTMOUNT_SUBSYSTEM_MOUNTER",
    "HOSTMOUNT_SUBSYSTEM_FORMAT",
    "HOSTMOUNT_SUBSYSTEM_PROPAGATION",
    "HOSTMOUNT_SUBSYSTEM_EXEC",
    "HOSTMOUNT_SUBSYSTEM_COMMAND",
    # Debug logging - legacy interface
    "set_debug_mask",
    "get_debug_mask",
    "HostmountError",
    "HostmountSystemError",
    "HostmountReadError",
    "HostmountParseError",
    "HostmountNotFoundError",
    "HostmountPathError",
    "HostmountCalloutError",
    "HostmountToolMissingError",
    "HostmountUnrecoverableError",
    "HostmountFsMismatchError",
    "HostmountMountError",
    "HostmountUmountError",
    "consistent_read",
]
