# Copyright Red Hat
#
# hostmount/mount/_propagation.py - Mount propagation management
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Detect and enable shared mount propagation for a directory.
"""
import logging

from hostmount import (
    HOSTMOUNT_SUBSYSTEM_PROPAGATION,
    HostmountNotFoundError,
    HostmountSystemError,
)

from . import _syscalls
from ._proc import PROC_MOUNTINFO, list_mount_info

_log = logging.getLogger(__name__)

_log_info = _log.info


def _log_debug_propagation(msg, *args, **kwargs):
    """A wrapper for propagation subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": HOSTMOUNT_SUBSYSTEM_PROPAGATION}, **kwargs
    )


#: Optional field prefix marking a mount as a member of a peer group.
_SHARED_PREFIX = "shared:"


def is_shared(path: str, mountinfo: str = PROC_MOUNTINFO) -> bool:
    """
    Return ``True`` if ``path`` resides on a mount with shared propagation.

    Mountinfo lists mounts in the order they were created so the table is
    scanned backwards: the first mount point that is a prefix of ``path`` is
    the mount that ``path`` resides on.

    :param path: The path to check.
    :param mountinfo: The mountinfo file to read.
    :returns: ``True`` if the owning mount is shared.
    :rtype: ``bool``
    :raises HostmountNotFoundError: If no mount point is a prefix of ``path``.
    """
    infos = list_mount_info(mountinfo)

    info = None
    for candidate in reversed(infos):
        if path.startswith(candidate.mount_point):
            info = candidate
            break

    if info is None:
        raise HostmountNotFoundError(f"cannot find mount point for '{path}'")

    return any(opt.startswith(_SHARED_PREFIX) for opt in info.optional)


def make_rshared(path: str, mountinfo: str = PROC_MOUNTINFO):
    """
    Ensure that ``path`` is on a mount with recursive shared propagation,
    bind-mounting ``path`` onto itself first if it is not already shared.

    :param path: The directory to share.
    :param mountinfo: The mountinfo file to read.
    :raises HostmountSystemError: If either mount(2) call fails.
    """
    if is_shared(path, mountinfo):
        _log_debug_propagation("Directory %s is already on a shared mount", path)
        return

    _log_info("Bind-mounting '%s' with shared mount propagation", path)
    # mount --rbind <path> <path>
    try:
        _syscalls.mount(path, path, None, _syscalls.MS_BIND | _syscalls.MS_REC)
    except OSError as err:
        raise HostmountSystemError(f"failed to bind-mount {path}: {err}") from err

    # mount --make-rshared <path>
    try:
        _syscalls.mount(path, path, None, _syscalls.MS_SHARED | _syscalls.MS_REC)
    except OSError as err:
        raise HostmountSystemError(f"failed to make {path} rshared: {err}") from err


__all__ = [
    "is_shared",
    "make_rshared",
]
