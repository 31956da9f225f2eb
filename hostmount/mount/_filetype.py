# Copyright Red Hat
#
# hostmount/mount/_filetype.py - Device and file classification
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Classify paths by file type and probe block devices for exclusive use.
"""
from contextlib import suppress
from enum import Enum
import logging
import errno
import stat
import os

from hostmount import (
    HostmountNotFoundError,
    HostmountPathError,
    HostmountSystemError,
)

_log = logging.getLogger(__name__)

_log_error = _log.error


class FileType(Enum):
    """
    The kinds of file that the mount layer distinguishes.
    """

    BLOCK_DEVICE = "BlockDevice"
    CHAR_DEVICE = "CharDevice"
    DIRECTORY = "Directory"
    REGULAR_FILE = "File"
    SOCKET = "Socket"

    def __str__(self):
        return self.value


_MODE_TO_FILE_TYPE = {
    stat.S_IFSOCK: FileType.SOCKET,
    stat.S_IFBLK: FileType.BLOCK_DEVICE,
    stat.S_IFCHR: FileType.CHAR_DEVICE,
    stat.S_IFDIR: FileType.DIRECTORY,
    stat.S_IFREG: FileType.REGULAR_FILE,
}


def get_file_type(path: str) -> FileType:
    """
    Return the ``FileType`` of ``path``.

    :param path: The path to classify.
    :returns: The file type.
    :rtype: ``FileType``
    :raises HostmountNotFoundError: If ``path`` does not exist.
    :raises HostmountPathError: If ``path`` is not a file, directory,
                                socket, block device or character device.
    """
    try:
        st = os.stat(path)
    except FileNotFoundError as err:
        raise HostmountNotFoundError(f"path '{path}' does not exist") from err
    except OSError as err:
        raise HostmountSystemError(f"Could not stat '{path}': {err}") from err

    file_type = _MODE_TO_FILE_TYPE.get(stat.S_IFMT(st.st_mode))
    if file_type is None:
        raise HostmountPathError(
            "only recognise file, directory, socket, block device and "
            f"character device: '{path}'"
        )
    return file_type


def path_is_device(path: str) -> bool:
    """
    Return ``True`` if ``path`` is a block or character device.
    """
    return get_file_type(path) in (FileType.BLOCK_DEVICE, FileType.CHAR_DEVICE)


def device_opened(path: str) -> bool:
    """
    Check whether the device at ``path`` is held open exclusively by
    another process, by attempting an ``O_EXCL`` open of the device.

    A path that is not a device is logged and reported as not in use.

    :param path: The device path to check.
    :returns: ``True`` if the device is busy.
    :rtype: ``bool``
    :raises HostmountSystemError: If ``path`` cannot be examined or the
                                  open fails for a reason other than
                                  ``EBUSY``.
    """
    try:
        st = os.stat(path)
    except OSError as err:
        raise HostmountSystemError(
            f"PathIsDevice failed for path '{path}': {err}"
        ) from err

    if not (stat.S_ISBLK(st.st_mode) or stat.S_ISCHR(st.st_mode)):
        _log_error("Path '%s' is not referring to a device.", path)
        return False

    try:
        fd = os.open(path, os.O_RDONLY | os.O_EXCL)
    except OSError as err:
        if err.errno == errno.EBUSY:
            return True
        raise HostmountSystemError(
            f"Could not open device '{path}': {err}"
        ) from err

    with suppress(OSError):
        os.close(fd)
    return False


def is_likely_not_mount_point(path: str) -> bool:
    """
    Determine whether ``path`` is not a mount point by comparing its device
    with that of its parent directory.

    This is fast but not always correct: a bind mount from one part of a
    file system to another has the same device as its parent, so after
    ``mount --bind /tmp/a /tmp/b`` this reports ``True`` for ``/tmp/b``.
    Use ``is_not_mount_point()`` when that case matters.

    :param path: The directory to check.
    :returns: ``False`` if ``path`` is definitely a mount point, ``True``
              otherwise.
    :rtype: ``bool``
    """
    try:
        path_stat = os.stat(path)
        parent_stat = os.lstat(path + "/..")
    except FileNotFoundError as err:
        raise HostmountNotFoundError(f"path '{path}' does not exist") from err
    except OSError as err:
        raise HostmountSystemError(f"Could not stat '{path}': {err}") from err

    # A different device from the parent means a mount point.
    return path_stat.st_dev == parent_stat.st_dev


__all__ = [
    "FileType",
    "get_file_type",
    "path_is_device",
    "device_opened",
    "is_likely_not_mount_point",
]
