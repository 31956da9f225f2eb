# Copyright Red Hat
#
# hostmount/mount/_proc.py - Kernel mount table readers
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Readers for the /proc/mounts and /proc/self/mountinfo kernel tables.
"""
from typing import List
import collections
import os

from hostmount import (
    MAX_LIST_TRIES,
    HostmountParseError,
    consistent_read,
)

#: Path to /proc/mounts
PROC_MOUNTS = "/proc/mounts"

#: Path to /proc/self/mountinfo
PROC_MOUNTINFO = "/proc/self/mountinfo"

#: Number of fields per line in /proc/mounts as per the fstab man page.
EXPECTED_NUM_FIELDS_PER_LINE = 6

#: Minimum number of fields per line in /proc/self/mountinfo.
_MIN_MOUNTINFO_FIELDS = 7

#: Index of the mount point field in a mountinfo line.
_MOUNTINFO_MOUNT_POINT = 4

#: Index of the first optional field in a mountinfo line.
_MOUNTINFO_OPTIONAL = 6

#: Marks the end of the optional fields in a mountinfo line.
_MOUNTINFO_SEPARATOR = "-"

#: Suffix the kernel appends to mount points whose directory was deleted.
_DELETED_SUFFIX = "\\040(deleted)"

# One row of the kernel mount table.
MountPoint = collections.namedtuple(
    "MountPoint", ["device", "path", "fstype", "opts", "freq", "passno"]
)

# One row of the mountinfo table, reduced to the fields used here.
MountInfo = collections.namedtuple("MountInfo", ["mount_point", "optional"])


def _lines(content: bytes):
    # Mount paths are raw bytes: decode them as file names.
    for line in os.fsdecode(content).split("\n"):
        # The last split() item is the empty string following the last \n
        if line == "":
            continue
        yield line


def parse_proc_mounts(content: bytes) -> List[MountPoint]:
    """
    Parse the content of a /proc/mounts format file.

    :param content: The raw file content.
    :returns: A list of ``MountPoint`` rows in file order.
    :rtype: ``List[MountPoint]``
    :raises HostmountParseError: If any line does not have exactly six
                                 fields or has a non-integer freq or passno.
    """
    out = []
    for line in _lines(content):
        fields = line.split()
        if len(fields) != EXPECTED_NUM_FIELDS_PER_LINE:
            raise HostmountParseError(
                f"wrong number of fields (expected {EXPECTED_NUM_FIELDS_PER_LINE}, "
                f"got {len(fields)}): {line}"
            )
        device, path, fstype, opts, freq, passno = fields
        try:
            out.append(
                MountPoint(device, path, fstype, opts.split(","), int(freq), int(passno))
            )
        except ValueError as err:
            raise HostmountParseError(
                f"invalid dump frequency or pass number: {line}"
            ) from err
    return out


def list_proc_mounts(path: str = PROC_MOUNTS) -> List[MountPoint]:
    """
    Return a consistent snapshot of the mount table at ``path``.

    :param path: Path to a /proc/mounts format file.
    :returns: A list of ``MountPoint`` rows.
    :rtype: ``List[MountPoint]``
    """
    return parse_proc_mounts(consistent_read(path, MAX_LIST_TRIES))


def parse_mount_info(content: bytes) -> List[MountInfo]:
    """
    Parse the content of a /proc/<pid>/mountinfo file.

    :param content: The raw file content.
    :returns: A list of ``MountInfo`` rows in file order.
    :rtype: ``List[MountInfo]``
    :raises HostmountParseError: If a line has fewer than seven fields.
    """
    infos = []
    for line in _lines(content):
        fields = line.split()
        if len(fields) < _MIN_MOUNTINFO_FIELDS:
            raise HostmountParseError(
                f"wrong number of fields (expected at least {_MIN_MOUNTINFO_FIELDS}, "
                f"got {len(fields)}): {line}"
            )
        optional = []
        for opt in fields[_MOUNTINFO_OPTIONAL:]:
            if opt == _MOUNTINFO_SEPARATOR:
                break
            optional.append(opt)
        infos.append(MountInfo(fields[_MOUNTINFO_MOUNT_POINT], optional))
    return infos


def list_mount_info(path: str = PROC_MOUNTINFO) -> List[MountInfo]:
    """
    Return a consistent snapshot of the mountinfo table at ``path``.

    :param path: Path to a mountinfo format file.
    :returns: A list of ``MountInfo`` rows.
    :rtype: ``List[MountInfo]``
    """
    return parse_mount_info(consistent_read(path, MAX_LIST_TRIES))


def is_mount_point_match(mount_point: MountPoint, directory: str) -> bool:
    """
    Return ``True`` if ``mount_point`` is mounted on ``directory``, including
    the case where ``directory`` has been deleted while still mounted.
    """
    deleted_dir = f"{directory}{_DELETED_SUFFIX}"
    return mount_point.path in (directory, deleted_dir)


__all__ = [
    "PROC_MOUNTS",
    "PROC_MOUNTINFO",
    "MountPoint",
    "MountInfo",
    "parse_proc_mounts",
    "list_proc_mounts",
    "parse_mount_info",
    "list_mount_info",
    "is_mount_point_match",
]
