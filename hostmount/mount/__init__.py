# Copyright Red Hat
#
# hostmount/mount/__init__.py - Host mount management
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Top level interface to host mount management.
"""

from ._exec import CommandResult, Exec
from ._proc import (
    PROC_MOUNTS,
    PROC_MOUNTINFO,
    MountPoint,
    MountInfo,
    parse_proc_mounts,
    list_proc_mounts,
    parse_mount_info,
    list_mount_info,
    is_mount_point_match,
)
from ._filetype import (
    FileType,
    get_file_type,
    path_is_device,
    device_opened,
    is_likely_not_mount_point,
)
from ._propagation import is_shared, make_rshared
from ._mounter import (
    MounterBase,
    Mounter,
    is_bind,
    make_mount_args,
    add_systemd_scope,
    detect_systemd,
    is_not_mount_point,
    get_mount_refs,
    get_device_name_from_mount,
)
from ._format import DEFAULT_FSTYPE, PARTITIONED_DISK_FORMAT, SafeFormatAndMount
from ._config import HOSTMOUNT_CONFIG_FILE, DEFAULT_PLUGIN_DIR, HostmountConfig

__all__ = [
    "CommandResult",
    "Exec",
    "PROC_MOUNTS",
    "PROC_MOUNTINFO",
    "MountPoint",
    "MountInfo",
    "parse_proc_mounts",
    "list_proc_mounts",
    "parse_mount_info",
    "list_mount_info",
    "is_mount_point_match",
    "FileType",
    "get_file_type",
    "path_is_device",
    "device_opened",
    "is_likely_not_mount_point",
    "is_shared",
    "make_rshared",
    "MounterBase",
    "Mounter",
    "is_bind",
    "make_mount_args",
    "add_systemd_scope",
    "detect_systemd",
    "is_not_mount_point",
    "get_mount_refs",
    "get_device_name_from_mount",
    "DEFAULT_FSTYPE",
    "PARTITIONED_DISK_FORMAT",
    "SafeFormatAndMount",
    "HOSTMOUNT_CONFIG_FILE",
    "DEFAULT_PLUGIN_DIR",
    "HostmountConfig",
]
