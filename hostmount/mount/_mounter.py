# Copyright Red Hat
#
# hostmount/mount/_mounter.py - Mount executor and mount references
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Mount and unmount file systems with mount(8) and umount(8), and resolve
the mount references of a path.
"""
from typing import List, Optional, Sequence, Tuple
from abc import ABC, abstractmethod
import logging
import shutil
import os.path
import os

from hostmount import (
    HOSTMOUNT_SUBSYSTEM_MOUNTER,
    HostmountCalloutError,
    HostmountError,
    HostmountMountError,
    HostmountNotFoundError,
    HostmountToolMissingError,
    HostmountUmountError,
)

from ._exec import Exec
from ._proc import (
    PROC_MOUNTS,
    PROC_MOUNTINFO,
    MountPoint,
    list_proc_mounts,
    is_mount_point_match,
)
from ._filetype import (
    FileType,
    get_file_type,
    path_is_device,
    device_opened,
    is_likely_not_mount_point,
)
from ._propagation import make_rshared

_log = logging.getLogger(__name__)

_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_mounter(msg, *args, **kwargs):
    """A wrapper for mounter subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": HOSTMOUNT_SUBSYSTEM_MOUNTER}, **kwargs)


#: The default mount program.
MOUNT_CMD = "mount"

#: The unmount program.
UMOUNT_CMD = "umount"

#: The systemd transient unit launcher.
SYSTEMD_RUN_CMD = "systemd-run"

#: Sub-directory of a plugin directory that holds global device mounts.
MOUNTS_IN_GLOBAL_PD_PATH = "mounts"

#: File systems that must be mounted with the alternate mounter, if set.
_FSTYPES_NEED_MOUNTER = frozenset(("nfs", "glusterfs", "ceph", "cifs"))


class MounterBase(ABC):
    """
    The mount capability: mount and unmount file systems and query the
    state of mounts and devices.
    """

    @abstractmethod
    def mount(
        self,
        source: str,
        target: str,
        fstype: str = "",
        options: Optional[Sequence[str]] = None,
    ):
        """
        Mount ``source`` on ``target``.

        :param source: The mount source, or the empty string if not needed
                       (remount, for example).
        :param target: The mount point.
        :param fstype: The file system type, or the empty string to let the
                       kernel detect it.
        :param options: A list of mount(8) options such as "ro", "bind".
        """

    @abstractmethod
    def unmount(self, target: str):
        """
        Unmount the file system mounted at ``target``.
        """

    @abstractmethod
    def list(self) -> List[MountPoint]:
        """
        Return all mounted file systems.
        """

    def is_mount_point_match(self, mount_point: MountPoint, directory: str) -> bool:
        """
        Return ``True`` if ``mount_point`` is mounted on ``directory``.
        """
        return is_mount_point_match(mount_point, directory)

    def is_not_mount_point(self, directory: str) -> bool:
        """
        Return ``True`` if ``directory`` is not a mount point, checking the
        mount table when the fast device comparison is inconclusive.
        """
        return is_not_mount_point(self, directory)

    @abstractmethod
    def is_likely_not_mount_point(self, path: str) -> bool:
        """
        Fast, approximate check that ``path`` is not a mount point.
        """

    @abstractmethod
    def device_opened(self, path: str) -> bool:
        """
        Return ``True`` if the device at ``path`` is in use.
        """

    @abstractmethod
    def path_is_device(self, path: str) -> bool:
        """
        Return ``True`` if ``path`` is a block or character device.
        """

    def get_device_name_from_mount(self, mount_path: str, plugin_dir: str) -> str:
        """
        Return the volume ID for ``mount_path`` from its global mount point
        under ``plugin_dir``.
        """
        return get_device_name_from_mount(self, mount_path, plugin_dir)

    @abstractmethod
    def make_rshared(self, path: str):
        """
        Ensure ``path`` is on a mount with recursive shared propagation.
        """

    @abstractmethod
    def get_file_type(self, path: str) -> FileType:
        """
        Return the ``FileType`` of ``path``.
        """


def is_bind(options: Optional[Sequence[str]]) -> Tuple[bool, List[str]]:
    """
    Split bind mount options.

    The kernel ignores most options on the initial bind mount so they have
    to be applied with a subsequent remount.

    :param options: A list of mount options.
    :returns: A tuple of (bind, remount_options), where remount_options
              starts with "remount" and holds every other option except
              "bind".
    :rtype: ``Tuple[bool, List[str]]``
    """
    bind = False
    bind_remount_opts = ["remount"]
    for option in options or []:
        if option == "bind":
            bind = True
        elif option == "remount":
            continue
        else:
            bind_remount_opts.append(option)
    return bind, bind_remount_opts


def make_mount_args(
    source: str, target: str, fstype: str, options: Optional[Sequence[str]]
) -> List[str]:
    """
    Build the argument list for mount(8):

        mount [-t <fstype>] [-o <options>] [<source>] <target>

    :returns: The argument list, without the program name.
    :rtype: ``List[str]``
    """
    mount_args = []
    if fstype:
        mount_args.extend(["-t", fstype])
    if options:
        mount_args.extend(["-o", ",".join(options)])
    if source:
        mount_args.append(source)
    mount_args.append(target)
    return mount_args


def add_systemd_scope(
    systemd_run_path: str, mount_name: str, command: str, args: Sequence[str]
) -> Tuple[str, List[str]]:
    """
    Wrap ``command`` and ``args`` in a ``systemd-run --scope`` invocation.

    :param systemd_run_path: The systemd-run program.
    :param mount_name: The mount target named in the unit description.
    :param command: The program to run inside the scope.
    :param args: Arguments for ``command``.
    :returns: A tuple of (program, arguments).
    :rtype: ``Tuple[str, List[str]]``
    """
    description_arg = f"--description=hostmount transient mount for {mount_name}"
    systemd_run_args = [description_arg, "--scope", "--", command]
    return systemd_run_path, systemd_run_args + list(args)


def detect_systemd(exec_: Exec) -> bool:
    """
    Return ``True`` if the host runs systemd and ``systemd-run --scope``
    works. Any failure is treated as "no systemd".

    Running a probe command rather than checking for the binary detects
    containers that ship a systemd based image with a different pid 1.
    """
    if shutil.which(SYSTEMD_RUN_CMD) is None:
        _log_info("Detected OS without systemd")
        return False

    try:
        result = exec_.run(
            SYSTEMD_RUN_CMD, "--description=hostmount systemd probe", "--scope", "true"
        )
    except HostmountCalloutError as err:
        _log_info("Cannot run systemd-run, assuming non-systemd OS")
        _log_debug_mounter("systemd-run failed with: %s", err)
        return False

    if not result.ok:
        _log_info("Cannot run systemd-run, assuming non-systemd OS")
        _log_debug_mounter(
            "systemd-run failed with status %d: %s", result.status, result.output
        )
        return False

    _log_info("Detected OS with systemd")
    return True


class Mounter(MounterBase):
    """
    The mount capability for Linux hosts. Assumes the caller runs in the
    host's root mount namespace.
    """

    def __init__(
        self,
        mounter_path: str = "",
        exec_: Optional[Exec] = None,
        with_systemd: Optional[bool] = None,
    ):
        """
        Initialise a new ``Mounter``.

        Whether mounts are wrapped in a systemd scope is decided once here;
        construct a new instance to re-detect.

        :param mounter_path: An alternative to mount(8) used for the file
                             system types that require it.
        :param exec_: The command runner to use.
        :param with_systemd: Wrap mounts in a systemd scope, or ``None`` to
                             detect systemd on the host.
        """
        self._exec = exec_ or Exec()
        self._mounter_path = mounter_path
        if with_systemd is None:
            with_systemd = detect_systemd(self._exec)
        self._with_systemd = with_systemd

    @property
    def mounter_path(self) -> str:
        """
        The alternate mount helper, or the empty string.
        """
        return self._mounter_path

    @property
    def with_systemd(self) -> bool:
        """
        ``True`` if mounts run inside a transient systemd scope.
        """
        return self._with_systemd

    def __repr__(self):
        return (
            f"Mounter(mounter_path='{self._mounter_path}', "
            f"with_systemd={self._with_systemd})"
        )

    def mount(self, source, target, fstype="", options=None):
        # All supported distributions ship a mount(8) that handles bind mounts.
        mounter_path = ""
        bind, bind_remount_opts = is_bind(options)
        if bind:
            self._do_mount(mounter_path, MOUNT_CMD, source, target, fstype, ["bind"])
            self._do_mount(
                mounter_path, MOUNT_CMD, source, target, fstype, bind_remount_opts
            )
            return
        if fstype in _FSTYPES_NEED_MOUNTER:
            mounter_path = self._mounter_path
        self._do_mount(mounter_path, MOUNT_CMD, source, target, fstype, options)

    def _do_mount(self, mounter_path, mount_cmd, source, target, fstype, options):
        """
        Run the mount command, via ``mounter_path`` if set, and inside a
        systemd scope if systemd was detected.
        """
        mount_args = make_mount_args(source, target, fstype, options)
        if mounter_path:
            mount_args = [mount_cmd] + mount_args
            mount_cmd = mounter_path

        if self._with_systemd:
            # The scope keeps any daemon forked by the mount helper (FUSE,
            # for example) alive across restarts of the calling service.
            mount_cmd, mount_args = add_systemd_scope(
                SYSTEMD_RUN_CMD, target, mount_cmd, mount_args
            )

        _log_debug_mounter(
            "Mounting cmd (%s) with arguments (%s)", mount_cmd, " ".join(mount_args)
        )
        result = self._exec.run(mount_cmd, *mount_args)
        if result.not_found:
            raise HostmountToolMissingError(f"mount command not found: {mount_cmd}")
        if result.status != 0:
            err = HostmountMountError(
                mount_cmd, mount_args, result.status, result.output
            )
            _log_error("%s", err)
            raise err

    def unmount(self, target):
        _log_debug_mounter("Unmounting %s", target)
        result = self._exec.run(UMOUNT_CMD, target)
        if result.not_found:
            raise HostmountToolMissingError(f"umount command not found: {UMOUNT_CMD}")
        if result.status != 0:
            raise HostmountUmountError(target, result.status, result.output)

    def list(self):
        return list_proc_mounts(PROC_MOUNTS)

    def is_likely_not_mount_point(self, path):
        return is_likely_not_mount_point(path)

    def device_opened(self, path):
        return device_opened(path)

    def path_is_device(self, path):
        return path_is_device(path)

    def make_rshared(self, path):
        make_rshared(path, PROC_MOUNTINFO)

    def get_file_type(self, path):
        return get_file_type(path)


def is_not_mount_point(mounter: MounterBase, directory: str) -> bool:
    """
    Determine whether ``directory`` is not a mount point.

    Unlike ``is_likely_not_mount_point()`` this also detects bind mounts
    within a file system, at the cost of reading the mount table.

    :param mounter: The mount capability to query.
    :param directory: The directory to check.
    :returns: ``True`` if ``directory`` is not a mount point.
    :rtype: ``bool``
    """
    if not mounter.is_likely_not_mount_point(directory):
        return False

    for mount_point in mounter.list():
        if mounter.is_mount_point_match(mount_point, directory):
            return False
    return True


def get_mount_refs(mounter: MounterBase, mount_path: str) -> List[str]:
    """
    Find all other mount points of the device mounted at ``mount_path``.

    :param mounter: The mount capability to query.
    :param mount_path: A mount point, possibly reached through a symlink.
    :returns: The other mount points of the same device, in mount table
              order. Empty if ``mount_path`` is not mounted.
    :rtype: ``List[str]``
    """
    mount_points = mounter.list()

    try:
        target = os.path.realpath(mount_path, strict=True)
    except OSError:
        target = mount_path

    device_name = ""
    for mount_point in mount_points:
        if mount_point.path == target:
            device_name = mount_point.device
            break

    if not device_name:
        _log_warn("could not determine device for path: '%s'", mount_path)
        return []

    return [
        mount_point.path
        for mount_point in mount_points
        if mount_point.device == device_name and mount_point.path != target
    ]


def get_device_name_from_mount(
    mounter: MounterBase, mount_path: str, plugin_dir: str
) -> str:
    """
    Find the volume ID of ``mount_path`` from the mount references that lie
    under the global mounts directory of ``plugin_dir``. If no reference
    does, the last component of ``mount_path`` is returned.

    :param mounter: The mount capability to query.
    :param mount_path: The mount point to look up.
    :param plugin_dir: The plugin base directory.
    :returns: The volume ID.
    :rtype: ``str``
    :raises HostmountNotFoundError: If ``mount_path`` has no references.
    """
    try:
        refs = get_mount_refs(mounter, mount_path)
    except HostmountError as err:
        _log_debug_mounter("get_mount_refs failed for mount path '%s': %s", mount_path, err)
        raise

    if not refs:
        _log_debug_mounter("Directory %s is not mounted", mount_path)
        raise HostmountNotFoundError(f"directory {mount_path} is not mounted")

    base_mount_path = os.path.join(plugin_dir, MOUNTS_IN_GLOBAL_PD_PATH)
    for ref in refs:
        if ref.startswith(base_mount_path):
            return os.path.relpath(ref, base_mount_path)

    return os.path.basename(os.path.normpath(mount_path))


__all__ = [
    "MOUNT_CMD",
    "UMOUNT_CMD",
    "SYSTEMD_RUN_CMD",
    "MOUNTS_IN_GLOBAL_PD_PATH",
    "MounterBase",
    "Mounter",
    "is_bind",
    "make_mount_args",
    "add_systemd_scope",
    "detect_systemd",
    "is_not_mount_point",
    "get_mount_refs",
    "get_device_name_from_mount",
]
