# Copyright Red Hat
#
# hostmount/mount/_format.py - Format and mount block devices
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Mount block devices, formatting them first if they hold no file system.
"""
from typing import Optional, Sequence
import logging

from hostmount import (
    HOSTMOUNT_SUBSYSTEM_FORMAT,
    HostmountCalloutError,
    HostmountError,
    HostmountFsMismatchError,
    HostmountParseError,
    HostmountToolMissingError,
    HostmountUnrecoverableError,
)

from ._exec import Exec
from ._mounter import MounterBase

_log = logging.getLogger(__name__)

_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_format(msg, *args, **kwargs):
    """A wrapper for format subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": HOSTMOUNT_SUBSYSTEM_FORMAT}, **kwargs)


_FSCK_CMD = "fsck"
_BLKID_CMD = "blkid"
_MKFS_CMD_PREFIX = "mkfs."

#: 'fsck' found errors and corrected them
FSCK_ERRORS_CORRECTED = 1
#: 'fsck' found errors but exited without correcting them
FSCK_ERRORS_UNCORRECTED = 4

#: blkid exit status when no (specified) token or device was identified.
BLKID_NOT_IDENTIFIED = 2

#: File system used when formatting a device with no requested type.
DEFAULT_FSTYPE = "ext4"

#: File system types whose mkfs needs -F to proceed without prompting.
_FORCE_FORMAT_FSTYPES = ("ext4", "ext3")

#: Reported as the format of a disk holding a partition table so that it
#: is never formatted.
PARTITIONED_DISK_FORMAT = "unknown data, probably partitions"


class SafeFormatAndMount(MounterBase):
    """
    A mount capability that formats unformatted devices before mounting
    them. Queries are delegated to the wrapped mounter.
    """

    def __init__(self, mounter: MounterBase, exec_: Optional[Exec] = None):
        """
        Initialise a new ``SafeFormatAndMount``.

        :param mounter: The mount capability to use for mounting.
        :param exec_: The command runner used for fsck, blkid and mkfs.
        """
        self.mounter = mounter
        self.exec = exec_ or Exec()

    def format_and_mount(
        self,
        source: str,
        target: str,
        fstype: str = "",
        options: Optional[Sequence[str]] = None,
    ):
        """
        Mount ``source`` on ``target``, formatting it as ``fstype`` if it
        does not contain a file system. Read-write requests run fsck on
        ``source`` first.

        :param source: The block device to mount.
        :param target: The mount point.
        :param fstype: The requested file system type, or the empty string
                       for the default.
        :param options: A list of mount options.
        :raises HostmountUnrecoverableError: If fsck could not repair the
                                             device, or a read-only device
                                             has no file system.
        :raises HostmountFsMismatchError: If the device contains another
                                          file system type.
        """
        options = list(options or [])
        read_only = "ro" in options
        options.append("defaults")

        if not read_only:
            self._check_disk(source)

        _log_debug_format("Attempting to mount disk: %s %s %s", fstype, source, target)
        try:
            self.mounter.mount(source, target, fstype, options)
            return
        except HostmountError as err:
            # Either the disk is unformatted or it holds an unexpected
            # file system.
            mount_err = err

        existing_format = self.get_disk_format(source)
        if not existing_format:
            if read_only:
                raise HostmountUnrecoverableError(
                    "failed to mount unformatted volume as read only"
                ) from mount_err
            self._format_disk(source, target, fstype or DEFAULT_FSTYPE, options)
            return

        if not fstype or fstype == existing_format:
            raise mount_err

        raise HostmountFsMismatchError(fstype, existing_format, mount_err) from mount_err

    def _check_disk(self, source: str):
        """
        Run fsck to repair recoverable issues on ``source``.
        """
        _log_debug_format("Checking for issues with fsck on disk: %s", source)
        try:
            result = self.exec.run(_FSCK_CMD, "-a", source)
        except HostmountCalloutError as err:
            _log_warn("Could not run 'fsck'; continuing mount without it: %s", err)
            return
        if result.not_found:
            _log_warn(
                "'fsck' not found on system; continuing mount without running 'fsck'."
            )
        elif result.status == FSCK_ERRORS_CORRECTED:
            _log_info("Device %s has errors which were corrected by fsck.", source)
        elif result.status == FSCK_ERRORS_UNCORRECTED:
            raise HostmountUnrecoverableError(
                f"'fsck' found errors on device {source} but could not correct "
                f"them: {result.output}."
            )
        elif result.status > FSCK_ERRORS_UNCORRECTED:
            _log_info("'fsck' error %s", result.output)

    def _format_disk(self, source: str, target: str, fstype: str, options):
        """
        Create a ``fstype`` file system on ``source`` and mount it.
        """
        args = [source]
        if fstype in _FORCE_FORMAT_FSTYPES:
            args = ["-F", source]

        _log_info(
            "Disk '%s' appears to be unformatted, attempting to format as type: "
            "'%s' with options: %s",
            source,
            fstype,
            args,
        )
        mkfs_cmd = _MKFS_CMD_PREFIX + fstype
        result = self.exec.run(mkfs_cmd, *args)
        if result.not_found:
            raise HostmountToolMissingError(f"{mkfs_cmd} not found on system")
        if result.status != 0:
            _log_error(
                "format of disk '%s' failed: type:(%s) target:(%s) options:(%s) "
                "status:(%d)",
                source,
                fstype,
                target,
                options,
                result.status,
            )
            raise HostmountCalloutError(
                f"{result.command_line} failed with exit status {result.status}: "
                f"{result.output}"
            )

        _log_info("Disk successfully formatted (mkfs): %s - %s %s", fstype, source, target)
        self.mounter.mount(source, target, fstype, options)

    def get_disk_format(self, disk: str) -> str:
        """
        Return the file system type of ``disk`` using blkid.

        :param disk: The block device to probe.
        :returns: The file system type, the empty string if the disk is
                  unformatted, or ``PARTITIONED_DISK_FORMAT`` if it holds a
                  partition table.
        :rtype: ``str``
        """
        args = ["-p", "-s", "TYPE", "-s", "PTTYPE", "-o", "export", disk]
        _log_debug_format(
            "Attempting to determine if disk '%s' is formatted using blkid with "
            "args: (%s)",
            disk,
            " ".join(args),
        )
        result = self.exec.run(_BLKID_CMD, *args)
        _log_debug_format("Output: '%s', status: %d", result.output, result.status)

        if result.not_found:
            raise HostmountToolMissingError("blkid command not found.")
        if result.status == BLKID_NOT_IDENTIFIED:
            # The disk holds no recognisable signature.
            return ""
        if result.status != 0:
            _log_error("Could not determine if disk '%s' is formatted", disk)
            raise HostmountCalloutError(
                f"blkid failed for {disk} with exit status {result.status}: "
                f"{result.output}"
            )

        fstype = pttype = ""
        for line in result.output.split("\n"):
            if not line:
                continue
            fields = line.split("=")
            if len(fields) != 2:
                raise HostmountParseError(f"blkid returns invalid output: {result.output}")
            key, value = fields
            # TYPE is the file system type, PTTYPE the partition table type.
            if key == "TYPE":
                fstype = value
            elif key == "PTTYPE":
                pttype = value

        if pttype:
            _log_debug_format("Disk %s detected partition table type: %s", disk, pttype)
            return PARTITIONED_DISK_FORMAT

        return fstype

    def mount(self, source, target, fstype="", options=None):
        self.mounter.mount(source, target, fstype, options)

    def unmount(self, target):
        self.mounter.unmount(target)

    def list(self):
        return self.mounter.list()

    def is_mount_point_match(self, mount_point, directory):
        return self.mounter.is_mount_point_match(mount_point, directory)

    def is_likely_not_mount_point(self, path):
        return self.mounter.is_likely_not_mount_point(path)

    def device_opened(self, path):
        return self.mounter.device_opened(path)

    def path_is_device(self, path):
        return self.mounter.path_is_device(path)

    def make_rshared(self, path):
        self.mounter.make_rshared(path)

    def get_file_type(self, path):
        return self.mounter.get_file_type(path)


__all__ = [
    "DEFAULT_FSTYPE",
    "FSCK_ERRORS_CORRECTED",
    "FSCK_ERRORS_UNCORRECTED",
    "PARTITIONED_DISK_FORMAT",
    "SafeFormatAndMount",
]
