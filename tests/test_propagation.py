# Copyright Red Hat
#
# tests/test_propagation.py - Mount propagation tests
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import call, patch
import logging
import tempfile
import errno

import hostmount
from hostmount.mount import is_shared, make_rshared
from hostmount.mount._syscalls import MS_BIND, MS_REC, MS_SHARED

from ._util import write_file

log = logging.getLogger()

_MOUNTINFO = (
    "22 1 253:0 / / rw,relatime shared:1 - xfs /dev/mapper/fedora-root rw\n"
    "30 22 253:1 / /var rw,relatime shared:10 - xfs /dev/mapper/fedora-var rw\n"
    "31 30 253:2 / /var/lib rw,relatime - xfs /dev/mapper/fedora-lib rw\n"
    "32 31 253:2 /kubelet /var/lib/kubelet rw,relatime shared:12 - xfs /dev/mapper/fedora-lib rw\n"
)

_SYSCALL_MOUNT = "hostmount.mount._propagation._syscalls.mount"


class PropagationTests(unittest.TestCase):
    """Test shared mount propagation"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(tempdir.cleanup)
        self.mountinfo = write_file(tempdir.name, "mountinfo", _MOUNTINFO)

    def tearDown(self):
        log.debug("Tearing down (%s)", self._testMethodName)

    def test_is_shared_selects_last_matching_mount(self):
        # /var/lib is private, but the later /var/lib/kubelet mount owns the path.
        self.assertTrue(is_shared("/var/lib/kubelet/plugins", self.mountinfo))

    def test_is_shared_private_mount(self):
        self.assertFalse(is_shared("/var/lib/containers", self.mountinfo))

    def test_is_shared_root(self):
        self.assertTrue(is_shared("/home/user", self.mountinfo))

    def test_is_shared_no_mount_point(self):
        with self.assertRaises(hostmount.HostmountNotFoundError):
            is_shared("relative/path", self.mountinfo)

    @patch(_SYSCALL_MOUNT)
    def test_make_rshared_already_shared(self, mock_mount):
        make_rshared("/var/lib/kubelet", self.mountinfo)
        mock_mount.assert_not_called()

    @patch(_SYSCALL_MOUNT)
    def test_make_rshared(self, mock_mount):
        make_rshared("/var/lib/containers", self.mountinfo)
        self.assertEqual(
            mock_mount.call_args_list,
            [
                call("/var/lib/containers", "/var/lib/containers", None, MS_BIND | MS_REC),
                call("/var/lib/containers", "/var/lib/containers", None, MS_SHARED | MS_REC),
            ],
        )

    @patch(_SYSCALL_MOUNT)
    def test_make_rshared_idempotent(self, mock_mount):
        shared_line = (
            "33 31 253:2 /containers /var/lib/containers rw shared:40 - xfs "
            "/dev/mapper/fedora-lib rw\n"
        )

        def bind_and_share(source, target, fstype, flags):
            if flags & MS_SHARED:
                with open(self.mountinfo, "a", encoding="utf8") as fp:
                    fp.write(shared_line)

        mock_mount.side_effect = bind_and_share
        make_rshared("/var/lib/containers", self.mountinfo)
        self.assertEqual(mock_mount.call_count, 2)
        mock_mount.reset_mock()

        make_rshared("/var/lib/containers", self.mountinfo)
        mock_mount.assert_not_called()

    @patch(_SYSCALL_MOUNT)
    def test_make_rshared_bind_fails(self, mock_mount):
        mock_mount.side_effect = OSError(errno.EPERM, "Operation not permitted")
        with self.assertRaises(hostmount.HostmountSystemError) as cm:
            make_rshared("/var/lib/containers", self.mountinfo)
        self.assertIn("bind-mount /var/lib/containers", str(cm.exception))
        self.assertEqual(mock_mount.call_count, 1)

    @patch(_SYSCALL_MOUNT)
    def test_make_rshared_share_fails(self, mock_mount):
        mock_mount.side_effect = [None, OSError(errno.EINVAL, "Invalid argument")]
        with self.assertRaises(hostmount.HostmountSystemError) as cm:
            make_rshared("/var/lib/containers", self.mountinfo)
        self.assertIn("rshared", str(cm.exception))
