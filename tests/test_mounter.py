# Copyright Red Hat
#
# tests/test_mounter.py - Mount executor and mount reference tests
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import patch
import logging
import tempfile
import os

import hostmount
from hostmount.mount import (
    MountPoint,
    Mounter,
    is_bind,
    make_mount_args,
    add_systemd_scope,
    detect_systemd,
    is_not_mount_point,
    get_mount_refs,
    get_device_name_from_mount,
)

from ._util import FakeExec, FakeMounter, make_mounter, result

log = logging.getLogger()

_WHICH = "hostmount.mount._mounter.shutil.which"


def _mp(device, path, fstype="ext4"):
    return MountPoint(device, path, fstype, ["rw"], 0, 0)


class MountArgsTests(unittest.TestCase):
    """Test mount command line construction"""

    def test_make_mount_args_all(self):
        self.assertEqual(
            make_mount_args("/dev/sdb", "/mnt", "ext4", ["ro", "noatime"]),
            ["-t", "ext4", "-o", "ro,noatime", "/dev/sdb", "/mnt"],
        )

    def test_make_mount_args_target_only(self):
        self.assertEqual(make_mount_args("", "/mnt", "", None), ["/mnt"])
        self.assertEqual(make_mount_args("", "/mnt", "", []), ["/mnt"])

    def test_make_mount_args_remount(self):
        self.assertEqual(
            make_mount_args("", "/mnt", "", ["remount", "ro"]),
            ["-o", "remount,ro", "/mnt"],
        )

    def test_is_bind(self):
        self.assertEqual(is_bind(["bind", "ro"]), (True, ["remount", "ro"]))
        self.assertEqual(
            is_bind(["ro", "bind", "remount", "nosuid"]),
            (True, ["remount", "ro", "nosuid"]),
        )
        self.assertEqual(is_bind(["ro"]), (False, ["remount", "ro"]))
        self.assertEqual(is_bind(None), (False, ["remount"]))

    def test_add_systemd_scope(self):
        cmd, args = add_systemd_scope(
            "systemd-run", "/mnt/data", "mount", ["-t", "nfs", "srv:/x", "/mnt/data"]
        )
        self.assertEqual(cmd, "systemd-run")
        self.assertEqual(
            args,
            [
                "--description=hostmount transient mount for /mnt/data",
                "--scope",
                "--",
                "mount",
                "-t",
                "nfs",
                "srv:/x",
                "/mnt/data",
            ],
        )


class DetectSystemdTests(unittest.TestCase):
    """Test systemd detection"""

    @patch(_WHICH, return_value=None)
    def test_detect_systemd_not_installed(self, _mock_which):
        fake_exec = FakeExec()
        self.assertFalse(detect_systemd(fake_exec))
        self.assertEqual(fake_exec.calls, [])

    @patch(_WHICH, return_value="/usr/bin/systemd-run")
    def test_detect_systemd(self, _mock_which):
        fake_exec = FakeExec()
        self.assertTrue(detect_systemd(fake_exec))
        self.assertEqual(
            fake_exec.calls,
            [["systemd-run", "--description=hostmount systemd probe", "--scope", "true"]],
        )

    @patch(_WHICH, return_value="/usr/bin/systemd-run")
    def test_detect_systemd_not_running(self, _mock_which):
        fake_exec = FakeExec({"systemd-run": result(1, "System has not been booted with systemd")})
        self.assertFalse(detect_systemd(fake_exec))

    @patch(_WHICH, return_value="/usr/bin/systemd-run")
    def test_mounter_with_systemd_given(self, mock_which):
        fake_exec = FakeExec()
        mounter = Mounter(exec_=fake_exec, with_systemd=False)
        self.assertFalse(mounter.with_systemd)
        mock_which.assert_not_called()
        self.assertEqual(fake_exec.calls, [])

    def test_mounter_detects_once(self):
        fake_exec = FakeExec()
        mounter = make_mounter(fake_exec, systemd=True)
        self.assertTrue(mounter.with_systemd)
        mounter.unmount("/mnt/a")
        mounter.unmount("/mnt/b")
        self.assertEqual(fake_exec.commands(), ["umount", "umount"])


class MounterTests(unittest.TestCase):
    """Test the mount executor"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.exec = FakeExec()

    def tearDown(self):
        log.debug("Tearing down (%s)", self._testMethodName)

    def test_mount(self):
        mounter = make_mounter(self.exec)
        mounter.mount("/dev/sdb", "/mnt/data", "ext4", ["noatime"])
        self.assertEqual(
            self.exec.calls,
            [["mount", "-t", "ext4", "-o", "noatime", "/dev/sdb", "/mnt/data"]],
        )

    def test_mount_bind(self):
        mounter = make_mounter(self.exec)
        mounter.mount("/srv/a", "/srv/b", "", ["bind", "ro"])
        self.assertEqual(
            self.exec.calls,
            [
                ["mount", "-o", "bind", "/srv/a", "/srv/b"],
                ["mount", "-o", "remount,ro", "/srv/a", "/srv/b"],
            ],
        )

    def test_mount_bind_first_mount_fails(self):
        self.exec.responses["mount"] = result(32, "mount point does not exist")
        mounter = make_mounter(self.exec)
        with self.assertRaises(hostmount.HostmountMountError):
            mounter.mount("/srv/a", "/srv/b", "", ["bind", "ro"])
        self.assertEqual(len(self.exec.calls), 1)

    def test_mount_network_fs_uses_mounter_path(self):
        mounter = make_mounter(self.exec, mounter_path="/home/kubernetes/mounter")
        mounter.mount("srv:/export", "/mnt/nfs", "nfs", None)
        self.assertEqual(
            self.exec.calls,
            [["/home/kubernetes/mounter", "mount", "-t", "nfs", "srv:/export", "/mnt/nfs"]],
        )

    def test_mount_local_fs_ignores_mounter_path(self):
        mounter = make_mounter(self.exec, mounter_path="/home/kubernetes/mounter")
        mounter.mount("/dev/sdb", "/mnt/data", "ext4", None)
        self.assertEqual(self.exec.commands(), ["mount"])

    def test_mount_bind_ignores_mounter_path(self):
        mounter = make_mounter(self.exec, mounter_path="/home/kubernetes/mounter")
        mounter.mount("/srv/a", "/srv/b", "nfs", ["bind"])
        self.assertEqual(self.exec.commands(), ["mount", "mount"])

    def test_mount_with_systemd(self):
        mounter = make_mounter(self.exec, systemd=True)
        mounter.mount("/dev/sdb", "/mnt/data", "ext4", None)
        self.assertEqual(
            self.exec.calls,
            [
                [
                    "systemd-run",
                    "--description=hostmount transient mount for /mnt/data",
                    "--scope",
                    "--",
                    "mount",
                    "-t",
                    "ext4",
                    "/dev/sdb",
                    "/mnt/data",
                ]
            ],
        )

    def test_mount_with_systemd_and_mounter_path(self):
        mounter = make_mounter(self.exec, mounter_path="/opt/mounter", systemd=True)
        mounter.mount("srv:/export", "/mnt/nfs", "nfs", None)
        self.assertEqual(
            self.exec.calls[0][3:],
            ["--", "/opt/mounter", "mount", "-t", "nfs", "srv:/export", "/mnt/nfs"],
        )

    def test_mount_fails(self):
        self.exec.responses["mount"] = result(32, "wrong fs type, bad option")
        mounter = make_mounter(self.exec)
        with self.assertRaises(hostmount.HostmountMountError) as cm:
            mounter.mount("/dev/sdb", "/mnt/data", "xfs", None)
        self.assertEqual(cm.exception.status, 32)
        self.assertIn("wrong fs type, bad option", str(cm.exception))
        self.assertIn("-t xfs /dev/sdb /mnt/data", str(cm.exception))

    def test_mount_not_found(self):
        self.exec.responses["mount"] = result(not_found=True)
        mounter = make_mounter(self.exec)
        with self.assertRaises(hostmount.HostmountToolMissingError):
            mounter.mount("/dev/sdb", "/mnt/data", "ext4", None)

    def test_unmount(self):
        mounter = make_mounter(self.exec)
        mounter.unmount("/mnt/data")
        self.assertEqual(self.exec.calls, [["umount", "/mnt/data"]])

    def test_unmount_fails(self):
        self.exec.responses["umount"] = result(32, "umount: /mnt/data: not mounted.")
        mounter = make_mounter(self.exec)
        with self.assertRaises(hostmount.HostmountUmountError) as cm:
            mounter.unmount("/mnt/data")
        self.assertIn("not mounted", str(cm.exception))

    def test_list(self):
        mounter = make_mounter(self.exec)
        with patch(
            "hostmount.mount._mounter.list_proc_mounts",
            return_value=[_mp("proc", "/proc", "proc")],
        ) as mock_list:
            self.assertEqual(mounter.list(), [_mp("proc", "/proc", "proc")])
            mock_list.assert_called_once_with("/proc/mounts")

    @patch("hostmount.mount._mounter.make_rshared")
    def test_make_rshared(self, mock_make_rshared):
        mounter = make_mounter(self.exec)
        mounter.make_rshared("/var/lib/hostmount")
        mock_make_rshared.assert_called_once_with(
            "/var/lib/hostmount", "/proc/self/mountinfo"
        )

    def test_repr(self):
        mounter = make_mounter(self.exec, mounter_path="/opt/mounter")
        self.assertEqual(
            repr(mounter), "Mounter(mounter_path='/opt/mounter', with_systemd=False)"
        )


class MountRefsTests(unittest.TestCase):
    """Test mount reference resolution"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.mounter = FakeMounter(
            [
                _mp("/dev/sda1", "/"),
                _mp("/dev/sdb1", "/mnt/a"),
                _mp("tmpfs", "/tmp", "tmpfs"),
                _mp("/dev/sdb1", "/mnt/b"),
            ]
        )

    def test_get_mount_refs(self):
        self.assertEqual(get_mount_refs(self.mounter, "/mnt/a"), ["/mnt/b"])
        self.assertEqual(get_mount_refs(self.mounter, "/mnt/b"), ["/mnt/a"])

    def test_get_mount_refs_not_mounted(self):
        self.assertEqual(get_mount_refs(self.mounter, "/mnt/c"), [])

    def test_get_mount_refs_single_mount(self):
        self.assertEqual(get_mount_refs(self.mounter, "/tmp"), [])

    def test_get_mount_refs_symlink(self):
        with tempfile.TemporaryDirectory() as tempdir:
            real = os.path.join(os.path.realpath(tempdir), "real")
            os.mkdir(real)
            link = os.path.join(tempdir, "link")
            os.symlink(real, link)
            mounter = FakeMounter([_mp("/dev/sdc", real), _mp("/dev/sdc", "/mnt/c")])
            self.assertEqual(get_mount_refs(mounter, link), ["/mnt/c"])

    def test_get_mount_refs_read_error(self):
        with patch.object(
            self.mounter, "list", side_effect=hostmount.HostmountReadError("torn")
        ):
            with self.assertRaises(hostmount.HostmountReadError):
                get_mount_refs(self.mounter, "/mnt/a")

    def test_get_device_name_from_mount(self):
        mounter = FakeMounter(
            [
                _mp("/dev/sdd", "/var/lib/plugins/mounts/vol-0123"),
                _mp("/dev/sdd", "/pods/abc/volumes/data"),
            ]
        )
        self.assertEqual(
            get_device_name_from_mount(mounter, "/pods/abc/volumes/data", "/var/lib/plugins"),
            "vol-0123",
        )
        self.assertEqual(
            mounter.get_device_name_from_mount("/pods/abc/volumes/data", "/var/lib/plugins"),
            "vol-0123",
        )

    def test_get_device_name_from_mount_fallback(self):
        self.assertEqual(
            get_device_name_from_mount(self.mounter, "/mnt/a", "/var/lib/plugins"), "a"
        )

    def test_get_device_name_from_mount_not_mounted(self):
        with self.assertRaises(hostmount.HostmountNotFoundError):
            get_device_name_from_mount(self.mounter, "/tmp", "/var/lib/plugins")

    def test_is_not_mount_point(self):
        mounter = FakeMounter(
            [_mp("/dev/sdb1", "/mnt/a"), _mp("/dev/sdc1", "/mnt/gone\\040(deleted)")]
        )
        self.assertFalse(is_not_mount_point(mounter, "/mnt/a"))
        self.assertFalse(mounter.is_not_mount_point("/mnt/gone"))
        self.assertTrue(is_not_mount_point(mounter, "/mnt/other"))

    def test_is_not_mount_point_different_device(self):
        with patch.object(self.mounter, "is_likely_not_mount_point", return_value=False):
            with patch.object(self.mounter, "list") as mock_list:
                self.assertFalse(is_not_mount_point(self.mounter, "/mnt/x"))
                mock_list.assert_not_called()
