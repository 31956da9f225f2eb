# Copyright Red Hat
#
# hostmount/mount/_syscalls.py - mount(2) binding
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
ctypes binding for the classic mount(2) system call.
"""
from typing import Optional
import ctypes
import ctypes.util
import os

_libc = ctypes.CDLL(ctypes.util.find_library("c"), use_errno=True)
_libc.mount.argtypes = (
    ctypes.c_char_p,
    ctypes.c_char_p,
    ctypes.c_char_p,
    ctypes.c_ulong,
    ctypes.c_char_p,
)
_libc.mount.restype = ctypes.c_int

# Mount flags from linux/mount.h
MS_BIND = 1 << 12
MS_REC = 1 << 14
MS_PRIVATE = 1 << 18
MS_SLAVE = 1 << 19
MS_SHARED = 1 << 20


def mount(
    source: str,
    target: str,
    fstype: Optional[str] = None,
    flags: int = 0,
    data: Optional[str] = None,
):
    """
    Call mount(2).

    :param source: The mount source.
    :param target: The mount point.
    :param fstype: File system type, or ``None``.
    :param flags: A combination of ``MS_*`` flags.
    :param data: File system specific data, or ``None``.
    :raises OSError: If the system call fails.
    """
    ret = _libc.mount(
        source.encode("utf-8"),
        target.encode("utf-8"),
        fstype.encode("utf-8") if fstype else None,
        ctypes.c_ulong(flags),
        data.encode("utf-8") if data else None,
    )
    if ret < 0:
        errno = ctypes.get_errno()
        raise OSError(
            errno, f"Error mounting {source} on {target}: {os.strerror(errno)}"
        )


__all__ = [
    "MS_BIND",
    "MS_REC",
    "MS_PRIVATE",
    "MS_SLAVE",
    "MS_SHARED",
    "mount",
]
