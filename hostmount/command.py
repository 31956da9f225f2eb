# Copyright Red Hat
#
# hostmount/command.py - Host mount command interface
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``hostmount.command`` module provides both the hostmount command line
interface infrastructure, and a simple procedural interface to the
``hostmount`` library modules.

The procedural interface is used by the ``hostmount`` command line tool,
and may be used by application programs, or interactively in the
Python shell by users who do not require all the features present
in the hostmount object API.
"""
from argparse import ArgumentParser
from typing import List, Optional
from os.path import basename
from json import dumps
import logging
import os

from hostmount import (
    HOSTMOUNT_DEBUG_MOUNTER,
    HOSTMOUNT_DEBUG_FORMAT,
    HOSTMOUNT_DEBUG_PROPAGATION,
    HOSTMOUNT_DEBUG_EXEC,
    HOSTMOUNT_DEBUG_COMMAND,
    HOSTMOUNT_DEBUG_ALL,
    HOSTMOUNT_SUBSYSTEM_COMMAND,
    SubsystemFilter,
    set_debug_mask,
    __version__,
)
from hostmount.mount import (
    HOSTMOUNT_CONFIG_FILE,
    HostmountConfig,
    Mounter,
    SafeFormatAndMount,
    device_opened,
    get_file_type,
    get_mount_refs,
    is_likely_not_mount_point,
    make_rshared,
)

_log = logging.getLogger(__name__)

_log_info = _log.info
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": HOSTMOUNT_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None


def _split_options(options: Optional[str]) -> List[str]:
    """
    Split a comma-separated mount option string into a list.
    """
    if not options:
        return []
    return [opt for opt in options.split(",") if opt]


def _load_config(cmd_args) -> HostmountConfig:
    return HostmountConfig.from_file(cmd_args.config or HOSTMOUNT_CONFIG_FILE)


def _mounter(cmd_args) -> Mounter:
    config = _load_config(cmd_args)
    return Mounter(mounter_path=config.mounter_path)


def _query_mounter(cmd_args) -> Mounter:
    """
    Return a ``Mounter`` for commands that only inspect mounts. These never
    run mount(8) so systemd detection is skipped.
    """
    config = _load_config(cmd_args)
    return Mounter(mounter_path=config.mounter_path, with_systemd=False)


def list_mounts(mounter, json=False):
    """
    Print the mount table.

    :param mounter: The mount capability to query.
    :param json: Print JSON instead of /proc/mounts format lines.
    """
    mount_points = mounter.list()
    if json:
        print(dumps([mp._asdict() for mp in mount_points], indent=4))
        return
    for mp in mount_points:
        print(
            f"{mp.device} {mp.path} {mp.fstype} {','.join(mp.opts)} "
            f"{mp.freq} {mp.passno}"
        )


def show_mount_refs(mounter, path):
    """
    Print the other mount points of the device mounted at ``path``.
    """
    for ref in get_mount_refs(mounter, path):
        print(ref)


def _list_cmd(cmd_args):
    """
    List mounts command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    list_mounts(_query_mounter(cmd_args), json=cmd_args.json)
    return 0


def _mount_cmd(cmd_args):
    """
    Mount command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    mounter = _mounter(cmd_args)
    mounter.mount(
        cmd_args.source,
        cmd_args.target,
        cmd_args.type or "",
        _split_options(cmd_args.options),
    )
    return 0


def _umount_cmd(cmd_args):
    """
    Unmount command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    _mounter(cmd_args).unmount(cmd_args.target)
    return 0


def _format_mount_cmd(cmd_args):
    """
    Format and mount command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    safe_mounter = SafeFormatAndMount(_mounter(cmd_args))
    safe_mounter.format_and_mount(
        cmd_args.source,
        cmd_args.target,
        cmd_args.type or "",
        _split_options(cmd_args.options),
    )
    return 0


def _disk_format_cmd(cmd_args):
    """
    Disk format probe command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    safe_mounter = SafeFormatAndMount(_query_mounter(cmd_args))
    print(safe_mounter.get_disk_format(cmd_args.device) or "unformatted")
    return 0


def _refs_cmd(cmd_args):
    """
    Mount references command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    show_mount_refs(_query_mounter(cmd_args), cmd_args.path)
    return 0


def _device_name_cmd(cmd_args):
    """
    Device name command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    plugin_dir = cmd_args.plugin_dir or _load_config(cmd_args).plugin_dir
    mounter = _query_mounter(cmd_args)
    print(mounter.get_device_name_from_mount(cmd_args.path, plugin_dir))
    return 0


def _make_rshared_cmd(cmd_args):
    """
    Make shared command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    make_rshared(cmd_args.path)
    return 0


def _file_type_cmd(cmd_args):
    """
    File type command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    print(get_file_type(cmd_args.path))
    return 0


def _device_opened_cmd(cmd_args):
    """
    Device in use command handler. Exits with status 0 if the device is
    in use and 1 if it is not.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    in_use = device_opened(cmd_args.path)
    print("yes" if in_use else "no")
    return 0 if in_use else 1


def _is_mount_point_cmd(cmd_args):
    """
    Mount point check command handler. Exits with status 0 if the path is
    a mount point and 1 if it is not.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    if cmd_args.slow:
        mounter = _query_mounter(cmd_args)
        not_mount_point = mounter.is_not_mount_point(cmd_args.path)
    else:
        not_mount_point = is_likely_not_mount_point(cmd_args.path)
    print("no" if not_mount_point else "yes")
    return 1 if not_mount_point else 0


def setup_logging(cmd_args):
    """
    Set up hostmount logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    hostmount_log = logging.getLogger("hostmount")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    hostmount_log.setLevel(level)
    if hostmount_log.hasHandlers():
        hostmount_log.handlers.clear()

    # Subsystem log filtering
    _hostmount_subsystem_filter = SubsystemFilter("hostmount")

    _CONSOLE_HANDLER = logging.StreamHandler()
    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_hostmount_subsystem_filter)

    hostmount_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down hostmount logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "mounter": HOSTMOUNT_DEBUG_MOUNTER,
        "format": HOSTMOUNT_DEBUG_FORMAT,
        "propagation": HOSTMOUNT_DEBUG_PROPAGATION,
        "exec": HOSTMOUNT_DEBUG_EXEC,
        "command": HOSTMOUNT_DEBUG_COMMAND,
        "all": HOSTMOUNT_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _add_mount_args(parser):
    """
    Add source, target, type and options arguments.
    """
    parser.add_argument("source", metavar="SOURCE", help="The device to mount")
    parser.add_argument("target", metavar="TARGET", help="The mount point")
    parser.add_argument(
        "-t",
        "--type",
        metavar="FSTYPE",
        type=str,
        help="The file system type",
    )
    parser.add_argument(
        "-o",
        "--options",
        metavar="OPTIONS",
        type=str,
        help="A comma-separated list of mount options",
    )


def _add_path_arg(parser, help_text):
    parser.add_argument("path", metavar="PATH", help=help_text)


LIST_CMD = "list"
MOUNT_CMD = "mount"
UMOUNT_CMD = "umount"
FORMAT_MOUNT_CMD = "format-mount"
DISK_FORMAT_CMD = "disk-format"
REFS_CMD = "refs"
DEVICE_NAME_CMD = "device-name"
MAKE_RSHARED_CMD = "make-rshared"
FILE_TYPE_CMD = "file-type"
DEVICE_OPENED_CMD = "device-opened"
IS_MOUNT_POINT_CMD = "is-mount-point"


def _add_subparsers(parser):
    """
    Add a subparser for each command.

    :param parser: The top-level parser.
    """
    subparser = parser.add_subparsers(dest="command", help="Command")

    list_parser = subparser.add_parser(LIST_CMD, help="List mounted file systems")
    list_parser.add_argument(
        "--json", action="store_true", help="Output in JSON format"
    )
    list_parser.set_defaults(func=_list_cmd, needs_root=False)

    mount_parser = subparser.add_parser(MOUNT_CMD, help="Mount a file system")
    _add_mount_args(mount_parser)
    mount_parser.set_defaults(func=_mount_cmd, needs_root=True)

    umount_parser = subparser.add_parser(UMOUNT_CMD, help="Unmount a file system")
    umount_parser.add_argument("target", metavar="TARGET", help="The mount point")
    umount_parser.set_defaults(func=_umount_cmd, needs_root=True)

    format_mount_parser = subparser.add_parser(
        FORMAT_MOUNT_CMD, help="Mount a device, formatting it first if needed"
    )
    _add_mount_args(format_mount_parser)
    format_mount_parser.set_defaults(func=_format_mount_cmd, needs_root=True)

    disk_format_parser = subparser.add_parser(
        DISK_FORMAT_CMD, help="Show the file system type of a device"
    )
    disk_format_parser.add_argument(
        "device", metavar="DEVICE", help="The device to probe"
    )
    disk_format_parser.set_defaults(func=_disk_format_cmd, needs_root=True)

    refs_parser = subparser.add_parser(
        REFS_CMD, help="Show other mount points of the same device"
    )
    _add_path_arg(refs_parser, "A mount point")
    refs_parser.set_defaults(func=_refs_cmd, needs_root=False)

    device_name_parser = subparser.add_parser(
        DEVICE_NAME_CMD, help="Show the volume ID of a mount point"
    )
    _add_path_arg(device_name_parser, "A mount point")
    device_name_parser.add_argument(
        "--plugin-dir",
        metavar="DIR",
        type=str,
        help="The plugin base directory",
    )
    device_name_parser.set_defaults(func=_device_name_cmd, needs_root=False)

    make_rshared_parser = subparser.add_parser(
        MAKE_RSHARED_CMD, help="Make a directory a shared mount"
    )
    _add_path_arg(make_rshared_parser, "The directory to share")
    make_rshared_parser.set_defaults(func=_make_rshared_cmd, needs_root=True)

    file_type_parser = subparser.add_parser(FILE_TYPE_CMD, help="Show the type of a path")
    _add_path_arg(file_type_parser, "The path to classify")
    file_type_parser.set_defaults(func=_file_type_cmd, needs_root=False)

    device_opened_parser = subparser.add_parser(
        DEVICE_OPENED_CMD, help="Check whether a device is in use"
    )
    _add_path_arg(device_opened_parser, "The device to check")
    device_opened_parser.set_defaults(func=_device_opened_cmd, needs_root=True)

    is_mount_point_parser = subparser.add_parser(
        IS_MOUNT_POINT_CMD, help="Check whether a path is a mount point"
    )
    _add_path_arg(is_mount_point_parser, "The directory to check")
    is_mount_point_parser.add_argument(
        "--slow",
        action="store_true",
        help="Also check the mount table to detect bind mounts",
    )
    is_mount_point_parser.set_defaults(func=_is_mount_point_cmd, needs_root=False)


def main(args):
    """
    Main entry point for hostmount.
    """
    parser = ArgumentParser(description="Host Mount Manager", prog=basename(args[0]))

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of hostmount",
        version=__version__,
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="CONFIG",
        type=str,
        help="Path to an alternate configuration file",
    )

    _add_subparsers(parser)

    cmd_args = parser.parse_args(args[1:])

    status = 1

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    setup_logging(cmd_args)

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    if "func" not in cmd_args:
        parser.print_help()
        return status

    if cmd_args.needs_root and os.geteuid() != 0:
        _log_error("hostmount %s must be run as the root user", cmd_args.command)
        shutdown_logging()
        return status

    if cmd_args.debug:
        status = cmd_args.func(cmd_args)
    else:
        try:
            status = cmd_args.func(cmd_args)
        # pylint: disable=broad-except
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except Exception as err:
            _log_error("Command failed: %s", err)

    shutdown_logging()
    return status


# vim: set et ts=4 sw=4 :
