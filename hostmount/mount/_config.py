# Copyright Red Hat
#
# hostmount/mount/_config.py - Host mount configuration
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Configuration file support.
"""
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass
from os.path import exists
import logging

from hostmount import HostmountParseError

_log = logging.getLogger(__name__)

_log_debug = _log.debug

#: Default location of the configuration file.
HOSTMOUNT_CONFIG_FILE = "/etc/hostmount/hostmount.conf"

#: Default plugin base directory.
DEFAULT_PLUGIN_DIR = "/var/lib/hostmount/plugins"

_HOSTMOUNT_CFG_GLOBAL = "global"
_HOSTMOUNT_CFG_MOUNTER_PATH = "mounter_path"
_HOSTMOUNT_CFG_PLUGIN_DIR = "plugin_dir"


@dataclass
class HostmountConfig:
    """
    Host mount configuration.
    """

    mounter_path: str = ""
    plugin_dir: str = DEFAULT_PLUGIN_DIR

    @classmethod
    def from_file(cls, config_file: str = HOSTMOUNT_CONFIG_FILE) -> "HostmountConfig":
        """
        Load ``HostmountConfig`` from an INI-style configuration file located
        at ``config_file``. A missing file gives the default configuration.

        :param config_file: path to hostmount.conf
        :type config_file: ``str``.
        :returns: A ``HostmountConfig`` instance initialised from
                  ``config_file``.
        :rtype: ``HostmountConfig``
        :raises HostmountParseError: If the file is not valid INI syntax.
        """
        if not exists(config_file):
            return HostmountConfig()

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise HostmountParseError(
                f"Error parsing configuration file {config_file}: {err}"
            ) from err

        config = HostmountConfig()
        if cfg.has_section(_HOSTMOUNT_CFG_GLOBAL):
            section = cfg[_HOSTMOUNT_CFG_GLOBAL]
            config.mounter_path = section.get(
                _HOSTMOUNT_CFG_MOUNTER_PATH, config.mounter_path
            ).strip()
            config.plugin_dir = section.get(
                _HOSTMOUNT_CFG_PLUGIN_DIR, config.plugin_dir
            ).strip()
        return config


__all__ = [
    "HOSTMOUNT_CONFIG_FILE",
    "DEFAULT_PLUGIN_DIR",
    "HostmountConfig",
]
