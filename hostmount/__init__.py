# Copyright Red Hat
#
# hostmount/__init__.py - Host mount management package initialisation
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Hostmount top-level package.
"""
from ._hostmount import *  # noqa: F401, F403
from ._hostmount import __all__  # noqa: F401

__version__ = "0.1.0"
