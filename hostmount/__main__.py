# Copyright Red Hat
#
# hostmount/__main__.py - Host mount command entry point
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
import sys

from hostmount.command import main


def run():
    """Console script entry point."""
    sys.exit(main(sys.argv))


if __name__ == "__main__":
    run()
