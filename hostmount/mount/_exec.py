# Copyright Red Hat
#
# hostmount/mount/_exec.py - External command execution
#
# This file is part of the hostmount project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Execution of external programs with the exit status exposed as data.
"""
from subprocess import run, CalledProcessError, PIPE, STDOUT
from dataclasses import dataclass, field
from typing import List
import logging

from hostmount import HOSTMOUNT_SUBSYSTEM_EXEC, HostmountCalloutError

_log = logging.getLogger(__name__)


def _log_debug_exec(msg, *args, **kwargs):
    """A wrapper for exec subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": HOSTMOUNT_SUBSYSTEM_EXEC}, **kwargs)


#: Status reported for a program that could not be found.
STATUS_NOT_FOUND = 127


@dataclass
class CommandResult:
    """
    The outcome of running an external program.
    """

    argv: List[str] = field(default_factory=list)
    status: int = 0
    output: str = ""
    not_found: bool = False

    @property
    def ok(self) -> bool:
        """
        ``True`` if the program ran and exited with status zero.
        """
        return not self.not_found and self.status == 0

    @property
    def command_line(self) -> str:
        """
        The program and its arguments as a single string.
        """
        return " ".join(self.argv)


class Exec:
    """
    Run external programs, capturing stdout and stderr combined.

    A non-zero exit is not an error at this level: it is returned in the
    ``CommandResult`` so that callers can branch on the status.
    """

    def run(self, cmd: str, *args: str) -> CommandResult:
        """
        Run ``cmd`` with ``args`` and wait for it to exit.

        :param cmd: The program to run.
        :param args: Arguments for the program.
        :returns: The result of the invocation.
        :rtype: ``CommandResult``
        :raises HostmountCalloutError: If the program exists but could not
                                       be started.
        """
        argv = [cmd, *args]
        _log_debug_exec("Running %s", " ".join(argv))
        try:
            result = run(
                argv,
                check=True,
                stdout=PIPE,
                stderr=STDOUT,
                encoding="utf8",
                errors="replace",
            )
        except FileNotFoundError:
            _log_debug_exec("Executable %s not found", cmd)
            return CommandResult(argv, STATUS_NOT_FOUND, "", not_found=True)
        except CalledProcessError as err:
            _log_debug_exec("%s exited with status %d", cmd, err.returncode)
            return CommandResult(argv, err.returncode, err.output or "")
        except OSError as err:
            raise HostmountCalloutError(f"Failed to execute {cmd}: {err}") from err
        return CommandResult(argv, result.returncode, result.stdout or "")


__all__ = [
    "CommandResult",
    "Exec",
    "STATUS_NOT_FOUND",
]
