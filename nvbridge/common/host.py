"""
Host environment access.

This module groups the process-environment lookups the connection manager
depends on so tests can substitute them: environment variables, executable
lookup, directory checks, and the location of the running program.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import MutableMapping

logger = logging.getLogger(__name__)

__all__ = ["HostEnvironment", "loginEnvironment_parse"]

_LOGIN_SHELL_TIMEOUT_SECONDS: float = 5.0
_FALLBACK_SHELL: str = "/bin/bash"


class HostEnvironment:
    """Environment, filesystem and executable lookups for the current process."""

    def __init__(
        self,
        environ: MutableMapping[str, str] | None = None,
        program_path: str | None = None,
    ) -> None:
        """
        Initialize host environment.

        Args:
            environ:
                Environment mapping; defaults to `os.environ`.
            program_path:
                Path of the running program; defaults to `sys.argv[0]`.
        """
        self.environ: MutableMapping[str, str] = os.environ if environ is None else environ
        self._program_path: str = program_path if program_path is not None else sys.argv[0]

    def variable_get(self, name: str) -> str | None:
        """
        Read an environment variable, treating empty values as unset.

        Args:
            name:
                Variable name.

        Returns:
            Value or `None`.
        """
        value: str | None = self.environ.get(name)
        return value or None

    def executable_find(self, name: str) -> str | None:
        """
        Locate an executable on `PATH` (or verify an explicit path).

        Args:
            name:
                Executable name or path.

        Returns:
            Resolved path or `None`.
        """
        return shutil.which(name, path=self.environ.get("PATH"))

    def directory_exists(self, path: str) -> bool:
        """
        Check whether `path` is an existing directory.

        Args:
            path:
                Candidate directory.

        Returns:
            `True` when the directory exists.
        """
        return Path(path).is_dir()

    def programDirectory_get(self) -> Path:
        """
        Return the directory holding the running program.

        Returns:
            Absolute directory path.
        """
        return Path(self._program_path).resolve().parent

    def loginEnvironment_load(self) -> bool:
        """
        Import variables from the user's login shell.

        GUI launchers may start the bridge without the shell profile applied,
        leaving `PATH` without the core executable. Tries `$SHELL` first and
        falls back to `/bin/bash`.

        Returns:
            `True` when a login environment was imported.
        """
        shells: list[str] = []
        shell: str | None = self.variable_get("SHELL")
        if shell:
            shells.append(shell)
        if _FALLBACK_SHELL not in shells:
            shells.append(_FALLBACK_SHELL)

        for shell_path in shells:
            output: str | None = self.loginShellOutput_read(shell_path)
            if output is None:
                continue
            imported: dict[str, str] = loginEnvironment_parse(output)
            self.environ.update(imported)
            logger.debug("Imported %s variables from login shell %s", len(imported), shell_path)
            return True
        return False

    def loginShellOutput_read(self, shell_path: str) -> str | None:
        """
        Run `shell -l -c env` and return its output.

        Args:
            shell_path:
                Shell executable.

        Returns:
            Standard output, or `None` on failure.
        """
        try:
            result = subprocess.run(
                [shell_path, "-l", "-c", "env"],
                capture_output=True,
                text=True,
                timeout=_LOGIN_SHELL_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("Failed to execute shell to get environment %s: %s", shell_path, exc)
            return None
        if result.returncode != 0:
            logger.debug("Login shell %s exited with %s", shell_path, result.returncode)
            return None
        return result.stdout


def loginEnvironment_parse(output: str) -> dict[str, str]:
    """
    Parse `env` output into a mapping.

    Lines without `=` (continuations of multi-line values) are skipped.

    Args:
        output:
            Raw `env` output.

    Returns:
        Variable mapping.
    """
    variables: dict[str, str] = {}
    for line in output.split("\n"):
        index: int = line.find("=")
        if index > 0:
            variables[line[:index]] = line[index + 1:]
    return variables
