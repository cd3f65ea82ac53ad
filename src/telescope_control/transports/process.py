"""Bridge server process ownership.

A LOCAL slot runs a server executable that translates the wire protocol to
a vendor's mount protocol. ServerProcess wraps the child process: it is
started once, polled without blocking, and terminated with a bounded wait
(terminate, grace period, kill).

Example:
    argv = build_server_argv("telescope-control-server", description)
    with ServerProcess(argv) as process:
        process.start()
        ...
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import IO

from telescope_control.config import DEFAULT_STOP_GRACE_PERIOD
from telescope_control.description import TelescopeDescription
from telescope_control.exceptions import SpawnError
from telescope_control.observability import get_logger

logger = get_logger(__name__)

KILL_CONFIRM_TIMEOUT = 1.0  # seconds to wait for the exit status after SIGKILL


def resolve_server_command(command: str, servers_dir: Path | None = None) -> list[str]:
    """Split a server command and locate its executable.

    The executable is looked up in servers_dir first, then taken as a path
    if it contains a separator, then searched on PATH.

    Args:
        command: Executable name or shell-style command line.
        servers_dir: Optional directory holding bundled servers.

    Returns:
        argv with an absolute executable path.

    Raises:
        SpawnError: If the command is empty or the executable is not found.

    Example:
        >>> resolve_server_command("telescope-control-server")
        ['/usr/local/bin/telescope-control-server']
    """
    argv = shlex.split(command, posix=os.name != "nt")
    if not argv:
        raise SpawnError("Server command is empty")

    executable = argv[0]
    if servers_dir is not None:
        candidate = servers_dir / executable
        if candidate.is_file():
            return [str(candidate), *argv[1:]]
    if os.sep in executable or (os.altsep and os.altsep in executable):
        if Path(executable).is_file():
            return argv
        raise SpawnError(f"Server executable not found: {executable}")

    found = shutil.which(executable)
    if found is None:
        raise SpawnError(f"Server executable not found on PATH: {executable}")
    return [found, *argv[1:]]


def build_server_argv(
    command: str,
    description: TelescopeDescription,
    servers_dir: Path | None = None,
) -> list[str]:
    """Full command line for the bridge server of a description.

    Returns:
        argv + ["--port", port, "--delay", delay] and, when the description
        names one, ["--serial-port", device].

    Raises:
        SpawnError: If the executable cannot be resolved.
    """
    argv = resolve_server_command(command, servers_dir)
    argv += ["--port", str(description.port), "--delay", str(description.delay)]
    if description.serial_port:
        argv += ["--serial-port", description.serial_port]
    return argv


class ServerProcess:
    """A bridge server child process.

    Standard output and error go to the given binary stream (the slot log)
    or are discarded.
    """

    def __init__(self, argv: list[str], output: IO[bytes] | None = None) -> None:
        """Prepare a process (nothing runs until start()).

        Args:
            argv: Command line, executable first.
            output: Binary stream receiving stdout and stderr, or None.
        """
        self._argv = list(argv)
        self._output = output
        self._popen: subprocess.Popen[bytes] | None = None

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    @property
    def pid(self) -> int | None:
        return self._popen.pid if self._popen is not None else None

    @property
    def returncode(self) -> int | None:
        return self._popen.returncode if self._popen is not None else None

    @property
    def is_running(self) -> bool:
        return self._popen is not None and self._popen.poll() is None

    def start(self) -> None:
        """Launch the process.

        Raises:
            SpawnError: If the process is already started or cannot be
                launched.
        """
        if self._popen is not None:
            raise SpawnError(f"Server already started (pid {self._popen.pid})")
        target = self._output if self._output is not None else subprocess.DEVNULL
        try:
            self._popen = subprocess.Popen(
                self._argv,
                stdin=subprocess.DEVNULL,
                stdout=target,
                stderr=subprocess.STDOUT,
                close_fds=True,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Failed to start {self._argv[0]}: {e}") from e
        logger.info("Server process started", pid=self._popen.pid, argv=self._argv)

    def poll(self) -> int | None:
        """Exit code if the process ended, else None (never blocks)."""
        if self._popen is None:
            return None
        return self._popen.poll()

    def terminate(self, grace_period: float = DEFAULT_STOP_GRACE_PERIOD) -> bool:
        """Stop the process: terminate, wait grace_period, then kill.

        Args:
            grace_period: Seconds the server gets to exit on its own.

        Returns:
            True if the process is confirmed gone (or never started).
        """
        popen = self._popen
        if popen is None or popen.poll() is not None:
            return True

        popen.terminate()
        try:
            popen.wait(timeout=grace_period)
        except subprocess.TimeoutExpired:
            logger.warning("Server ignored terminate, killing", pid=popen.pid)
            popen.kill()
            try:
                popen.wait(timeout=KILL_CONFIRM_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.error("Server process did not exit after kill", pid=popen.pid)
                return False

        logger.info("Server process stopped", pid=popen.pid, returncode=popen.returncode)
        return True

    def __enter__(self) -> ServerProcess:
        return self

    def __exit__(self, *args: object) -> None:
        self.terminate()

    def __repr__(self) -> str:
        return f"<ServerProcess(argv={self._argv!r}, pid={self.pid})>"


__all__ = ["ServerProcess", "build_server_argv", "resolve_server_command"]
