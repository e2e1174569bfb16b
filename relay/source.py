"""Log source provider backed by journalctl / systemctl child processes.

Two shapes of external stream are offered: a bounded query that runs to
completion under a hard timeout, and an unbounded follow process whose
pipes the caller reads and tears down with ``terminate_process``.
"""

import logging
import shlex
import subprocess
import threading
import time

from relay.errors import OperationCancelled, SourceUnavailable

logger = logging.getLogger(__name__)


def terminate_process(proc: subprocess.Popen, grace: float = 2.0):
    """Stop a child process and release its pipes. Safe to call more than once."""
    if proc.poll() is None:
        proc.terminate()
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            logger.warning("Process %d ignored SIGTERM, killing it", proc.pid)
            proc.kill()
            proc.wait()
    for stream in (proc.stdin, proc.stdout, proc.stderr):
        if stream is not None:
            stream.close()


def parse_units(output: str) -> list[str]:
    """Extract service names from ``systemctl list-units`` output."""
    units = []
    seen = set()
    for line in output.splitlines():
        fields = line.split()
        # A leading status glyph (e.g. a failed-unit bullet) shifts the name.
        name = next((f for f in fields[:2] if f.endswith(".service")), None)
        if name is None:
            continue
        name = name[: -len(".service")]
        if name and name not in seen:
            seen.add(name)
            units.append(name)
    return units


class JournalSource:
    def __init__(self, journalctl: str = "journalctl", systemctl: str = "systemctl",
                 poll_interval: float = 0.1):
        self._journalctl = journalctl
        self._systemctl = systemctl
        self._poll_interval = poll_interval

    def query_command(self, unit: str, max_lines: int | None = None, since: str | None = None) -> list[str]:
        cmd = [self._journalctl, "-u", unit, "-o", "cat", "--no-pager"]
        if since:
            cmd += ["--since", since]
        if max_lines:
            cmd += ["-n", str(max_lines)]
        return cmd

    def follow_command(self, unit: str) -> list[str]:
        return [self._journalctl, "-u", unit, "-o", "cat", "--no-pager", "-f"]

    def units_command(self) -> list[str]:
        return [self._systemctl, "list-units", "--type=service", "--no-pager", "--all"]

    def run_bounded_query(self, unit: str, max_lines: int | None = None, since: str | None = None,
                          timeout: float = 10.0, cancel: threading.Event | None = None) -> bytes:
        """Run the query to completion and return its raw stdout."""
        return self._run(self.query_command(unit, max_lines, since), timeout, cancel)

    def list_units(self, timeout: float = 5.0, cancel: threading.Event | None = None) -> list[str]:
        output = self._run(self.units_command(), timeout, cancel)
        return parse_units(output.decode("utf-8", errors="replace"))

    def open_follow(self, unit: str) -> subprocess.Popen:
        """Spawn the follow process. The caller owns it and must terminate it."""
        cmd = self.follow_command(unit)
        logger.debug("Following: %s", shlex.join(cmd))
        try:
            return subprocess.Popen(cmd, stdin=subprocess.DEVNULL,
                                    stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as exc:
            raise SourceUnavailable(cmd, str(exc)) from exc

    def _run(self, cmd: list[str], timeout: float, cancel: threading.Event | None) -> bytes:
        logger.debug("Running: %s", shlex.join(cmd))
        try:
            proc = subprocess.Popen(cmd, stdin=subprocess.DEVNULL,
                                    stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as exc:
            raise SourceUnavailable(cmd, str(exc)) from exc

        deadline = time.monotonic() + timeout
        stdout = stderr = None
        try:
            while stdout is None:
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled(shlex.join(cmd))
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise SourceUnavailable(cmd, f"timed out after {timeout:g}s")
                try:
                    stdout, stderr = proc.communicate(timeout=min(self._poll_interval, remaining))
                except subprocess.TimeoutExpired:
                    continue
        finally:
            if stdout is None:
                proc.kill()
                proc.communicate()

        if proc.returncode != 0:
            diagnostic = stderr.decode("utf-8", errors="replace").strip()
            raise SourceUnavailable(cmd, diagnostic or f"exit status {proc.returncode}")
        return stdout
