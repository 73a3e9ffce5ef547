"""Runs ``waydroid`` commands on behalf of the domain routers.

The executor never uses a shell: arguments are passed as an argv list
and every caller validates user-supplied values before they get here.
Failures surface as :class:`CommandFailedError` / :class:`CommandTimeoutError`
so the error envelope can report them without leaking stderr verbatim.
"""

import logging
import subprocess
from dataclasses import dataclass

from waydroid_api.errors import CommandFailedError, CommandTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandExecutor:
    """Thin wrapper over :func:`subprocess.run` for the waydroid CLI."""

    def __init__(self, binary: str = "waydroid", default_timeout: float = 15.0) -> None:
        self.binary = binary
        self.default_timeout = default_timeout

    def run(
        self,
        *args: str,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run ``waydroid <args>`` and capture text output.

        With ``check=True`` a non-zero exit raises :class:`CommandFailedError`.
        """
        argv = (self.binary, *args)
        limit = timeout or self.default_timeout
        try:
            proc = subprocess.run(
                list(argv), capture_output=True, encoding="utf-8", errors="replace",
                timeout=limit, check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after %ss: %s", limit, " ".join(argv))
            raise CommandTimeoutError(f"'{' '.join(argv[:3])}' timed out after {limit:g}s")
        except OSError as exc:
            logger.error("Could not start %s: %s", " ".join(argv), exc)
            raise CommandFailedError(f"Could not run {self.binary}")

        result = CommandResult(argv, proc.returncode, proc.stdout or "", proc.stderr or "")
        if check and not result.ok:
            logger.error(
                "Command failed (exit %d): %s -- %s",
                result.returncode, " ".join(argv), result.stderr.strip()[:500],
            )
            raise CommandFailedError(
                f"'{' '.join(argv[:3])}' exited with status {result.returncode}",
                details={"exit_code": result.returncode},
            )
        return result

    def run_binary(self, *args: str, timeout: float | None = None) -> bytes:
        """Run a command whose stdout is binary (e.g. ``screencap -p``)."""
        argv = (self.binary, *args)
        limit = timeout or self.default_timeout
        try:
            proc = subprocess.run(list(argv), capture_output=True, timeout=limit, check=False)
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after %ss: %s", limit, " ".join(argv))
            raise CommandTimeoutError(f"'{' '.join(argv[:3])}' timed out after {limit:g}s")
        except OSError as exc:
            logger.error("Could not start %s: %s", " ".join(argv), exc)
            raise CommandFailedError(f"Could not run {self.binary}")
        if proc.returncode != 0 or not proc.stdout:
            logger.error(
                "Command failed (exit %d): %s -- %s",
                proc.returncode, " ".join(argv),
                proc.stderr.decode("utf-8", errors="replace").strip()[:500],
            )
            raise CommandFailedError(
                f"'{' '.join(argv[:3])}' exited with status {proc.returncode}",
                details={"exit_code": proc.returncode},
            )
        return proc.stdout
