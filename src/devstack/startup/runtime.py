"""Thin wrapper over the container runtime and compose command line tools.

Every invocation is bounded by a timeout and runs in its own session, so a
terminal interrupt aimed at devstack is never forwarded to the runtime.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import re
import shutil
import subprocess

logger = logging.getLogger(__name__)

VERSION_RE = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one runtime command."""

    args: tuple[str, ...]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    not_found: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def parse_version(text: str) -> tuple[int, int, int] | None:
    """Parse ``v2.24.5``, ``1.29.2`` or ``2.20.2-desktop.1`` into a tuple."""
    match = VERSION_RE.search(text or "")
    if not match:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


def run_command(
    args: Sequence[str],
    *,
    timeout: float,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run a command to completion, never raising for runtime failures."""
    argv = tuple(args)
    child_env = None
    if env is not None:
        child_env = {**os.environ, **env}
    logger.debug("Running %s", " ".join(argv))
    try:
        completed = subprocess.run(  # noqa: S603
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=child_env,
            check=False,
            start_new_session=True,
        )
    except FileNotFoundError:
        return CommandResult(argv, None, stderr=f"{argv[0]}: command not found", not_found=True)
    except subprocess.TimeoutExpired as e:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(argv))
        return CommandResult(
            argv,
            None,
            stdout=_decode(e.stdout),
            stderr=_decode(e.stderr),
            timed_out=True,
        )
    except OSError as e:
        return CommandResult(argv, None, stderr=str(e))
    return CommandResult(argv, completed.returncode, completed.stdout, completed.stderr)


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


class ContainerRuntime:
    """Docker engine plus whichever compose flavour is installed."""

    def __init__(
        self,
        project_root: Path,
        compose_file: Path,
        *,
        command_timeout: float = 15.0,
        docker_binary: str = "docker",
    ) -> None:
        self.project_root = Path(project_root)
        self.compose_file = Path(compose_file)
        self.command_timeout = command_timeout
        self.docker_binary = docker_binary
        self.compose_command: tuple[str, ...] | None = None

    def info(self) -> CommandResult:
        """``docker info``: succeeds only when the daemon is reachable."""
        return run_command(
            [self.docker_binary, "info", "--format", "{{.ServerVersion}}"],
            timeout=self.command_timeout,
        )

    def detect_compose(self) -> tuple[tuple[str, ...], str] | None:
        """Find the compose command, preferring the docker plugin.

        Returns the command prefix and its reported version, or None.
        """
        candidates: list[tuple[str, ...]] = [(self.docker_binary, "compose")]
        if shutil.which("docker-compose"):
            candidates.append(("docker-compose",))
        for prefix in candidates:
            result = run_command(
                [*prefix, "version", "--short"], timeout=self.command_timeout
            )
            if result.ok:
                self.compose_command = prefix
                return prefix, result.stdout.strip()
        return None

    def compose(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        profile: str | None = None,
    ) -> CommandResult:
        prefix = self.compose_command or (self.docker_binary, "compose")
        argv = [*prefix, "-f", str(self.compose_file)]
        if profile:
            argv += ["--profile", profile]
        argv += list(args)
        return run_command(
            argv,
            timeout=timeout or self.command_timeout,
            cwd=self.project_root,
            env=env,
        )

    def compose_display(self, *args: str) -> str:
        """Render a compose command line for operator-facing hints."""
        prefix = self.compose_command or (self.docker_binary, "compose")
        return " ".join([*prefix, *args])

    def logs(self, service_id: str, tail: int) -> CommandResult:
        return self.compose(["logs", "--no-color", f"--tail={tail}", service_id])
