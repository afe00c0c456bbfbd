"""
Command Runner
==============
The one seam through which the agent spawns processes (git, dotnet).

    run(working_dir, program, args) -> CommandResult

Implementations:
    - SubprocessCommandRunner: runs on the host via subprocess (no shell).
    - DockerCommandRunner: runs inside an ephemeral container with the
      working copy mounted at /workspace. Used for builds and package
      commands when BUILD_SANDBOX_IMAGE is configured.

Every component takes a runner in its constructor so tests can pass a
MagicMock instead of spawning real processes.

Runners NEVER raise for a non-zero exit code. Infrastructure failures
(program not found, Docker daemon down, timeout) are reported as
exit_code=-1 with ``error`` set.
"""
import os
import time
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

import docker
from docker.errors import APIError, ContainerError, ImageNotFound

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit code plus captured output of one process."""
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout + stderr, stderr last."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    If the log is short enough it is returned as-is.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    omitted = total - head - tail
    return "\n".join(
        lines[:head]
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + lines[-tail:]
    )


class CommandRunner:
    """Interface: run ``program args...`` in ``working_dir``."""

    def run(
        self,
        working_dir: str,
        program: str,
        args: Sequence[str] = (),
        timeout_seconds: Optional[int] = None,
    ) -> CommandResult:
        raise NotImplementedError


class SubprocessCommandRunner(CommandRunner):
    """Runs commands on the host. Output is captured as text."""

    def run(
        self,
        working_dir: str,
        program: str,
        args: Sequence[str] = (),
        timeout_seconds: Optional[int] = None,
    ) -> CommandResult:
        start = time.monotonic()
        argv = [program, *args]
        logger.debug("exec %s (cwd=%s)", " ".join(argv), working_dir)
        try:
            proc = subprocess.run(
                argv,
                cwd=working_dir,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
            )
            result = CommandResult(
                exit_code=proc.returncode,
                stdout=proc.stdout or "",
                stderr=proc.stderr or "",
            )
        except subprocess.TimeoutExpired as e:
            result = CommandResult(
                exit_code=-1,
                stdout=e.stdout if isinstance(e.stdout, str) else "",
                stderr=e.stderr if isinstance(e.stderr, str) else "",
                error=f"{program} timed out after {timeout_seconds}s",
            )
            logger.error(result.error)
        except OSError as e:
            result = CommandResult(exit_code=-1, stderr=str(e), error=f"Could not start {program}: {e}")
            logger.error(result.error)

        result.duration_seconds = round(time.monotonic() - start, 3)
        return result


# ---------------------------------------------------------------------------
# Docker sandbox
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2
_DEFAULT_SANDBOX_TIMEOUT = 1800


class DockerCommandRunner(CommandRunner):
    """
    Runs each command in a fresh container from ``image``.

    The working directory is bind-mounted read-write at /workspace so
    restore/build outputs and package edits land in the host working copy.
    The container is always removed, whatever the outcome.
    """

    def __init__(self, image: str, client=None) -> None:
        self.image = image
        self._client = client

    def _docker(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def run(
        self,
        working_dir: str,
        program: str,
        args: Sequence[str] = (),
        timeout_seconds: Optional[int] = None,
    ) -> CommandResult:
        result = CommandResult()
        start = time.monotonic()
        container = None
        timeout = timeout_seconds or _DEFAULT_SANDBOX_TIMEOUT
        try:
            logger.info(
                "Starting container | image=%s | cmd=%s %s | timeout=%ds",
                self.image, program, " ".join(args), timeout,
            )
            container = self._docker().containers.run(
                image=self.image,
                command=[program, *args],
                volumes={os.path.abspath(working_dir): {"bind": "/workspace", "mode": "rw"}},
                environment={"CI": "true", "DOTNET_CLI_TELEMETRY_OPTOUT": "1"},
                working_dir="/workspace",
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                labels={"project": "secfix", "role": "build-sandbox"},
                detach=True,
            )
            wait_result = container.wait(timeout=timeout)
            result.exit_code = wait_result.get("StatusCode", -1)
            result.stdout = container.logs(stdout=True, stderr=False).decode("utf-8", errors="replace")
            result.stderr = container.logs(stdout=False, stderr=True).decode("utf-8", errors="replace")

        except ImageNotFound:
            result.error = f"Docker image '{self.image}' not found."
            result.exit_code = -1
            logger.error(result.error)

        except ContainerError as e:
            result.error = f"Container execution error: {e}"
            result.exit_code = getattr(e, "exit_status", -1)
            result.stderr = str(e)
            logger.error(result.error)

        except APIError as e:
            result.error = f"Docker API error: {e}"
            result.exit_code = -1
            logger.error(result.error)

        except Exception as e:
            # Catch-all: callers must always receive a result
            result.error = f"Unexpected sandbox error: {type(e).__name__}: {e}"
            result.exit_code = -1
            logger.exception(result.error)

        finally:
            if container is not None:
                try:
                    container.remove(force=True)
                except Exception:
                    logger.warning("Failed to remove container", exc_info=True)

        result.duration_seconds = round(time.monotonic() - start, 3)
        return result


def runner_for(sandbox_image: Optional[str]) -> CommandRunner:
    """Pick the build runner: Docker sandbox when an image is configured, host otherwise."""
    if sandbox_image:
        return DockerCommandRunner(sandbox_image)
    return SubprocessCommandRunner()
