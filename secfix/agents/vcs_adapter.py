"""
Version Control Adapter
=======================
Runs git commands against one local working copy through a CommandRunner.

Two calling styles:
    - ``run(*args)`` returns the raw CommandResult (never raises).
    - the named operations (``checkout``, ``merge`` ...) raise VcsError on a
      non-zero exit, so the owning component can catch one unit of work.

``merge`` and ``push`` are the exceptions: a conflicted merge and a
rejected push are expected outcomes, so they return a bool.
"""
import time
import logging
from typing import Optional

from secfix.executor.command_runner import CommandRunner, CommandResult

logger = logging.getLogger(__name__)

PUSH_MAX_ATTEMPTS = 3
PUSH_RETRY_DELAY_SECONDS = 2


class VcsError(RuntimeError):
    """A git command exited non-zero."""

    def __init__(self, args: tuple, result: CommandResult) -> None:
        self.command = " ".join(("git",) + tuple(args))
        self.result = result
        detail = (result.stderr or result.stdout or result.error or "").strip()
        super().__init__(f"`{self.command}` failed with exit code {result.exit_code}: {detail}")


class VersionControlAdapter:
    """Git operations for the working copy at ``working_dir``."""

    def __init__(self, working_dir: str, runner: CommandRunner, program: str = "git") -> None:
        if not working_dir:
            raise ValueError("working_dir is required")
        if runner is None:
            raise ValueError("runner is required")
        self.working_dir = working_dir
        self.runner = runner
        self.program = program

    # -------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------
    def run(self, *args: str) -> CommandResult:
        return self.runner.run(self.working_dir, self.program, list(args))

    def _checked(self, *args: str) -> str:
        result = self.run(*args)
        if result.exit_code != 0:
            raise VcsError(args, result)
        return result.stdout.strip()

    # -------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------
    def current_branch(self) -> str:
        return self._checked("rev-parse", "--abbrev-ref", "HEAD")

    def head_sha(self) -> str:
        return self._checked("rev-parse", "HEAD")

    def create_branch(self, name: str) -> None:
        """Create and switch to ``name``; switch to it if it already exists."""
        result = self.run("checkout", "-b", name)
        if result.exit_code == 0:
            logger.info("Created branch %s", name)
            return
        logger.warning("Branch create failed (may already exist): %s", result.stderr.strip())
        self.checkout(name)

    def checkout(self, ref: str) -> None:
        self._checked("checkout", ref)
        logger.info("Checked out %s", ref)

    def checkout_tracking(self, branch: str, remote: str = "origin") -> None:
        """Checkout ``branch``, creating a local tracking branch from the remote if needed."""
        if self.run("checkout", branch).exit_code == 0:
            return
        self._checked("checkout", "-B", branch, f"{remote}/{branch}")

    def delete_branch(self, name: str) -> None:
        self._checked("branch", "-D", name)

    # -------------------------------------------------------------------
    # Remote sync
    # -------------------------------------------------------------------
    def fetch(self, remote: str = "origin") -> None:
        self._checked("fetch", remote)

    def pull(self, remote: str = "origin", branch: Optional[str] = None) -> None:
        args = ["pull", remote] + ([branch] if branch else [])
        self._checked(*args)

    def push(self, branch: str, remote: str = "origin", set_upstream: bool = False) -> bool:
        """Push with retry (PUSH_MAX_ATTEMPTS, fixed delay). Returns False when every attempt fails."""
        args = ["push"] + (["-u"] if set_upstream else []) + [remote, branch]
        for attempt in range(1, PUSH_MAX_ATTEMPTS + 1):
            result = self.run(*args)
            if result.exit_code == 0:
                logger.info("Pushed %s to %s", branch, remote)
                return True
            logger.warning(
                "Push failed (attempt %d/%d): %s",
                attempt, PUSH_MAX_ATTEMPTS, result.stderr.strip(),
            )
            if attempt < PUSH_MAX_ATTEMPTS:
                time.sleep(PUSH_RETRY_DELAY_SECONDS)
        logger.error("Push of %s failed after %d attempts", branch, PUSH_MAX_ATTEMPTS)
        return False

    def remote_url(self, remote: str = "origin") -> Optional[str]:
        result = self.run("config", "--get", f"remote.{remote}.url")
        if result.exit_code != 0:
            return None
        return result.stdout.strip() or None

    # -------------------------------------------------------------------
    # Merge & cleanup
    # -------------------------------------------------------------------
    def merge(self, ref: str, message: Optional[str] = None) -> bool:
        """Merge ``ref`` into the current branch. False means the merge stopped (usually conflicts)."""
        args = ["merge", "--no-ff", ref] + (["-m", message] if message else ["--no-edit"])
        result = self.run(*args)
        if result.exit_code != 0:
            logger.warning("Merge of %s did not complete: %s", ref, (result.stdout + result.stderr).strip())
            return False
        return True

    def abort_merge(self) -> None:
        """Abort an in-progress merge. No-op when none is in progress."""
        result = self.run("merge", "--abort")
        if result.exit_code != 0:
            logger.debug("No merge to abort")

    def reset_hard(self, ref: str = "HEAD") -> None:
        self._checked("reset", "--hard", ref)

    def clean(self) -> None:
        self._checked("clean", "-fd")

    def conflicted_files(self) -> list[str]:
        """Paths with unresolved merge conflicts in the index."""
        out = self._checked("diff", "--name-only", "--diff-filter=U")
        return [line.strip() for line in out.splitlines() if line.strip()]

    def checkout_theirs(self, path: str) -> None:
        self._checked("checkout", "--theirs", "--", path)

    # -------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------
    def add_all(self) -> None:
        self._checked("add", "-A")

    def has_staged_changes(self) -> bool:
        # exit code 0 = no differences
        return self.run("diff", "--cached", "--quiet").exit_code != 0

    def commit(self, message: str) -> None:
        self._checked("commit", "-m", message)
        logger.info("Committed: %s", message)
