"""
Safe Operation Executor
=======================
Applies the ``safe_operations`` of a RemediationPlan to a working copy.

SECURITY BOUNDARY:
    Plans come from an external reasoning service. Only three operation
    kinds are ever applied:

        package-add     dotnet add [<project>] package <id> [--version <v>]
        package-remove  dotnet remove [<project>] package <id>
        config-edit     set one MSBuild property in a project manifest

    Anything else is skipped. Commands are tokenised with shlex and run
    without a shell; edits are restricted to manifests inside the working
    copy.

BACKUPS:
    A ``<file>.bak`` copy is taken before every config edit. A failed edit
    restores the file from it. Backups that survive a run are listed by
    ``pending_backups`` (failure report) or removed by ``cleanup_backups()``
    (success path).

Per-operation errors never propagate out of ``execute()``: one failing
operation is recorded and its siblings still run.
"""
import os
import shlex
import shutil
import logging
import xml.etree.ElementTree as ET
from typing import Iterable, List, Optional

from secfix.core.constants import BACKUP_SUFFIX
from secfix.executor.command_runner import CommandRunner
from secfix.models.plan import SafeOperation, SafeOperationKind

logger = logging.getLogger(__name__)

MSBUILD_NAMESPACE = "http://schemas.microsoft.com/developer/msbuild/2003"

EDITABLE_SUFFIXES = (".csproj", ".fsproj", ".vbproj", ".props", ".targets")
EDITABLE_FILENAMES = ("packages.config", "nuget.config")

_ADD_OPTIONS_WITH_VALUE = {"--version", "-v", "--framework", "-f"}
_ADD_FLAGS = {"--prerelease", "--no-restore"}


class SafeOperationError(RuntimeError):
    """One safe operation could not be applied."""


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _write_manifest(tree: ET.ElementTree, path: str, xml_declaration: bool) -> None:
    tree.write(path, encoding="utf-8", xml_declaration=xml_declaration)


class SafeOperationExecutor:
    """Applies whitelisted operations in ``working_dir``; owns the backup list for one run."""

    def __init__(
        self,
        working_dir: str,
        runner: CommandRunner,
        timeout_seconds: Optional[int] = None,
    ) -> None:
        if not working_dir:
            raise ValueError("working_dir is required")
        if runner is None:
            raise ValueError("runner is required")
        self.working_dir = os.path.abspath(working_dir)
        self.runner = runner
        self.timeout_seconds = timeout_seconds
        self._backups: List[str] = []

    def start_run(self) -> None:
        """Stop tracking backups of earlier runs. Their files stay on disk."""
        self._backups = []

    @property
    def pending_backups(self) -> List[str]:
        """Backup files still on disk, in creation order."""
        return [b for b in self._backups if os.path.exists(b)]

    # -------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------
    def execute(self, operations: Iterable[SafeOperation]) -> str:
        """
        Apply ``operations`` in order and return a human-readable summary,
        one ``✓``/``✗`` line per operation.
        """
        lines: List[str] = []
        for op in operations:
            kind = getattr(op, "kind", None)
            if not isinstance(kind, SafeOperationKind):
                logger.warning("Skipping operation with disallowed kind %r", kind)
                lines.append(f"✗ Skipped (kind not allowed): {kind}")
                continue

            try:
                if kind is SafeOperationKind.CONFIG_EDIT:
                    self.apply_config_edit(op)
                else:
                    self.run_package_command(op)
                lines.append(f"✓ {op.describe()}")
            except Exception as e:
                logger.warning("Failed to execute operation '%s': %s", kind.value, e)
                lines.append(f"✗ Failed: {op.describe()}")
                self.restore_from_backup(self._try_resolve(op.target_file))

        return "\n".join(lines)

    # -------------------------------------------------------------------
    # package-add / package-remove
    # -------------------------------------------------------------------
    def validate_package_command(self, op: SafeOperation) -> List[str]:
        """Tokenise and check a package command. Returns argv."""
        if not op.command or not op.command.strip():
            raise SafeOperationError("package operation requires a command")
        try:
            argv = shlex.split(op.command)
        except ValueError as e:
            raise SafeOperationError(f"unparseable command: {e}") from e

        verb = "add" if op.kind is SafeOperationKind.PACKAGE_ADD else "remove"
        if len(argv) < 4 or argv[0] != "dotnet" or argv[1] != verb:
            raise SafeOperationError(f"expected `dotnet {verb} ... package <id>`: {op.command}")

        rest = argv[2:]
        if rest[0] != "package":
            # dotnet add <project> package <id>
            self._resolve(rest[0])
            rest = rest[1:]
        if len(rest) < 2 or rest[0] != "package" or rest[1].startswith("-"):
            raise SafeOperationError(f"missing package id: {op.command}")

        options = rest[2:]
        if verb == "remove" and options:
            raise SafeOperationError(f"unexpected arguments for package remove: {options}")
        i = 0
        while i < len(options):
            opt = options[i]
            if opt in _ADD_OPTIONS_WITH_VALUE and i + 1 < len(options):
                i += 2
            elif opt in _ADD_FLAGS:
                i += 1
            else:
                raise SafeOperationError(f"option not allowed: {opt}")
        return argv

    def run_package_command(self, op: SafeOperation) -> None:
        argv = self.validate_package_command(op)
        logger.info("Running %s", " ".join(argv))
        result = self.runner.run(self.working_dir, argv[0], argv[1:], self.timeout_seconds)
        if result.exit_code != 0:
            raise SafeOperationError(f"Command failed: {(result.stderr or result.error or '').strip()}")

    # -------------------------------------------------------------------
    # config-edit
    # -------------------------------------------------------------------
    def _resolve(self, relative_path: str) -> str:
        """Absolute path of ``relative_path``; refuses anything outside the working copy."""
        full = os.path.abspath(os.path.join(self.working_dir, relative_path))
        if os.path.commonpath([full, self.working_dir]) != self.working_dir:
            raise SafeOperationError(f"path escapes working copy: {relative_path}")
        return full

    def _try_resolve(self, relative_path: Optional[str]) -> Optional[str]:
        if not relative_path:
            return None
        try:
            return self._resolve(relative_path)
        except SafeOperationError:
            return None

    @staticmethod
    def _is_editable(path: str) -> bool:
        name = os.path.basename(path).lower()
        return name.endswith(EDITABLE_SUFFIXES) or name in EDITABLE_FILENAMES

    def apply_config_edit(self, op: SafeOperation) -> None:
        """
        Set ``op.property_name`` to ``op.value`` in the first PropertyGroup of
        ``op.target_file``. Without a property the manifest is only validated.

        The file is backed up first and restored if anything goes wrong.
        """
        if not op.target_file or not op.target_file.strip():
            raise SafeOperationError("config-edit requires a target file")
        full_path = self._resolve(op.target_file)
        if not self._is_editable(full_path):
            raise SafeOperationError(f"not a project manifest: {op.target_file}")
        if not os.path.isfile(full_path):
            raise SafeOperationError(f"File not found: {full_path}")

        self._create_backup(full_path)
        try:
            with open(full_path, "rb") as f:
                had_declaration = f.read(5) == b"<?xml"
            ET.register_namespace("", MSBUILD_NAMESPACE)
            tree = ET.parse(full_path)

            if not op.property_name:
                logger.info("Validated %s (no property edit requested): %s", op.target_file, op.rationale)
                return

            _set_property(tree.getroot(), op.property_name, op.value or "")
            _write_manifest(tree, full_path, had_declaration)
            logger.info("Set %s=%s in %s", op.property_name, op.value, op.target_file)
        except Exception as e:
            self.restore_from_backup(full_path)
            raise SafeOperationError(f"edit of {op.target_file} failed: {e}") from e

    def _create_backup(self, full_path: str) -> str:
        backup = full_path + BACKUP_SUFFIX
        # Keep the earliest copy from this run so a rollback restores the original
        if backup in self._backups and os.path.exists(backup):
            return backup
        shutil.copy2(full_path, backup)
        self._backups.append(backup)
        return backup

    def restore_from_backup(self, file_path: Optional[str]) -> bool:
        """Copy ``<file>.bak`` back over ``file`` and drop the backup. False if there was none."""
        if not file_path:
            return False
        backup = file_path + BACKUP_SUFFIX
        if not os.path.exists(backup):
            return False
        try:
            shutil.copy2(backup, file_path)
            os.remove(backup)
        except OSError as e:
            logger.error("Failed to restore %s from backup: %s", file_path, e)
            return False
        if backup in self._backups:
            self._backups.remove(backup)
        logger.info("Restored %s from backup", file_path)
        return True

    def cleanup_backups(self) -> None:
        """Delete every backup created during this run."""
        for backup in self._backups:
            try:
                if os.path.exists(backup):
                    os.remove(backup)
                    logger.info("Cleaned up %s", backup)
            except OSError as e:
                logger.warning("Failed to clean up %s: %s", backup, e)
        self._backups.clear()


def _set_property(root: ET.Element, name: str, value: str) -> None:
    """Set MSBuild property ``name`` in the first PropertyGroup, creating the group if needed."""
    ns = root.tag[: root.tag.index("}") + 1] if root.tag.startswith("{") else ""

    group = next((el for el in root if _local_name(el.tag) == "PropertyGroup"), None)
    if group is None:
        group = ET.Element(f"{ns}PropertyGroup")
        root.insert(0, group)

    prop = next((el for el in group if _local_name(el.tag) == name), None)
    if prop is None:
        prop = ET.SubElement(group, f"{ns}{name}")
    prop.text = value
