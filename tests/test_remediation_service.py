"""
Remediation Service Tests
=========================
Branch → bump → repair → commit → issue + PR, with git, build and GitHub mocked.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from secfix.agents.build_repair_loop import BuildRepairLoop
from secfix.agents.code_fixes import CodeLevelFixer
from secfix.agents.remediation_service import RemediationService, branch_name_for, group_by_package
from secfix.agents.safe_operation_executor import SafeOperationExecutor
from secfix.agents.vcs_adapter import VcsError, VersionControlAdapter
from secfix.core.config import Settings
from secfix.core.constants import AUTO_GENERATED_MARKER
from secfix.executor.build_verifier import BuildCheck, BuildVerifier
from secfix.executor.command_runner import CommandResult
from secfix.models.plan import RemediationPlan, SafeOperation, SafeOperationKind
from secfix.models.remediation import RepairOutcome
from secfix.models.vulnerability import VulnerabilityRecord


def _record(name="Newtonsoft.Json", current="12.0.1", fixed="13.0.1", ids=("GHSA-1",)):
    return VulnerabilityRecord(package_name=name, current_version=current, fixed_version=fixed,
                               severity="high", advisory_ids=ids)


@pytest.fixture
def vcs():
    v = MagicMock(spec=VersionControlAdapter)
    v.current_branch.return_value = "main"
    v.push.return_value = True
    v.has_staged_changes.return_value = True
    return v


@pytest.fixture
def executor():
    e = MagicMock(spec=SafeOperationExecutor)
    e.execute.return_value = "✓ Bump Newtonsoft.Json to 13.0.1"
    return e


@pytest.fixture
def loop():
    l = MagicMock(spec=BuildRepairLoop)
    l.run = AsyncMock(return_value=RepairOutcome(succeeded=True))
    return l


@pytest.fixture
def github():
    gh = MagicMock()
    gh.create_issue = AsyncMock(return_value={"number": 42})
    gh.create_pull_request = AsyncMock(return_value={"number": 7, "html_url": "https://github.com/acme/shop/pull/7"})
    gh.add_labels = AsyncMock(return_value=[])
    gh.request_reviewers = AsyncMock(return_value={})
    return gh


def _service(tmp_path, vcs, executor, loop, github, **settings):
    return RemediationService(
        str(tmp_path), Settings(max_repair_iterations=2, **settings),
        vcs, executor, loop, github=github, repo_slug="acme/shop",
    )


def test_branch_name_is_sanitised():
    assert branch_name_for(_record()) == "security-fix/newtonsoft.json-13.0.1"
    assert branch_name_for(_record(name="My Pkg+Extra")) == "security-fix/my-pkg-extra-13.0.1"


def test_group_by_package_keeps_highest_fix():
    grouped = group_by_package([
        _record(current="11.0.1", fixed="12.0.3", ids=("A",)),
        _record(current="12.0.1", fixed="13.0.1", ids=("B",)),
        _record(name="Serilog", fixed="3.1.1"),
    ])
    by_name = {r.package_name: r for r in grouped}
    assert by_name["Newtonsoft.Json"].fixed_version == "13.0.1"
    assert by_name["Newtonsoft.Json"].advisory_ids == ("A", "B")
    assert len(grouped) == 2


def test_successful_remediation_opens_issue_and_pr(tmp_path, vcs, executor, loop, github):
    service = _service(tmp_path, vcs, executor, loop, github, approved_reviewers=["alice"])
    summary = asyncio.run(service.remediate([_record()]))

    item = summary.items[0]
    assert item.success is True
    assert item.issue_number == 42
    assert item.pull_request_number == 7

    vcs.create_branch.assert_called_once_with("security-fix/newtonsoft.json-13.0.1")
    bump = executor.execute.call_args.args[0][0]
    assert bump.command == "dotnet add package Newtonsoft.Json --version 13.0.1"
    loop.run.assert_awaited_once_with(2)
    assert (tmp_path / "dependency-graph.json").exists()
    vcs.commit.assert_called_once_with("Security fix: bump Newtonsoft.Json from 12.0.1 to 13.0.1")
    vcs.push.assert_called_once_with("security-fix/newtonsoft.json-13.0.1", set_upstream=True)

    issue_body = github.create_issue.call_args.args[2]
    assert issue_body.startswith(AUTO_GENERATED_MARKER)
    assert github.create_issue.call_args.kwargs["labels"] == ["security-fix"]
    assert github.create_pull_request.call_args.kwargs["body"].startswith("Closes #42")
    github.add_labels.assert_awaited_once_with("acme/shop", 7, ["security-fix"])
    github.request_reviewers.assert_awaited_once_with("acme/shop", 7, ["alice"])

    vcs.checkout.assert_called_with("main")
    vcs.delete_branch.assert_not_called()


def test_unrepairable_build_discards_branch(tmp_path, vcs, executor, loop, github):
    loop.run.return_value = RepairOutcome(succeeded=False, root_cause_summary="API removed")
    summary = asyncio.run(_service(tmp_path, vcs, executor, loop, github).remediate([_record()]))

    item = summary.items[0]
    assert item.success is False
    assert item.error == "API removed"
    vcs.commit.assert_not_called()
    github.create_pull_request.assert_not_called()
    vcs.delete_branch.assert_called_once_with("security-fix/newtonsoft.json-13.0.1")


def test_failed_bump_skips_repair(tmp_path, vcs, executor, loop, github):
    executor.execute.return_value = "✗ Failed: Bump Newtonsoft.Json to 13.0.1"
    summary = asyncio.run(_service(tmp_path, vcs, executor, loop, github).remediate([_record()]))
    assert summary.items[0].error.startswith("Version bump failed")
    loop.run.assert_not_called()


def test_record_without_fix_is_not_attempted(tmp_path, vcs, executor, loop, github):
    summary = asyncio.run(_service(tmp_path, vcs, executor, loop, github).remediate([_record(fixed="")]))
    assert summary.items[0].error == "No fixed version published"
    vcs.create_branch.assert_not_called()


def test_git_error_on_one_package_does_not_stop_others(tmp_path, vcs, executor, loop, github):
    vcs.create_branch.side_effect = [VcsError(("checkout", "-b", "x"), CommandResult(exit_code=128)), None]
    records = [_record(name="Alpha"), _record(name="Beta")]
    summary = asyncio.run(_service(tmp_path, vcs, executor, loop, github).remediate(records))

    assert [i.success for i in summary.items] == [False, True]
    assert "git checkout -b x" in summary.items[0].error


def test_no_records_is_a_noop(tmp_path, vcs, executor, loop, github):
    summary = asyncio.run(_service(tmp_path, vcs, executor, loop, github).remediate([]))
    assert summary.total == 0
    assert summary.message == "No vulnerabilities to remediate."
    vcs.current_branch.assert_not_called()


def test_bump_targets_nested_project(tmp_path, vcs, executor, loop, github):
    project_dir = tmp_path / "src" / "App"
    project_dir.mkdir(parents=True)
    (project_dir / "App.csproj").write_text('<Project Sdk="Microsoft.NET.Sdk" />', encoding="utf-8")
    asyncio.run(_service(tmp_path, vcs, executor, loop, github).remediate([_record()]))
    bump = executor.execute.call_args.args[0][0]
    assert bump.command == "dotnet add src/App/App.csproj package Newtonsoft.Json --version 13.0.1"


# ---------------------------------------------------------------------------
# Several packages through the real loop, fixer and executor
# ---------------------------------------------------------------------------
DISABLED_USINGS = (
    '<Project Sdk="Microsoft.NET.Sdk"><PropertyGroup>'
    "<ImplicitUsings>disable</ImplicitUsings></PropertyGroup></Project>"
)
PASS = BuildCheck(success=True, exit_code=0)
CS0246 = BuildCheck(success=False, exit_code=1,
                    diagnostics="Program.cs(3,1): error CS0246: The type or namespace name 'List<>' could not be found")
NU1605 = BuildCheck(success=False, exit_code=1, diagnostics="error NU1605: Detected package downgrade")


def _wired(tmp_path, vcs, github, checks, plan=None):
    """Real executor, fixer and loop sharing one working copy, as run_remediation builds them."""
    csproj = tmp_path / "App.csproj"
    csproj.write_text(DISABLED_USINGS, encoding="utf-8")
    # git reset --hard brings the manifest back to its committed state
    vcs.reset_hard.side_effect = lambda *a, **k: csproj.write_text(DISABLED_USINGS, encoding="utf-8")

    runner = MagicMock()
    runner.run.return_value = CommandResult(exit_code=0)
    executor = SafeOperationExecutor(str(tmp_path), runner)
    verifier = MagicMock(spec=BuildVerifier)
    verifier.verify.side_effect = list(checks)
    planner = MagicMock()
    planner.plan = AsyncMock(return_value=plan)
    loop = BuildRepairLoop(verifier, planner, executor, CodeLevelFixer(executor))
    return _service(tmp_path, vcs, executor, loop, github), planner


def test_known_fix_is_applied_for_every_package(tmp_path, vcs, github):
    service, planner = _wired(tmp_path, vcs, github, [CS0246, PASS, CS0246, PASS])

    summary = asyncio.run(service.remediate([_record(name="Alpha"), _record(name="Beta")]))

    assert [i.success for i in summary.items] == [True, True]
    for item in summary.items:
        assert [a.strategy for a in item.repair.attempts] == ["code-level-fixes", "build-success"]
    planner.plan.assert_not_called()


def test_failed_package_backups_survive_next_package(tmp_path, vcs, github):
    plan = RemediationPlan(safe_operations=[SafeOperation(
        kind=SafeOperationKind.CONFIG_EDIT, target_file="App.csproj",
        property_name="LangVersion", value="latest",
    )])
    service, _ = _wired(tmp_path, vcs, github, [NU1605, NU1605, PASS], plan=plan)

    summary = asyncio.run(service.remediate([_record(name="Alpha"), _record(name="Beta")]))

    failed, passed = summary.items
    backup = str(tmp_path / "App.csproj.bak")
    assert failed.success is False
    assert failed.repair.pending_backups == [backup]
    assert passed.success is True
    assert passed.repair.pending_backups == []
    assert (tmp_path / "App.csproj.bak").exists()
