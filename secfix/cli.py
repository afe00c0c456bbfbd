"""
Command Line Entry Point
========================
Three mutually exclusive modes over one local repository:

    secfix --repo PATH                                  scan + detect (report only)
    secfix --repo PATH --remediate                      scan, detect, remediate
    secfix --repo PATH --merge-approved-security-fixes  one merge-gate pass

Exit codes: 0 success, 1 when any remediation or merge unit failed,
2 for usage errors (missing repository, conflicting flags, no token).
"""
import asyncio
import logging
from typing import Optional

import typer

from secfix.agents.orchestrator import run_merge_gate, run_remediation, scan_and_detect
from secfix.core.config import Settings
from secfix.core.output_formatter import (
    format_merge_summary,
    format_remediation_summary,
    format_vulnerability_table,
)
from secfix.services.results_writer import ResultsWriter
from secfix.utils.logging_config import setup_logging

APP_HELP = "Detect vulnerable NuGet dependencies, remediate them, and merge approved fix PRs."

app = typer.Typer(help=APP_HELP, add_completion=False)


def _usage_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=2)


def _write_output(path: Optional[str], report: dict) -> None:
    if path and not ResultsWriter.write(report, path):
        typer.echo(f"Warning: failed to write results to {path}", err=True)


@app.command()
def run(
    repo: str = typer.Option(..., "--repo", "-r", help="Path to the local repository clone."),
    remediate: bool = typer.Option(False, "--remediate", help="Open fix branches, issues and PRs for vulnerable packages."),
    merge: bool = typer.Option(
        False,
        "--merge-approved-security-fixes",
        "--merge-security-prs",
        help="Verify and merge approved security-fix pull requests.",
    ),
    skip_scan: bool = typer.Option(
        False,
        "--skip-scan-detect-analyse",
        "--skip-scan-detect-analyze",
        help="Skip the default scan/detect pass.",
    ),
    github_token: Optional[str] = typer.Option(None, "--github-token", help="Overrides GITHUB_TOKEN."),
    approved_reviewers: Optional[str] = typer.Option(
        None, "--approved-reviewers", help="Comma-separated reviewers whose approval counts."
    ),
    max_iterations: Optional[int] = typer.Option(
        None, "--max-iterations", min=1, help="Build-repair iterations per vulnerability."
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write a JSON report to this path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Run one scan, remediation or merge pass."""
    setup_logging(level=logging.DEBUG if verbose else logging.INFO, to_file=False)

    if remediate and merge:
        _usage_error("--remediate and --merge-approved-security-fixes cannot be used together.")

    settings = Settings.from_env(
        github_token=github_token,
        approved_reviewers=[r.strip() for r in approved_reviewers.split(",") if r.strip()] if approved_reviewers else None,
        max_repair_iterations=max_iterations,
    )

    try:
        if merge:
            if not settings.github_token:
                _usage_error("A GitHub token is required to merge (set GITHUB_TOKEN or pass --github-token).")
            summary = asyncio.run(run_merge_gate(repo, settings))
            typer.echo(format_merge_summary(summary))
            typer.echo(f"Total PRs checked: {summary.total_checked}")
            typer.echo(f"Approved for merge: {len(summary.successful)}")
            typer.echo(f"Failed: {len(summary.failed)}")
            _write_output(output, ResultsWriter.build_report(repo, merge=summary))
            if summary.failed or summary.error:
                raise typer.Exit(code=1)
            return

        if remediate:
            scan = asyncio.run(scan_and_detect(repo, settings))
            typer.echo(format_vulnerability_table(scan.vulnerabilities))
            summary = asyncio.run(run_remediation(repo, settings, records=scan.vulnerabilities))
            typer.echo(format_remediation_summary(summary))
            _write_output(
                output,
                ResultsWriter.build_report(repo, vulnerabilities=scan.vulnerabilities, remediation=summary),
            )
            if summary.failed:
                raise typer.Exit(code=1)
            return

        if skip_scan:
            typer.echo("Skipping scan, detect and analyse.")
            return

        scan = asyncio.run(scan_and_detect(repo, settings))
        typer.echo(f"Scanned {len(scan.packages)} package(s).")
        typer.echo(format_vulnerability_table(scan.vulnerabilities))
        _write_output(output, ResultsWriter.build_report(repo, vulnerabilities=scan.vulnerabilities))
    except ValueError as error:
        _usage_error(str(error))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
