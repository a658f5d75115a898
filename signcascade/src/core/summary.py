import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.table import Table

from signcascade.logger import get_console
from signcascade.src.core.models import BuildMetadata, ManualExportBundle, PipelineResult

SUMMARY_NAME = "ARTIFACTS_SUMMARY.txt"
RESULT_NAME = "export_result.json"


def build_status(result: PipelineResult) -> str:
    if result.success and not result.archive_only:
        return "SUCCESS"
    if result.archive_only:
        return "PARTIAL SUCCESS"
    return "FAILED"


def render_summary(
    result: PipelineResult,
    metadata: BuildMetadata,
    manual_export: Optional[ManualExportBundle] = None,
) -> str:
    lines = [
        "iOS Build Artifacts Summary",
        "===========================",
        f"Generated on: {datetime.now():%Y-%m-%d %H:%M:%S}",
        f"Build ID: {metadata.build_id}",
        f"Workflow: {metadata.workflow_id}",
        "",
        "App Information:",
        f"- App Name: {metadata.app_name}",
        f"- Bundle ID: {result.bundle_id or metadata.bundle_id}",
        f"- Version: {metadata.version_name} ({metadata.version_code})",
        f"- Profile Type: {metadata.profile_type.value}",
        f"- Team ID: {metadata.team_id}",
        "",
        "Artifacts:",
    ]
    if result.artifact and not result.archive_only:
        lines.append(f"- IPA: {result.artifact}")
    elif manual_export:
        lines.append(f"- Archive package: {manual_export.directory}")
        lines.append(f"- Manual export guide: {manual_export.guide_path}")
    else:
        lines.append("- (none)")

    lines += ["", f"Strategy Used: {result.strategy_used}", "", "Export Attempts:"]
    if result.attempts:
        lines += [f"- {a.strategy.value}: {a.describe()}" for a in result.attempts]
    else:
        lines.append("- (none)")

    lines += ["", "Warnings:"]
    lines += [f"- {w}" for w in result.warnings] or ["- (none)"]
    lines += ["", f"Build Status: {build_status(result)}", ""]
    return "\n".join(lines)


def write_summary(
    output_dir: Path,
    result: PipelineResult,
    metadata: BuildMetadata,
    manual_export: Optional[ManualExportBundle] = None,
) -> Path:
    """Write ARTIFACTS_SUMMARY.txt and export_result.json"""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    summary_path = output_dir / SUMMARY_NAME
    summary_path.write_text(render_summary(result, metadata, manual_export), encoding="utf-8")
    with open(output_dir / RESULT_NAME, "w") as f:
        json.dump(result.to_dict(), f, indent=2)
    get_console().log(f"[green]Artifacts summary written:[/] {summary_path}")
    return summary_path


def print_result(result: PipelineResult) -> None:
    console = get_console()
    table = Table(title="Export attempts", show_header=True, header_style="bold")
    table.add_column("Strategy", style="cyan")
    table.add_column("Tries", justify="right")
    table.add_column("Outcome")
    for attempt in result.attempts:
        style = "green" if attempt.succeeded else ("dim" if attempt.skipped_reason else "red")
        table.add_row(attempt.strategy.value, str(attempt.tries), f"[{style}]{attempt.describe()}[/]")
    console.print(table)

    status = build_status(result)
    colour = {"SUCCESS": "green", "PARTIAL SUCCESS": "yellow"}.get(status, "red")
    console.print(f"[bold {colour}]{status}[/] (strategy: {result.strategy_used})")
    for warning in result.warnings:
        console.print(f"[yellow]- {warning}[/]")
