import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence

from signcascade.logger import get_console
from signcascade.src.core.errors import ArchiveMissing
from signcascade.src.core.models import BuildMetadata, ExportAttempt, ManualExportBundle

ARCHIVE_NAME = "Runner.xcarchive"
ALTERNATIVE_ARCHIVE_LOCATIONS = (
    Path("ios/build") / ARCHIVE_NAME,
    Path("build/ios") / ARCHIVE_NAME,
    Path(ARCHIVE_NAME),
)
GUIDE_NAME = "MANUAL_EXPORT_GUIDE.txt"
STATUS_NAME = "EXPORT_STATUS.txt"
ARCHIVE_ONLY = "ARCHIVE_ONLY"


def locate_archive(configured: Optional[Path], output_dir: Path) -> Path:
    """First existing archive among the configured and usual locations"""
    candidates = []
    if configured:
        candidates.append(Path(configured))
    candidates.append(Path(output_dir) / ARCHIVE_NAME)
    candidates.extend(ALTERNATIVE_ARCHIVE_LOCATIONS)

    for candidate in candidates:
        if candidate.exists():
            return candidate
    raise ArchiveMissing(
        "No archive found in any location: " + ", ".join(str(c) for c in candidates)
    )


def tree_size(path: Path) -> int:
    path = Path(path)
    if path.is_file():
        return path.stat().st_size
    return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())


def human_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{size} B"
        size /= 1024
    return f"{size} B"


class ArchiveFallbackPackager:
    """Ships the raw archive with manual export instructions"""

    def __init__(self, output_dir: Path):
        self.console = get_console()
        self.output_dir = Path(output_dir)

    def package(
        self,
        archive: Path,
        metadata: BuildMetadata,
        attempts: Sequence[ExportAttempt] = (),
    ) -> ManualExportBundle:
        archive = Path(archive)
        if not archive.exists():
            raise ArchiveMissing(f"Archive not found: {archive}")

        self.console.log("[yellow]Creating archive-only export (final fallback)...")
        directory = self.output_dir / f"{archive.stem}_manual_export"
        directory.mkdir(parents=True, exist_ok=True)

        archive_copy = directory / archive.name
        if archive_copy.exists():
            if archive_copy.is_dir():
                shutil.rmtree(archive_copy)
            else:
                archive_copy.unlink()
        if archive.is_dir():
            shutil.copytree(archive, archive_copy, symlinks=True)
        else:
            shutil.copyfile(archive, archive_copy)
        self.console.log(f"[green]Archive copied:[/] {archive_copy}")

        guide_path = directory / GUIDE_NAME
        guide_path.write_text(
            self.render_guide(archive, archive_copy, metadata, attempts), encoding="utf-8"
        )
        status_path = directory / STATUS_NAME
        status_path.write_text(ARCHIVE_ONLY + "\n", encoding="utf-8")

        self.console.log(f"[green]Archive-only export created:[/] {directory}")
        self.console.log(f"[yellow]No IPA file was created; see {guide_path.name} for manual export")
        return ManualExportBundle(
            directory=directory,
            archive_copy=archive_copy,
            guide_path=guide_path,
            status_path=status_path,
        )

    def render_guide(
        self,
        archive: Path,
        archive_copy: Path,
        metadata: BuildMetadata,
        attempts: Iterable[ExportAttempt] = (),
    ) -> str:
        attempted = [
            f"- {a.strategy.value}: {a.describe()}" for a in attempts
        ] or ["- (no export strategy was attempted)"]

        lines = [
            "iOS Build Archive (No IPA Export)",
            "=================================",
            f"Generated on: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"Build ID: {metadata.build_id}",
            f"Workflow: {metadata.workflow_id}",
            "",
            "App Information:",
            f"- App Name: {metadata.app_name}",
            f"- Bundle ID: {metadata.bundle_id}",
            f"- Version: {metadata.version_name} ({metadata.version_code})",
            f"- Profile Type: {metadata.profile_type.value}",
            f"- Team ID: {metadata.team_id}",
            "",
            "Archive Information:",
            f"- Original Archive Path: {archive}",
            f"- Archive Size: {human_size(tree_size(archive))}",
            f"- Archive Copy: {archive_copy}",
            "",
            f"Export Status: {ARCHIVE_ONLY} (IPA export failed)",
            "",
            "Export Strategies Attempted:",
            *attempted,
            "",
            "To create the IPA manually:",
            "1. Copy the archive to a Mac with Xcode installed",
            f"2. Double-click {archive_copy.name} to open it in the Xcode Organizer",
            "3. Select the archive and click \"Distribute App\"",
            f"4. Choose the {metadata.profile_type.value} distribution method",
            f"5. Sign with a certificate and profile for team {metadata.team_id}",
            f"6. Confirm the bundle id is {metadata.bundle_id}",
            "7. Export the IPA or upload it directly",
            "",
            "Alternative Distribution Methods:",
            "- TestFlight (if you have App Store Connect access)",
            "- Ad-hoc distribution (for specific devices)",
            "- Enterprise distribution (if you have an enterprise account)",
            "- Development distribution (for testing)",
            "",
            "Troubleshooting Checklist:",
            "- The distribution certificate is valid and its private key is in the keychain",
            "- The provisioning profile has not expired",
            f"- The profile's application identifier matches {metadata.bundle_id}",
            f"- The certificate and profile both belong to team {metadata.team_id}",
            "- App Store Connect API credentials (key, key id, issuer id) are correct",
            "- Xcode and the command line tools are up to date",
            "",
        ]
        return "\n".join(lines)
