import re
import shutil
from pathlib import Path
from typing import List, Optional

from signcascade.logger import get_console

console = get_console()

_ENTRY = re.compile(r'(PRODUCT_BUNDLE_IDENTIFIER\s*=\s*)("[^"]*"|[^;]*)')
_VALUE = re.compile(r'PRODUCT_BUNDLE_IDENTIFIER\s*=\s*"?([^";]*)"?\s*;')


def read_bundle_ids(project_file: Path) -> List[str]:
    """All PRODUCT_BUNDLE_IDENTIFIER values in a project.pbxproj"""
    text = Path(project_file).read_text(encoding="utf-8")
    return [value.strip() for value in _VALUE.findall(text)]


def main_bundle_id(project_file: Path) -> Optional[str]:
    text = Path(project_file).read_text(encoding="utf-8")
    for line in text.splitlines():
        if "PRODUCT_BUNDLE_IDENTIFIER" in line and "RunnerTests" not in line:
            match = _VALUE.search(line)
            if match:
                return match.group(1).strip()
    return None


def rewrite_bundle_ids(text: str, bundle_id: str) -> str:
    test_bundle_id = f"{bundle_id}.RunnerTests"
    lines = []
    for line in text.splitlines(keepends=True):
        if "PRODUCT_BUNDLE_IDENTIFIER" in line:
            target = test_bundle_id if "RunnerTests" in line else bundle_id
            line = _ENTRY.sub(lambda m: f'{m.group(1)}"{target}"', line, count=1)
        lines.append(line)
    return "".join(lines)


def update_bundle_id(project_file: Path, bundle_id: str) -> bool:
    """Point every target of the Xcode project at ``bundle_id``.

    Test targets get ``<bundle_id>.RunnerTests``. The project is backed up
    first and restored if the rewritten file does not check out.
    """
    project_file = Path(project_file)
    if not project_file.is_file():
        console.log(f"[red]Project file not found:[/] {project_file}")
        return False
    if not bundle_id:
        console.log("[red]New bundle ID is empty")
        return False

    backup = project_file.with_name(project_file.name + ".bundle_backup")
    shutil.copyfile(project_file, backup)
    console.log(f"[green]Project file backed up to:[/] {backup}")

    original = project_file.read_text(encoding="utf-8")
    original_count = original.count("PRODUCT_BUNDLE_IDENTIFIER")
    updated = rewrite_bundle_ids(original, bundle_id)
    updated_count = updated.count("PRODUCT_BUNDLE_IDENTIFIER")

    if original_count == 0 or updated_count != original_count:
        console.log(
            f"[red]Bundle ID update verification failed[/] "
            f"(original entries: {original_count}, updated entries: {updated_count})"
        )
        shutil.move(str(backup), project_file)
        return False

    project_file.write_text(updated, encoding="utf-8")
    found = main_bundle_id(project_file)
    if found != bundle_id:
        console.log(f"[red]Bundle ID verification failed:[/] expected {bundle_id}, found {found}")
        shutil.move(str(backup), project_file)
        return False

    console.log(f"[green]Updated {updated_count} PRODUCT_BUNDLE_IDENTIFIER entries to {bundle_id}[/]")
    return True
