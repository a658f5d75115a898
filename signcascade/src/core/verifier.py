import plistlib
import re
import zipfile
from pathlib import Path
from typing import List, Optional

from signcascade.logger import get_console

MIN_IPA_SIZE = 1024 * 1024
_APP_INFO_PLIST = re.compile(r"^Payload/[^/]+\.app/Info\.plist$")


class IpaVerifier:
    """Sanity checks on an exported IPA. Problems are reported, never raised."""

    def __init__(self, ipa_path: Path, min_size: int = MIN_IPA_SIZE):
        self.ipa_path = Path(ipa_path)
        self.min_size = min_size
        self.console = get_console()

    def _read_info_plist(self, archive: zipfile.ZipFile) -> Optional[dict]:
        for name in archive.namelist():
            if _APP_INFO_PLIST.match(name):
                try:
                    return plistlib.loads(archive.read(name))
                except Exception:
                    return None
        return None

    def verify(self, expected_bundle_id: Optional[str] = None) -> List[str]:
        """Return a list of warnings; an empty list means the IPA looks sound."""
        warnings: List[str] = []
        self.console.log(f"[blue]Validating IPA:[/] {self.ipa_path.name}")

        size = self.ipa_path.stat().st_size
        self.console.log(f"[blue]IPA size:[/] {size // (1024 * 1024)} MB ({size} bytes)")
        if size < self.min_size:
            warnings.append(f"IPA is smaller than expected ({size} bytes)")

        if not zipfile.is_zipfile(self.ipa_path):
            warnings.append("IPA is not a valid zip archive")
        else:
            with zipfile.ZipFile(self.ipa_path) as archive:
                info = self._read_info_plist(archive)
            if info is None:
                warnings.append("IPA has no readable Payload/*.app/Info.plist")
            elif expected_bundle_id and info.get("CFBundleIdentifier") != expected_bundle_id:
                warnings.append(
                    f"IPA bundle id {info.get('CFBundleIdentifier')!r} "
                    f"differs from {expected_bundle_id!r}"
                )

        if warnings:
            for warning in warnings:
                self.console.log(f"[yellow]{warning}")
        else:
            self.console.log("[green]IPA validation passed[/]")
        return warnings
