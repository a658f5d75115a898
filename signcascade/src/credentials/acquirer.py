from pathlib import Path
from typing import Callable, List

from signcascade.logger import get_console
from signcascade.src.core.errors import AcquisitionFailure
from signcascade.src.core.models import (
    BundledCertificate,
    CertificateMaterial,
    DetachedCertificate,
)
from signcascade.src.transfers.downloader import download_file, validate_file


class CredentialAcquirer:
    """Fetches certificate material into the local work directory"""

    P12_NAME = "cert.p12"
    CER_NAME = "cert.cer"
    KEY_NAME = "cert.key"

    def __init__(self, work_dir: Path, downloader: Callable = download_file):
        self.console = get_console()
        self.work_dir = Path(work_dir)
        self.download = downloader

    def acquire_bundled(self, url: str) -> BundledCertificate:
        dest = self.work_dir / self.P12_NAME
        self.download(url, dest)
        validate_file(dest)
        return BundledCertificate(path=dest)

    def acquire_detached(self, cer_url: str, key_url: str) -> DetachedCertificate:
        cer = self.work_dir / self.CER_NAME
        key = self.work_dir / self.KEY_NAME
        self.download(cer_url, cer)
        self.download(key_url, key)
        validate_file(cer)
        validate_file(key)
        return DetachedCertificate(cert_path=cer, key_path=key)

    def acquire(self, config) -> List[CertificateMaterial]:
        """Fetch every configured source, bundled first.

        A source that fails to download is skipped; the run only fails when
        nothing could be acquired.
        """
        materials: List[CertificateMaterial] = []
        errors = []

        if config.has_bundled_source:
            self.console.log("[blue]P12 certificate source configured[/]")
            try:
                materials.append(self.acquire_bundled(config.p12_url))
            except AcquisitionFailure as e:
                self.console.log(f"[yellow]P12 acquisition failed:[/] {e}")
                errors.append(str(e))
        else:
            self.console.log("[dim]No P12 certificate source, skipping[/]")

        if config.has_detached_source:
            self.console.log("[blue]CER+KEY certificate source configured[/]")
            try:
                materials.append(self.acquire_detached(config.cer_url, config.key_url))
            except AcquisitionFailure as e:
                self.console.log(f"[yellow]CER+KEY acquisition failed:[/] {e}")
                errors.append(str(e))
        else:
            self.console.log("[dim]No CER+KEY certificate source, skipping[/]")

        if not materials:
            if not errors:
                raise AcquisitionFailure(
                    "No certificate source configured. Set CERT_P12_URL + CERT_PASSWORD "
                    "or CERT_CER_URL + CERT_KEY_URL"
                )
            raise AcquisitionFailure(
                "No certificate source could be acquired: " + "; ".join(errors)
            )
        return materials

    def acquire_api_key(self, url: str, dest_dir: Path, key_id: str) -> Path:
        """Download an App Store Connect API key (.p8)"""
        dest = Path(dest_dir) / f"AuthKey_{key_id}.p8"
        self.download(url, dest)
        validate_file(dest)
        return dest
