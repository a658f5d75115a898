import plistlib
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from asn1crypto.cms import ContentInfo

from signcascade.logger import get_console
from signcascade.src.core.errors import AcquisitionFailure, BundleMismatch, ProfileInvalid
from signcascade.src.core.models import BoundProfile, ProvisioningArtifact
from signcascade.src.transfers.downloader import download_file, validate_file
from signcascade.src.utils.process import ToolRunner

MIN_PROFILE_SIZE = 100
FALLBACK_PROFILE_NAME = "signcascade-profile.mobileprovision"

_PLIST_SLICE = re.compile(rb"<\?xml.*?</plist>", re.DOTALL)
_UUID_RE = re.compile(
    r"<key>UUID</key>\s*<string>\s*([0-9A-Fa-f-]{36})\s*</string>"
)
_APP_ID_PAIR_RE = re.compile(
    r"<key>application-identifier</key>\s*<string>\s*([^<\s]+)\s*</string>"
)
_APP_ID_LOOSE_RE = re.compile(
    r"application-identifier.{0,200}?([A-Z0-9]{10}\.[A-Za-z0-9.\-*]+)", re.DOTALL
)


def dump_prov(prov_file: Path) -> bytes:
    """Decode the CMS envelope without macOS security command"""
    with open(prov_file, "rb") as f:
        content_info = ContentInfo.load(f.read())
    signed_data = content_info["content"]
    return signed_data["encap_content_info"]["content"].native


class ProfileDecoder:
    """Gets the plist text out of a signed provisioning profile"""

    def __init__(self, runner: Optional[ToolRunner] = None):
        self.console = get_console()
        self.runner = runner or ToolRunner()

    def decode(self, path: Path) -> str:
        path = Path(path)
        try:
            payload = dump_prov(path)
            if payload:
                return payload.decode("utf-8", errors="replace")
        except Exception as e:
            self.console.log(f"[yellow]CMS decoding failed, trying security cms:[/] {e}")

        result = self.runner.run(["security", "cms", "-D", "-i", str(path)], quiet=True)
        if result.ok and "<plist" in result.stdout:
            return result.stdout

        match = _PLIST_SLICE.search(path.read_bytes())
        if match:
            self.console.log("[yellow]Using raw plist slice from profile")
            return match.group(0).decode("utf-8", errors="replace")

        raise ProfileInvalid(f"Profile envelope could not be opened: {path}")


def parse_plist(text: str) -> Optional[dict]:
    try:
        data = plistlib.loads(text.encode("utf-8"))
    except Exception:
        return None
    return data if isinstance(data, dict) else None


def extract_uuid(text: str, data: Optional[dict]) -> Optional[str]:
    if data and isinstance(data.get("UUID"), str) and data["UUID"].strip():
        return data["UUID"].strip()
    match = _UUID_RE.search(text)
    return match.group(1) if match else None


def extract_application_identifier(text: str, data: Optional[dict]) -> Optional[str]:
    """Three strategies, strictest first: parsed plist, key/string pair, loose scan"""
    if data:
        entitlements = data.get("Entitlements")
        if isinstance(entitlements, dict):
            value = entitlements.get("application-identifier")
            if isinstance(value, str) and value.strip():
                return value.strip()

    match = _APP_ID_PAIR_RE.search(text)
    if match:
        return match.group(1)

    match = _APP_ID_LOOSE_RE.search(text)
    if match:
        return match.group(1)
    return None


def extract_team_identifier(data: Optional[dict], app_id: Optional[str]) -> Optional[str]:
    if data:
        for key in ("TeamIdentifier", "ApplicationIdentifierPrefix"):
            value = data.get(key)
            if isinstance(value, list) and value and isinstance(value[0], str):
                return value[0]
        entitlements = data.get("Entitlements")
        if isinstance(entitlements, dict):
            team = entitlements.get("com.apple.developer.team-identifier")
            if isinstance(team, str) and team:
                return team
    if app_id and "." in app_id:
        return app_id.split(".", 1)[0]
    return None


def bundle_matches(requested: str, suffix: str) -> bool:
    return requested == suffix


def load_artifact(path: Path, decoder: Optional[ProfileDecoder] = None) -> Tuple[ProvisioningArtifact, dict]:
    decoder = decoder or ProfileDecoder()
    text = decoder.decode(path)
    data = parse_plist(text)
    app_id = extract_application_identifier(text, data)
    expiration = data.get("ExpirationDate") if data else None
    artifact = ProvisioningArtifact(
        path=Path(path),
        uuid=extract_uuid(text, data),
        application_identifier=app_id,
        team_identifier=extract_team_identifier(data, app_id),
        name=data.get("Name") if data and isinstance(data.get("Name"), str) else None,
        expiration=expiration if isinstance(expiration, datetime) else None,
    )
    return artifact, data or {}


def inspect_profile(path: Path, decoder: Optional[ProfileDecoder] = None) -> Tuple[ProvisioningArtifact, dict]:
    """Decoded profile for display, binary fields removed"""
    artifact, data = load_artifact(Path(path), decoder)
    filtered = dict(data)
    for binary_key in ("DeveloperCertificates", "DER-Encoded-Profile"):
        if binary_key in filtered:
            filtered[binary_key] = "<binary data removed>"
    return artifact, filtered


class ProfileBinder:
    """Installs a provisioning profile and checks it covers the bundle id"""

    def __init__(
        self,
        profiles_dir: Path,
        work_dir: Path,
        runner: Optional[ToolRunner] = None,
        downloader: Callable = download_file,
        strict: bool = False,
    ):
        self.console = get_console()
        self.profiles_dir = Path(profiles_dir)
        self.work_dir = Path(work_dir)
        self.decoder = ProfileDecoder(runner)
        self.download = downloader
        self.strict = strict
        self._bound: Dict[Tuple[str, str, bool], BoundProfile] = {}

    def acquire(self, source: str) -> Path:
        dest = self.work_dir / "profile.mobileprovision"
        try:
            self.download(source, dest)
            validate_file(dest, MIN_PROFILE_SIZE)
        except AcquisitionFailure as e:
            raise ProfileInvalid(f"Provisioning profile unavailable: {e}") from e
        return dest

    def install(self, artifact: ProvisioningArtifact) -> Path:
        """Copy into the profile search directory; identical content is a no-op"""
        self.profiles_dir.mkdir(parents=True, exist_ok=True)
        if artifact.uuid:
            target = self.profiles_dir / f"{artifact.uuid}.mobileprovision"
        else:
            self.console.log(
                f"[yellow]Profile UUID unknown, installing as {FALLBACK_PROFILE_NAME}"
            )
            target = self.profiles_dir / FALLBACK_PROFILE_NAME

        if target.exists() and target.read_bytes() == artifact.path.read_bytes():
            self.console.log(f"[green]Provisioning profile already installed:[/] {target}")
            return target
        if target.resolve() != artifact.path.resolve():
            shutil.copyfile(artifact.path, target)
        self.console.log(f"[green]Provisioning profile installed:[/] {target}")
        return target

    def bind(self, source: str, requested_bundle_id: str, auto_correct: bool) -> BoundProfile:
        key = (source, requested_bundle_id, auto_correct)
        if key in self._bound:
            self.console.log("[dim]Provisioning profile already bound for this run[/]")
            return self._bound[key]

        self.console.log(f"[yellow]Installing provisioning profile from:[/] {source}")
        path = self.acquire(source)
        artifact, _ = load_artifact(path, self.decoder)
        self.console.log(
            f"[blue]Profile UUID:[/] {artifact.uuid or '<unknown>'}  "
            f"[blue]Application identifier:[/] {artifact.application_identifier or '<unknown>'}"
        )

        warnings = []
        if artifact.expiration and artifact.expiration.replace(tzinfo=timezone.utc) < datetime.now(timezone.utc):
            warnings.append(f"Provisioning profile expired on {artifact.expiration:%Y-%m-%d}")
            self.console.log(f"[yellow]{warnings[-1]}")

        suffix = artifact.bundle_suffix
        if artifact.is_wildcard:
            message = (
                f"Profile application identifier "
                f"'{artifact.application_identifier or 'unrecoverable'}' does not name "
                f"a specific bundle id; signing may fail later"
            )
            if self.strict:
                raise ProfileInvalid(message)
            warnings.append(message)
            self.console.log(f"[yellow]{message}")
            bound = BoundProfile(
                artifact=artifact,
                installed_path=self.install(artifact),
                bundle_id=requested_bundle_id,
                ambiguous=True,
                warnings=tuple(warnings),
            )
        elif bundle_matches(requested_bundle_id, suffix):
            self.console.log(f"[green]Bundle id matches profile:[/] {requested_bundle_id}")
            bound = BoundProfile(
                artifact=artifact,
                installed_path=self.install(artifact),
                bundle_id=requested_bundle_id,
                warnings=tuple(warnings),
            )
        elif auto_correct:
            message = f"Bundle id corrected from '{requested_bundle_id}' to '{suffix}' to match the profile"
            warnings.append(message)
            self.console.log(f"[yellow]{message}")
            bound = BoundProfile(
                artifact=artifact,
                installed_path=self.install(artifact),
                bundle_id=suffix,
                corrected=True,
                warnings=tuple(warnings),
            )
            # Binding again with the corrected id must be a no-op
            self._bound[(source, suffix, auto_correct)] = bound
        else:
            self.console.log(
                f"[red]Bundle id '{requested_bundle_id}' does not match profile '{suffix}'"
            )
            raise BundleMismatch(requested_bundle_id, suffix)

        self._bound[key] = bound
        return bound

    def reinstall(self, source: str) -> ProvisioningArtifact:
        """Fetch and install the profile again, bypassing the bind cache"""
        artifact, _ = load_artifact(self.acquire(source), self.decoder)
        self.install(artifact)
        return artifact
