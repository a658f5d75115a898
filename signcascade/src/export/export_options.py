import plistlib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional

from signcascade.src.core.models import (
    BoundProfile,
    DistributionProfileType,
    InstalledIdentity,
)

EXPORT_METHODS = {
    DistributionProfileType.APP_STORE: "app-store-connect",
    DistributionProfileType.AD_HOC: "ad-hoc",
    DistributionProfileType.ENTERPRISE: "enterprise",
    DistributionProfileType.DEVELOPMENT: "development",
}

DISTRIBUTION_CERTIFICATE = "Apple Distribution"
DEVELOPMENT_CERTIFICATE = "Apple Development"
LEGACY_DISTRIBUTION_CERTIFICATE = "iPhone Distribution"


@dataclass(frozen=True)
class ExportConfig:
    """Contents of an ExportOptions.plist"""

    method: str
    team_id: str
    signing_style: str
    signing_certificate: Optional[str]
    provisioning_profiles: Dict[str, str] = field(default_factory=dict)
    upload_symbols: bool = False
    upload_bitcode: bool = False
    compile_bitcode: bool = False
    strip_swift_symbols: bool = True
    thinning: str = "<none>"
    destination: str = "export"
    manage_app_version_and_build_number: Optional[bool] = None
    manifest: Optional[Dict[str, str]] = None

    @property
    def is_manual(self) -> bool:
        return self.signing_style == "manual"

    def derive(self, **changes) -> "ExportConfig":
        """A modified copy; this config is left untouched"""
        if "provisioning_profiles" in changes:
            changes["provisioning_profiles"] = dict(changes["provisioning_profiles"] or {})
        return replace(self, **changes)

    def to_plist(self) -> dict:
        options = {
            "method": self.method,
            "teamID": self.team_id,
            "signingStyle": self.signing_style,
            "uploadSymbols": self.upload_symbols,
            "uploadBitcode": self.upload_bitcode,
            "compileBitcode": self.compile_bitcode,
            "stripSwiftSymbols": self.strip_swift_symbols,
            "thinning": self.thinning,
            "destination": self.destination,
        }
        if self.signing_certificate:
            options["signingCertificate"] = self.signing_certificate
        if self.is_manual and self.provisioning_profiles:
            options["provisioningProfiles"] = dict(self.provisioning_profiles)
        if self.manage_app_version_and_build_number is not None:
            options["manageAppVersionAndBuildNumber"] = self.manage_app_version_and_build_number
        if self.manifest:
            options["manifest"] = dict(self.manifest)
        return options

    def to_bytes(self) -> bytes:
        return plistlib.dumps(self.to_plist(), fmt=plistlib.FMT_XML, sort_keys=True)

    def write(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_bytes())
        return path


def signing_certificate_for(
    profile_type: DistributionProfileType, identity: Optional[InstalledIdentity]
) -> str:
    if profile_type == DistributionProfileType.DEVELOPMENT:
        return DEVELOPMENT_CERTIFICATE
    # Certificates issued before Xcode 11 still carry the old name
    if identity and (identity.common_name or "").startswith(LEGACY_DISTRIBUTION_CERTIFICATE):
        return LEGACY_DISTRIBUTION_CERTIFICATE
    return DISTRIBUTION_CERTIFICATE


class ExportConfigBuilder:
    """Maps a distribution profile type to export options. No I/O."""

    def build(
        self,
        profile_type: DistributionProfileType,
        bound_profile: Optional[BoundProfile],
        installed_identity: Optional[InstalledIdentity],
        bundle_id: str,
        team_id: str,
        is_testflight: bool = False,
        install_url: Optional[str] = None,
        display_image_url: Optional[str] = None,
        full_size_image_url: Optional[str] = None,
    ) -> ExportConfig:
        manual = profile_type != DistributionProfileType.DEVELOPMENT and bound_profile is not None
        profiles = {bundle_id: bound_profile.specifier} if manual else {}

        manage_versions = None
        if profile_type == DistributionProfileType.APP_STORE and is_testflight:
            manage_versions = False

        manifest = None
        if profile_type == DistributionProfileType.AD_HOC and install_url:
            manifest = {
                "appURL": install_url,
                "displayImageURL": display_image_url or "",
                "fullSizeImageURL": full_size_image_url or "",
            }

        return ExportConfig(
            method=EXPORT_METHODS[profile_type],
            team_id=team_id,
            signing_style="manual" if manual else "automatic",
            signing_certificate=signing_certificate_for(profile_type, installed_identity),
            provisioning_profiles=profiles,
            upload_symbols=profile_type == DistributionProfileType.APP_STORE,
            manage_app_version_and_build_number=manage_versions,
            manifest=manifest,
        )

    def build_from_config(self, config, bound_profile=None, installed_identity=None) -> ExportConfig:
        return self.build(
            config.profile_type,
            bound_profile,
            installed_identity,
            bound_profile.bundle_id if bound_profile else config.bundle_id,
            config.team_id,
            is_testflight=config.is_testflight,
            install_url=config.install_url,
            display_image_url=config.display_image_url,
            full_size_image_url=config.full_size_image_url,
        )
