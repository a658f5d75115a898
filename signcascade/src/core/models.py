from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union


class DistributionProfileType(Enum):
    APP_STORE = "app-store"
    AD_HOC = "ad-hoc"
    ENTERPRISE = "enterprise"
    DEVELOPMENT = "development"

    @classmethod
    def parse(cls, value: str) -> "DistributionProfileType":
        normalized = (value or "").strip().lower().replace("_", "-")
        if normalized in ("appstore", "app-store-connect"):
            normalized = "app-store"
        if normalized == "adhoc":
            normalized = "ad-hoc"
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(
            f"Unknown profile type '{value}'. Expected one of: "
            + ", ".join(m.value for m in cls)
        )


class ExportStrategyKind(Enum):
    """Export strategies, strictest (upload-grade) first"""

    API_AUTHENTICATED = "api-authenticated"
    AUTOMATIC_SIGNING = "automatic-signing"
    MANUAL_CERTIFICATE = "manual-certificate"
    DEVELOPMENT_SIGNING = "development-signing"


@dataclass(frozen=True)
class BundledCertificate:
    """A password-protected PKCS#12 archive whose password is not yet known"""

    path: Path


@dataclass(frozen=True)
class DetachedCertificate:
    """A certificate and private key delivered as two files"""

    cert_path: Path
    key_path: Path


CertificateMaterial = Union[BundledCertificate, DetachedCertificate]


@dataclass(frozen=True)
class ResolvedIdentity:
    """A bundled archive together with a password proven to open it"""

    material: BundledCertificate
    password: str
    validated: bool = True
    origin: str = "resolved"  # "resolved" or "normalized"

    def __post_init__(self):
        if not self.validated:
            raise ValueError("ResolvedIdentity requires a validated password")

    def __repr__(self) -> str:
        return (
            f"ResolvedIdentity(material={self.material!r}, password=<hidden>, "
            f"validated={self.validated}, origin={self.origin!r})"
        )


@dataclass
class InstalledIdentity:
    keychain: str
    strategy: str
    fingerprint: str
    common_name: Optional[str] = None
    team_id: Optional[str] = None
    partial: bool = False
    already_present: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProvisioningArtifact:
    path: Path
    uuid: Optional[str]
    application_identifier: Optional[str]
    team_identifier: Optional[str]
    name: Optional[str] = None
    expiration: Optional[datetime] = None

    @property
    def bundle_suffix(self) -> Optional[str]:
        """The application identifier without its team prefix"""
        if not self.application_identifier:
            return None
        if "." not in self.application_identifier:
            return self.application_identifier
        return self.application_identifier.split(".", 1)[1]

    @property
    def is_wildcard(self) -> bool:
        suffix = self.bundle_suffix
        return suffix is None or suffix.endswith("*")


@dataclass(frozen=True)
class BoundProfile:
    artifact: ProvisioningArtifact
    installed_path: Path
    bundle_id: str
    corrected: bool = False
    ambiguous: bool = False
    warnings: Tuple[str, ...] = ()

    @property
    def specifier(self) -> str:
        """Name used for the provisioning binding in the export configuration"""
        return self.artifact.name or self.artifact.uuid or self.installed_path.stem


@dataclass
class ExportAttempt:
    strategy: ExportStrategyKind
    exit_status: Optional[int] = None
    produced_artifact_path: Optional[Path] = None
    tries: int = 0
    crashed: bool = False
    skipped_reason: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.produced_artifact_path is not None

    def describe(self) -> str:
        if self.succeeded:
            return f"succeeded after {self.tries} try(s): {self.produced_artifact_path}"
        if self.skipped_reason:
            return f"skipped ({self.skipped_reason})"
        detail = self.failure_reason or f"exit status {self.exit_status}"
        crash = ", crashed" if self.crashed else ""
        return f"failed after {self.tries} try(s){crash}: {detail}"


@dataclass(frozen=True)
class BuildMetadata:
    app_name: str
    bundle_id: str
    version_name: str
    version_code: str
    team_id: str
    profile_type: DistributionProfileType
    build_id: str = "unknown"
    workflow_id: str = "ios-workflow"


@dataclass
class ManualExportBundle:
    directory: Path
    archive_copy: Path
    guide_path: Path
    status_path: Path


@dataclass
class PipelineResult:
    success: bool
    strategy_used: str
    warnings: List[str] = field(default_factory=list)
    attempts: List[ExportAttempt] = field(default_factory=list)
    artifact: Optional[Path] = None
    bundle_id: Optional[str] = None

    @property
    def archive_only(self) -> bool:
        return self.strategy_used == "archive-only"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "strategy_used": self.strategy_used,
            "warnings": list(self.warnings),
            "bundle_id": self.bundle_id,
            "artifact": str(self.artifact) if self.artifact else None,
            "attempts": [
                {
                    "strategy": a.strategy.value,
                    "exit_status": a.exit_status,
                    "tries": a.tries,
                    "crashed": a.crashed,
                    "skipped_reason": a.skipped_reason,
                    "failure_reason": a.failure_reason,
                    "artifact": (
                        str(a.produced_artifact_path)
                        if a.produced_artifact_path
                        else None
                    ),
                }
                for a in self.attempts
            ],
        }
