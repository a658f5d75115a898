import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import toml
from dotenv import dotenv_values

from signcascade.src.core.errors import ConfigError
from signcascade.src.core.models import DistributionProfileType

# Provisioning source values meaning "profile is managed outside this run"
MANAGED_PROFILE_SENTINELS = {"auto-generated", "managed", "automatic"}

DEFAULT_PROFILES_DIR = Path.home() / "Library" / "MobileDevice" / "Provisioning Profiles"

# Environment variable -> PipelineConfig field
ENV_FIELDS = {
    "CERT_P12_URL": "p12_url",
    "CERT_CER_URL": "cer_url",
    "CERT_KEY_URL": "key_url",
    "CERT_PASSWORD": "cert_password",
    "PROVISIONING_PROFILE_URL": "profile_url",
    "PROFILE_URL": "profile_url",
    "BUNDLE_ID": "bundle_id",
    "APPLE_TEAM_ID": "team_id",
    "PROFILE_TYPE": "profile_type",
    "AUTO_CORRECT_BUNDLE_ID": "auto_correct_bundle_id",
    "STRICT_PROFILE_MATCHING": "strict_profile_matching",
    "APP_STORE_CONNECT_API_KEY_URL": "api_key_url",
    "APP_STORE_CONNECT_KEY_IDENTIFIER": "api_key_id",
    "APP_STORE_CONNECT_ISSUER_ID": "api_issuer_id",
    "ARCHIVE_PATH": "archive_path",
    "OUTPUT_DIR": "output_dir",
    "CERT_WORK_DIR": "work_dir",
    "PROFILES_DIR": "profiles_dir",
    "PROJECT_FILE": "project_file",
    "APP_NAME": "app_name",
    "VERSION_NAME": "version_name",
    "VERSION_CODE": "version_code",
    "CM_BUILD_ID": "build_id",
    "WORKFLOW_ID": "workflow_id",
    "IS_TESTFLIGHT": "is_testflight",
    "INSTALL_URL": "install_url",
    "DISPLAY_IMAGE_URL": "display_image_url",
    "FULL_SIZE_IMAGE_URL": "full_size_image_url",
    "IPA_NAME": "ipa_name",
    "KEYCHAIN_NAME": "keychain_name",
    "KEYCHAIN_PASSWORD": "keychain_password",
    "EXPORT_TIMEOUT": "export_timeout",
    "EXPORT_RETRIES": "export_retries",
    "KEYCHAIN_SETTLE_DELAY": "settle_delay",
}

TRUE_VALUES = {"true", "1", "yes", "on"}


@dataclass(frozen=True)
class PipelineConfig:
    """Everything one run needs. Built once and passed to every component."""

    bundle_id: str
    team_id: str
    profile_type: DistributionProfileType = DistributionProfileType.APP_STORE

    # Certificate sources
    p12_url: Optional[str] = None
    cer_url: Optional[str] = None
    key_url: Optional[str] = None
    cert_password: Optional[str] = None

    # Provisioning
    profile_url: Optional[str] = None
    auto_correct_bundle_id: bool = False
    strict_profile_matching: bool = False
    profiles_dir: Path = DEFAULT_PROFILES_DIR
    project_file: Optional[Path] = None

    # App Store Connect API key triple
    api_key_url: Optional[str] = None
    api_key_id: Optional[str] = None
    api_issuer_id: Optional[str] = None

    # Locations
    archive_path: Optional[Path] = None
    output_dir: Path = Path("output/ios")
    work_dir: Path = Path("ios/certificates")
    ipa_name: Optional[str] = None

    # Build metadata
    app_name: str = "Unknown"
    version_name: str = "Unknown"
    version_code: str = "Unknown"
    build_id: str = "unknown"
    workflow_id: str = "ios-workflow"
    is_testflight: bool = False
    install_url: Optional[str] = None
    display_image_url: Optional[str] = None
    full_size_image_url: Optional[str] = None

    # Trust store
    keychain_name: str = "build.keychain"
    keychain_password: str = ""
    make_default_keychain: bool = True
    cleanup_keychain: bool = False
    settle_delay: float = 1.0

    # Export
    export_timeout: float = 1800.0
    export_retries: int = 3

    @property
    def has_bundled_source(self) -> bool:
        return bool(self.p12_url)

    @property
    def has_detached_source(self) -> bool:
        return bool(self.cer_url and self.key_url)

    @property
    def has_api_credentials(self) -> bool:
        return bool(self.api_key_url and self.api_key_id and self.api_issuer_id)

    @property
    def profile_managed_externally(self) -> bool:
        return (self.profile_url or "").strip().lower() in MANAGED_PROFILE_SENTINELS

    def with_bundle_id(self, bundle_id: str) -> "PipelineConfig":
        return replace(self, bundle_id=bundle_id)


def get_config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    """Return the path to the configuration file."""
    env = os.environ if env is None else env
    override = env.get("SIGNCASCADE_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".signcascade" / "config.toml"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from TOML file."""
    config_path = config_path or get_config_path()
    if not config_path.exists():
        return {}

    try:
        return toml.load(config_path)
    except Exception as e:
        raise ConfigError(f"Failed to load config {config_path}: {e}") from e


def _flatten(data: Mapping[str, Any]) -> Dict[str, Any]:
    # Sections ([certificate], [export], ...) are only for readability
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value
    return flat


def _coerce(name: str, value: Any, annotation: Any) -> Any:
    if value is None:
        return None
    text_annotation = str(annotation)
    if name == "profile_type":
        if isinstance(value, DistributionProfileType):
            return value
        try:
            return DistributionProfileType.parse(str(value))
        except ValueError as e:
            raise ConfigError(str(e)) from e
    if annotation is bool or text_annotation == "bool":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in TRUE_VALUES
    if annotation is int or text_annotation == "int":
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if annotation is float or text_annotation == "float":
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be a number, got {value!r}") from e
    if "Path" in text_annotation:
        return Path(str(value)).expanduser() if str(value) else None
    return str(value)


def load_pipeline_config(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
    dotenv_path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PipelineConfig:
    """Build the immutable run configuration.

    Precedence: defaults < TOML file < .env file < environment < overrides.
    """
    env = dict(os.environ if env is None else env)

    raw: Dict[str, Any] = _flatten(
        load_config(config_path or get_config_path(env))
    )

    if dotenv_path is not None and Path(dotenv_path).exists():
        for key, value in dotenv_values(dotenv_path).items():
            env.setdefault(key, value)

    for env_name, field_name in ENV_FIELDS.items():
        value = env.get(env_name)
        if value is not None and value != "":
            raw[field_name] = value
        elif env_name == "CERT_PASSWORD" and env_name in env:
            raw[field_name] = value

    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value

    known = {f.name: f for f in fields(PipelineConfig)}
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            continue
        values[key] = _coerce(key, value, known[key].type)

    missing = [name for name in ("bundle_id", "team_id") if not values.get(name)]
    if missing:
        raise ConfigError(
            "Missing required configuration: "
            + ", ".join(m.upper() if m != "team_id" else "APPLE_TEAM_ID" for m in missing)
        )

    # Drop keys that coerced to None so dataclass defaults apply
    values = {k: v for k, v in values.items() if v is not None or k == "cert_password"}
    return PipelineConfig(**values)
