from pathlib import Path
from typing import Any, Dict

from signcascade.src.core.models import DistributionProfileType


def add_config_arguments(parser):
    """Arguments every command uses to build its configuration."""
    parser.add_argument(
        "--config",
        type=Path,
        help="TOML configuration file [default: ~/.signcascade/config.toml]",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Read environment variables from a .env file [default: none]",
    )
    parser.add_argument("--bundle-id", type=str, help="Bundle identifier [env: BUNDLE_ID]")
    parser.add_argument("--team-id", type=str, help="Apple team id [env: APPLE_TEAM_ID]")
    parser.add_argument(
        "--profile-type",
        choices=[t.value for t in DistributionProfileType],
        help="Distribution profile type [env: PROFILE_TYPE, default: app-store]",
    )
    parser.add_argument(
        "--profile-url",
        type=str,
        help="Provisioning profile URL or path, or 'auto-generated' [env: PROFILE_URL]",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Where the IPA, export options and summary go [env: OUTPUT_DIR, default: output/ios]",
    )


def add_pipeline_arguments(parser):
    """Arguments of the full export run."""
    parser.add_argument(
        "--archive",
        type=Path,
        dest="archive_path",
        help="Path to the .xcarchive [env: ARCHIVE_PATH, default: search usual locations]",
    )
    parser.add_argument("--p12-url", type=str, help="P12 certificate URL or path [env: CERT_P12_URL]")
    parser.add_argument("--cer-url", type=str, help="Certificate URL or path [env: CERT_CER_URL]")
    parser.add_argument("--key-url", type=str, help="Private key URL or path [env: CERT_KEY_URL]")
    parser.add_argument(
        "--auto-correct-bundle-id",
        action="store_true",
        default=None,
        help="Use the profile's bundle id when it differs [default: disabled]",
    )
    parser.add_argument(
        "--strict-profile-matching",
        action="store_true",
        default=None,
        help="Fail on wildcard profiles instead of continuing [default: disabled]",
    )
    parser.add_argument(
        "--project-file",
        type=Path,
        help="project.pbxproj to update when the bundle id is corrected [default: none]",
    )
    parser.add_argument(
        "--keychain",
        type=str,
        dest="keychain_name",
        help="Keychain to install the identity into [default: build.keychain]",
    )
    parser.add_argument(
        "--cleanup-keychain",
        action="store_true",
        default=None,
        help="Delete the build keychain when the run ends [default: disabled]",
    )
    parser.add_argument(
        "--export-timeout",
        type=float,
        help="Seconds allowed for each xcodebuild export [default: 1800]",
    )


_CONFIG_DESTS = (
    "bundle_id",
    "team_id",
    "profile_type",
    "profile_url",
    "output_dir",
    "archive_path",
    "p12_url",
    "cer_url",
    "key_url",
    "auto_correct_bundle_id",
    "strict_profile_matching",
    "project_file",
    "keychain_name",
    "cleanup_keychain",
    "export_timeout",
)


def config_overrides(args) -> Dict[str, Any]:
    """Explicitly given command line values, keyed by config field"""
    overrides = {}
    for dest in _CONFIG_DESTS:
        value = getattr(args, dest, None)
        if value is not None:
            overrides[dest] = value
    return overrides
