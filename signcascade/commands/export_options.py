import tempfile
from pathlib import Path

from signcascade.arguments import config_overrides
from signcascade.logger import get_console
from signcascade.src.core.errors import SignCascadeError
from signcascade.src.core.models import BoundProfile
from signcascade.src.export.export_options import ExportConfigBuilder
from signcascade.src.ipa.provisioning_profile import ProfileBinder, load_artifact
from signcascade.src.utils.config_loader import load_pipeline_config

console = get_console()


def run_export_options_command(args) -> int:
    """Write ExportOptions.plist for the configuration, installing nothing"""
    try:
        config = load_pipeline_config(
            config_path=args.config,
            dotenv_path=args.env_file,
            overrides=config_overrides(args),
        )
        with tempfile.TemporaryDirectory(prefix="signcascade-profile-") as tmp:
            bound = None
            if config.profile_url and not config.profile_managed_externally:
                binder = ProfileBinder(config.profiles_dir, Path(tmp))
                artifact, _ = load_artifact(binder.acquire(config.profile_url), binder.decoder)
                bound = BoundProfile(
                    artifact=artifact, installed_path=artifact.path, bundle_id=config.bundle_id
                )
            export_config = ExportConfigBuilder().build_from_config(config, bound)
        path = export_config.write(Path(config.output_dir) / "ExportOptions.plist")
    except SignCascadeError as e:
        console.print(f"[red]Error: {e}[/]")
        return 1

    console.print(f"[green]Export options written to {path}[/]")
    console.print(export_config.to_bytes().decode("utf-8"), markup=False)
    return 0
