from signcascade.arguments import config_overrides
from signcascade.logger import get_console
from signcascade.src.core.errors import SignCascadeError
from signcascade.src.core.pipeline import SigningPipeline
from signcascade.src.core.summary import print_result
from signcascade.src.utils.config_loader import load_pipeline_config

console = get_console()


def run_export_command(args) -> int:
    """Run the whole pipeline. Archive-only counts as success for the caller."""
    try:
        config = load_pipeline_config(
            config_path=args.config,
            dotenv_path=args.env_file,
            overrides=config_overrides(args),
        )
        result = SigningPipeline(config).run()
    except SignCascadeError as e:
        console.print(f"[red]Error: {e}[/]")
        return 1

    print_result(result)
    if result.archive_only:
        console.print(
            "[yellow]No IPA was exported. The archive and a manual export guide are in "
            f"{result.artifact}[/]"
        )
    return 0
