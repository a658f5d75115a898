import json

from rich.table import Table

from signcascade.logger import get_console
from signcascade.src.core.errors import SignCascadeError
from signcascade.src.ipa.provisioning_profile import inspect_profile

console = get_console()


def run_inspect_profile_command(args) -> int:
    if not args.profile_path.is_file():
        console.print(f"[red]Error: Profile not found: {args.profile_path}[/]")
        return 1

    try:
        artifact, data = inspect_profile(args.profile_path)
    except SignCascadeError as e:
        console.print(f"[red]Error: {e}[/]")
        return 1

    table = Table(title=args.profile_path.name, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Name", artifact.name or "-")
    table.add_row("UUID", artifact.uuid or "-")
    table.add_row("Application identifier", artifact.application_identifier or "-")
    table.add_row("Bundle id", artifact.bundle_suffix or "-")
    table.add_row("Team", artifact.team_identifier or "-")
    table.add_row(
        "Expires", artifact.expiration.strftime("%Y-%m-%d %H:%M") if artifact.expiration else "-"
    )
    table.add_row("Wildcard", "[yellow]yes[/]" if artifact.is_wildcard else "no")
    console.print(table)

    if args.json:
        console.print_json(json.dumps(data, default=str))
    return 0
