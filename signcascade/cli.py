import argparse
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text
from rich.theme import Theme
from rich_argparse import RichHelpFormatter

from signcascade.arguments import add_config_arguments, add_pipeline_arguments
from signcascade.src.constants.cli_constants import (
    __version__,
    get_banner_text,
    APP_DESCRIPTION,
)


class SignCascadeHelpFormatter(RichHelpFormatter):
    """Help formatter with the SignCascade colour theme."""

    def __init__(self, prog):
        super().__init__(prog, max_help_position=30, width=100)
        self.console = Console(
            theme=Theme(
                {
                    "command": "bold cyan",
                    "argument": "green",
                    "option": "yellow",
                    "version": "blue",
                    "title": "bold magenta",
                }
            )
        )

    def start_section(self, heading):
        heading_text = Text(heading, style="title")
        super().start_section(str(heading_text))


def display_banner():
    """Display the SignCascade banner."""
    console = Console()
    version_info = Text(f"v{__version__}", style="blue")
    tagline = Text(APP_DESCRIPTION, style="italic")

    panel = Panel.fit(
        Text.assemble(get_banner_text(), "\n", tagline, "\n", version_info),
        border_style="green",
        padding=(1, 2),
    )
    console.print(panel)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signcascade",
        description=f"SignCascade: {APP_DESCRIPTION}",
        formatter_class=SignCascadeHelpFormatter,
        add_help=True,
    )
    parser.add_argument(
        "--version", action="version", version=f"SignCascade {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command")

    export_parser = subparsers.add_parser(
        "export",
        help="Install credentials and export the IPA",
        formatter_class=SignCascadeHelpFormatter,
        description="Resolve the certificate, install it and the provisioning profile, "
        "then export the archive, falling back to an archive-only package.",
    )
    add_config_arguments(export_parser)
    add_pipeline_arguments(export_parser)

    resolve_parser = subparsers.add_parser(
        "resolve-password",
        help="Find which password candidate opens a P12",
        formatter_class=SignCascadeHelpFormatter,
        description="Try the supplied, empty and common passwords against a P12. "
        "The password itself is never printed.",
    )
    resolve_parser.add_argument("p12_path", type=Path, help="Path to the P12 file")
    resolve_parser.add_argument(
        "--password",
        type=str,
        help="Supplied password to try first [env: CERT_PASSWORD]",
    )

    inspect_parser = subparsers.add_parser(
        "inspect-profile",
        help="Show what a provisioning profile contains",
        formatter_class=SignCascadeHelpFormatter,
        description="Decode a .mobileprovision and show its identifiers.",
    )
    inspect_parser.add_argument("profile_path", type=Path, help="Path to the .mobileprovision")
    inspect_parser.add_argument(
        "--json",
        action="store_true",
        help="Also print the decoded profile body [default: disabled]",
    )

    options_parser = subparsers.add_parser(
        "export-options",
        help="Write ExportOptions.plist only",
        formatter_class=SignCascadeHelpFormatter,
        description="Build the export options for the configured profile type without exporting.",
    )
    add_config_arguments(options_parser)
    return parser


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv or "-h" in argv or "--help" in argv:
        display_banner()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "export":
        from signcascade.commands.export import run_export_command

        return run_export_command(args)
    elif args.command == "resolve-password":
        from signcascade.commands.resolve_password import run_resolve_password_command

        return run_resolve_password_command(args)
    elif args.command == "inspect-profile":
        from signcascade.commands.inspect_profile import run_inspect_profile_command

        return run_inspect_profile_command(args)
    elif args.command == "export-options":
        from signcascade.commands.export_options import run_export_options_command

        return run_export_options_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
