import os

from signcascade.logger import get_console
from signcascade.src.core.errors import SignCascadeError
from signcascade.src.core.models import BundledCertificate
from signcascade.src.credentials.password_resolver import PasswordResolver

console = get_console()


def run_resolve_password_command(args) -> int:
    if not args.p12_path.is_file():
        console.print(f"[red]Error: P12 file not found: {args.p12_path}[/]")
        return 1

    supplied = args.password if args.password is not None else os.environ.get("CERT_PASSWORD")
    console.print(
        f"Supplied password: {'<provided>' if supplied else '<not provided>'}"
    )

    resolver = PasswordResolver()
    try:
        identity = resolver.resolve(BundledCertificate(args.p12_path), supplied)
    except SignCascadeError as e:
        console.print(f"[red]Error: {e}[/]")
        return 1

    if identity.password == "":
        which = "the empty password"
    elif supplied and identity.password == supplied:
        which = "the supplied password"
    else:
        which = "a built-in common password"
    console.print(
        f"[green]P12 opens with {which} (candidate {resolver.last_tried})[/]"
    )
    return 0
