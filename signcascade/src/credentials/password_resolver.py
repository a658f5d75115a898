from pathlib import Path
from typing import Iterable, List, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import pkcs12

from signcascade.logger import get_console
from signcascade.src.constants.passwords import COMMON_PASSWORDS, is_placeholder
from signcascade.src.core.errors import NoWorkingPassword
from signcascade.src.core.models import BundledCertificate, ResolvedIdentity
from signcascade.src.utils.process import ToolRunner


def build_candidates(
    supplied: Optional[str], dictionary: Iterable[str] = COMMON_PASSWORDS
) -> List[str]:
    """Supplied value (unless a placeholder), then empty, then the dictionary.

    Later duplicates are dropped so no password is tried twice.
    """
    ordered: List[str] = []
    if supplied and not is_placeholder(supplied):
        ordered.append(supplied)
    ordered.append("")
    ordered.extend(dictionary)

    seen = set()
    unique = []
    for candidate in ordered:
        if candidate in seen:
            continue
        seen.add(candidate)
        unique.append(candidate)
    return unique


class PasswordResolver:
    """Finds the password of a PKCS#12 archive without changing anything"""

    def __init__(
        self,
        runner: Optional[ToolRunner] = None,
        dictionary: Iterable[str] = COMMON_PASSWORDS,
    ):
        self.console = get_console()
        self.runner = runner or ToolRunner()
        self.dictionary = tuple(dictionary)
        self.last_tried = 0

    def opens(self, path: Path, password: str) -> bool:
        """Parse the archive with ``password`` and discard the result"""
        data = Path(path).read_bytes()
        secrets = [password.encode()] if password else [None, b""]
        for secret in secrets:
            try:
                key, cert, _ = pkcs12.load_key_and_certificates(data, secret)
            except UnsupportedAlgorithm:
                return self._opens_with_openssl(path, password)
            except (ValueError, TypeError):
                continue
            return cert is not None or key is not None
        return False

    def _opens_with_openssl(self, path: Path, password: str) -> bool:
        # Archives using RC2/RC4 need OpenSSL's legacy provider
        for extra in (["-legacy"], []):
            result = self.runner.run(
                ["openssl", "pkcs12", "-in", str(path), "-noout",
                 "-passin", f"pass:{password}", *extra],
                quiet=True,
            )
            if result.ok:
                return True
        return False

    def resolve(
        self, material: BundledCertificate, supplied_password: Optional[str]
    ) -> ResolvedIdentity:
        candidates = build_candidates(supplied_password, self.dictionary)
        if supplied_password and is_placeholder(supplied_password):
            self.console.log(
                "[yellow]Supplied certificate password looks like a placeholder, ignoring it"
            )

        self.console.log(
            f"[yellow]Detecting certificate password ({len(candidates)} candidates)..."
        )
        self.last_tried = 0
        for position, candidate in enumerate(candidates, start=1):
            self.last_tried = position
            if self.opens(material.path, candidate):
                label = _describe(position, candidate, supplied_password)
                self.console.log(
                    f"[green]Certificate opened with {label} (candidate {position})"
                )
                return ResolvedIdentity(material=material, password=candidate)

        self.console.log("[red]No working password found for certificate")
        raise NoWorkingPassword(tried=len(candidates))


def _describe(position: int, candidate: str, supplied: Optional[str]) -> str:
    if candidate == "":
        return "the empty password"
    if position == 1 and supplied == candidate:
        return "the supplied password"
    return "a common fallback password"
