import re
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from signcascade.logger import get_console, log_banner
from signcascade.src.core.errors import ImportExhausted
from signcascade.src.core.models import InstalledIdentity, ResolvedIdentity
from signcascade.src.utils.process import CommandResult, ToolRunner

CODESIGN = "/usr/bin/codesign"
XCODEBUILD = "/usr/bin/xcodebuild"
PARTITION_LIST = "apple-tool:,apple:,codesign:"
DUPLICATE_MARKERS = ("already exists", "duplicate")


@dataclass
class ImportOutcome:
    success: bool
    reason: str = ""
    partial: bool = False
    warnings: List[str] = field(default_factory=list)


class ImportStrategy:
    """One way of getting an identity into the keychain"""

    name = "base"

    def attempt(self, store: "TrustStoreInstaller", identity: ResolvedIdentity) -> ImportOutcome:
        raise NotImplementedError


class BundleImport(ImportStrategy):
    """``security import`` of the whole P12 with a given set of flags"""

    def __init__(
        self,
        name: str,
        use_password: bool = True,
        trusted_tools: Sequence[str] = (),
        allow_all: bool = False,
    ):
        self.name = name
        self.use_password = use_password
        self.trusted_tools = tuple(trusted_tools)
        self.allow_all = allow_all

    def attempt(self, store, identity):
        if self.use_password and not identity.password:
            return ImportOutcome(False, "no password to import with")

        args = ["security", "import", str(identity.material.path),
                "-k", store.keychain, "-f", "pkcs12",
                "-P", identity.password if self.use_password else ""]
        for tool in self.trusted_tools:
            args.extend(["-T", tool])
        if self.allow_all:
            args.append("-A")

        result = store.security(args)
        if result.ok or store.is_duplicate(result):
            return ImportOutcome(True)
        return ImportOutcome(False, _first_line(result))


class SplitImport(ImportStrategy):
    """Extract certificate and key from the bundle and import them one by one.

    A certificate that imports while its key does not is a partial success.
    """

    def __init__(self, name: str, empty_password: bool = False):
        self.name = name
        self.empty_password = empty_password

    def attempt(self, store, identity):
        password = "" if self.empty_password else identity.password
        if not self.empty_password and not password:
            return ImportOutcome(False, "no password to extract with")

        try:
            key, cert = extract_key_and_certificate(identity.material.path, password)
        except ValueError as e:
            return ImportOutcome(False, f"extraction failed: {e}")
        if cert is None:
            return ImportOutcome(False, "bundle contains no certificate")

        with tempfile.TemporaryDirectory(prefix="signcascade-split-") as tmp:
            cert_pem = Path(tmp) / "cert.pem"
            cert_pem.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
            cert_result = store.security(store.item_import_args(cert_pem))
            if not (cert_result.ok or store.is_duplicate(cert_result)):
                return ImportOutcome(False, f"certificate import: {_first_line(cert_result)}")
            store.console.log("[green]Certificate imported separately[/]")

            if key is None:
                warning = "Bundle has no private key; only the certificate was imported"
                return ImportOutcome(True, partial=True, warnings=[warning])

            key_pem = Path(tmp) / "key.pem"
            key_pem.write_bytes(
                key.private_bytes(
                    serialization.Encoding.PEM,
                    serialization.PrivateFormat.PKCS8,
                    serialization.NoEncryption(),
                )
            )
            key_result = store.security(store.item_import_args(key_pem))
            if key_result.ok or store.is_duplicate(key_result):
                store.console.log("[green]Private key imported separately[/]")
                return ImportOutcome(True)

        warning = (
            "Certificate imported but private key import failed; "
            f"signing will probably fail ({_first_line(key_result)})"
        )
        store.console.log(f"[yellow]{warning}")
        return ImportOutcome(True, partial=True, warnings=[warning])


def default_strategies() -> List[ImportStrategy]:
    """Import strategies, most capable first"""
    return [
        BundleImport("password-all-tools", trusted_tools=(CODESIGN, XCODEBUILD), allow_all=True),
        BundleImport("no-password", use_password=False, allow_all=True),
        BundleImport("password-no-access-grant"),
        BundleImport("password-signer-only", trusted_tools=(CODESIGN,)),
        SplitImport("split-import"),
        SplitImport("split-import-empty-password", empty_password=True),
    ]


def extract_key_and_certificate(path: Path, password: str):
    data = Path(path).read_bytes()
    secrets = [password.encode()] if password else [None, b""]
    last_error = None
    for secret in secrets:
        try:
            key, cert, _ = pkcs12.load_key_and_certificates(data, secret)
            return key, cert
        except (ValueError, TypeError) as e:
            last_error = e
    raise ValueError(str(last_error))


def describe_certificate(cert) -> Tuple[str, Optional[str], Optional[str]]:
    """SHA-1 fingerprint, common name and organisational unit (team id)"""
    fingerprint = cert.fingerprint(hashes.SHA1()).hex().upper()

    def attribute(oid):
        values = cert.subject.get_attributes_for_oid(oid)
        return values[0].value if values else None

    return fingerprint, attribute(NameOID.COMMON_NAME), attribute(
        NameOID.ORGANIZATIONAL_UNIT_NAME
    )


class TrustStoreInstaller:
    """Installs a resolved identity into a keychain"""

    def __init__(
        self,
        keychain: str = "build.keychain",
        keychain_password: str = "",
        runner: Optional[ToolRunner] = None,
        settle_delay: float = 1.0,
        strategies: Optional[List[ImportStrategy]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.console = get_console()
        self.keychain = keychain
        self.keychain_password = keychain_password
        self.runner = runner or ToolRunner()
        self.settle_delay = settle_delay
        self.strategies = strategies if strategies is not None else default_strategies()
        self.sleep = sleep

    # ------------------------------------------------------------------
    # security(1) helpers
    # ------------------------------------------------------------------

    def security(self, args: Sequence[str]) -> CommandResult:
        return self.runner.run(list(args))

    @staticmethod
    def is_duplicate(result: CommandResult) -> bool:
        text = result.output.lower()
        return any(marker in text for marker in DUPLICATE_MARKERS)

    def item_import_args(self, path: Path) -> List[str]:
        return ["security", "import", str(path), "-k", self.keychain,
                "-T", CODESIGN, "-T", XCODEBUILD, "-A"]

    def get_keychain_list(self) -> List[str]:
        result = self.security(["security", "list-keychains", "-d", "user"])
        if not result.ok:
            return []
        return [k.strip().strip('"') for k in result.stdout.splitlines() if k.strip()]

    def _in_search_list(self, keychains: List[str]) -> bool:
        return any(Path(k).name.startswith(Path(self.keychain).name) for k in keychains)

    # ------------------------------------------------------------------
    # keychain lifecycle
    # ------------------------------------------------------------------

    def prepare(self, make_default: bool = True) -> None:
        """Create a fresh, unlocked keychain and put it on the search list"""
        log_banner(f"keychain setup: {self.keychain}", "bold red")
        keychains = self.get_keychain_list()

        if self._in_search_list(keychains):
            self.console.log(f"[yellow]Removing existing keychain: {self.keychain}")
            self.security(["security", "delete-keychain", self.keychain])
            keychains = [k for k in keychains if Path(self.keychain).name not in k]

        create = self.security(
            ["security", "create-keychain", "-p", self.keychain_password, self.keychain]
        )
        if not create.ok and not self.is_duplicate(create):
            self.console.log(f"[red]Create failed:[/] {create.output}")

        unlock = self.security(
            ["security", "unlock-keychain", "-p", self.keychain_password, self.keychain]
        )
        if not unlock.ok:
            self.console.log(f"[red]Unlock failed:[/] {unlock.output}")

        # Lock after 6 hours of inactivity
        self.security(["security", "set-keychain-settings", "-lut", "21600", self.keychain])

        if make_default:
            self.security(["security", "default-keychain", "-s", self.keychain])

        search = [k for k in keychains if k] + [self.keychain]
        self.security(["security", "list-keychains", "-d", "user", "-s", *search])
        self.console.log("[bold green]====== KEYCHAIN SETUP COMPLETE ======\n")

    def cleanup(self) -> None:
        """Remove the keychain from the search list and delete it"""
        keychains = [
            k for k in self.get_keychain_list() if Path(self.keychain).name not in k
        ]
        if keychains:
            self.security(["security", "list-keychains", "-d", "user", "-s", *keychains])
        result = self.security(["security", "delete-keychain", self.keychain])
        if result.ok:
            self.console.log("[green]Cleaned up keychain[/]")
        else:
            self.console.log(f"[red]Error during keychain cleanup:[/] {result.output}")

    # ------------------------------------------------------------------
    # install
    # ------------------------------------------------------------------

    def is_installed(self, fingerprint: Optional[str]) -> bool:
        if not fingerprint:
            return False
        result = self.security(["security", "find-certificate", "-a", "-Z", self.keychain])
        return result.ok and fingerprint.upper() in result.stdout.upper()

    def grant_partition_list(self) -> None:
        self.console.log("[yellow]Setting key partition list")
        result = self.security(
            ["security", "set-key-partition-list", "-S", PARTITION_LIST, "-s",
             "-k", self.keychain_password, self.keychain]
        )
        if not result.ok:
            self.console.log(f"[yellow]Partition list setup failed:[/] {result.output}")

    def install(self, identity: ResolvedIdentity) -> InstalledIdentity:
        self.runner.add_secret(identity.password)
        fingerprint = common_name = team_id = None
        try:
            _, cert = extract_key_and_certificate(identity.material.path, identity.password)
            if cert is not None:
                fingerprint, common_name, team_id = describe_certificate(cert)
        except ValueError:
            self.console.log("[yellow]Could not read certificate details from bundle")

        if self.is_installed(fingerprint):
            self.console.log(
                f"[green]Identity {fingerprint} already in {self.keychain}, nothing to do[/]"
            )
            return InstalledIdentity(
                keychain=self.keychain,
                strategy="already-installed",
                fingerprint=fingerprint,
                common_name=common_name,
                team_id=team_id,
                already_present=True,
            )

        attempts: List[Tuple[str, str]] = []
        for number, strategy in enumerate(self.strategies, start=1):
            self.console.log(f"[yellow]Import method {number}: {strategy.name}")
            outcome = strategy.attempt(self, identity)
            if not outcome.success:
                self.console.log(f"[yellow]Import method {number} failed:[/] {outcome.reason}")
                attempts.append((strategy.name, outcome.reason))
                continue

            self.console.log(f"[green]Certificate imported ({strategy.name})[/]")
            self.grant_partition_list()
            # Keychain indexing lags behind the import call
            if self.settle_delay:
                self.sleep(self.settle_delay)
            return InstalledIdentity(
                keychain=self.keychain,
                strategy=strategy.name,
                fingerprint=fingerprint or "",
                common_name=common_name,
                team_id=team_id,
                partial=outcome.partial,
                warnings=list(outcome.warnings),
            )

        self.console.log("[red]All certificate import methods failed")
        raise ImportExhausted(attempts)

    def find_signing_identities(self) -> List[Tuple[str, str]]:
        """(sha1, name) pairs usable for codesigning"""
        result = self.security(
            ["security", "find-identity", "-v", "-p", "codesigning", self.keychain]
        )
        return re.findall(r'\d+\) ([A-F0-9]{40}) "(.*?)"', result.stdout)


def _first_line(result: CommandResult) -> str:
    text = result.output
    if not text:
        return f"exit status {result.returncode}"
    return text.splitlines()[0].strip()
