import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from signcascade.logger import get_console, log_banner
from signcascade.src.core.errors import (
    AcquisitionFailure,
    AllExportStrategiesFailed,
    ConversionError,
    ImportExhausted,
    NoWorkingPassword,
    ProfileInvalid,
)
from signcascade.src.core.models import (
    BundledCertificate,
    ExportAttempt,
    ExportStrategyKind,
    InstalledIdentity,
)
from signcascade.src.core.verifier import IpaVerifier
from signcascade.src.export.export_options import (
    DEVELOPMENT_CERTIFICATE,
    ExportConfig,
    signing_certificate_for,
)
from signcascade.src.utils.process import ToolRunner

LOGIN_KEYCHAIN = str(Path.home() / "Library" / "Keychains" / "login.keychain-db")
FALLBACK_KEYCHAIN = "signcascade-fallback.keychain"

INITIAL_BACKOFF = 2.0
MAX_BACKOFF = 8.0


@dataclass(frozen=True)
class ExportContext:
    """What every strategy exports from and to"""

    archive_path: Path
    export_dir: Path
    base_config: ExportConfig
    bundle_id: str
    ipa_name: Optional[str] = None

    @property
    def expected_artifact(self) -> Path:
        return self.export_dir / f"{self.ipa_name or self.archive_path.stem}.ipa"

    def options_path(self, kind: ExportStrategyKind) -> Path:
        return self.export_dir / f"ExportOptions-{kind.value}.plist"


class ExportStrategy:
    kind: ExportStrategyKind

    def unavailable_reason(self, context: ExportContext) -> Optional[str]:
        """Why this strategy cannot run, or None when it can"""
        return None

    def attempt(self, cascade: "ExportCascade", context: ExportContext) -> ExportAttempt:
        raise NotImplementedError


class ApiAuthenticatedExport(ExportStrategy):
    """Export authenticated with an App Store Connect API key"""

    kind = ExportStrategyKind.API_AUTHENTICATED

    def __init__(self, config, acquirer):
        self.config = config
        self.acquirer = acquirer

    def unavailable_reason(self, context):
        if not self.config.has_api_credentials:
            return "App Store Connect API key, key id and issuer id not all configured"
        return None

    def attempt(self, cascade, context):
        # The key only lives for the duration of the export
        with tempfile.TemporaryDirectory(prefix="signcascade-api-key-") as tmp:
            try:
                key_path = self.acquirer.acquire_api_key(
                    self.config.api_key_url, Path(tmp), self.config.api_key_id
                )
            except AcquisitionFailure as e:
                return ExportAttempt(self.kind, failure_reason=f"API key unavailable: {e}")
            return cascade.invoke(
                self.kind,
                context,
                context.base_config,
                [
                    "-authenticationKeyPath", str(key_path),
                    "-authenticationKeyID", self.config.api_key_id,
                    "-authenticationKeyIssuerID", self.config.api_issuer_id,
                ],
            )


class AutomaticSigningExport(ExportStrategy):
    """Let xcodebuild pick the signing identity and profile"""

    kind = ExportStrategyKind.AUTOMATIC_SIGNING

    def attempt(self, cascade, context):
        config = context.base_config.derive(
            signing_style="automatic",
            signing_certificate=None,
            provisioning_profiles={},
        )
        return cascade.invoke(self.kind, context, config)


class ManualCertificateExport(ExportStrategy):
    """Re-fetch the raw certificate and profile and sign manually.

    The identity is installed into the first keychain that accepts it.
    """

    kind = ExportStrategyKind.MANUAL_CERTIFICATE

    def __init__(
        self,
        config,
        acquirer,
        resolver,
        normalizer,
        binder,
        installer_factory: Callable,
        keychains: Optional[Sequence[str]] = None,
    ):
        self.config = config
        self.acquirer = acquirer
        self.resolver = resolver
        self.normalizer = normalizer
        self.binder = binder
        self.installer_factory = installer_factory
        self.keychains = list(keychains) if keychains else [
            config.keychain_name,
            LOGIN_KEYCHAIN,
            FALLBACK_KEYCHAIN,
        ]
        self.console = get_console()

    def unavailable_reason(self, context):
        if not (self.config.has_bundled_source or self.config.has_detached_source):
            return "no certificate URLs configured"
        if not self.config.profile_url or self.config.profile_managed_externally:
            return "no provisioning profile URL configured"
        return None

    def _resolve_identity(self):
        for material in self.acquirer.acquire(self.config):
            try:
                if isinstance(material, BundledCertificate):
                    return self.resolver.resolve(material, self.config.cert_password)
                return self.normalizer.normalize(material, self.config.cert_password)
            except (NoWorkingPassword, ConversionError) as e:
                self.console.log(f"[yellow]Certificate source unusable:[/] {e}")
        return None

    def _install_anywhere(self, identity) -> Optional[InstalledIdentity]:
        for keychain in self.keychains:
            installer = self.installer_factory(keychain)
            if keychain == FALLBACK_KEYCHAIN:
                installer.prepare(make_default=False)
            try:
                return installer.install(identity)
            except ImportExhausted as e:
                self.console.log(f"[yellow]Keychain {keychain} refused the identity:[/] {e}")
        return None

    def attempt(self, cascade, context):
        try:
            identity = self._resolve_identity()
        except AcquisitionFailure as e:
            return ExportAttempt(self.kind, failure_reason=f"certificate unavailable: {e}")
        if identity is None:
            return ExportAttempt(self.kind, failure_reason="no certificate source could be opened")

        installed = self._install_anywhere(identity)
        if installed is None:
            return ExportAttempt(self.kind, failure_reason="no keychain accepted the identity")
        self.console.log(f"[green]Identity installed into {installed.keychain}[/]")

        try:
            artifact = self.binder.reinstall(self.config.profile_url)
        except ProfileInvalid as e:
            return ExportAttempt(self.kind, failure_reason=f"profile unavailable: {e}")

        specifier = artifact.name or artifact.uuid
        config = context.base_config.derive(
            signing_style="manual",
            signing_certificate=signing_certificate_for(self.config.profile_type, installed),
            provisioning_profiles={context.bundle_id: specifier} if specifier else {},
        )
        return cascade.invoke(self.kind, context, config)


class DevelopmentSigningExport(ExportStrategy):
    """Last resort: a development-signed IPA, not uploadable"""

    kind = ExportStrategyKind.DEVELOPMENT_SIGNING

    def attempt(self, cascade, context):
        config = context.base_config.derive(
            method="development",
            signing_style="automatic",
            signing_certificate=DEVELOPMENT_CERTIFICATE,
            provisioning_profiles={},
            upload_symbols=False,
            manage_app_version_and_build_number=None,
            manifest=None,
        )
        result = cascade.invoke(self.kind, context, config)
        if result.succeeded:
            warning = "Exported a development-signed IPA; it cannot be uploaded to App Store Connect"
            cascade.warnings.append(warning)
            cascade.console.log(f"[yellow]{warning}")
        return result


class ExportCascade:
    """Runs export strategies in order until one produces the IPA"""

    def __init__(
        self,
        runner: Optional[ToolRunner] = None,
        timeout: float = 1800.0,
        retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
        verifier_factory: Callable = IpaVerifier,
    ):
        self.console = get_console()
        self.runner = runner or ToolRunner()
        self.timeout = timeout
        self.retries = max(1, retries)
        self.sleep = sleep
        self.verifier_factory = verifier_factory
        self.attempts: List[ExportAttempt] = []
        self.warnings: List[str] = []

    def export_command(self, context: ExportContext, options_path: Path, extra_args=()) -> List[str]:
        return [
            "xcodebuild", "-exportArchive",
            "-archivePath", str(context.archive_path),
            "-exportPath", str(context.export_dir),
            "-exportOptionsPlist", str(options_path),
            "-allowProvisioningUpdates",
            *extra_args,
        ]

    def invoke(
        self,
        kind: ExportStrategyKind,
        context: ExportContext,
        config: ExportConfig,
        extra_args: Sequence[str] = (),
    ) -> ExportAttempt:
        """One strategy's export, retried on transient failures"""
        options_path = config.write(context.options_path(kind))
        artifact = context.expected_artifact
        attempt = ExportAttempt(kind)
        backoff = INITIAL_BACKOFF

        for number in range(1, self.retries + 1):
            attempt.tries = number
            self.console.log(f"[yellow]Export attempt {number} of {self.retries} ({kind.value})...")
            if artifact.exists():
                artifact.unlink()

            result = self.runner.run(
                self.export_command(context, options_path, extra_args),
                timeout=self.timeout,
            )
            attempt.exit_status = result.returncode

            if result.ok and artifact.is_file():
                attempt.produced_artifact_path = artifact
                attempt.failure_reason = None
                self.console.log(f"[green]IPA exported successfully:[/] {artifact}")
                return attempt

            if result.crashed:
                attempt.crashed = True
                attempt.failure_reason = f"xcodebuild crashed (exit status {result.returncode})"
                self.console.log(f"[red]{attempt.failure_reason}, abandoning {kind.value}")
                return attempt

            if result.timed_out:
                attempt.failure_reason = f"timed out after {self.timeout:.0f}s"
            elif result.ok:
                attempt.failure_reason = f"xcodebuild exited 0 but {artifact.name} was not produced"
            else:
                attempt.failure_reason = _last_error_line(result.output) or (
                    f"exit status {result.returncode}"
                )
            self.console.log(f"[red]Export attempt {number} failed:[/] {attempt.failure_reason}")

            if number < self.retries:
                self.console.log(f"[yellow]Retrying export in {backoff:.0f} seconds...")
                self.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF)

        return attempt

    def run(self, context: ExportContext, strategies: Sequence[ExportStrategy]) -> ExportAttempt:
        """Return the first successful attempt or raise AllExportStrategiesFailed"""
        log_banner("export cascade", "bold red")
        self.attempts = []
        self.warnings = []
        context.export_dir.mkdir(parents=True, exist_ok=True)

        for strategy in strategies:
            reason = strategy.unavailable_reason(context)
            if reason:
                self.console.log(f"[dim]Skipping {strategy.kind.value}: {reason}[/]")
                self.attempts.append(ExportAttempt(strategy.kind, skipped_reason=reason))
                continue

            self.console.log(f"[bold blue]Export strategy: {strategy.kind.value}[/]")
            attempt = strategy.attempt(self, context)
            self.attempts.append(attempt)
            if attempt.succeeded:
                verifier = self.verifier_factory(attempt.produced_artifact_path)
                self.warnings.extend(verifier.verify(context.bundle_id))
                return attempt
            self.console.log(f"[yellow]{strategy.kind.value} {attempt.describe()}")

        self.console.log("[red]All export strategies failed")
        raise AllExportStrategiesFailed(list(self.attempts))


def _last_error_line(output: str) -> str:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    for line in reversed(lines):
        if "error" in line.lower():
            return line
    return lines[-1] if lines else ""
