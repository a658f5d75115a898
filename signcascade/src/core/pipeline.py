import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from signcascade.logger import get_console, log_banner
from signcascade.src.core.errors import (
    AllExportStrategiesFailed,
    ArchiveMissing,
    ConversionError,
    NoWorkingPassword,
    SignCascadeError,
)
from signcascade.src.core.models import (
    BoundProfile,
    BuildMetadata,
    BundledCertificate,
    CertificateMaterial,
    InstalledIdentity,
    ManualExportBundle,
    PipelineResult,
    ResolvedIdentity,
)
from signcascade.src.core.summary import write_summary
from signcascade.src.credentials.acquirer import CredentialAcquirer
from signcascade.src.credentials.format_normalizer import FormatNormalizer
from signcascade.src.credentials.keychain import TrustStoreInstaller
from signcascade.src.credentials.password_resolver import PasswordResolver
from signcascade.src.export.archive_fallback import ArchiveFallbackPackager, locate_archive
from signcascade.src.export.export_cascade import (
    ApiAuthenticatedExport,
    AutomaticSigningExport,
    DevelopmentSigningExport,
    ExportCascade,
    ExportContext,
    ExportStrategy,
    ManualCertificateExport,
)
from signcascade.src.export.export_options import ExportConfig, ExportConfigBuilder
from signcascade.src.ipa.bundle_id_updater import update_bundle_id
from signcascade.src.ipa.provisioning_profile import ProfileBinder
from signcascade.src.transfers.downloader import download_file
from signcascade.src.utils.config_loader import PipelineConfig
from signcascade.src.utils.process import ToolRunner

EXPORT_OPTIONS_NAME = "ExportOptions.plist"
ARCHIVE_ONLY = "archive-only"


def metadata_from_config(config: PipelineConfig, bundle_id: Optional[str] = None) -> BuildMetadata:
    return BuildMetadata(
        app_name=config.app_name,
        bundle_id=bundle_id or config.bundle_id,
        version_name=config.version_name,
        version_code=config.version_code,
        team_id=config.team_id,
        profile_type=config.profile_type,
        build_id=config.build_id,
        workflow_id=config.workflow_id,
    )


class SigningPipeline:
    """Certificate to IPA, one run.

    Fatal conditions raise a SignCascadeError after a FAILED summary is
    written. Export failures end in an archive-only package instead.
    """

    def __init__(
        self,
        config: PipelineConfig,
        runner: Optional[ToolRunner] = None,
        downloader: Callable = download_file,
        sleep: Callable[[float], None] = time.sleep,
        installer_factory: Optional[Callable[[str], TrustStoreInstaller]] = None,
    ):
        self.console = get_console()
        self.config = config
        self.runner = runner or ToolRunner()
        self.sleep = sleep
        self.acquirer = CredentialAcquirer(config.work_dir, downloader)
        self.resolver = PasswordResolver(self.runner)
        self.normalizer = FormatNormalizer(self.resolver)
        self.binder = ProfileBinder(
            config.profiles_dir,
            config.work_dir,
            runner=self.runner,
            downloader=downloader,
            strict=config.strict_profile_matching,
        )
        self.builder = ExportConfigBuilder()
        self.cascade = ExportCascade(
            self.runner,
            timeout=config.export_timeout,
            retries=config.export_retries,
            sleep=sleep,
        )
        self.installer_factory = installer_factory or self._make_installer
        self._downloader = downloader
        self.warnings: List[str] = []

    def _make_installer(self, keychain: str) -> TrustStoreInstaller:
        return TrustStoreInstaller(
            keychain=keychain,
            keychain_password=self.config.keychain_password,
            runner=self.runner,
            settle_delay=self.config.settle_delay,
            sleep=self.sleep,
        )

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        self.console.log(f"[yellow]{message}")

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    def resolve_identity(self, materials: Sequence[CertificateMaterial]) -> ResolvedIdentity:
        """Open the first usable source; a P12 that will not open falls back to CER+KEY"""
        log_banner("certificate password", "bold red")
        failure: Optional[SignCascadeError] = None
        for material in materials:
            try:
                if isinstance(material, BundledCertificate):
                    return self.resolver.resolve(material, self.config.cert_password)
                return self.normalizer.normalize(material, self.config.cert_password)
            except (NoWorkingPassword, ConversionError) as e:
                self.console.log(f"[red]{e}")
                failure = e
        raise failure

    def install_identity(self, identity: ResolvedIdentity, installer: TrustStoreInstaller) -> InstalledIdentity:
        installer.prepare(make_default=self.config.make_default_keychain)
        installed = installer.install(identity)
        for warning in installed.warnings:
            self._warn(warning)

        identities = installer.find_signing_identities()
        for sha1, name in identities:
            self.console.log(f"[dim]Signing identity {sha1} \"{name}\"[/]")
        if not any(sha1 == installed.fingerprint for sha1, _ in identities):
            self._warn(
                f"No valid codesigning identity for {installed.fingerprint or 'the certificate'} "
                f"in {installed.keychain}; exports needing the private key may fail"
            )
        return installed

    def bind_profile(self) -> Optional[BoundProfile]:
        config = self.config
        if config.profile_managed_externally:
            self.console.log("[blue]Provisioning profile is managed externally, skipping install[/]")
            return None
        if not config.profile_url:
            self._warn("No provisioning profile configured; relying on automatic signing")
            return None

        log_banner("provisioning profile", "bold red")
        bound = self.binder.bind(config.profile_url, config.bundle_id, config.auto_correct_bundle_id)
        for warning in bound.warnings:
            self.warnings.append(warning)
        if bound.corrected:
            self.config = config.with_bundle_id(bound.bundle_id)
            self.propagate_bundle_id(bound.bundle_id)
        return bound

    def propagate_bundle_id(self, bundle_id: str) -> None:
        project_file = self.config.project_file
        if not project_file:
            return
        if not update_bundle_id(project_file, bundle_id):
            self._warn(f"Could not update bundle id in {project_file}")

    def write_export_options(
        self, bound: Optional[BoundProfile], installed: Optional[InstalledIdentity]
    ) -> ExportConfig:
        export_config = self.builder.build_from_config(self.config, bound, installed)
        path = export_config.write(Path(self.config.output_dir) / EXPORT_OPTIONS_NAME)
        self.console.log(f"[green]Export options written:[/] {path}")
        return export_config

    def build_strategies(self) -> List[ExportStrategy]:
        config = self.config
        manual_acquirer = CredentialAcquirer(Path(config.work_dir) / "manual", self._downloader)
        return [
            ApiAuthenticatedExport(config, self.acquirer),
            AutomaticSigningExport(),
            ManualCertificateExport(
                config,
                manual_acquirer,
                self.resolver,
                self.normalizer,
                self.binder,
                self.installer_factory,
            ),
            DevelopmentSigningExport(),
        ]

    def export(self, archive: Path, export_config: ExportConfig) -> PipelineResult:
        config = self.config
        context = ExportContext(
            archive_path=archive,
            export_dir=Path(config.output_dir),
            base_config=export_config,
            bundle_id=config.bundle_id,
            ipa_name=config.ipa_name,
        )
        try:
            attempt = self.cascade.run(context, self.build_strategies())
        except AllExportStrategiesFailed as failed:
            bundle = self.package_archive(archive, failed)
            self._warn("All export strategies failed; archive packaged for manual export")
            result = PipelineResult(
                success=False,
                strategy_used=ARCHIVE_ONLY,
                warnings=self.warnings + self.cascade.warnings,
                attempts=list(failed.attempts),
                artifact=bundle.directory,
                bundle_id=config.bundle_id,
            )
            write_summary(config.output_dir, result, metadata_from_config(config), bundle)
            return result

        result = PipelineResult(
            success=True,
            strategy_used=attempt.strategy.value,
            warnings=self.warnings + self.cascade.warnings,
            attempts=list(self.cascade.attempts),
            artifact=attempt.produced_artifact_path,
            bundle_id=config.bundle_id,
        )
        write_summary(config.output_dir, result, metadata_from_config(config))
        return result

    def package_archive(self, archive: Path, failed: AllExportStrategiesFailed) -> ManualExportBundle:
        packager = ArchiveFallbackPackager(self.config.output_dir)
        try:
            return packager.package(archive, metadata_from_config(self.config), failed.attempts)
        except ArchiveMissing as e:
            raise failed from e

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------

    def run(self) -> PipelineResult:
        log_banner("signing pipeline", "bold green")
        self.warnings = []
        installer = None
        try:
            archive = locate_archive(self.config.archive_path, self.config.output_dir)
            self.console.log(f"[blue]Archive:[/] {archive}")

            log_banner("certificate acquisition", "bold red")
            materials = self.acquirer.acquire(self.config)
            identity = self.resolve_identity(materials)
            self.runner.add_secret(identity.password)

            installer = self.installer_factory(self.config.keychain_name)
            installed = self.install_identity(identity, installer)
            bound = self.bind_profile()
            export_config = self.write_export_options(bound, installed)
            return self.export(archive, export_config)
        except SignCascadeError as e:
            result = PipelineResult(
                success=False,
                strategy_used="none",
                warnings=self.warnings + [str(e)],
                attempts=list(self.cascade.attempts),
                bundle_id=self.config.bundle_id,
            )
            write_summary(self.config.output_dir, result, metadata_from_config(self.config))
            raise
        finally:
            if installer is not None and self.config.cleanup_keychain:
                installer.cleanup()
