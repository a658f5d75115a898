from pathlib import Path
from typing import Iterable, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from signcascade.logger import get_console
from signcascade.src.constants.passwords import (
    CONVERSION_PASSWORDS,
    IDENTITY_FRIENDLY_NAME,
    is_placeholder,
)
from signcascade.src.core.errors import ConversionError
from signcascade.src.core.models import (
    BundledCertificate,
    DetachedCertificate,
    ResolvedIdentity,
)
from signcascade.src.credentials.password_resolver import PasswordResolver


def load_certificate(path: Path) -> x509.Certificate:
    """Load a DER (.cer) or PEM certificate"""
    data = Path(path).read_bytes()
    try:
        return x509.load_der_x509_certificate(data)
    except ValueError:
        pass
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise ConversionError(f"Unreadable certificate {path}: {e}") from e


def load_private_key(path: Path, password: Optional[str] = None):
    """Load a PEM or DER private key, raising TypeError when it is encrypted
    and no password (or a wrong one) was given."""
    data = Path(path).read_bytes()
    secret = password.encode() if password else None
    loaders = (serialization.load_pem_private_key, serialization.load_der_private_key)
    if not data.lstrip().startswith(b"-----"):
        loaders = loaders[::-1]
    last_error = None
    for loader in loaders:
        try:
            return loader(data, password=secret)
        except TypeError:
            raise
        except ValueError as e:
            last_error = e
    raise ValueError(f"Unreadable private key {path}: {last_error}")


def key_is_encrypted(path: Path) -> bool:
    try:
        load_private_key(path)
    except TypeError:
        return True
    return False


def serialize_bundle(key, cert, password: str) -> bytes:
    """PKCS#12 in the legacy 3DES/SHA1 layout the macOS keychain imports"""
    if password:
        encryption = (
            serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(50000)
            .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
            .hmac_hash(hashes.SHA1())
            .build(password.encode())
        )
    else:
        encryption = serialization.NoEncryption()
    return pkcs12.serialize_key_and_certificates(
        name=IDENTITY_FRIENDLY_NAME.encode(),
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=encryption,
    )


def conversion_candidates(
    supplied: Optional[str], fallback: Iterable[str] = CONVERSION_PASSWORDS
) -> List[str]:
    ordered = []
    if supplied and not is_placeholder(supplied):
        ordered.append(supplied)
    ordered.append("")
    ordered.extend(fallback)
    unique = []
    for candidate in ordered:
        if candidate not in unique:
            unique.append(candidate)
    return unique


class FormatNormalizer:
    """Bundles a detached certificate + private key into a PKCS#12 archive"""

    def __init__(
        self,
        resolver: Optional[PasswordResolver] = None,
        fallback_passwords: Iterable[str] = CONVERSION_PASSWORDS,
    ):
        self.console = get_console()
        self.resolver = resolver or PasswordResolver()
        self.fallback_passwords = tuple(fallback_passwords)

    def normalize(
        self,
        material: DetachedCertificate,
        supplied_password: Optional[str] = None,
        output: Optional[Path] = None,
    ) -> ResolvedIdentity:
        output = Path(output or material.cert_path.with_name("converted.p12"))
        self.console.log("[yellow]Converting CER+KEY to P12 format...")

        cert = load_certificate(material.cert_path)
        try:
            encrypted_key = key_is_encrypted(material.key_path)
            plain_key = None if encrypted_key else load_private_key(material.key_path)
        except ValueError as e:
            raise ConversionError(str(e)) from e
        if plain_key is not None:
            self._check_pair(cert, plain_key)

        candidates = conversion_candidates(supplied_password, self.fallback_passwords)
        for position, candidate in enumerate(candidates, start=1):
            key = plain_key
            if encrypted_key:
                if not candidate:
                    continue
                try:
                    key = load_private_key(material.key_path, candidate)
                except (TypeError, ValueError):
                    continue
                self._check_pair(cert, key)

            try:
                output.write_bytes(serialize_bundle(key, cert, candidate))
            except (TypeError, ValueError) as e:
                self.console.log(f"[yellow]P12 conversion with candidate {position} failed:[/] {e}")
                output.unlink(missing_ok=True)
                continue

            bundled = BundledCertificate(path=output)
            if not self.resolver.opens(output, candidate):
                self.console.log(
                    f"[yellow]Converted P12 failed verification with candidate {position}, discarding"
                )
                output.unlink(missing_ok=True)
                continue

            self.console.log(f"[green]Certificate converted to P12 (candidate {position})[/]")
            return ResolvedIdentity(
                material=bundled, password=candidate, origin="normalized"
            )

        output.unlink(missing_ok=True)
        raise ConversionError(
            f"Failed to convert CER+KEY to P12 format after {len(candidates)} candidate(s)"
        )

    @staticmethod
    def _check_pair(cert: x509.Certificate, key) -> None:
        cert_public = cert.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        key_public = key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        if cert_public != key_public:
            raise ConversionError("Private key does not match the certificate")
