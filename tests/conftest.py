import plistlib
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs7, pkcs12
from cryptography.x509.oid import NameOID

from signcascade.src.utils.process import CommandResult

TEAM_ID = "ABCDE12345"
BUNDLE_ID = "com.foo.bar"
PROFILE_UUID = "6f1c2a4e-8d3b-4c5a-9e7f-0a1b2c3d4e5f"


class FakeRunner:
    """Records tool invocations; ``handler(args)`` may return a CommandResult"""

    def __init__(self, handler=None):
        self.handler = handler
        self.calls = []
        self.secrets = []

    def add_secret(self, secret):
        self.secrets.append(secret)

    def run(self, args, timeout=None, input=None, quiet=False):
        args = [str(a) for a in args]
        self.calls.append(args)
        if self.handler is not None:
            result = self.handler(args)
            if result is not None:
                return result
        return CommandResult(args=args, returncode=0)

    def commands(self, *prefix):
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]


def make_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_certificate(key, common_name=f"Apple Distribution: Foo Ltd ({TEAM_ID})", team_id=TEAM_ID):
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, team_id),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Foo Ltd"),
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        ]
    )
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


def write_p12(path: Path, key, cert, password: str) -> Path:
    if password:
        encryption = serialization.BestAvailableEncryption(password.encode())
    else:
        encryption = serialization.NoEncryption()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(
        pkcs12.serialize_key_and_certificates(b"test identity", key, cert, None, encryption)
    )
    return path


def write_profile(
    path: Path,
    key,
    cert,
    application_identifier=f"{TEAM_ID}.{BUNDLE_ID}",
    uuid=PROFILE_UUID,
    name="Foo App Store",
    expiration=None,
    team_id=TEAM_ID,
) -> Path:
    """A CMS-signed provisioning profile like the ones Apple issues"""
    body = {
        "AppIDName": "Foo",
        "ApplicationIdentifierPrefix": [team_id],
        "CreationDate": datetime(2024, 1, 1),
        "DeveloperCertificates": [cert.public_bytes(serialization.Encoding.DER)],
        "Entitlements": {
            "application-identifier": application_identifier,
            "com.apple.developer.team-identifier": team_id,
            "get-task-allow": False,
        },
        "ExpirationDate": expiration or datetime(2099, 1, 1),
        "Name": name,
        "TeamIdentifier": [team_id],
        "TeamName": "Foo Ltd",
        "Version": 1,
    }
    if uuid:
        body["UUID"] = uuid
    payload = plistlib.dumps(body)
    signed = (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(payload)
        .add_signer(cert, key, hashes.SHA256())
        .sign(serialization.Encoding.DER, [pkcs7.PKCS7Options.Binary])
    )
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(signed)
    return path


def make_ipa(path: Path, bundle_id=BUNDLE_ID) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(
            "Payload/Runner.app/Info.plist",
            plistlib.dumps({"CFBundleIdentifier": bundle_id}),
        )
        archive.writestr("Payload/Runner.app/Runner", b"\xcf\xfa\xed\xfe" + b"\0" * 64)
    return path


def make_archive(path: Path) -> Path:
    """A minimal .xcarchive directory"""
    path = Path(path)
    app = path / "Products" / "Applications" / "Runner.app"
    app.mkdir(parents=True)
    (app / "Runner").write_bytes(b"\xcf\xfa\xed\xfe" + b"\1" * 2048)
    (app / "Info.plist").write_bytes(plistlib.dumps({"CFBundleIdentifier": BUNDLE_ID}))
    (path / "Info.plist").write_bytes(plistlib.dumps({"Name": "Runner"}))
    return path


@pytest.fixture(scope="session")
def signing_key():
    return make_key()


@pytest.fixture(scope="session")
def signing_cert(signing_key):
    return make_certificate(signing_key)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def profile_path(tmp_path, signing_key, signing_cert):
    return write_profile(tmp_path / "src" / "foo.mobileprovision", signing_key, signing_cert)
