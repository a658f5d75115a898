from typing import List, Tuple


class SignCascadeError(Exception):
    """Base class for every failure the pipeline surfaces"""


class ConfigError(SignCascadeError):
    """Missing or invalid pipeline configuration"""


class AcquisitionFailure(SignCascadeError):
    """A remote or local credential source could not be fetched or is unusable"""


class NoWorkingPassword(SignCascadeError):
    """No password candidate opens the bundled certificate archive.

    Only the number of candidates is kept so passwords never reach the logs.
    """

    def __init__(self, tried: int):
        self.tried = tried
        super().__init__(f"No working password found after {tried} candidate(s)")


class ConversionError(SignCascadeError):
    """A certificate + key pair could not be bundled into a PKCS#12 archive"""


class ImportExhausted(SignCascadeError):
    """Every trust store import strategy failed"""

    def __init__(self, attempts: List[Tuple[str, str]]):
        self.attempts = attempts
        detail = "; ".join(f"{name}: {reason}" for name, reason in attempts)
        super().__init__(
            f"All {len(attempts)} certificate import strategies failed ({detail})"
        )


class ProfileInvalid(SignCascadeError):
    """The provisioning profile is missing, truncated or cannot be decoded"""


class BundleMismatch(SignCascadeError):
    """The profile's application identifier does not cover the requested bundle id"""

    def __init__(self, requested: str, found: str):
        self.requested = requested
        self.found = found
        super().__init__(
            f"Bundle identifier mismatch: requested '{requested}', profile is for '{found}'"
        )


class AllExportStrategiesFailed(SignCascadeError):
    """No export strategy produced an IPA"""

    def __init__(self, attempts):
        self.attempts = attempts
        names = ", ".join(a.strategy.value for a in attempts)
        super().__init__(f"All export strategies failed ({names})")


class ArchiveMissing(SignCascadeError):
    """The build archive needed by the export stage does not exist"""
