# Values CI systems put in a password variable that are not passwords
PLACEHOLDER_PASSWORDS = {
    "set",
    "true",
    "false",
    "your_password",
    "placeholder",
    "none",
    "null",
}

# Tried, in order, after the supplied and empty passwords when opening a P12
COMMON_PASSWORDS = (
    "password",
    "123456",
    "certificate",
    "ios",
    "apple",
    "distribution",
    "match",
    "User@54321",
    "your_cert_password",
    "quikapp",
    "QuikApp",
    "QUIKAPP",
    "twinklub",
    "Twinklub",
    "TWINKLUB",
    "test",
    "Test",
    "TEST",
    "admin",
    "Admin",
    "ADMIN",
)

# Tried, in order, when bundling a CER+KEY pair into a P12
CONVERSION_PASSWORDS = (
    "password",
    "123456",
    "certificate",
    "quikapp",
    "twinklub",
    "ios",
    "apple",
)

IDENTITY_FRIENDLY_NAME = "iOS Distribution Certificate"


def is_placeholder(value) -> bool:
    return value is not None and value.strip().lower() in PLACEHOLDER_PASSWORDS
