"""OTP Gateway - multi-tenant one-time passcode delivery over paired messaging sessions."""

# Application version (SemVer)
__version__ = "1.0.0"
