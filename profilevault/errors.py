class VaultError(Exception):
    """Base class for profilevault errors."""


# Container framing
class FormatError(VaultError):
    pass


class UnsupportedVersionError(FormatError):
    pass


# Crypto
class AuthenticationFailure(VaultError):
    """Tag check failed: wrong passphrase or modified data (deliberately not distinguished)."""

    def __init__(self, message: str = "authentication failed: wrong passphrase or corrupted backup"):
        super().__init__(message)


class KeyDerivationError(VaultError):
    pass


# Archive payload
class ArchiveError(VaultError):
    pass


class UnsafePathError(ArchiveError):
    pass


class OperationCancelled(VaultError):
    pass
