"""Exception hierarchy raised by the account directory and auth service."""

from __future__ import annotations


class ColonyAuthError(Exception):
    """Base class for colony-auth domain errors."""


class ConfigurationError(ColonyAuthError, ValueError):
    """Raised when the authentication service is constructed with invalid settings."""


class DirectoryError(ColonyAuthError, ValueError):
    """Raised when an account directory operation cannot be applied."""


class DuplicateIdentityError(DirectoryError):
    """An account already exists for the normalized identity."""

    def __init__(self, identity_key: str) -> None:
        super().__init__(f"identity already exists: {identity_key}")
        self.identity_key = identity_key


class InvalidIdentityError(DirectoryError):
    """The supplied identity normalizes to an empty key."""

    def __init__(self) -> None:
        super().__init__("identity must not be blank")


class UnknownAccountError(DirectoryError):
    """No account is registered under the normalized identity."""

    def __init__(self, identity_key: str) -> None:
        super().__init__(f"account not found: {identity_key}")
        self.identity_key = identity_key
