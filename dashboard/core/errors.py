from enum import Enum


class FailureKind(str, Enum):
    """Why a provider interaction did not succeed."""
    CONFIGURATION_MISSING = "configuration_missing"
    PROVIDER_REJECTED = "provider_rejected"
    NETWORK_FAILURE = "network_failure"


CREDENTIALS_NOT_CONFIGURED = "WhatsApp credentials not configured"


class ValidationFailure(ValueError):
    """Malformed input handed to a message builder."""


class InvalidAddressError(ValidationFailure):
    """The recipient has too few digits to be a phone number."""


class EmptyContentError(ValidationFailure):
    pass


class ProviderError(Exception):
    """A provider read (phone lookup, template listing) did not return usable data."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
