"""Domain error types shared across services and routers."""

from __future__ import annotations


class RunChecksError(Exception):
    """Base class for application errors."""


class ConfigurationError(RunChecksError):
    """Missing or malformed configuration (catalog columns, credentials, settings)."""


class CatalogFormatError(ConfigurationError):
    """The run catalog itself is malformed (missing header columns, unnamed section)."""


class SubmissionValidationError(RunChecksError):
    """A run check batch was rejected; the message is safe to show to the caller."""


class ExternalStoreError(RunChecksError):
    """The Google Sheets/Drive store could not be read or written."""


class OAuthRefreshError(RunChecksError):
    """The linked Google account's token could not be refreshed."""


class EmailDeliveryError(RunChecksError):
    """A magic link or welcome email could not be sent."""
