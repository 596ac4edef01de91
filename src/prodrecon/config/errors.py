"""Errors raised while reading prodrecon settings."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """A setting is present but cannot be used as given."""


class MissingConfigurationError(ConfigurationError):
    """A required environment variable is unset or blank."""


class FatalConfigError(ConfigurationError):
    """A job cannot start or continue because its source or credentials are unusable.

    The pipeline fails the job instead of retrying it.
    """
