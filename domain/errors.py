"""Infrastructure-level exceptions.

These are not business outcomes; they mean a dependency or the deployment is
broken. The API maps them to 5xx responses for the single request.
"""


class StoreUnavailable(Exception):
    """The record store could not be reached or timed out. Safe to retry."""


class TransientDependencyFailure(Exception):
    """An external provider (identity, SMS, membership, wallet) failed. Safe to retry."""


class ConfigurationError(Exception):
    """A required secret or setting is missing. Needs an operator fix."""


class WebhookSignatureError(Exception):
    """Webhook payload failed signature verification. Terminal for the event."""
