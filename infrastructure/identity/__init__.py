from .client import StripeIdentityClient

__all__ = ["StripeIdentityClient"]
