from .client import MembershipAuthError, MembershipClient

__all__ = ["MembershipAuthError", "MembershipClient"]
