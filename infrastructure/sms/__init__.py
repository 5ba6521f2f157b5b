from .client import TwilioSMSClient

__all__ = ["TwilioSMSClient"]
