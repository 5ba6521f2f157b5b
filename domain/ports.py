"""Interfaces of the external collaborators the engine drives."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Protocol
from uuid import UUID

from .models import GuestPass


class VerificationOutcome(str, Enum):
    VERIFIED = "verified"
    REQUIRES_INPUT = "requires_input"
    CANCELED = "canceled"


@dataclass(frozen=True)
class VerificationSession:
    id: str
    url: str


@dataclass(frozen=True)
class VerificationEvent:
    outcome: VerificationOutcome
    session_id: str
    pass_id: Optional[UUID]
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WalletArtifact:
    wallet_url: str
    security_hash: str
    valid_until: datetime


class IdentityGateway(Protocol):
    async def create_session(
        self,
        *,
        pass_id: UUID,
        host_id: str,
        guest_email: Optional[str],
        return_url: str,
    ) -> VerificationSession:
        ...


class Notifier(Protocol):
    async def send_guest_invitation(
        self,
        *,
        phone: str,
        guest_name: str,
        host_name: str,
        link: str,
        visit_date: str,
    ) -> Dict[str, str]:
        ...


class WalletIssuer(Protocol):
    async def issue(self, guest_pass: GuestPass, host_name: Optional[str]) -> WalletArtifact:
        ...
