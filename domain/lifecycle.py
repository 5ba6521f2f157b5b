"""Pass lifecycle engine.

Owns the guest pass state machine:

    scheduled/registered --complete--> pending_verification
    pending_verification --provider--> approved | verification_failed | verification_canceled
    approved --host confirms--> scheduled --door scan--> checked_in --checkout--> checked_out
    any pre-terminal --cancel--> canceled
    any pre-terminal, visit day passed --> expired (derived at read time, never stored)

Every operation returns ``Ok`` or ``Err(GuardFailure)``. Writes go through the
store's conditional updates, so concurrent duplicates cannot both apply.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional, Union
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

import structlog

from .clock import utcnow
from .errors import ConfigurationError, StoreUnavailable, TransientDependencyFailure
from .models import AuditLog, GuestPass, PassStatus, Resident
from .models.guest_pass import PRE_TERMINAL, REGISTRABLE
from .models.pass_details import (
    CancelDetails,
    InviteDetails,
    PassDetails,
    RegistrationDetails,
    VerificationDetails,
    WalletDetails,
)
from .ports import (
    IdentityGateway,
    Notifier,
    VerificationEvent,
    VerificationOutcome,
    WalletIssuer,
)
from .results import Err, FailureKind, Ok, Result, fail
from .store import CheckInWrite, PassStore
from .tokens import Audience, HashBoundToken, IssuedToken, SignedToken, TokenCodec, new_nonce

logger = structlog.get_logger()

STAFF_ROLES = frozenset({"staff", "admin"})

_OUTCOME_STATUS = {
    VerificationOutcome.VERIFIED: PassStatus.APPROVED,
    VerificationOutcome.REQUIRES_INPUT: PassStatus.VERIFICATION_FAILED,
    VerificationOutcome.CANCELED: PassStatus.VERIFICATION_CANCELED,
}

STATUS_MESSAGES = {
    PassStatus.INVITED: "Waiting for the guest to complete registration.",
    PassStatus.REGISTERED: "Waiting for the guest to start identity verification.",
    PassStatus.PENDING_VERIFICATION: "Identity verification is in progress...",
    PassStatus.APPROVED: "Identity verified successfully!",
    PassStatus.SCHEDULED: "Your pass is scheduled.",
    PassStatus.VERIFICATION_FAILED: "Identity verification failed. Please try again.",
    PassStatus.VERIFICATION_CANCELED: "Identity verification was canceled.",
    PassStatus.CHECKED_IN: "Checked in.",
    PassStatus.CHECKED_OUT: "Visit completed.",
    PassStatus.CANCELED: "This pass was canceled.",
    PassStatus.EXPIRED: "This pass has expired.",
}


@dataclass(frozen=True)
class Actor:
    id: str
    role: str = "resident"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def may_manage(self, guest_pass: GuestPass) -> bool:
        return self.is_staff or str(guest_pass.resident_id) == self.id


@dataclass(frozen=True)
class EngineConfig:
    public_base_url: str
    building_timezone: str = "UTC"
    prereg_ttl: timedelta = timedelta(hours=24)
    verification_ttl: timedelta = timedelta(hours=48)
    door_token_ttl: timedelta = timedelta(minutes=15)


@dataclass(frozen=True)
class InviteRequest:
    guest_email: str
    visit_date: date
    floor: str
    guest_phone: Optional[str] = None
    guest_name: Optional[str] = None
    purpose_of_visit: Optional[str] = None
    special_instructions: Optional[str] = None


@dataclass(frozen=True)
class RegisterRequest:
    first_name: str
    last_name: str
    phone_number: str
    floor: str
    is_delivery: bool = False


@dataclass(frozen=True)
class RegistrationSubmission:
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    id_country: Optional[str] = None
    id_type: Optional[str] = None
    id_last4: Optional[str] = None
    policy_version: Optional[str] = None
    is_delivery: bool = False


@dataclass(frozen=True)
class InviteOutcome:
    guest_pass: GuestPass
    completion_link: str
    method: str  # sms | link
    message: Optional[str] = None


@dataclass(frozen=True)
class RegisterOutcome:
    guest_pass: GuestPass
    verification_link: str


@dataclass(frozen=True)
class InvitationView:
    guest_pass: GuestPass
    audience: Audience


@dataclass(frozen=True)
class CompletionOutcome:
    guest_pass: GuestPass
    verification_url: str
    session_id: str


@dataclass(frozen=True)
class VerificationApplied:
    guest_pass: GuestPass
    changed: bool


@dataclass(frozen=True)
class CheckInOutcome:
    guest_pass: GuestPass
    accepted: bool
    replayed: bool
    message: str


@dataclass(frozen=True)
class StatusView:
    guest_pass: GuestPass
    status: PassStatus
    message: str
    wallet_url: Optional[str]


class PassLifecycleEngine:
    def __init__(
        self,
        store: PassStore,
        codec: TokenCodec,
        config: EngineConfig,
        identity: Optional[IdentityGateway] = None,
        notifier: Optional[Notifier] = None,
        wallet: Optional[WalletIssuer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.codec = codec
        self.config = config
        self.identity = identity
        self.notifier = notifier
        self.wallet = wallet
        self.clock = clock
        self.tz = ZoneInfo(config.building_timezone)

    # --- helpers ---

    def today(self, now: Optional[datetime] = None) -> date:
        return (now or self.clock()).astimezone(self.tz).date()

    def _end_of_day(self, day: date) -> datetime:
        return datetime.combine(day, time(23, 59, 59), tzinfo=self.tz).astimezone(timezone.utc)

    def _link(self, path: str, token: str) -> str:
        return f"{self.config.public_base_url.rstrip('/')}{path}?token={token}"

    async def _verified_host(self, host_id: UUID) -> Result[Resident]:
        resident = await self.store.get_resident(host_id)
        if resident is None or not resident.is_verified:
            return fail(FailureKind.FORBIDDEN, "Not a verified resident")
        return Ok(resident)

    async def _load(self, pass_id: UUID) -> Result[GuestPass]:
        guest_pass = await self.store.get_pass(pass_id)
        if guest_pass is None:
            return fail(FailureKind.NOT_FOUND, "Guest pass not found")
        return Ok(guest_pass)

    async def _managed(self, pass_id: UUID, actor: Actor) -> Result[GuestPass]:
        loaded = await self._load(pass_id)
        if not loaded.ok:
            return loaded
        if not actor.may_manage(loaded.value):
            # Same answer as a missing pass so pass ids stay unguessable.
            return fail(FailureKind.NOT_FOUND, "Guest pass not found")
        return loaded

    # --- creation ---

    async def invite(self, host_id: UUID, request: InviteRequest) -> Result[InviteOutcome]:
        host = await self._verified_host(host_id)
        if not host.ok:
            return host
        resident = host.value

        now = self.clock()
        if request.visit_date < self.today(now):
            return fail(FailureKind.INVALID_INPUT, "Visit date is in the past")

        pass_id = uuid4()
        nonce = new_nonce()
        guest_name = request.guest_name or request.guest_email.split("@")[0]
        issued = self.codec.issue(
            Audience.GUEST_PREREG,
            pass_id=pass_id,
            host_id=str(host_id),
            nonce=nonce,
            expires_at=now + self.config.prereg_ttl,
            extra={
                "guestEmail": request.guest_email,
                "guestName": guest_name,
                "visitDate": request.visit_date.isoformat(),
                "floor": request.floor,
            },
            now=now,
        )

        details = PassDetails(invite=InviteDetails(
            floor=request.floor,
            purpose_of_visit=request.purpose_of_visit,
            special_instructions=request.special_instructions,
            host_name=resident.name,
            created_at=now,
        ))
        guest_pass = GuestPass(
            id=pass_id,
            resident_id=host_id,
            guest_name=guest_name,
            guest_email=request.guest_email,
            guest_phone=request.guest_phone,
            visit_date=request.visit_date,
            status=PassStatus.SCHEDULED.value,
            token_nonce=nonce,
            extended_data=details.to_column(),
        )
        guest_pass = await self.store.create_pass(guest_pass, audit=AuditLog(
            pass_id=pass_id,
            actor_type="resident",
            actor_id=str(host_id),
            action="invite",
            message=f"Invited {request.guest_email} for {request.visit_date.isoformat()}",
        ))
        logger.info("pass_invited", pass_id=str(pass_id), host_id=str(host_id))

        link = self._link("/guest/complete", issued.token)
        if request.guest_phone and self.notifier is not None:
            try:
                await self.notifier.send_guest_invitation(
                    phone=request.guest_phone,
                    guest_name=guest_name,
                    host_name=resident.name or "Your host",
                    link=link,
                    visit_date=request.visit_date.isoformat(),
                )
            except TransientDependencyFailure as e:
                logger.warning("invite_sms_failed", pass_id=str(pass_id), error=str(e))
                return Ok(InviteOutcome(
                    guest_pass=guest_pass,
                    completion_link=link,
                    method="link",
                    message="SMS failed, please share the completion link with your guest",
                ))
            return Ok(InviteOutcome(
                guest_pass=guest_pass,
                completion_link=link,
                method="sms",
                message=f"SMS invitation sent to {request.guest_phone}",
            ))

        return Ok(InviteOutcome(guest_pass=guest_pass, completion_link=link, method="link"))

    async def register(self, host_id: UUID, request: RegisterRequest) -> Result[RegisterOutcome]:
        """Walk-in registration: a pass for today that the guest verifies from a link."""
        host = await self._verified_host(host_id)
        if not host.ok:
            return host
        resident = host.value

        now = self.clock()
        pass_id = uuid4()
        nonce = new_nonce()
        guest_name = f"{request.first_name} {request.last_name}"
        issued = self.codec.issue(
            Audience.GUEST_VERIFICATION,
            pass_id=pass_id,
            host_id=str(host_id),
            nonce=nonce,
            expires_at=now + self.config.verification_ttl,
            extra={
                "firstName": request.first_name,
                "lastName": request.last_name,
                "phoneNumber": request.phone_number,
                "floor": request.floor,
                "isDelivery": request.is_delivery,
            },
            now=now,
        )

        details = PassDetails(invite=InviteDetails(
            pass_type="delivery" if request.is_delivery else "guest_access",
            floor=request.floor,
            host_name=resident.name,
            created_at=now,
        ))
        guest_pass = await self.store.create_pass(
            GuestPass(
                id=pass_id,
                resident_id=host_id,
                guest_name=guest_name,
                guest_phone=request.phone_number,
                visit_date=self.today(now),
                status=PassStatus.REGISTERED.value,
                token_nonce=nonce,
                extended_data=details.to_column(),
            ),
            audit=AuditLog(
                pass_id=pass_id,
                actor_type="resident",
                actor_id=str(host_id),
                action="register",
                message=f"Registered {guest_name}",
            ),
        )
        logger.info("pass_registered", pass_id=str(pass_id), host_id=str(host_id))
        return Ok(RegisterOutcome(
            guest_pass=guest_pass,
            verification_link=self._link("/guest/verify", issued.token),
        ))

    # --- guest side ---

    async def describe_invitation(self, raw_token: str) -> Result[InvitationView]:
        """Read-only token check used to prefill the guest form; consumes nothing."""
        checked = self.codec.verify(raw_token, Audience.GUEST_PREREG)
        audience = Audience.GUEST_PREREG
        if not checked.ok and checked.message == "Token audience mismatch":
            checked = self.codec.verify(raw_token, Audience.GUEST_VERIFICATION)
            audience = Audience.GUEST_VERIFICATION
        if not checked.ok:
            return checked

        token = checked.value
        if token.pass_id is None:
            return fail(FailureKind.TOKEN_INVALID, "Token is not bound to a pass")
        loaded = await self._load(token.pass_id)
        if not loaded.ok:
            return fail(FailureKind.NOT_FOUND, "Invitation not found or expired")
        return Ok(InvitationView(guest_pass=loaded.value, audience=audience))

    def _check_nonce(self, guest_pass: GuestPass, token: SignedToken) -> Result[GuestPass]:
        if token.nonce is None:
            # Tokens minted before nonces existed: the status guard limits them to one use.
            return Ok(guest_pass)
        if guest_pass.token_nonce is None or guest_pass.token_nonce != token.nonce:
            return fail(FailureKind.INVALID_OR_USED_TOKEN, "Invalid or already used token")
        return Ok(guest_pass)

    def _check_registrable(self, guest_pass: GuestPass, today: date) -> Result[GuestPass]:
        effective = guest_pass.effective_status(today)
        if effective == PassStatus.EXPIRED:
            return fail(FailureKind.INVALID_TRANSITION, "Pass has expired")
        if effective not in REGISTRABLE or guest_pass.details.registration is not None:
            return fail(FailureKind.INVALID_OR_USED_TOKEN, "Registration link has already been used")
        return Ok(guest_pass)

    async def complete_registration(
        self,
        raw_token: str,
        audience: Audience,
        submission: RegistrationSubmission,
    ) -> Result[CompletionOutcome]:
        if audience not in (Audience.GUEST_PREREG, Audience.GUEST_VERIFICATION):
            return fail(FailureKind.INVALID_INPUT, "Unsupported token audience")

        now = self.clock()
        checked = self.codec.verify(raw_token, audience, now=now)
        if not checked.ok:
            return checked
        token = checked.value
        if token.pass_id is None:
            return fail(FailureKind.TOKEN_INVALID, "Token is not bound to a pass")

        invited_email = token.claims.get("guestEmail")
        if audience == Audience.GUEST_PREREG and invited_email:
            if not submission.email or submission.email.lower() != str(invited_email).lower():
                return fail(FailureKind.INVALID_INPUT, "Email does not match invitation")

        loaded = await self._load(token.pass_id)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value

        for guard in (self._check_nonce(guest_pass, token), self._check_registrable(guest_pass, self.today(now))):
            if not guard.ok:
                logger.info("registration_rejected", pass_id=str(guest_pass.id), reason=guard.message)
                return guard

        if self.identity is None:
            raise ConfigurationError("Identity verification gateway is not configured")

        guest_email = submission.email or guest_pass.guest_email
        # Session is opened before the write; if the write loses a race the
        # orphaned session never matches the pass and its webhook is ignored.
        session = await self.identity.create_session(
            pass_id=guest_pass.id,
            host_id=str(guest_pass.resident_id),
            guest_email=guest_email,
            return_url=(
                f"{self.config.public_base_url.rstrip('/')}/guest/verification-complete"
                f"?session_id={{VERIFICATION_SESSION_ID}}&pass_id={guest_pass.id}"
            ),
        )

        details = guest_pass.details
        details.registration = RegistrationDetails(
            first_name=submission.first_name,
            last_name=submission.last_name,
            email=guest_email,
            phone=submission.phone,
            id_country=submission.id_country,
            id_type=submission.id_type,
            id_last4=submission.id_last4,
            policy_version=submission.policy_version,
            is_delivery=submission.is_delivery,
            completed_at=now,
        )
        details.verification = VerificationDetails(status="started", session_id=session.id, started_at=now)

        updated = await self.store.compare_and_set(
            guest_pass.id,
            expected_status=[s.value for s in REGISTRABLE],
            expected_nonce=token.nonce,
            changes={
                "status": PassStatus.PENDING_VERIFICATION.value,
                "token_nonce": None,
                "verification_session_id": session.id,
                "guest_name": f"{submission.first_name} {submission.last_name}",
                "guest_email": guest_email,
                "guest_phone": submission.phone or guest_pass.guest_phone,
                "extended_data": details.to_column(),
            },
            audit=AuditLog(
                pass_id=guest_pass.id,
                actor_type="guest",
                actor_id=guest_email,
                action="complete_registration",
                message="Registration completed, identity verification started",
                extra_data={"session_id": session.id, "audience": audience.value},
            ),
        )
        if updated is None:
            return fail(FailureKind.INVALID_OR_USED_TOKEN, "Invalid or already used token")

        logger.info("registration_completed", pass_id=str(updated.id), session_id=session.id)
        return Ok(CompletionOutcome(guest_pass=updated, verification_url=session.url, session_id=session.id))

    # --- identity provider callback ---

    async def apply_verification_event(self, event: VerificationEvent) -> Result[VerificationApplied]:
        target = _OUTCOME_STATUS[event.outcome]
        if event.pass_id is None:
            return fail(FailureKind.INVALID_INPUT, "Event has no pass id")

        loaded = await self._load(event.pass_id)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value

        if guest_pass.verification_session_id and guest_pass.verification_session_id != event.session_id:
            return fail(FailureKind.INVALID_INPUT, "Verification session does not match pass")
        if guest_pass.status == target.value:
            if target == PassStatus.APPROVED and guest_pass.details.wallet is None:
                # Redelivery finishes a wallet issuance that failed after approval.
                guest_pass = await self._issue_wallet(guest_pass)
            return Ok(VerificationApplied(guest_pass=guest_pass, changed=False))
        if guest_pass.status != PassStatus.PENDING_VERIFICATION.value:
            return fail(FailureKind.INVALID_TRANSITION, f"Pass is {guest_pass.status}")

        now = self.clock()
        details = guest_pass.details
        details.verification = VerificationDetails(
            status=event.outcome.value,
            session_id=event.session_id,
            started_at=details.verification.started_at if details.verification else None,
            updated_at=now,
            provider_metadata=dict(event.metadata),
        )
        updated = await self.store.compare_and_set(
            guest_pass.id,
            expected_status=[PassStatus.PENDING_VERIFICATION.value],
            expected_session_id=guest_pass.verification_session_id,
            changes={"status": target.value, "extended_data": details.to_column()},
            audit=AuditLog(
                pass_id=guest_pass.id,
                actor_type="provider",
                actor_id=event.session_id,
                action=f"verification_{event.outcome.value}",
                message=f"Identity verification {event.outcome.value}",
            ),
        )
        if updated is None:
            # Lost to a concurrent delivery of the same event, or the pass moved on.
            current = await self.store.get_pass(guest_pass.id)
            if current is not None and current.status == target.value:
                return Ok(VerificationApplied(guest_pass=current, changed=False))
            return fail(FailureKind.INVALID_TRANSITION, f"Pass is {current.status if current else 'missing'}")

        logger.info("verification_applied", pass_id=str(updated.id), status=updated.status)
        if target == PassStatus.APPROVED:
            updated = await self._issue_wallet(updated)
        return Ok(VerificationApplied(guest_pass=updated, changed=True))

    async def _issue_wallet(self, guest_pass: GuestPass) -> GuestPass:
        if self.wallet is None:
            return guest_pass
        try:
            host = await self.store.get_resident(guest_pass.resident_id)
            artifact = await self.wallet.issue(guest_pass, host.name if host else None)
        except (TransientDependencyFailure, ConfigurationError, StoreUnavailable) as e:
            logger.error("wallet_issue_failed", pass_id=str(guest_pass.id), error=str(e))
            return guest_pass

        details = guest_pass.details
        details.wallet = WalletDetails(
            wallet_url=artifact.wallet_url,
            security_hash=artifact.security_hash,
            valid_until=artifact.valid_until,
            issued_at=self.clock(),
        )
        try:
            updated = await self.store.compare_and_set(
                guest_pass.id,
                expected_status=[PassStatus.APPROVED.value, PassStatus.SCHEDULED.value],
                changes={"extended_data": details.to_column()},
            )
        except StoreUnavailable as e:
            logger.error("wallet_record_failed", pass_id=str(guest_pass.id), error=str(e))
            return guest_pass
        logger.info("wallet_issued", pass_id=str(guest_pass.id), wallet_url=artifact.wallet_url)
        return updated or guest_pass

    # --- host / staff actions ---

    async def schedule(self, pass_id: UUID, actor: Actor, approve: bool = True) -> Result[GuestPass]:
        """Host confirms an approved pass for check-in, or declines it."""
        if not approve:
            return await self.cancel(pass_id, actor, reason="Declined by host")

        loaded = await self._managed(pass_id, actor)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value
        today = self.today()
        effective = guest_pass.effective_status(today)
        if effective == PassStatus.SCHEDULED:
            return Ok(guest_pass)
        if effective != PassStatus.APPROVED:
            return fail(FailureKind.INVALID_TRANSITION, f"Pass is {effective.value}")

        updated = await self.store.compare_and_set(
            pass_id,
            expected_status=[PassStatus.APPROVED.value],
            changes={"status": PassStatus.SCHEDULED.value},
            audit=AuditLog(pass_id=pass_id, actor_type=actor.role, actor_id=actor.id, action="schedule"),
        )
        if updated is None:
            return await self._reload_as_transition_error(pass_id)
        return Ok(updated)

    async def cancel(self, pass_id: UUID, actor: Actor, reason: Optional[str] = None) -> Result[GuestPass]:
        loaded = await self._managed(pass_id, actor)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value
        effective = guest_pass.effective_status(self.today())
        if effective == PassStatus.CANCELED:
            return Ok(guest_pass)
        if effective not in PRE_TERMINAL:
            return fail(FailureKind.INVALID_TRANSITION, f"Pass is {effective.value}")

        details = guest_pass.details
        details.cancel = CancelDetails(actor_id=actor.id, reason=reason, canceled_at=self.clock())
        updated = await self.store.compare_and_set(
            pass_id,
            expected_status=[s.value for s in PRE_TERMINAL],
            changes={
                "status": PassStatus.CANCELED.value,
                "token_nonce": None,
                "extended_data": details.to_column(),
            },
            audit=AuditLog(
                pass_id=pass_id,
                actor_type=actor.role,
                actor_id=actor.id,
                action="cancel",
                message=reason,
            ),
        )
        if updated is None:
            return await self._reload_as_transition_error(pass_id)
        logger.info("pass_canceled", pass_id=str(pass_id), actor_id=actor.id)
        return Ok(updated)

    async def _reload_as_transition_error(self, pass_id: UUID) -> Err:
        current = await self.store.get_pass(pass_id)
        status = current.status if current else "missing"
        return fail(FailureKind.INVALID_TRANSITION, f"Pass is {status}")

    async def list_passes(self, host_id: UUID) -> List[GuestPass]:
        return await self.store.list_passes(host_id)

    async def get_pass(self, pass_id: UUID, actor: Actor) -> Result[GuestPass]:
        return await self._managed(pass_id, actor)

    async def verification_status(self, pass_id: UUID, session_id: str) -> Result[StatusView]:
        loaded = await self._load(pass_id)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value
        if guest_pass.verification_session_id != session_id:
            return fail(FailureKind.NOT_FOUND, "Guest pass not found")

        status = guest_pass.effective_status(self.today())
        wallet_url: Optional[str] = None
        if status in (PassStatus.APPROVED, PassStatus.SCHEDULED):
            wallet = guest_pass.details.wallet
            wallet_url = wallet.wallet_url if wallet and wallet.wallet_url else (
                f"{self.config.public_base_url.rstrip('/')}/api/v1/passes/{guest_pass.id}/card?sessionId={session_id}"
            )
        return Ok(StatusView(
            guest_pass=guest_pass,
            status=status,
            message=STATUS_MESSAGES[status],
            wallet_url=wallet_url,
        ))

    async def wallet_pass(
        self,
        pass_id: UUID,
        actor: Optional[Actor] = None,
        session_id: Optional[str] = None,
    ) -> Result[GuestPass]:
        """Pass for the wallet card: owner/staff, or the guest holding the verification session id."""
        loaded = await self._load(pass_id)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value
        by_session = bool(session_id) and guest_pass.verification_session_id == session_id
        if not by_session and not (actor and actor.may_manage(guest_pass)):
            return fail(FailureKind.NOT_FOUND, "Guest pass not found")

        status = guest_pass.effective_status(self.today())
        if status not in (PassStatus.APPROVED, PassStatus.SCHEDULED):
            return fail(FailureKind.INVALID_TRANSITION, f"Pass is {status.value}")
        return Ok(guest_pass)

    # --- door ---

    async def issue_door_token(self, pass_id: UUID, actor: Actor) -> Result[IssuedToken]:
        loaded = await self._managed(pass_id, actor)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value

        now = self.clock()
        effective = guest_pass.effective_status(self.today(now))
        if effective == PassStatus.EXPIRED:
            return fail(FailureKind.INVALID_TRANSITION, "Pass expired")
        if effective != PassStatus.SCHEDULED:
            return fail(FailureKind.PASS_NOT_SCHEDULED, f"Pass is {effective.value}")

        expires_at = min(now + self.config.door_token_ttl, self._end_of_day(guest_pass.visit_date))
        issued = self.codec.issue(
            Audience.DOOR_SCANNER,
            pass_id=guest_pass.id,
            host_id=str(guest_pass.resident_id),
            expires_at=expires_at,
            extra={"visitDate": guest_pass.visit_date.isoformat()},
            now=now,
        )
        return Ok(issued)

    async def check_in(self, raw_token: str, actor: Optional[Actor] = None) -> Result[CheckInOutcome]:
        now = self.clock()
        verified = self.codec.verify_door(raw_token, now=now)
        if not verified.ok:
            logger.info("check_in_rejected", reason=verified.message)
            return verified
        token: Union[SignedToken, HashBoundToken] = verified.value
        if token.pass_id is None:
            return fail(FailureKind.TOKEN_INVALID, "Token is not bound to a pass")

        pass_id = token.pass_id
        token_id = token.token_id
        method = "hash_bound" if isinstance(token, HashBoundToken) else "signed"

        try:
            if await self.store.find_used_token(pass_id, token_id) is not None:
                return await self._replayed(pass_id)

            loaded = await self._load(pass_id)
            if not loaded.ok:
                return loaded
            guest_pass = loaded.value

            if isinstance(token, HashBoundToken):
                if (
                    guest_pass.contact.lower() != token.guest_email.lower()
                    or str(guest_pass.resident_id) != token.resident_id
                ):
                    return fail(FailureKind.TOKEN_INVALID, "Guest information does not match records")

            today = self.today(now)
            if guest_pass.visit_date != today:
                return fail(
                    FailureKind.WRONG_DAY,
                    f"Wrong day: pass is for {guest_pass.visit_date.isoformat()}, today is {today.isoformat()}",
                )
            if guest_pass.status != PassStatus.SCHEDULED.value:
                return fail(FailureKind.PASS_NOT_SCHEDULED, f"Pass is {guest_pass.status}")

            write = await self.store.record_check_in(
                pass_id,
                token_id,
                method=method,
                at=now,
                audit=AuditLog(
                    pass_id=pass_id,
                    actor_type="staff" if actor else "system",
                    actor_id=actor.id if actor else None,
                    action="check_in",
                    extra_data={"token_id": token_id, "method": method},
                ),
            )
            if write == CheckInWrite.CONFLICT:
                return await self._replayed(pass_id)
            if write == CheckInWrite.STALE:
                current = await self.store.get_pass(pass_id)
                return fail(FailureKind.PASS_NOT_SCHEDULED, f"Pass is {current.status if current else 'missing'}")

            updated = await self.store.get_pass(pass_id)
        except StoreUnavailable as e:
            logger.error("check_in_store_failed", pass_id=str(pass_id), error=str(e))
            return fail(FailureKind.TRANSIENT, "Check-in failed, please retry")

        logger.info("pass_checked_in", pass_id=str(pass_id), method=method)
        return Ok(CheckInOutcome(guest_pass=updated, accepted=True, replayed=False, message="Checked in"))

    async def _replayed(self, pass_id: UUID) -> Result[CheckInOutcome]:
        loaded = await self._load(pass_id)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value
        accepted = guest_pass.status in (PassStatus.CHECKED_IN.value, PassStatus.CHECKED_OUT.value)
        logger.info("check_in_replayed", pass_id=str(pass_id), status=guest_pass.status)
        return Ok(CheckInOutcome(
            guest_pass=guest_pass,
            accepted=accepted,
            replayed=True,
            message="Already checked-in" if accepted else "Token already used",
        ))

    async def check_out(self, pass_id: UUID, actor: Actor) -> Result[GuestPass]:
        if not actor.is_staff:
            return fail(FailureKind.FORBIDDEN, "Staff only")
        loaded = await self._load(pass_id)
        if not loaded.ok:
            return loaded
        guest_pass = loaded.value
        if guest_pass.status == PassStatus.CHECKED_OUT.value:
            return Ok(guest_pass)
        if guest_pass.status != PassStatus.CHECKED_IN.value:
            return fail(FailureKind.INVALID_TRANSITION, f"Pass is {guest_pass.status}")

        now = self.clock()
        updated = await self.store.compare_and_set(
            pass_id,
            expected_status=[PassStatus.CHECKED_IN.value],
            changes={"status": PassStatus.CHECKED_OUT.value, "checked_out_at": now},
            audit=AuditLog(pass_id=pass_id, actor_type="staff", actor_id=actor.id, action="check_out"),
        )
        if updated is None:
            current = await self.store.get_pass(pass_id)
            if current is not None and current.status == PassStatus.CHECKED_OUT.value:
                return Ok(current)
            return fail(FailureKind.INVALID_TRANSITION, f"Pass is {current.status if current else 'missing'}")
        logger.info("pass_checked_out", pass_id=str(pass_id))
        return Ok(updated)
