"""Pass lifecycle: invitations, registration, verification, host actions."""
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import httpx

from domain.errors import StoreUnavailable, TransientDependencyFailure
from domain.lifecycle import (
    STATUS_MESSAGES,
    Actor,
    EngineConfig,
    InviteRequest,
    PassLifecycleEngine,
    RegisterRequest,
    RegistrationSubmission,
)
from domain.models import PassStatus, Resident
from domain.ports import VerificationEvent, VerificationOutcome
from domain.results import FailureKind
from domain.tokens import Audience
from infrastructure.wallet import PassCardIssuer

from tests.conftest import BASE_URL, GUEST_EMAIL, TZ, VISIT_DAY, approved_pass, invite_guest, token_from_link

REAL_CLIENT = httpx.AsyncClient


def submission(**overrides):
    fields = dict(first_name="Gina", last_name="Guest", email=GUEST_EMAIL, id_country="US", id_last4="1234")
    fields.update(overrides)
    return RegistrationSubmission(**fields)


def verified_event(guest_pass, outcome=VerificationOutcome.VERIFIED, session_id=None):
    return VerificationEvent(
        outcome=outcome,
        session_id=session_id or guest_pass.verification_session_id,
        pass_id=guest_pass.id,
    )


class TestInvite:
    async def test_invite_creates_scheduled_pass_with_nonce(self, lifecycle, resident):
        outcome = await invite_guest(lifecycle, resident)

        guest_pass = outcome.guest_pass
        assert guest_pass.status == PassStatus.SCHEDULED.value
        assert guest_pass.token_nonce
        assert guest_pass.details.invite.host_name == "Rita Resident"
        assert outcome.method == "link"
        assert outcome.completion_link.startswith("https://guestpass.test/guest/complete?token=")

    async def test_invite_sends_sms_when_phone_given(self, lifecycle, resident, notifier):
        outcome = await invite_guest(lifecycle, resident, guest_phone="+14155550100")

        assert outcome.method == "sms"
        notifier.send_guest_invitation.assert_awaited_once()
        kwargs = notifier.send_guest_invitation.await_args.kwargs
        assert kwargs["phone"] == "+14155550100"
        assert kwargs["link"] == outcome.completion_link

    async def test_sms_failure_falls_back_to_link(self, lifecycle, resident, notifier):
        notifier.send_guest_invitation.side_effect = TransientDependencyFailure("twilio down")

        outcome = await invite_guest(lifecycle, resident, guest_phone="+14155550100")

        assert outcome.method == "link"
        assert "SMS failed" in outcome.message

    async def test_past_visit_date_rejected(self, lifecycle, resident):
        result = await lifecycle.invite(
            resident.id,
            InviteRequest(guest_email=GUEST_EMAIL, visit_date=VISIT_DAY - timedelta(days=1), floor="3"),
        )

        assert not result.ok
        assert result.kind == FailureKind.INVALID_INPUT

    async def test_unverified_host_forbidden(self, lifecycle, store):
        stranger = await store.save_resident(Resident(name="Sam", email="sam@example.com", is_verified=False))

        result = await lifecycle.invite(
            stranger.id, InviteRequest(guest_email=GUEST_EMAIL, visit_date=VISIT_DAY, floor="3")
        )

        assert not result.ok
        assert result.kind == FailureKind.FORBIDDEN
        assert result.message == "Not a verified resident"


class TestRegister:
    async def test_walk_in_pass_is_for_today(self, lifecycle, resident):
        result = await lifecycle.register(
            resident.id,
            RegisterRequest(first_name="Dan", last_name="Driver", phone_number="4155550111", floor="2", is_delivery=True),
        )

        assert result.ok
        guest_pass = result.value.guest_pass
        assert guest_pass.status == PassStatus.REGISTERED.value
        assert guest_pass.visit_date == VISIT_DAY
        assert guest_pass.details.invite.pass_type == "delivery"
        assert "/guest/verify?token=" in result.value.verification_link

    async def test_walk_in_link_starts_verification(self, lifecycle, resident, identity):
        registered = await lifecycle.register(
            resident.id,
            RegisterRequest(first_name="Dan", last_name="Driver", phone_number="4155550111", floor="2"),
        )
        token = token_from_link(registered.value.verification_link)

        # A verification link is not a pre-registration link
        wrong = await lifecycle.complete_registration(token, Audience.GUEST_PREREG, submission())
        assert not wrong.ok
        assert wrong.kind == FailureKind.TOKEN_INVALID

        result = await lifecycle.complete_registration(
            token,
            Audience.GUEST_VERIFICATION,
            RegistrationSubmission(first_name="Dan", last_name="Driver", phone="4155550111"),
        )

        assert result.ok
        assert result.value.guest_pass.status == PassStatus.PENDING_VERIFICATION.value
        identity.create_session.assert_awaited_once()


class TestCompleteRegistration:
    async def test_complete_moves_to_pending_and_consumes_nonce(self, lifecycle, resident, identity):
        invited = await invite_guest(lifecycle, resident)

        result = await lifecycle.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )

        assert result.ok
        guest_pass = result.value.guest_pass
        assert guest_pass.status == PassStatus.PENDING_VERIFICATION.value
        assert guest_pass.token_nonce is None
        assert guest_pass.verification_session_id == "vs_test_123"
        assert guest_pass.guest_name == "Gina Guest"
        assert guest_pass.details.registration.id_last4 == "1234"
        assert guest_pass.details.verification.status == "started"
        assert result.value.verification_url == "https://verify.stripe.com/start/vs_test_123"

        kwargs = identity.create_session.await_args.kwargs
        assert kwargs["pass_id"] == guest_pass.id
        assert "{VERIFICATION_SESSION_ID}" in kwargs["return_url"]

    async def test_same_link_twice_is_rejected(self, lifecycle, resident, store):
        invited = await invite_guest(lifecycle, resident)
        token = token_from_link(invited.completion_link)

        first = await lifecycle.complete_registration(token, Audience.GUEST_PREREG, submission())
        second = await lifecycle.complete_registration(token, Audience.GUEST_PREREG, submission())

        assert first.ok
        assert not second.ok
        assert second.kind == FailureKind.INVALID_OR_USED_TOKEN
        current = await store.get_pass(invited.guest_pass.id)
        assert current.status == PassStatus.PENDING_VERIFICATION.value

    async def test_email_must_match_invitation(self, lifecycle, resident):
        invited = await invite_guest(lifecycle, resident)

        result = await lifecycle.complete_registration(
            token_from_link(invited.completion_link),
            Audience.GUEST_PREREG,
            submission(email="someone-else@example.com"),
        )

        assert not result.ok
        assert result.kind == FailureKind.INVALID_INPUT

    async def test_expired_link(self, lifecycle, resident, clock):
        invited = await invite_guest(lifecycle, resident, visit_date=VISIT_DAY + timedelta(days=3))
        clock.set(clock.now + timedelta(hours=24))

        result = await lifecycle.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )

        assert not result.ok
        assert result.kind == FailureKind.TOKEN_EXPIRED

    async def test_canceled_pass_cannot_register(self, lifecycle, resident, host):
        invited = await invite_guest(lifecycle, resident)
        await lifecycle.cancel(invited.guest_pass.id, host)

        result = await lifecycle.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )

        assert not result.ok
        assert result.kind == FailureKind.INVALID_OR_USED_TOKEN

    async def test_legacy_token_without_nonce(self, lifecycle, resident, codec, clock):
        invited = await invite_guest(lifecycle, resident)
        legacy = codec.issue(
            Audience.GUEST_PREREG,
            pass_id=invited.guest_pass.id,
            host_id=str(resident.id),
            expires_at=clock.now + timedelta(hours=1),
            extra={"guestEmail": GUEST_EMAIL},
        )

        first = await lifecycle.complete_registration(legacy.token, Audience.GUEST_PREREG, submission())
        second = await lifecycle.complete_registration(legacy.token, Audience.GUEST_PREREG, submission())

        assert first.ok
        assert not second.ok
        assert second.message == "Registration link has already been used"

    async def test_describe_invitation_is_read_only(self, lifecycle, resident, store):
        invited = await invite_guest(lifecycle, resident)
        token = token_from_link(invited.completion_link)

        view = await lifecycle.describe_invitation(token)
        again = await lifecycle.describe_invitation(token)

        assert view.ok and again.ok
        assert view.value.audience == Audience.GUEST_PREREG
        current = await store.get_pass(invited.guest_pass.id)
        assert current.token_nonce == invited.guest_pass.token_nonce


class TestVerificationEvents:
    async def test_verified_approves_and_issues_wallet_once(self, lifecycle, resident, wallet, store):
        calls = []
        original = wallet.issue

        async def counting_issue(*args, **kwargs):
            calls.append(args)
            return await original(*args, **kwargs)

        wallet.issue = counting_issue

        guest_pass = await approved_pass(lifecycle, resident)
        duplicate = await lifecycle.apply_verification_event(verified_event(guest_pass))

        assert guest_pass.status == PassStatus.APPROVED.value
        assert duplicate.ok
        assert duplicate.value.changed is False
        assert len(calls) == 1

        stored = await store.get_pass(guest_pass.id)
        assert stored.status == PassStatus.APPROVED.value
        assert stored.details.wallet.wallet_url.endswith(f"/card?sessionId={stored.verification_session_id}")
        assert stored.details.wallet.security_hash

    async def test_requires_input_marks_failed(self, lifecycle, resident):
        invited = await invite_guest(lifecycle, resident)
        completed = await lifecycle.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )

        result = await lifecycle.apply_verification_event(
            verified_event(completed.value.guest_pass, outcome=VerificationOutcome.REQUIRES_INPUT)
        )

        assert result.ok
        assert result.value.guest_pass.status == PassStatus.VERIFICATION_FAILED.value

    async def test_session_mismatch_rejected(self, lifecycle, resident):
        invited = await invite_guest(lifecycle, resident)
        completed = await lifecycle.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )

        result = await lifecycle.apply_verification_event(
            verified_event(completed.value.guest_pass, session_id="vs_orphan")
        )

        assert not result.ok
        assert result.kind == FailureKind.INVALID_INPUT

    async def test_late_event_after_approval_is_a_transition_error(self, lifecycle, resident):
        guest_pass = await approved_pass(lifecycle, resident)

        result = await lifecycle.apply_verification_event(
            verified_event(guest_pass, outcome=VerificationOutcome.CANCELED)
        )

        assert not result.ok
        assert result.kind == FailureKind.INVALID_TRANSITION

    async def test_wallet_failure_does_not_block_approval(self, lifecycle, resident, wallet):
        async def broken_issue(*args, **kwargs):
            raise TransientDependencyFailure("signer down")

        wallet.issue = broken_issue

        guest_pass = await approved_pass(lifecycle, resident)

        assert guest_pass.status == PassStatus.APPROVED.value
        assert guest_pass.details.wallet is None

    async def test_unknown_pass(self, lifecycle):
        result = await lifecycle.apply_verification_event(VerificationEvent(
            outcome=VerificationOutcome.VERIFIED, session_id="vs_x", pass_id=uuid4()
        ))

        assert not result.ok
        assert result.kind == FailureKind.NOT_FOUND


class TestHostActions:
    async def test_schedule_approved_pass(self, lifecycle, resident, host):
        guest_pass = await approved_pass(lifecycle, resident)

        result = await lifecycle.schedule(guest_pass.id, host)

        assert result.ok
        assert result.value.status == PassStatus.SCHEDULED.value

    async def test_decline_cancels(self, lifecycle, resident, host):
        guest_pass = await approved_pass(lifecycle, resident)

        result = await lifecycle.schedule(guest_pass.id, host, approve=False)

        assert result.ok
        assert result.value.status == PassStatus.CANCELED.value
        assert result.value.details.cancel.reason == "Declined by host"

    async def test_schedule_requires_approval(self, lifecycle, resident, host):
        invited = await invite_guest(lifecycle, resident)
        completed = await lifecycle.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )

        result = await lifecycle.schedule(completed.value.guest_pass.id, host)

        assert not result.ok
        assert result.kind == FailureKind.INVALID_TRANSITION

    async def test_other_residents_cannot_see_pass(self, lifecycle, resident):
        invited = await invite_guest(lifecycle, resident)

        result = await lifecycle.cancel(invited.guest_pass.id, Actor(id=str(uuid4())))

        assert not result.ok
        assert result.kind == FailureKind.NOT_FOUND

    async def test_staff_can_cancel(self, lifecycle, resident, staff):
        invited = await invite_guest(lifecycle, resident)

        result = await lifecycle.cancel(invited.guest_pass.id, staff, reason="No show")

        assert result.ok
        assert result.value.status == PassStatus.CANCELED.value
        assert result.value.token_nonce is None

    async def test_cancel_twice_is_idempotent(self, lifecycle, resident, host):
        invited = await invite_guest(lifecycle, resident)

        await lifecycle.cancel(invited.guest_pass.id, host)
        again = await lifecycle.cancel(invited.guest_pass.id, host)

        assert again.ok
        assert again.value.status == PassStatus.CANCELED.value


class TestDerivedExpiry:
    async def test_pass_expires_after_visit_day(self, lifecycle, resident, host, clock):
        invited = await invite_guest(lifecycle, resident)
        clock.set(datetime(2025, 6, 2, 19, 0, tzinfo=timezone.utc))

        passes = await lifecycle.list_passes(resident.id)
        cancel = await lifecycle.cancel(invited.guest_pass.id, host)
        qr = await lifecycle.issue_door_token(invited.guest_pass.id, host)

        assert passes[0].status == PassStatus.SCHEDULED.value
        assert passes[0].effective_status(lifecycle.today()) == PassStatus.EXPIRED
        assert not cancel.ok and cancel.kind == FailureKind.INVALID_TRANSITION
        assert not qr.ok and qr.kind == FailureKind.INVALID_TRANSITION

    async def test_expiry_uses_building_calendar(self, lifecycle, resident):
        invited = await invite_guest(lifecycle, resident)

        # 06:30 UTC on June 2nd is still June 1st in California
        today = lifecycle.today(datetime(2025, 6, 2, 6, 30, tzinfo=timezone.utc))

        assert today == date(2025, 6, 1)
        assert invited.guest_pass.effective_status(today) == PassStatus.SCHEDULED


class TestVerificationStatus:
    async def test_status_messages_and_wallet_url(self, lifecycle, resident):
        guest_pass = await approved_pass(lifecycle, resident)

        result = await lifecycle.verification_status(guest_pass.id, guest_pass.verification_session_id)

        assert result.ok
        assert result.value.status == PassStatus.APPROVED
        assert result.value.message == "Identity verified successfully!"
        assert result.value.wallet_url

    async def test_pending_has_no_wallet(self, lifecycle, resident):
        invited = await invite_guest(lifecycle, resident)
        completed = await lifecycle.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )

        result = await lifecycle.verification_status(completed.value.guest_pass.id, "vs_test_123")

        assert result.value.message == "Identity verification is in progress..."
        assert result.value.wallet_url is None

    async def test_wrong_session_is_not_found(self, lifecycle, resident):
        guest_pass = await approved_pass(lifecycle, resident)

        result = await lifecycle.verification_status(guest_pass.id, "vs_someone_else")

        assert not result.ok
        assert result.kind == FailureKind.NOT_FOUND

    def test_every_status_has_a_message(self):
        assert set(STATUS_MESSAGES) == set(PassStatus)


class TestWalletRecovery:
    async def pending_pass(self, engine, resident):
        invited = await invite_guest(engine, resident)
        completed = await engine.complete_registration(
            token_from_link(invited.completion_link), Audience.GUEST_PREREG, submission()
        )
        assert completed.ok, completed
        return completed.value.guest_pass

    async def test_unreadable_signer_reply_is_recovered_on_redelivery(
        self, store, codec, identity, clock, resident, monkeypatch
    ):
        replies = [
            httpx.Response(200, text="<html>bad gateway</html>"),
            httpx.Response(200, json={"url": "https://wallet.test/p/1"}),
        ]
        monkeypatch.setattr(
            httpx,
            "AsyncClient",
            lambda **kwargs: REAL_CLIENT(transport=httpx.MockTransport(lambda request: replies.pop(0)), **kwargs),
        )
        signer = PassCardIssuer(
            codec,
            public_base_url=BASE_URL,
            building_timezone=TZ,
            building_name="Test Tower",
            signer_url="https://signer.test/passes",
        )
        engine = PassLifecycleEngine(
            store,
            codec,
            EngineConfig(public_base_url=BASE_URL, building_timezone=TZ),
            identity=identity,
            wallet=signer,
            clock=clock,
        )
        pending = await self.pending_pass(engine, resident)

        first = await engine.apply_verification_event(verified_event(pending))
        retry = await engine.apply_verification_event(verified_event(pending))

        assert first.ok and first.value.changed
        assert first.value.guest_pass.status == PassStatus.APPROVED.value
        assert first.value.guest_pass.details.wallet is None
        assert retry.ok and retry.value.changed is False
        assert retry.value.guest_pass.details.wallet.wallet_url == "https://wallet.test/p/1"

    async def test_store_outage_during_issue_keeps_approval(self, lifecycle, resident, store):
        pending = await self.pending_pass(lifecycle, resident)
        original = store.get_resident

        async def unavailable(*args, **kwargs):
            raise StoreUnavailable("timeout")

        store.get_resident = unavailable
        first = await lifecycle.apply_verification_event(verified_event(pending))
        store.get_resident = original
        retry = await lifecycle.apply_verification_event(verified_event(pending))

        assert first.ok
        assert first.value.guest_pass.details.wallet is None
        assert retry.value.guest_pass.details.wallet is not None
        stored = await store.get_pass(pending.id)
        assert stored.details.wallet.security_hash

    async def test_issued_wallet_is_not_reissued(self, lifecycle, resident, wallet):
        guest_pass = await approved_pass(lifecycle, resident)
        calls = []

        async def counting_issue(*args, **kwargs):
            calls.append(args)

        wallet.issue = counting_issue
        await lifecycle.apply_verification_event(verified_event(guest_pass))

        assert calls == []
