"""Token codec - signed JWT tokens and hash-bound (enhanced QR) tokens.

Two formats reach the door scanner:

- ``SignedToken``: HS256 JWT with a ``kid`` header, bound to one audience.
  Used for door QR codes, guest pre-registration links, guest verification
  links and resident sessions.
- ``HashBoundToken``: the JSON payload printed on wallet passes. It carries a
  truncated SHA-256 over (passId, guestEmail, residentId, secret) and a
  plain ``validUntil``; it is verified by recomputing the hash.

Expiry is inclusive: a token whose expiry instant equals "now" is expired.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
from uuid import UUID, uuid4

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from .clock import as_utc, utcnow
from .errors import ConfigurationError
from .results import FailureKind, Ok, Result, fail

ALGORITHM = "HS256"
HASH_BOUND_PREFIX = "hq-"


class Audience(str, Enum):
    DOOR_SCANNER = "door-scanner"
    GUEST_PREREG = "guest-prereg"
    GUEST_VERIFICATION = "guest-verification"
    RESIDENT_SESSION = "resident-session"


def new_nonce() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class IssuedToken:
    token: str
    jti: str
    nonce: Optional[str]
    expires_at: datetime


@dataclass(frozen=True)
class SignedToken:
    kid: str
    audience: Audience
    jti: str
    expires_at: datetime
    issued_at: Optional[datetime] = None
    pass_id: Optional[UUID] = None
    host_id: Optional[str] = None
    nonce: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def token_id(self) -> str:
        return self.jti


@dataclass(frozen=True)
class HashBoundToken:
    pass_id: UUID
    guest_email: str
    resident_id: str
    security_hash: str
    valid_until: Optional[datetime] = None
    guest_name: Optional[str] = None
    pass_type: str = "web"

    @property
    def token_id(self) -> str:
        # Deterministic so a replayed wallet scan lands on the same ledger row.
        return f"{HASH_BOUND_PREFIX}{self.security_hash}"


Token = Union[SignedToken, HashBoundToken]


class KeyRing:
    """Signing keys by kid. Only the active kid signs; the rest verify only."""

    def __init__(self, keys: Mapping[str, str], active_kid: str):
        self._keys = {kid: secret for kid, secret in keys.items() if secret}
        self.active_kid = active_kid

    def signing_key(self) -> Tuple[str, str]:
        secret = self._keys.get(self.active_kid)
        if not secret:
            raise ConfigurationError(f"No signing secret configured for active kid '{self.active_kid}'")
        return self.active_kid, secret

    def verification_key(self, kid: str) -> Optional[str]:
        if not self._keys:
            raise ConfigurationError("No signing keys configured")
        return self._keys.get(kid)


class TokenCodec:
    def __init__(
        self,
        keyring: KeyRing,
        issuer: str,
        wallet_secret: str = "",
        hash_length: int = 16,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.keyring = keyring
        self.issuer = issuer
        self.wallet_secret = wallet_secret
        self.hash_length = hash_length
        self.clock = clock

    # --- signed tokens ---

    def issue(
        self,
        audience: Audience,
        *,
        expires_at: datetime,
        pass_id: Optional[UUID] = None,
        host_id: Optional[str] = None,
        nonce: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> IssuedToken:
        kid, secret = self.keyring.signing_key()
        issued = as_utc(now or self.clock())
        expires_at = as_utc(expires_at)
        jti = str(uuid4())

        claims: Dict[str, Any] = dict(extra or {})
        claims.update({
            "iss": self.issuer,
            "aud": audience.value,
            "iat": int(issued.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": jti,
        })
        if pass_id is not None:
            claims["passId"] = str(pass_id)
        if host_id is not None:
            claims["hostId"] = str(host_id)
        if nonce is not None:
            claims["nonce"] = nonce

        token = jwt.encode(claims, secret, algorithm=ALGORITHM, headers={"kid": kid})
        return IssuedToken(token=token, jti=jti, nonce=nonce, expires_at=expires_at)

    def verify(self, raw: str, audience: Audience, now: Optional[datetime] = None) -> Result[SignedToken]:
        """Check expiry, kid, signature, issuer and audience, in that order."""
        now = as_utc(now or self.clock())

        try:
            unverified = jwt.get_unverified_claims(raw)
            header = jwt.get_unverified_header(raw)
        except JWTError:
            return fail(FailureKind.TOKEN_INVALID, "Invalid token format")

        exp = unverified.get("exp")
        if not isinstance(exp, (int, float)):
            return fail(FailureKind.TOKEN_INVALID, "Token has no expiration")
        if exp <= now.timestamp():
            return fail(FailureKind.TOKEN_EXPIRED, "Token has expired")

        kid = header.get("kid")
        if not kid:
            return fail(FailureKind.TOKEN_INVALID, "Missing kid")
        secret = self.keyring.verification_key(str(kid))
        if secret is None:
            return fail(FailureKind.TOKEN_INVALID, "Unknown signing key")

        try:
            claims = jwt.decode(
                raw,
                secret,
                algorithms=[ALGORITHM],
                audience=audience.value,
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTClaimsError as e:
            text = str(e).lower()
            if "audience" in text:
                return fail(FailureKind.TOKEN_INVALID, "Token audience mismatch")
            if "issuer" in text:
                return fail(FailureKind.TOKEN_INVALID, "Token issuer mismatch")
            return fail(FailureKind.TOKEN_INVALID, "Invalid token claims")
        except JWTError:
            return fail(FailureKind.TOKEN_INVALID, "Token signature verification failed")

        # jose skips the audience check when the claim is absent
        if claims.get("aud") != audience.value:
            return fail(FailureKind.TOKEN_INVALID, "Token audience mismatch")

        jti = claims.get("jti")
        if not jti:
            return fail(FailureKind.TOKEN_INVALID, "Token has no jti")

        pass_id: Optional[UUID] = None
        if claims.get("passId"):
            try:
                pass_id = UUID(str(claims["passId"]))
            except ValueError:
                return fail(FailureKind.TOKEN_INVALID, "Token carries an invalid pass id")

        iat = claims.get("iat")
        return Ok(SignedToken(
            kid=str(kid),
            audience=audience,
            jti=str(jti),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if isinstance(iat, (int, float)) else None,
            pass_id=pass_id,
            host_id=claims.get("hostId"),
            nonce=claims.get("nonce"),
            claims=claims,
        ))

    # --- hash-bound (enhanced QR) tokens ---

    def security_hash(self, pass_id: UUID, guest_email: str, resident_id: str) -> str:
        if not self.wallet_secret:
            raise ConfigurationError("WALLET_SECRET is not configured")
        material = f"{pass_id}_{guest_email}_{resident_id}_{self.wallet_secret}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()[: self.hash_length]

    def encode_hash_bound(
        self,
        *,
        pass_id: UUID,
        guest_email: str,
        resident_id: str,
        valid_until: datetime,
        guest_name: Optional[str] = None,
        pass_type: str = "web",
    ) -> str:
        payload = {
            "passId": str(pass_id),
            "guestName": guest_name,
            "guestEmail": guest_email,
            "residentId": str(resident_id),
            "securityHash": self.security_hash(pass_id, guest_email, str(resident_id)),
            "validUntil": as_utc(valid_until).isoformat(),
            "passType": pass_type,
        }
        return json.dumps(payload, separators=(",", ":"))

    @staticmethod
    def parse_hash_bound(raw: str) -> Optional[Dict[str, Any]]:
        """Return the JSON payload if ``raw`` looks like an enhanced QR, else None."""
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if isinstance(data, dict) and data.get("passId") and data.get("securityHash"):
            return data
        return None

    def verify_hash_bound(self, data: Dict[str, Any], now: Optional[datetime] = None) -> Result[HashBoundToken]:
        now = as_utc(now or self.clock())

        valid_until: Optional[datetime] = None
        if data.get("validUntil"):
            try:
                valid_until = as_utc(datetime.fromisoformat(str(data["validUntil"]).replace("Z", "+00:00")))
            except ValueError:
                return fail(FailureKind.TOKEN_INVALID, "Invalid validUntil")
            if valid_until <= now:
                return fail(FailureKind.TOKEN_EXPIRED, "Pass expired")

        guest_email = data.get("guestEmail")
        resident_id = data.get("residentId")
        if not guest_email or not resident_id:
            return fail(FailureKind.TOKEN_INVALID, "Incomplete guest pass data")

        try:
            pass_id = UUID(str(data["passId"]))
        except ValueError:
            return fail(FailureKind.TOKEN_INVALID, "Invalid pass id")

        expected = self.security_hash(pass_id, str(guest_email), str(resident_id))
        presented = str(data.get("securityHash", ""))
        if not hmac.compare_digest(expected, presented):
            return fail(FailureKind.TOKEN_INVALID, "Invalid security hash")

        return Ok(HashBoundToken(
            pass_id=pass_id,
            guest_email=str(guest_email),
            resident_id=str(resident_id),
            security_hash=presented,
            valid_until=valid_until,
            guest_name=data.get("guestName"),
            pass_type=str(data.get("passType") or "web"),
        ))

    # --- door dispatch ---

    def verify_door(self, raw: str, now: Optional[datetime] = None) -> Result[Token]:
        """Single entry point for anything presented at the door."""
        data = self.parse_hash_bound(raw)
        if data is not None:
            return self.verify_hash_bound(data, now=now)
        return self.verify(raw, Audience.DOOR_SCANNER, now=now)
