"""
auth/tokens.py -- Password hashing, token minting, and credential generation.

Security design decisions:
  Passwords: bcrypt with a fixed work factor. Bcrypt's cost factor makes
       brute-force of low-entropy secrets expensive, and checkpw() does the
       constant-time comparison. The _DUMMY_HASH constant enables timing
       equalization in authenticate() so response time does not reveal
       whether an e-mail is registered [C1].

  Access tokens: python-jose with HS256. Claims are {sub, email, role} plus
       iat/exp, lifetime 15 minutes. Verification is signature + expiry only,
       no persistence lookup.

  Refresh tokens: 64 random bytes, hex-encoded. No embedded claims -- validity
       is a store lookup, which is what makes server-side revocation possible.

  API keys / signup keys: secrets.token_hex(32) behind a fixed prefix so keys
       are recognisable in UI and logs. We store HMAC-SHA256(SECRET_KEY, raw)
       so lookup is O(1); bcrypt's slowness is unnecessary for 256-bit keys.

  Verification codes: 6 digits, uniform over 100000-999999, from secrets.

TokenIssuer takes the Settings object at construction; there is no module-level
secret. Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from auth.errors import Unauthorized

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import AccountStore
    from core.config import Settings

logger = logging.getLogger("nanoadmin.auth")

_ALGORITHM = "HS256"
_BCRYPT_ROUNDS = 10
_BCRYPT_MAX_BYTES = 72
_KEY_DISPLAY_CHARS = 12


class InvalidToken(Unauthorized):
    """Access token signature is bad, the token is malformed, or it has expired."""

    default_message = "Invalid or expired token."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Credential hasher
# ---------------------------------------------------------------------------


def _password_bytes(plain: str) -> bytes:
    """UTF-8 encode and clip to bcrypt's 72-byte input limit."""
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Only the first 72 UTF-8 bytes take part in the hash, the same clip
    verify_password applies. The API layer caps password length at 128
    characters.
    """
    salt = bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    return bcrypt.hashpw(_password_bytes(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("nanoadmin_timing_dummy")


def authenticate(store: AccountStore, email: str, password: str) -> User | None:
    """Return the live account whose password matches, else None.

    Always runs bcrypt whether or not the e-mail exists [C1]. Account status
    is NOT checked here: login needs to tell pending and blocked accounts
    apart after the password has been proven.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Token issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and validates every credential type the system hands out.

    Usage:
        issuer = TokenIssuer(get_settings())
        token = issuer.create_access_token(user)
        claims = issuer.decode_access_token(token)   # raises InvalidToken
    """

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.secret_key
        self.access_ttl = timedelta(seconds=settings.access_token_expire_seconds)
        self.refresh_ttl = timedelta(days=settings.refresh_token_expire_days)
        self.code_ttl = timedelta(minutes=settings.verification_code_expire_minutes)
        self.api_key_prefix = settings.api_key_prefix
        self.signup_key_prefix = settings.signup_key_prefix

    # -- access tokens -------------------------------------------------------

    def create_access_token(self, user: User, issued_at: datetime | None = None) -> str:
        """Encode a signed JWT carrying the account id, e-mail and role.

        issued_at defaults to now; the token expires exactly access_ttl later.
        """
        iat = issued_at or _utcnow()
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role.value,
            "iat": iat,
            "exp": iat + self.access_ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def decode_access_token(self, token: str) -> dict[str, Any]:
        """Verify signature and expiry and return the claims.

        Raises InvalidToken on any failure -- bad signature, expired, wrong
        algorithm, or missing identity claims.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidToken() from exc
        if not payload.get("sub") or "role" not in payload:
            raise InvalidToken()
        return payload

    # -- refresh tokens ------------------------------------------------------

    @staticmethod
    def generate_refresh_token() -> str:
        return secrets.token_hex(64)

    def refresh_token_expiry(self, now: datetime | None = None) -> datetime:
        return (now or _utcnow()) + self.refresh_ttl

    # -- verification codes --------------------------------------------------

    @staticmethod
    def generate_verification_code() -> str:
        """Return a 6-digit code drawn uniformly from 100000-999999."""
        return str(100000 + secrets.randbelow(900000))

    def verification_code_expiry(self, now: datetime | None = None) -> datetime:
        return (now or _utcnow()) + self.code_ttl

    # -- API keys and signup keys --------------------------------------------

    def generate_api_key(self) -> str:
        """Generate a new API key: <prefix><64 hex chars> (256 bits of entropy)."""
        return f"{self.api_key_prefix}{secrets.token_hex(32)}"

    def generate_signup_key(self) -> str:
        return f"{self.signup_key_prefix}{secrets.token_hex(32)}"

    def is_api_key(self, raw: str) -> bool:
        return raw.startswith(self.api_key_prefix)

    def hash_key(self, raw_key: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_key) as a hex string.

        An attacker who obtains the database cannot use the digests without
        also knowing SECRET_KEY.
        """
        return hmac.new(self._secret.encode(), raw_key.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def display_prefix(raw_key: str) -> str:
        return raw_key[:_KEY_DISPLAY_CHARS]
