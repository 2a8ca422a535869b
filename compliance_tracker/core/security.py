"""Signed unsubscribe tokens for one-click email opt-out.

Token format: base64url (no padding) of ``<user_id>:<kind>:<signature>``
where ``signature`` is the first 16 hex characters of
HMAC-SHA256(secret, ``<user_id>:<kind>``).
"""

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from enum import Enum

from .config import get_settings


class UnsubscribeKind(str, Enum):
    """Email categories a user can opt out of."""

    STATUS_CHANGES = "status_changes"
    REMINDERS = "reminders"
    TEAM_UPDATES = "team_updates"
    ALL = "all"


SIGNATURE_LENGTH = 16


@dataclass(frozen=True)
class UnsubscribeClaim:
    """A verified unsubscribe request."""

    user_id: str
    kind: UnsubscribeKind


def _sign(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()[:SIGNATURE_LENGTH]


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_unsubscribe_token(
    user_id: str,
    kind: UnsubscribeKind | str,
    secret: str | None = None,
) -> str:
    """Generate a signed unsubscribe token for a user and email kind."""
    kind = UnsubscribeKind(kind)
    secret = secret or get_settings().unsubscribe_signing_key
    payload = f"{user_id}:{kind.value}"
    return _b64url_encode(f"{payload}:{_sign(payload, secret)}".encode("utf-8"))


def verify_unsubscribe_token(
    token: str,
    secret: str | None = None,
) -> UnsubscribeClaim | None:
    """
    Verify and decode an unsubscribe token.

    Returns None for anything that is not a token this service issued:
    undecodable input, a wrong number of parts, a bad signature or an
    unknown kind.
    """
    if not token:
        return None

    secret = secret or get_settings().unsubscribe_signing_key

    try:
        raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        decoded = raw.decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None

    # Reject non-canonical encodings (e.g. altered padding bits)
    if _b64url_encode(raw) != token:
        return None

    parts = decoded.split(":")
    if len(parts) != 3:
        return None

    user_id, kind, signature = parts
    expected = _sign(f"{user_id}:{kind}", secret)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return None

    try:
        return UnsubscribeClaim(user_id=user_id, kind=UnsubscribeKind(kind))
    except ValueError:
        return None


def get_unsubscribe_url(
    user_id: str,
    kind: UnsubscribeKind | str,
    site_url: str | None = None,
    secret: str | None = None,
) -> str:
    """One-click unsubscribe URL for an email footer."""
    base = (site_url or get_settings().site_url).rstrip("/")
    return f"{base}/api/unsubscribe?token={generate_unsubscribe_token(user_id, kind, secret)}"


def get_email_preferences_url(site_url: str | None = None) -> str:
    """Link to the email preferences settings page."""
    base = (site_url or get_settings().site_url).rstrip("/")
    return f"{base}/settings/email-preferences"

