"""Inbound request verification for Slack and Google Chat webhooks."""

from __future__ import annotations

import hmac
import time
from hashlib import sha256
from typing import Mapping

from google.auth.exceptions import GoogleAuthError
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
import structlog

SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
GOOGLE_CHAT_AUTH_HEADER = "Authorization"
GOOGLE_CHAT_ISSUER = "chat@system.gserviceaccount.com"
GOOGLE_CHAT_CERTS_URL = (
    "https://www.googleapis.com/service_accounts/v1/metadata/x509/chat@system.gserviceaccount.com"
)
BEARER_PREFIX = "Bearer "
VERSION = "v0"
DEFAULT_TOLERANCE = 60 * 5


def compute_signature(signing_secret: str, timestamp: str, body: str) -> str:
    """Return the ``v0=<hex>`` signature Slack sends for *body*."""

    message = ":".join((VERSION, timestamp, body)).encode("utf-8")
    mac = hmac.new(signing_secret.encode("utf-8"), message, sha256)
    return f"{VERSION}={mac.hexdigest()}"


def _fresh(timestamp: str, tolerance: int) -> bool:
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False
    return abs(int(time.time()) - sent_at) <= tolerance


def is_valid_slack_request(
    *, signing_secret: str, timestamp: str, body: str, signature: str, tolerance: int = DEFAULT_TOLERANCE
) -> bool:
    """Accept only correctly signed requests sent within *tolerance* seconds."""

    if not (timestamp and signature) or not _fresh(timestamp, tolerance):
        return False
    return hmac.compare_digest(compute_signature(signing_secret, timestamp, body), signature)


def slack_request_is_valid(signing_secret: str, headers: Mapping[str, str], body: str) -> bool:
    return is_valid_slack_request(
        signing_secret=signing_secret,
        timestamp=headers.get(SLACK_TIMESTAMP_HEADER, ""),
        body=body,
        signature=headers.get(SLACK_SIGNATURE_HEADER, ""),
    )


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None


def is_valid_google_chat_request(*, audience: str | None, authorization: str | None) -> bool:
    """Verify the Google-signed JWT Google Chat sends as a bearer token.

    The token must be signed with one of the Chat service account's keys,
    issued by that account and addressed to *audience* (the project number
    configured for the Chat app). An unconfigured audience rejects every
    request.
    """

    token = _bearer_token(authorization)
    if not audience or not token:
        return False

    try:
        claims = id_token.verify_token(
            token,
            google_requests.Request(),
            audience=audience,
            certs_url=GOOGLE_CHAT_CERTS_URL,
        )
    except (ValueError, GoogleAuthError) as exc:
        structlog.get_logger().warning("googlechat_token_rejected", error=str(exc))
        return False

    return claims.get("iss") == GOOGLE_CHAT_ISSUER
