"""
Webhook Signature Helpers
HMAC schemes used by the call, payment and messaging providers
"""
import base64
import hashlib
import hmac
from typing import Dict, Optional

from salescaller.domain.exceptions import WebhookAuthenticationError
from salescaller.domain.models.webhook import WebhookRequest


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_hmac_sha256(raw_body: bytes, secret: str, incoming_signature: str) -> bool:
    """Compare a hex HMAC-SHA256 of the body, accepting an optional 'sha256=' prefix."""
    provided = incoming_signature.strip()
    if provided.startswith("sha256="):
        provided = provided.split("=", 1)[1]
    return hmac.compare_digest(hmac_sha256_hex(secret, raw_body), provided)


def require_hmac_signature(
    request: WebhookRequest,
    secret: Optional[str],
    header_names: list,
    provider: str
) -> None:
    """
    Check the body signature carried in one of the given headers.

    An empty secret disables the check (local development).

    Raises:
        WebhookAuthenticationError: Header missing or signature mismatch
    """
    if not secret:
        return

    signature = None
    for name in header_names:
        signature = request.header(name)
        if signature:
            break

    if not signature:
        raise WebhookAuthenticationError(f"missing {provider} signature header")
    if not verify_hmac_sha256(request.body, secret, signature):
        raise WebhookAuthenticationError(f"invalid {provider} signature")


def twilio_signature(url: str, params: Dict[str, str], auth_token: str) -> str:
    """
    Twilio request signature: base64 HMAC-SHA1 over the full URL followed
    by every POST parameter name and value, sorted by name.
    """
    message = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), message.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def billplz_x_signature(params: Dict[str, str], signature_key: str) -> str:
    """
    Billplz X Signature: every parameter except x_signature as "keyvalue",
    sorted case-insensitively, joined with "|", HMAC-SHA256 hex.
    """
    parts = [f"{key}{value}" for key, value in params.items() if key != "x_signature"]
    source = "|".join(sorted(parts, key=str.lower))
    return hmac_sha256_hex(signature_key, source.encode("utf-8"))
