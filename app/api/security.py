"""
Webhook Signature Verification

Providers sign each delivery with HMAC-SHA256 of the raw request body
using the per-instance webhook secret. The signature arrives in the
`X-Webhook-Signature` header, optionally prefixed with `sha256=`.
"""

import hashlib
import hmac
import logging
from typing import Optional

from app.channels.config import ChannelInstance
from app.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """
    Check a provider signature against the body.

    Comparison is constant-time.
    """
    if not signature:
        return False
    signature = signature.strip()
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected, signature.lower())


def is_webhook_authorized(
    instance: ChannelInstance,
    body: bytes,
    signature: Optional[str],
    allow_unsigned: Optional[bool] = None,
) -> bool:
    """
    Decide whether a webhook delivery may be processed.

    Instances without a configured secret are accepted only when unsigned
    deliveries are allowed (development by default).
    """
    secret = instance.config.webhook.secret
    if not secret:
        if allow_unsigned is None:
            allow_unsigned = settings.is_development
        if not allow_unsigned:
            logger.warning(f"Instance {instance.id} has no webhook secret; rejecting delivery")
        return allow_unsigned

    if verify_signature(secret, body, signature):
        return True

    logger.warning(f"Invalid webhook signature for instance {instance.id}")
    return False
