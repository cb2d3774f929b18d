"""Webhook signature verification and branch filtering."""

import hashlib
import hmac

from autodeploy.utils.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """Compute the ``sha256=<hex>`` signature of a raw request body."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def is_deploy_ref(ref: str, branch: str) -> bool:
    """Only pushes to ``refs/heads/<branch>`` trigger a deployment."""
    return ref == f"refs/heads/{branch}"


class WebhookVerifier:
    """Verifies HMAC-SHA256 signatures on webhook deliveries.

    When no secret is configured every request is accepted if
    ``allow_unsigned`` is set (development only) and rejected otherwise.
    """

    def __init__(self, secret: str = "", allow_unsigned: bool = False):
        self.secret = secret
        self.allow_unsigned = allow_unsigned

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def verify(self, body: bytes, signature: str | None) -> bool:
        """Check a provided signature header against the raw body."""
        if not self.secret:
            if self.allow_unsigned:
                logger.warning("webhook.secret_not_configured", action="skipping_verification")
                return True
            logger.error("webhook.secret_not_configured", action="rejecting")
            return False

        if not signature:
            return False

        expected = compute_signature(self.secret, body)
        try:
            provided = signature.encode("ascii")
        except UnicodeEncodeError:
            return False
        return hmac.compare_digest(provided, expected.encode("ascii"))
