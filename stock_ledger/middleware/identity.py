"""Caller identity verification.

The identity provider signs the JSON array ``["<id>", "<name>"]`` with the
shared secret and sends the result, base64 encoded, in ``X-Caller-Signature``.
JSON quoting keeps the id/name boundary unambiguous whatever characters a
display name contains.
"""

import base64
import hashlib
import hmac
import json
from typing import Optional

from ..models.identity import CallerIdentity
from ..utils.config import get_config
from ..utils.exceptions import IdentityValidationError
from ..utils.logger import get_api_logger

CALLER_ID_HEADER = "X-Caller-Id"
CALLER_NAME_HEADER = "X-Caller-Name"
CALLER_SIGNATURE_HEADER = "X-Caller-Signature"


def identity_message(caller_id: str, caller_name: str) -> bytes:
    """Canonical bytes signed for a caller."""
    return json.dumps([caller_id, caller_name], separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_identity(caller_id: str, caller_name: str, secret: str) -> str:
    """Compute the signature the identity provider attaches to a caller."""
    message = identity_message(caller_id, caller_name)
    return base64.b64encode(
        hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    ).decode("utf-8")


class IdentityValidator:
    """Validates signed caller identity headers."""

    def __init__(self):
        """Initialize identity validator."""
        config = get_config()
        self.secret = config.env.identity_secret
        self.logger = get_api_logger()
        self.validate_enabled = config.identity.validate_signature

    def validate(
        self,
        caller_id: Optional[str],
        caller_name: Optional[str],
        signature_header: Optional[str]
    ) -> CallerIdentity:
        """
        Build the caller identity from request headers.

        Args:
            caller_id: Value of X-Caller-Id
            caller_name: Value of X-Caller-Name
            signature_header: Value of X-Caller-Signature

        Returns:
            The verified caller

        Raises:
            IdentityValidationError: If a header is missing or the signature is wrong
        """
        if not caller_id:
            raise IdentityValidationError(
                "Missing caller identity header",
                details={"header": CALLER_ID_HEADER}
            )

        caller_name = caller_name or caller_id

        if not self.validate_enabled:
            self.logger.warning("Caller signature validation is disabled!")
            return CallerIdentity(id=caller_id, name=caller_name)

        if not signature_header:
            raise IdentityValidationError(
                "Missing caller signature header",
                details={"header": CALLER_SIGNATURE_HEADER}
            )

        expected_signature = sign_identity(caller_id, caller_name, self.secret)

        if not hmac.compare_digest(expected_signature.encode("utf-8"), signature_header.encode("utf-8")):
            raise IdentityValidationError(
                "Invalid caller signature",
                details={
                    "caller_id": caller_id,
                    "received": signature_header[:10] + "..."
                }
            )

        self.logger.debug(f"Caller identity validated: {caller_id}")
        return CallerIdentity(id=caller_id, name=caller_name)
