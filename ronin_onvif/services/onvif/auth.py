"""WS-Security UsernameToken digest for ONVIF requests."""

import base64
import hashlib
import secrets
from typing import Optional


def compute_digest(
    username: str,
    password: str,
    created: str,
    nonce: Optional[bytes] = None,
) -> tuple[str, str]:
    """Compute a PasswordDigest for a UsernameToken.

    PasswordDigest = Base64(SHA1(nonce + created + password))

    Args:
        username: Device username (not part of the digest, kept for the
            collaborator signature)
        password: Device password
        created: ISO 8601 timestamp placed in the ``Created`` element
        nonce: Raw nonce bytes; a random 16-byte nonce is generated when omitted

    Returns:
        Tuple of (base64 digest, base64 nonce)
    """
    if nonce is None:
        nonce = secrets.token_bytes(16)
    digest_input = nonce + created.encode("utf-8") + password.encode("utf-8")
    digest = base64.b64encode(hashlib.sha1(digest_input).digest()).decode("ascii")
    return digest, base64.b64encode(nonce).decode("ascii")
