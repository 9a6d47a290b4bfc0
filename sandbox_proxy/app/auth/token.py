"""
Bearer Token Issuer
===================

Creates the signed JWT the proxy presents to the remote sandbox.

The token asserts the sandbox identity through the ``iss`` claim and expires
24 hours after issuance. It is issued once at startup and never refreshed.
Signing uses an asymmetric algorithm; the private key type must match the
algorithm family (RSA for RS*/PS*, EC for ES*).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.exceptions import InvalidTokenError, PyJWTError

from ..errors import SigningError, SigningKeyError

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = timedelta(hours=24)

DEFAULT_ALGORITHM = "RS256"

# Algorithm -> private key type it requires
SUPPORTED_ALGORITHMS = {
    "RS256": rsa.RSAPrivateKey,
    "RS384": rsa.RSAPrivateKey,
    "RS512": rsa.RSAPrivateKey,
    "PS256": rsa.RSAPrivateKey,
    "PS384": rsa.RSAPrivateKey,
    "PS512": rsa.RSAPrivateKey,
    "ES256": ec.EllipticCurvePrivateKey,
    "ES384": ec.EllipticCurvePrivateKey,
    "ES512": ec.EllipticCurvePrivateKey,
}


# =============================================================================
# Key Loading
# =============================================================================

def load_signing_key(pem: Union[bytes, str], algorithm: str = DEFAULT_ALGORITHM):
    """
    Parse a PEM-encoded private key and check it fits the algorithm.

    Args:
        pem: PEM private key material (unencrypted, PKCS#1 or PKCS#8)
        algorithm: JWT algorithm the key will be used with

    Returns:
        Private key object usable by PyJWT

    Raises:
        SigningError: If the algorithm is not supported
        SigningKeyError: If the key cannot be parsed or has the wrong type
    """
    expected_type = SUPPORTED_ALGORITHMS.get(algorithm)
    if expected_type is None:
        raise SigningError(
            f"Unsupported signing algorithm: {algorithm}. "
            f"Expected one of {sorted(SUPPORTED_ALGORITHMS)}"
        )

    if isinstance(pem, str):
        pem = pem.encode("utf-8")

    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as e:
        raise SigningKeyError(f"Cannot parse private key: {e}") from e

    if not isinstance(key, expected_type):
        raise SigningKeyError(
            f"Private key of type {type(key).__name__} cannot sign {algorithm} tokens"
        )

    return key


# =============================================================================
# Token Creation
# =============================================================================

def issue_bearer_token(
    identity: str,
    signing_key: Union[bytes, str],
    now: Optional[datetime] = None,
    algorithm: str = DEFAULT_ALGORITHM,
    log: Optional[logging.Logger] = None,
) -> str:
    """
    Issue a signed bearer token asserting ``identity``.

    Args:
        identity: Sandbox name, placed in the ``iss`` claim
        signing_key: PEM-encoded private key
        now: Issuance time (defaults to the current UTC time)
        algorithm: Asymmetric JWT algorithm
        log: Logger to report through (defaults to this module's logger)

    Returns:
        Encoded JWT string

    Raises:
        SigningKeyError: If the key cannot be parsed or does not match
        SigningError: If signing fails
    """
    log = log or logger
    log.info("Generating bearer token")

    key = load_signing_key(signing_key, algorithm)

    now = now or datetime.now(timezone.utc)
    payload = {
        "iss": identity,
        "exp": int((now + TOKEN_LIFETIME).timestamp()),
    }

    try:
        token = jwt.encode(payload, key, algorithm=algorithm)
    except (PyJWTError, ValueError, TypeError) as e:
        log.error(f"Failed to sign bearer token: {e}")
        raise SigningError(f"Failed to sign bearer token: {e}") from e

    log.debug(
        "Bearer token issued",
        extra={"issuer": identity, "algorithm": algorithm, "expires_at": payload["exp"]}
    )

    return token


def token_expiry(now: Optional[datetime] = None) -> datetime:
    """Expiry matching a token issued at ``now``, truncated to whole seconds."""
    now = now or datetime.now(timezone.utc)
    return datetime.fromtimestamp(int((now + TOKEN_LIFETIME).timestamp()), tz=timezone.utc)


# =============================================================================
# Token Verification
# =============================================================================

def decode_bearer_token(
    token: str,
    public_key: Union[bytes, str, Any],
    algorithm: str = DEFAULT_ALGORITHM,
    verify_exp: bool = True,
) -> Dict[str, Any]:
    """
    Verify a bearer token and return its claims.

    Raises:
        SigningError: If the token is invalid or its signature does not verify
    """
    try:
        return jwt.decode(
            token,
            public_key,
            algorithms=[algorithm],
            options={
                "verify_signature": True,
                "verify_exp": verify_exp,
                "require": ["iss", "exp"],
            },
        )
    except InvalidTokenError as e:
        raise SigningError(f"Invalid bearer token: {e}") from e
