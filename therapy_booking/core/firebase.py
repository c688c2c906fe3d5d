"""Firebase Admin SDK initialization and caller identity."""

import json
import os
from dataclasses import dataclass

import firebase_admin
from firebase_admin import auth, credentials
from structlog import get_logger

logger = get_logger(__name__)

_firebase_app: firebase_admin.App | None = None

VALID_ROLES = {"client", "therapist", "admin"}


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller resolved from a Firebase ID token."""

    uid: str
    email: str | None = None
    role: str = "client"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def initialize_firebase(
    firebase_credentials_path: str | None = None, firebase_config_json: str | None = None
) -> None:
    """
    Initialize Firebase Admin SDK.

    Args:
        firebase_credentials_path: Optional path to service account JSON file.
        firebase_config_json: Optional raw JSON string of service account.

    Credentials are taken from the raw JSON first, then the file path, and
    finally Application Default Credentials.
    """
    global _firebase_app

    if _firebase_app is not None:
        logger.info("firebase_already_initialized")
        return

    try:
        cred = None

        if firebase_config_json:
            logger.info("firebase_init_from_json")
            cred = credentials.Certificate(json.loads(firebase_config_json))
        elif firebase_credentials_path and os.path.exists(firebase_credentials_path):
            logger.info("firebase_init_from_file", path=firebase_credentials_path)
            cred = credentials.Certificate(firebase_credentials_path)

        if cred:
            _firebase_app = firebase_admin.initialize_app(cred)
        else:
            _firebase_app = firebase_admin.initialize_app()
            logger.info("firebase_init_default_credentials")

    except Exception as e:
        logger.error("firebase_init_failed", error=str(e))
        raise


def identity_from_claims(claims: dict) -> CallerIdentity:
    """Build a caller identity from decoded token claims.

    The role comes from the ``role`` custom claim and defaults to client.
    """
    uid = claims.get("uid") or claims.get("sub")
    if not uid:
        raise ValueError("Token does not carry a user id")

    role = str(claims.get("role") or "client").lower()
    if role not in VALID_ROLES:
        role = "client"

    return CallerIdentity(uid=uid, email=claims.get("email"), role=role)


async def verify_firebase_token(id_token: str) -> CallerIdentity:
    """
    Verify a Firebase ID token and return the caller identity.

    Raises:
        ValueError: If the token is invalid, expired or cannot be verified
    """
    try:
        decoded_token = auth.verify_id_token(id_token, clock_skew_seconds=10)
    except auth.InvalidIdTokenError as e:
        logger.warning("firebase_token_invalid", error=str(e))
        raise ValueError(f"Invalid Firebase ID token: {e!s}")
    except Exception as e:
        logger.error("firebase_token_verification_failed", error=str(e))
        raise ValueError(f"Token verification failed: {e!s}")

    identity = identity_from_claims(decoded_token)
    logger.debug("firebase_token_verified", uid=identity.uid, role=identity.role)
    return identity
