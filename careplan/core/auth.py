"""
Reviewer identity via Firebase ID tokens.
PHI-safe: never log tokens, uid, email, or user data.
"""
import json
import os
import secrets
import socket
from enum import Enum
from typing import Optional

import firebase_admin
from firebase_admin import auth, credentials
from fastapi import HTTPException, Request, status

from careplan.core.config import get_settings
from careplan.core.logging import get_safe_logger

logger = get_safe_logger(__name__)

DEV_UID = "dev_uid"

# Global Firebase app instance
_firebase_app: Optional[firebase_admin.App] = None


class CredentialMode(str, Enum):
    """Firebase credential initialization mode."""
    SERVICE_ACCOUNT_JSON = "service_account_json"
    SERVICE_ACCOUNT_FILE = "service_account_file"
    ADC = "adc"


class AuthErrorCode(str, Enum):
    """PHI-safe error codes for authentication failures."""
    CERT_FETCH_FAILED = "CERT_FETCH_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    TOKEN_INVALID = "TOKEN_INVALID"
    PROJECT_MISMATCH = "PROJECT_MISMATCH"
    CLOCK_SKEW = "CLOCK_SKEW"
    UNKNOWN_AUTH_ERROR = "UNKNOWN_AUTH_ERROR"


def init_firebase() -> firebase_admin.App:
    """
    Initialize Firebase Admin SDK singleton.

    Priority order:
    1. FIREBASE_CREDENTIALS_JSON env var (JSON string)
    2. GOOGLE_APPLICATION_CREDENTIALS (settings or env, file path)
    3. Application Default Credentials (ADC)
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    settings = get_settings()
    credential_mode = CredentialMode.ADC
    cred: Optional[credentials.Base] = None
    credentials_file = (
        settings.google_application_credentials
        or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    )

    try:
        if settings.firebase_credentials_json:
            cred = credentials.Certificate(json.loads(settings.firebase_credentials_json))
            credential_mode = CredentialMode.SERVICE_ACCOUNT_JSON
        elif credentials_file:
            cred = credentials.Certificate(credentials_file)
            credential_mode = CredentialMode.SERVICE_ACCOUNT_FILE

        options = {"projectId": settings.firebase_project_id}
        if cred is not None:
            _firebase_app = firebase_admin.initialize_app(cred, options)
        else:
            _firebase_app = firebase_admin.initialize_app(options=options)

        logger.info("Firebase initialized", credential_mode=credential_mode.value)
        return _firebase_app

    except Exception as e:
        logger.error(
            "Failed to initialize Firebase",
            error_code="FIREBASE_INIT_ERROR",
            exception_class=type(e).__name__
        )
        raise


def _classify_auth_exception(exc: Exception) -> AuthErrorCode:
    """
    Classify Firebase auth exceptions into PHI-safe error codes.
    Exception messages are inspected but never logged.
    """
    exc_class_name = type(exc).__name__.lower()
    exc_message_lower = str(exc).lower()

    if isinstance(exc, auth.ExpiredIdTokenError):
        return AuthErrorCode.TOKEN_EXPIRED

    if isinstance(exc, auth.RevokedIdTokenError):
        return AuthErrorCode.TOKEN_REVOKED

    if isinstance(exc, auth.InvalidIdTokenError):
        if "wrong audience" in exc_message_lower or "aud" in exc_message_lower:
            return AuthErrorCode.PROJECT_MISMATCH
        if "issued in the future" in exc_message_lower or "iat" in exc_message_lower:
            return AuthErrorCode.CLOCK_SKEW
        if "has expired" in exc_message_lower:
            return AuthErrorCode.TOKEN_EXPIRED
        return AuthErrorCode.TOKEN_INVALID

    if isinstance(exc, auth.CertificateFetchError):
        return AuthErrorCode.CERT_FETCH_FAILED

    if isinstance(exc, (socket.timeout, socket.gaierror, ConnectionError)):
        return AuthErrorCode.NETWORK_ERROR

    if "cert" in exc_class_name:
        return AuthErrorCode.CERT_FETCH_FAILED

    if any(marker in exc_class_name for marker in ("network", "connection", "timeout")):
        return AuthErrorCode.NETWORK_ERROR

    return AuthErrorCode.UNKNOWN_AUTH_ERROR


def _auth_failed(error_code: AuthErrorCode, exception_class: str) -> HTTPException:
    logger.warning(
        "Token verification failed",
        error_code=error_code.value,
        exception_class=exception_class
    )
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Authentication failed ({error_code.value})"
    )


def verify_firebase_token(token: str) -> str:
    """
    Verify token and return the user's UID.

    - firebase: Uses Firebase Admin SDK to verify ID token
    - dev: Accepts DEV_BEARER_TOKEN and returns fixed uid "dev_uid"
    """
    settings = get_settings()

    if settings.auth_mode == "dev":
        if secrets.compare_digest(token.strip(), settings.dev_bearer_token):
            return DEV_UID
        raise _auth_failed(AuthErrorCode.TOKEN_INVALID, "DevAuthError")

    if _firebase_app is None:
        init_firebase()

    try:
        decoded_token = auth.verify_id_token(token)
        uid: str = decoded_token["uid"]
        return uid
    except Exception as exc:
        raise _auth_failed(_classify_auth_exception(exc), type(exc).__name__)


def extract_bearer_token(request: Request) -> str:
    """
    Extract Bearer token from Authorization header.

    Raises:
        HTTPException: If header is missing or malformed
    """
    auth_header = request.headers.get("Authorization")

    if not auth_header:
        logger.warning("Missing authorization header", error_code="NO_AUTH_HEADER")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header"
        )

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("Invalid authorization header format", error_code="INVALID_AUTH_FORMAT")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: Bearer <token>"
        )

    return parts[1].strip()


async def verify_auth_header(request: Request) -> None:
    """
    Router-level dependency that verifies auth BEFORE body parsing.
    Stores the authenticated uid in request.state for reviewer identity.
    """
    token = extract_bearer_token(request)
    request.state.uid = verify_firebase_token(token)


async def get_current_user(request: Request) -> str:
    """
    Return the authenticated reviewer uid - DO NOT LOG.

    Reuses the uid stored by verify_auth_header when present.
    """
    uid = getattr(request.state, "uid", None)
    if uid:
        return uid
    token = extract_bearer_token(request)
    return verify_firebase_token(token)
