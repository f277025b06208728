import base64
import json
import logging
import re
import time
from typing import Optional

import httpx
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509 import load_pem_x509_certificate
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import FIREBASE_PROJECT_ID
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

security = HTTPBearer()

GOOGLE_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
)
# Used when Google's response has no Cache-Control max-age
DEFAULT_KEYS_TTL_SECONDS = 3600
CLOCK_SKEW_SECONDS = 60
ROLES = ("coach", "client")


class GooglePublicKeys:
    """Google's x509 signing certs, cached for as long as Cache-Control allows"""

    def __init__(self):
        self.keys: dict[str, str] = {}
        self.expires_at = 0.0

    def invalidate(self) -> None:
        self.expires_at = 0.0

    async def get(self) -> dict[str, str]:
        if self.keys and time.time() < self.expires_at:
            return self.keys

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(GOOGLE_CERTS_URL)
        except httpx.HTTPError as e:
            logger.error(f"❌ Error fetching Google public keys: {str(e)}")
            return self.keys

        if response.status_code != 200:
            logger.error(f"❌ Failed to fetch Google public keys: HTTP {response.status_code}")
            return self.keys

        max_age = re.search(r"max-age=(\d+)", response.headers.get("cache-control", ""))
        ttl = int(max_age.group(1)) if max_age else DEFAULT_KEYS_TTL_SECONDS
        self.keys = response.json()
        self.expires_at = time.time() + ttl
        logger.info(f"🔑 Cached {len(self.keys)} Google public keys for {ttl}s")
        return self.keys


google_public_keys = GooglePublicKeys()


def _decode_segment(segment: str) -> bytes:
    # JWT segments are base64url without padding
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


async def _certificate_for(kid: str) -> str:
    keys = await google_public_keys.get()
    if kid not in keys:
        # Google rotates keys; a new kid means our copy is stale
        logger.warning(f"⚠️ Key ID {kid} not cached, refreshing Google public keys")
        google_public_keys.invalidate()
        keys = await google_public_keys.get()
    if kid not in keys:
        raise HTTPException(status_code=401, detail="Unable to verify token signature")
    return keys[kid]


def _check_claims(claims: dict) -> None:
    if claims.get("aud") != FIREBASE_PROJECT_ID:
        raise HTTPException(status_code=401, detail="Invalid token audience")
    if claims.get("iss") != f"https://securetoken.google.com/{FIREBASE_PROJECT_ID}":
        raise HTTPException(status_code=401, detail="Invalid token issuer")

    now = time.time()
    if claims.get("exp", 0) < now:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        )
    if claims.get("iat", 0) > now + CLOCK_SKEW_SECONDS:
        raise HTTPException(status_code=401, detail="Invalid token")


async def verify_firebase_token(token: str) -> dict:
    """
    Verify a Firebase ID token and return its claims.

    The RS256 signature is checked against Google's published certificates,
    then audience, issuer, expiry and issued-at.
    """
    if not FIREBASE_PROJECT_ID:
        logger.error("❌ FIREBASE_PROJECT_ID not configured")
        raise HTTPException(status_code=500, detail="Firebase not configured")

    try:
        header_b64, payload_b64, signature_b64 = token.split(".")
        header = json.loads(_decode_segment(header_b64))
    except ValueError as e:
        raise HTTPException(status_code=401, detail="Invalid token format") from e

    kid = header.get("kid")
    if header.get("alg") != "RS256" or not kid:
        raise HTTPException(status_code=401, detail="Invalid token algorithm")

    cert = load_pem_x509_certificate((await _certificate_for(kid)).encode(), default_backend())
    try:
        cert.public_key().verify(
            _decode_segment(signature_b64),
            f"{header_b64}.{payload_b64}".encode(),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except Exception as e:
        logger.error(f"❌ Token signature verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token signature") from e

    claims = json.loads(_decode_segment(payload_b64))
    _check_claims(claims)
    return claims


def _role_from_claims(claims: dict) -> str:
    """Coaches are marked with a `role` custom claim; everyone else is a client"""
    role: Optional[str] = claims.get("role")
    return role if role in ROLES else "client"


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the signed-in coach or client, creating the user on first sign-in"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    claims = await verify_firebase_token(credentials.credentials)
    firebase_uid = claims.get("sub") or claims.get("user_id")
    if not firebase_uid:
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    user = db.query(User).filter(User.firebase_uid == firebase_uid).first()
    if user:
        return user

    user = User(
        firebase_uid=firebase_uid,
        email=claims.get("email") or "",
        full_name=claims.get("name", ""),
        role=_role_from_claims(claims),
    )
    db.add(user)
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Failed to create user {firebase_uid}: {str(e)}")
        raise HTTPException(
            status_code=409,
            detail="This email is already registered. Please sign in with your existing account.",
        ) from e

    db.refresh(user)
    logger.info(f"🆕 Created {user.role} account for {user.email}")
    return user


async def require_coach(user: User = Depends(get_current_user)) -> User:
    """Use this dependency for routes only coaches may call"""
    if user.role != "coach":
        logger.warning(f"⚠️ User {user.id} attempted a coach-only action")
        raise HTTPException(status_code=403, detail="Only coaches can perform this action")
    return user
