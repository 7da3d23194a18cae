"""
MLS Service
Stores agent MLS logins (Fernet encrypted) and pushes delivered photos
straight to the agent's MLS (FlexMLS, Matrix, Bright, CRMLS, Stellar).
"""

import base64
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ..config import CREDENTIALS_ENCRYPTION_KEY, SECRET_KEY
from ..models_integrations import MLSCredential, MLSProvider

logger = logging.getLogger(__name__)

PROVIDER_APIS = {
    "flexmls": "https://api.flexmls.com/v1",
    "matrix": "https://api.matrix.com/reso",
    "bright": "https://api.brightmls.com/v1",
    "crmls": "https://api.crmls.org/v1",
    "stellar": "https://api.stellarmls.com/v1",
}

# Used when the mls_providers table has not been seeded
DEFAULT_PROVIDERS = [
    {"name": "FlexMLS", "slug": "flexmls", "provider_type": "flexmls", "supports_video_upload": True, "max_photos": 50},
    {"name": "Matrix", "slug": "matrix", "provider_type": "matrix", "supports_video_upload": False, "max_photos": 40},
    {"name": "Bright MLS", "slug": "bright", "provider_type": "bright", "supports_video_upload": True, "max_photos": 50},
    {
        "name": "Stellar MLS (Central Florida)",
        "slug": "stellar-mls",
        "provider_type": "stellar",
        "api_base_url": "https://api.stellarmls.com/v1",
        "supports_video_upload": True,
        "max_photos": 50,
    },
    {
        "name": "Space Coast MLS",
        "slug": "space-coast-mls",
        "provider_type": "flexmls",
        "api_base_url": "https://api.spacecoastmls.com/v1",
        "supports_video_upload": True,
        "max_photos": 50,
    },
    {
        "name": "My Florida Regional MLS (Tampa)",
        "slug": "mfrmls",
        "provider_type": "matrix",
        "api_base_url": "https://api.mfrmls.com/v1",
        "supports_video_upload": True,
        "max_photos": 50,
    },
]


class MLSUploadError(ValueError):
    pass


# ============================================================================
# CREDENTIAL ENCRYPTION
# ============================================================================

_cipher_suite: Optional[Fernet] = None


def get_cipher() -> Fernet:
    global _cipher_suite
    if _cipher_suite is None:
        if CREDENTIALS_ENCRYPTION_KEY:
            _cipher_suite = Fernet(CREDENTIALS_ENCRYPTION_KEY.encode())
        else:
            logger.warning("⚠️ CREDENTIALS_ENCRYPTION_KEY not set, deriving MLS key from SECRET_KEY")
            _cipher_suite = Fernet(base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest()))
    return _cipher_suite


def encrypt_credential(value: str) -> str:
    return get_cipher().encrypt(value.encode()).decode()


def decrypt_credential(encrypted_value: str) -> str:
    return get_cipher().decrypt(encrypted_value.encode()).decode()


# ============================================================================
# PROVIDERS
# ============================================================================


def provider_to_dict(provider: MLSProvider) -> dict:
    return {
        "id": provider.id,
        "name": provider.name,
        "slug": provider.slug,
        "provider_type": provider.provider_type,
        "api_base_url": provider.api_base_url,
        "supports_photo_upload": provider.supports_photo_upload,
        "supports_video_upload": provider.supports_video_upload,
        "supports_3d_tour": provider.supports_3d_tour,
        "max_photos": provider.max_photos,
    }


def list_providers(db: Session) -> list[dict]:
    providers = db.query(MLSProvider).filter(MLSProvider.is_active.is_(True)).order_by(MLSProvider.name).all()
    if not providers:
        return [
            {"supports_photo_upload": True, "supports_3d_tour": True, "api_base_url": None, **p}
            for p in DEFAULT_PROVIDERS
        ]
    return [provider_to_dict(p) for p in providers]


def get_provider(db: Session, slug: str) -> Optional[dict]:
    return next((p for p in list_providers(db) if p["slug"] == slug), None)


def api_base_url(provider: dict) -> str:
    return provider.get("api_base_url") or PROVIDER_APIS.get(provider["provider_type"]) or PROVIDER_APIS["flexmls"]


def _basic_auth(agent_id: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{agent_id}:{password}".encode()).decode()


# ============================================================================
# CLIENT
# ============================================================================


class MLSClient:
    def __init__(
        self,
        provider: dict,
        agent_id: str,
        password: str,
        office_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.agent_id = agent_id
        self.password = password
        self.office_id = office_id
        self.base_url = api_base_url(provider)
        self._transport = transport

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "Authorization": _basic_auth(self.agent_id, self.password)}

    async def validate_credentials(self) -> dict:
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/auth/validate",
                    json={"agent_id": self.agent_id, "office_id": self.office_id},
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            return {"valid": False, "error": f"Connection error: {e}"}

        if not response.is_success:
            return {"valid": False, "error": "Invalid credentials"}
        return {"valid": True, "agent_name": response.json().get("agent_name")}

    async def upload_photos(self, mls_listing_id: str, photos: list[dict], replace_existing: bool = False) -> dict:
        """
        Push photos to an MLS listing

        Args:
            photos: [{url, order, caption?, is_primary?}]; order 1 is primary unless set

        Raises:
            MLSUploadError: missing listing id or too many photos for this provider
        """
        if not mls_listing_id or not mls_listing_id.strip():
            raise MLSUploadError("Listing ID is required")
        max_photos = self.provider.get("max_photos") or 50
        if len(photos) > max_photos:
            raise MLSUploadError(f"Photo count ({len(photos)}) exceeds maximum allowed ({max_photos})")

        failure = {"success": False, "uploaded_count": 0, "failed_count": 0, "results": []}
        url = f"{self.base_url}/listings/{mls_listing_id}/photos"
        body = {
            "photos": [
                {
                    "url": p["url"],
                    "order": p["order"],
                    "caption": p.get("caption"),
                    "is_primary": p.get("is_primary") or p["order"] == 1,
                }
                for p in photos
            ]
        }

        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                if replace_existing:
                    await client.delete(url, headers=self._headers())
                response = await client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"❌ MLS upload to {mls_listing_id} failed: {e}")
            return {**failure, "failed_count": len(photos), "error": f"Network error: {e}"}

        if response.status_code == 429:
            return {**failure, "error": "Rate limited - please try again later"}
        if response.status_code == 401:
            return {**failure, "error": "Authentication failed"}
        if not response.is_success:
            return {**failure, "error": f"Upload failed: {response.status_code}"}

        results = response.json().get("uploaded") or []
        uploaded = [r for r in results if r.get("status") == "success"]
        failed = [r for r in results if r.get("status") == "failed"]
        logger.info(f"📤 MLS {self.provider['slug']} listing {mls_listing_id}: {len(uploaded)} uploaded, {len(failed)} failed")
        return {"success": not failed, "uploaded_count": len(uploaded), "failed_count": len(failed), "results": results}

    async def get_listing(self, mls_listing_id: str) -> Optional[dict]:
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/listings/{mls_listing_id}", headers=self._headers())
        except httpx.HTTPError:
            return None
        return response.json() if response.is_success else None


# ============================================================================
# STORED CREDENTIALS
# ============================================================================


def _provider_row(db: Session, slug: str) -> Optional[MLSProvider]:
    provider = db.query(MLSProvider).filter(MLSProvider.slug == slug).first()
    if provider:
        return provider
    default = next((p for p in DEFAULT_PROVIDERS if p["slug"] == slug), None)
    if not default:
        return None
    provider = MLSProvider(**default)
    db.add(provider)
    db.flush()
    return provider


async def save_credentials(
    db: Session,
    agent_id: str,
    provider_slug: str,
    mls_agent_id: str,
    password: str,
    office_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Validate against the MLS, then store (or replace) the agent's login"""
    provider = get_provider(db, provider_slug)
    if not provider:
        return {"success": False, "error": "Unknown MLS provider"}

    validation = await MLSClient(provider, mls_agent_id, password, office_id, transport).validate_credentials()
    if not validation["valid"]:
        return {"success": False, "error": validation.get("error")}

    row = _provider_row(db, provider_slug)
    credential = (
        db.query(MLSCredential)
        .filter(MLSCredential.agent_id == agent_id, MLSCredential.mls_provider_id == row.id)
        .first()
    )
    if credential is None:
        credential = MLSCredential(agent_id=agent_id, mls_provider_id=row.id, mls_agent_id=mls_agent_id)
        db.add(credential)
    credential.mls_agent_id = mls_agent_id
    credential.mls_password = encrypt_credential(password)
    credential.mls_office_id = office_id
    credential.sync_status = "active"
    credential.error_message = None
    credential.is_active = True
    db.commit()
    logger.info(f"✅ MLS credentials saved for agent {agent_id} ({provider_slug})")
    return {"success": True, "credentialId": credential.id, "agentName": validation.get("agent_name")}


def client_for_agent(
    db: Session, agent_id: str, provider_slug: str, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Optional[MLSClient]:
    row = db.query(MLSProvider).filter(MLSProvider.slug == provider_slug).first()
    if not row:
        return None
    credential = (
        db.query(MLSCredential)
        .filter(
            MLSCredential.agent_id == agent_id,
            MLSCredential.mls_provider_id == row.id,
            MLSCredential.is_active.is_(True),
        )
        .first()
    )
    if not credential or not credential.mls_password:
        return None
    try:
        password = decrypt_credential(credential.mls_password)
    except InvalidToken:
        logger.error(f"❌ Failed to decrypt MLS credentials {credential.id}")
        credential.sync_status = "error"
        credential.error_message = "Failed to decrypt credentials"
        db.commit()
        return None
    return MLSClient(provider_to_dict(row), credential.mls_agent_id, password, credential.mls_office_id, transport)


def record_sync(db: Session, agent_id: str, provider_slug: str, result: dict) -> None:
    row = db.query(MLSProvider).filter(MLSProvider.slug == provider_slug).first()
    if not row:
        return
    credential = (
        db.query(MLSCredential)
        .filter(MLSCredential.agent_id == agent_id, MLSCredential.mls_provider_id == row.id)
        .first()
    )
    if not credential:
        return
    credential.last_sync_at = datetime.now(timezone.utc)
    credential.sync_status = "active" if result.get("success") else "error"
    credential.error_message = result.get("error")
    db.commit()
