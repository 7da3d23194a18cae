"""
Media storage utilities for listing media on Cloudflare R2.

Covers upload validation, storage key generation, the raw -> processing ->
qc -> final pipeline buckets, presigned URLs and render output uploads.
"""

import logging
import mimetypes
import re
import secrets
import string
import time
from typing import Optional, Tuple

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import (
    R2_ACCESS_KEY_ID,
    R2_ACCOUNT_ID,
    R2_BUCKET_NAME,
    R2_PUBLIC_URL,
    R2_SECRET_ACCESS_KEY,
)

logger = logging.getLogger(__name__)

MB = 1024 * 1024

# Media type validation
SIZE_LIMITS = {
    "photo": 50 * MB,
    "video": 2 * 1024 * MB,
    "floor_plan": 100 * MB,
    "virtual_staging": 50 * MB,
    "drone": 50 * MB,
    "twilight": 50 * MB,
    "3d_tour": 500 * MB,
    "matterport": 500 * MB,
}

IMAGE_TYPES = ["image/jpeg", "image/png", "image/webp", "image/heic", "image/tiff"]

ALLOWED_MIME_TYPES = {
    "photo": IMAGE_TYPES,
    "video": ["video/mp4", "video/quicktime", "video/x-msvideo", "video/webm"],
    "floor_plan": ["application/pdf", "image/png", "image/jpeg", "image/svg+xml"],
    "virtual_staging": ["image/jpeg", "image/png", "image/webp"],
    "drone": IMAGE_TYPES,
    "twilight": ["image/jpeg", "image/png", "image/webp"],
    "3d_tour": ["application/octet-stream", "model/gltf-binary", "model/gltf+json"],
    "matterport": ["application/json", "text/html"],
}

# Upload media type -> MediaAsset.type
ASSET_TYPES = {
    "photo": "photo",
    "drone": "photo",
    "twilight": "photo",
    "virtual_staging": "photo",
    "video": "video",
    "floor_plan": "floorplan",
    "3d_tour": "matterport",
    "matterport": "matterport",
}

# Pipeline stages, each with its own bucket
PIPELINE_STAGES = ["raw", "processing", "qc", "final"]
PIPELINE_BUCKETS = {
    "raw": "asm-raw-uploads",
    "processing": "asm-processing",
    "qc": "asm-qc-staging",
    "final": "asm-media",
}

UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def get_r2_client():
    """Get configured boto3 client for Cloudflare R2"""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


def validate_media_file(
    filename: str, size_bytes: int, mime_type: str, media_type: str
) -> Tuple[bool, Optional[str]]:
    """
    Validate a media file before upload.

    Returns:
        Tuple of (is_valid, error_message)
    """
    max_size = SIZE_LIMITS.get(media_type, SIZE_LIMITS["photo"])
    if size_bytes > max_size:
        max_mb = max_size // MB
        unit = f"{max_mb // 1024}GB" if max_mb >= 1024 else f"{max_mb}MB"
        return False, f"File size exceeds maximum of {unit}"

    allowed = ALLOWED_MIME_TYPES.get(media_type, ALLOWED_MIME_TYPES["photo"])
    if mime_type not in allowed:
        return False, f"File type {mime_type} not allowed for {media_type}"

    return True, None


def _random_id(length: int = 6) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _extension(filename: str) -> str:
    parts = filename.rsplit(".", 1)
    return parts[1].lower() if len(parts) == 2 and parts[1] else "bin"


def _build_key(safe_id: str, folder: str, filename: str, category: Optional[str]) -> str:
    name = f"{int(time.time() * 1000)}-{_random_id()}.{_extension(filename)}"
    if category:
        return f"{safe_id}/{folder}/{UNSAFE_KEY_CHARS.sub('_', category)}/{name}"
    return f"{safe_id}/{folder}/{name}"


def generate_pipeline_path(listing_id: str, stage: str, filename: str, category: Optional[str] = None) -> str:
    """
    Format: {listing_id}/{stage}/[{category}/]{timestamp}-{random}.{ext}

    Only the last path segment of the listing id survives, so "../../x" cannot climb out of the prefix.
    """
    clean_id = listing_id.replace("..", "").split("/")[-1]
    clean_id = UNSAFE_KEY_CHARS.sub("", clean_id)
    return _build_key(clean_id, stage, filename, category)


def get_public_url(key: str, base_url: Optional[str] = None) -> str:
    return f"{(base_url or R2_PUBLIC_URL).rstrip('/')}/{key}"


def upload_bytes(
    key: str,
    content: bytes,
    content_type: Optional[str] = None,
    bucket: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> str:
    """
    Upload bytes to R2 and return the public URL.

    Raises:
        ClientError/BotoCoreError from boto3, callers wrap this in the r2-storage circuit
    """
    extra_args = {"ContentType": content_type or mimetypes.guess_type(key)[0] or "application/octet-stream"}
    if metadata:
        extra_args["Metadata"] = metadata

    get_r2_client().put_object(Bucket=bucket or R2_BUCKET_NAME, Key=key, Body=content, **extra_args)
    logger.info(f"✅ Uploaded {key} ({len(content)} bytes)")
    return get_public_url(key)


class MediaPipelineService:
    """Moves listing media between the raw, processing, qc and final buckets"""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_r2_client()
        return self._client

    def promote(self, listing_id: str, from_stage: str, to_stage: str, path: Optional[str]) -> dict:
        """Copy a file into the next stage; leaving qc removes the qc copy"""
        if not path:
            return {"success": False, "error": f"{from_stage}Path is required"}
        if PIPELINE_STAGES.index(to_stage) != PIPELINE_STAGES.index(from_stage) + 1:
            return {"success": False, "error": f"Cannot promote from {from_stage} to {to_stage}"}

        filename = path.split("/")[-1] or "file"
        new_path = generate_pipeline_path(listing_id, to_stage, filename)
        try:
            self.client.copy_object(
                Bucket=PIPELINE_BUCKETS[to_stage],
                Key=new_path,
                CopySource={"Bucket": PIPELINE_BUCKETS[from_stage], "Key": path},
            )
            if from_stage == "qc":
                self.client.delete_object(Bucket=PIPELINE_BUCKETS["qc"], Key=path)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"❌ Promotion {from_stage} -> {to_stage} failed for {path}: {e}")
            return {"success": False, "error": str(e)}

        result = {"success": True, "newPath": new_path}
        if to_stage == "final":
            result["publicUrl"] = get_public_url(new_path)
        logger.info(f"🔄 Promoted {path} to {to_stage}")
        return result

    def presigned_upload(
        self, listing_id: str, filename: str, content_type: str, category: Optional[str] = None, expires_in: int = 3600
    ) -> dict:
        path = generate_pipeline_path(listing_id, "raw", filename, category)
        try:
            url = self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": PIPELINE_BUCKETS["raw"], "Key": path, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "uploadUrl": url, "path": path}

    def stage_contents(self, listing_id: str, stage: str, category: Optional[str] = None) -> list[dict]:
        prefix = f"{listing_id}/{stage}/" + (f"{category}/" if category else "")
        try:
            response = self.client.list_objects_v2(Bucket=PIPELINE_BUCKETS[stage], Prefix=prefix)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"❌ Listing {stage} contents failed for {listing_id}: {e}")
            return []
        return [
            {"path": obj["Key"], "size": obj.get("Size"), "lastModified": obj.get("LastModified")}
            for obj in response.get("Contents", [])
        ]

    def status(self, listing_id: str) -> dict:
        return {stage: len(self.stage_contents(listing_id, stage)) for stage in PIPELINE_STAGES}

    def download_url(self, stage: str, path: str, expires_in: int = 900) -> Optional[str]:
        try:
            return self.client.generate_presigned_url(
                "get_object", Params={"Bucket": PIPELINE_BUCKETS[stage], "Key": path}, ExpiresIn=expires_in
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"❌ Error generating download URL for {path}: {e}")
            return None
