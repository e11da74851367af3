from __future__ import annotations

import asyncio
import mimetypes
from datetime import datetime, timedelta, timezone
from typing import Dict, Literal, Optional

import structlog
from azure.core.credentials import TokenCredential
from azure.core.exceptions import HttpResponseError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

logger = structlog.get_logger(__name__)

Bucket = Literal["quiz-backgrounds", "quiz-logos"]
BUCKETS = ("quiz-backgrounds", "quiz-logos")

CACHE_CONTROL = "max-age=3600"
SAS_LIFETIME = timedelta(minutes=15)


class StorageNotConfigured(RuntimeError):
    pass


def strip_bucket_prefix(bucket: str, path: str) -> str:
    """Stored paths sometimes carry their bucket name (``quiz-logos/logo.png``)."""
    path = path.strip("/")
    prefix = f"{bucket}/"
    if path.startswith(prefix):
        path = path[len(prefix):]
    return path


class BlobStorage:
    """Quiz images in Azure Blob Storage, one container per bucket."""

    def __init__(self, connection_string: Optional[str]):
        self._connection_string = connection_string
        self._blob_service_client: BlobServiceClient | None = None
        self._container_is_private: Dict[str, bool] = {}

    @property
    def configured(self) -> bool:
        return bool(self._connection_string)

    def _get_blob_service(self) -> BlobServiceClient:
        if self._blob_service_client is None:
            if not self._connection_string:
                raise StorageNotConfigured("Azure Blob Storage is not configured")
            self._blob_service_client = BlobServiceClient.from_connection_string(self._connection_string)
        return self._blob_service_client

    async def _ensure_container(self, service: BlobServiceClient, bucket: str) -> bool:
        """Create the bucket's container on first use and return whether it is private."""

        if bucket in self._container_is_private:
            return self._container_is_private[bucket]

        container_client = service.get_container_client(bucket)
        is_private: bool | None = None
        try:
            await asyncio.to_thread(container_client.create_container, public_access="blob")
        except ResourceExistsError:
            pass
        except HttpResponseError as exc:
            error_code = getattr(exc, "error_code", None) or getattr(
                getattr(exc, "error", None), "code", None
            )
            if error_code == "PublicAccessNotPermitted":
                try:
                    await asyncio.to_thread(container_client.create_container)
                except ResourceExistsError:
                    pass
                is_private = True
            else:
                raise
        else:
            is_private = False

        if is_private is None:
            properties = await asyncio.to_thread(container_client.get_container_properties)
            public_access = getattr(properties, "public_access", None)
            is_private = public_access not in {"blob", "container"}

        self._container_is_private[bucket] = is_private
        return is_private

    async def upload(self, bucket: Bucket, path: str, content: bytes, content_type: str | None = None) -> str:
        """Store ``content`` at ``path`` (overwriting) and return its public URL."""

        if bucket not in BUCKETS:
            raise ValueError(f"Unknown bucket: {bucket}")
        if not content:
            raise ValueError("Uploaded file was empty")

        path = strip_bucket_prefix(bucket, path)
        if not path:
            raise ValueError("A file name is required")

        service = self._get_blob_service()
        is_private = await self._ensure_container(service, bucket)
        blob_client = service.get_container_client(bucket).get_blob_client(path)

        guessed_type = content_type or mimetypes.guess_type(path)[0]
        settings_kwargs = {}
        if guessed_type:
            settings_kwargs["content_settings"] = ContentSettings(
                content_type=guessed_type, cache_control=CACHE_CONTROL
            )

        await asyncio.to_thread(blob_client.upload_blob, content, overwrite=True, **settings_kwargs)
        logger.info("Image uploaded", bucket=bucket, path=path, size=len(content))

        if is_private:
            return await self._build_private_blob_url(service, bucket, path, blob_client.url)
        return blob_client.url

    async def public_url(self, bucket: Bucket, path: str) -> str:
        service = self._get_blob_service()
        path = strip_bucket_prefix(bucket, path)
        is_private = await self._ensure_container(service, bucket)
        blob_client = service.get_container_client(bucket).get_blob_client(path)
        if is_private:
            return await self._build_private_blob_url(service, bucket, path, blob_client.url)
        return blob_client.url

    async def delete(self, bucket: Bucket, path: str) -> None:
        service = self._get_blob_service()
        path = strip_bucket_prefix(bucket, path)
        blob_client = service.get_container_client(bucket).get_blob_client(path)
        try:
            await asyncio.to_thread(blob_client.delete_blob)
        except ResourceNotFoundError:
            logger.info("Image already absent", bucket=bucket, path=path)
            return
        logger.info("Image deleted", bucket=bucket, path=path)

    async def _build_private_blob_url(
        self, service: BlobServiceClient, container_name: str, blob_name: str, base_url: str
    ) -> str:
        now = datetime.now(timezone.utc)
        expiry = now + SAS_LIFETIME
        permissions = BlobSasPermissions(read=True)

        credential = getattr(service, "credential", None)

        if isinstance(credential, TokenCredential):
            delegation_key = await asyncio.to_thread(
                service.get_user_delegation_key,
                now,
                expiry,
            )
            sas_token = generate_blob_sas(
                account_name=service.account_name,
                container_name=container_name,
                blob_name=blob_name,
                user_delegation_key=delegation_key,
                permission=permissions,
                expiry=expiry,
            )
        elif credential is not None:
            sas_token = generate_blob_sas(
                account_name=service.account_name,
                container_name=container_name,
                blob_name=blob_name,
                credential=credential,
                permission=permissions,
                expiry=expiry,
            )
        else:
            raise StorageNotConfigured("Azure Blob Storage credential is required for SAS generation")

        separator = "&" if "?" in base_url else "?"
        return f"{base_url}{separator}{sas_token}"
