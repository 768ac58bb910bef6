from __future__ import annotations

import logging
from typing import Any

import aioboto3
from botocore.client import Config


class ObjectStore:
    """S3-compatible object store client (Cloudflare R2, DigitalOcean Spaces).

    Methods raise the underlying botocore errors; retry and error translation
    belong to the Publisher.
    """

    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str | None,
        access_key_id: str | None,
        secret_access_key: str | None,
        public_base_url: str | None = None,
        region: str = "auto",
        request_timeout: float = 90.0,
        connect_timeout: float = 30.0,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = (public_base_url or "").rstrip("/")
        self._session = aioboto3.Session()
        self._client_params: dict[str, Any] = {
            "service_name": "s3",
            "region_name": region,
            "endpoint_url": endpoint_url,
            "aws_access_key_id": access_key_id,
            "aws_secret_access_key": secret_access_key,
            # Retries are handled by the Publisher's policy, not botocore's
            "config": Config(
                signature_version="s3v4",
                connect_timeout=connect_timeout,
                read_timeout=request_timeout,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        }

    def _client(self):
        return self._session.client(**self._client_params)

    def public_url(self, key: str) -> str:
        """Public URL of *key*; falls back to the endpoint-style path when no base is set."""
        clean_key = key.lstrip("/")
        if self.public_base_url:
            return f"{self.public_base_url}/{clean_key}"
        endpoint = (self._client_params["endpoint_url"] or "").rstrip("/")
        return f"{endpoint}/{self.bucket}/{clean_key}"

    async def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str = "audio/mpeg",
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Upload *data* to *key* and return its public URL."""
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ContentLength=len(data),
                CacheControl="public, max-age=31536000",
                Metadata=metadata or {},
            )
        logging.info(f"[ObjectStore] Upload successful: {key} ({len(data)} bytes)")
        return self.public_url(key)

    async def get_bytes(self, key: str) -> bytes:
        async with self._client() as s3:
            response = await s3.get_object(Bucket=self.bucket, Key=key)
            async with response["Body"] as stream:
                return await stream.read()

    async def get_text(self, key: str) -> str:
        return (await self.get_bytes(key)).decode("utf-8")

    async def list_keys(self, prefix: str) -> list[str]:
        """List every key under *prefix*, following continuation tokens."""
        keys: list[str] = []
        async with self._client() as s3:
            paginator = s3.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def describe(self) -> dict[str, Any]:
        return {
            "bucket": self.bucket,
            "endpoint": self._client_params["endpoint_url"],
            "public_base_url": self.public_base_url or None,
        }
