"""
blob_store.py — Deletion-only view of the object store holding session uploads.

BlobStore is the interface the cleanup engine depends on; S3BlobStore is the
boto3 implementation. boto3 is synchronous, so every call goes through
asyncio.to_thread to keep the event loop free.

Only storage-provider URLs are handled: the object key is everything after
"amazonaws.com/" in the URL.
"""
import asyncio
import logging
from typing import Any, Optional, Protocol
from urllib.parse import unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

_HOST_MARKER = "amazonaws.com/"


class BlobStore(Protocol):
    def is_available(self) -> bool:
        ...

    async def delete_by_url(self, url: str) -> bool:
        ...


def key_from_url(url: str) -> Optional[str]:
    """Object key of an S3 URL, or None when the URL has no S3 host part."""
    _, marker, rest = url.partition(_HOST_MARKER)
    if not marker or not rest:
        return None
    return unquote(rest.split("?", 1)[0])


class S3BlobStore:
    """BlobStore over one S3 bucket."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        access_key_id: str = "",
        secret_access_key: str = "",
        client: Any = None,
    ):
        self.bucket = bucket
        if client is None and bucket:
            kwargs: dict[str, str] = {"region_name": region}
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            client = boto3.client("s3", **kwargs)
        self._client = client

    def is_available(self) -> bool:
        return bool(self.bucket) and self._client is not None

    async def delete_by_url(self, url: str) -> bool:
        """
        Delete the object behind url. Returns False (never raises) when the
        store is unconfigured, the URL is not an S3 URL, or S3 rejects the call.
        """
        if not self.is_available():
            return False
        key = key_from_url(url)
        if key is None:
            logger.warning("Not an S3 object URL — skipped")
            return False
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError):
            logger.error("S3 delete failed key=%s", key, exc_info=True)
            return False
        logger.debug("Deleted S3 object key=%s", key)
        return True
