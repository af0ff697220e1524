# storage/assets.py
# ============================================================================
# STONE MODEL STOREFRONT: MODEL ASSET STORES
# ============================================================================
# Binary .glb files behind a small read interface: local public/ directory
# for development, S3 bucket for deployments.
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

logger = structlog.get_logger(component="asset_store")


class IAssetStore(ABC):
    """Asset store interface for swapping local disk / S3"""

    @abstractmethod
    async def read(self, file_url: str) -> bytes:
        """Return the bytes at ``file_url`` (e.g. "/models/x.glb").

        Raises FileNotFoundError when the asset does not exist.
        """
        pass


class LocalAssetStore(IAssetStore):
    """Serves files from a directory (the site's public/ folder)"""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def _resolve(self, file_url: str) -> Path:
        path = (self.root / file_url.lstrip("/")).resolve()
        if not path.is_relative_to(self.root):
            raise FileNotFoundError(file_url)
        return path

    async def read(self, file_url: str) -> bytes:
        path = self._resolve(file_url)
        content = await asyncio.to_thread(path.read_bytes)
        logger.debug("asset_read", backend="local", file_url=file_url, size=len(content))
        return content


class S3AssetStore(IAssetStore):
    """Reads model files from an S3 bucket; keys mirror the public paths"""

    def __init__(self, bucket: str, region: str = "us-east-1", client=None):
        self.bucket = bucket
        self.s3 = client or boto3.client(
            "s3",
            region_name=region,
            config=Config(signature_version="s3v4"),
        )

    def _get_object(self, key: str) -> bytes:
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise FileNotFoundError(key) from e
            raise
        return response["Body"].read()

    async def read(self, file_url: str) -> bytes:
        key = file_url.lstrip("/")
        content = await asyncio.to_thread(self._get_object, key)
        logger.debug("asset_read", backend="s3", bucket=self.bucket, key=key, size=len(content))
        return content
