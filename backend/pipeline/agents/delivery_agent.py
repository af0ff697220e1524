"""
Delivery Agent
==============
Token-gated download of a purchased model file.

Checks run in a fixed order so every failure maps to exactly one answer:

1. token present                      -> Unauthenticated (401)
2. signature / claims valid           -> InvalidToken (401)
3. embedded downloadCount below limit -> LimitExceeded (403)
4. issuer clock <= expiresAt          -> TokenExpired (401)
5. token modelId matches the path     -> ModelMismatch (400)
6. product exists                     -> NotFound (404)
7. asset readable                     -> propagates (500)
8. server-side ledger increment       -> LimitExceeded (403)

The token is a bearer credential and is never reissued here; the ledger
holds the authoritative count.

pip install pydantic structlog
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from pipeline.errors import LimitExceeded, ModelMismatch, NotFound, TokenExpired, Unauthenticated
from pipeline.tokens import DownloadTokenIssuer
from schemas import (
    MAX_DOWNLOADS_PER_TOKEN,
    MODEL_CONTENT_TYPE,
    MODEL_FORMAT,
    DownloadTokenPayload,
    PurchaseRecord,
)
from storage import IAssetStore, ICatalogRepository, IPurchaseLedger


class DownloadResult(BaseModel):
    """A served file plus the headers the HTTP layer needs"""

    content: bytes
    filename: str
    content_type: str = MODEL_CONTENT_TYPE
    download_count: int
    download_limit: int

    def headers(self) -> dict[str, str]:
        return {
            "Content-Disposition": f'attachment; filename="{self.filename}"',
            "Content-Length": str(len(self.content)),
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Download-Count": str(self.download_count),
            "X-Download-Limit": str(self.download_limit),
        }


class DeliveryAgent:
    """Validates download tokens and streams model bytes"""

    def __init__(
        self,
        catalog: ICatalogRepository,
        issuer: DownloadTokenIssuer,
        ledger: IPurchaseLedger,
        assets: IAssetStore,
        max_downloads: int = MAX_DOWNLOADS_PER_TOKEN,
    ):
        self.catalog = catalog
        self.issuer = issuer
        self.ledger = ledger
        self.assets = assets
        self.max_downloads = max_downloads
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str):
        return self._base_logger.bind(agent="delivery_agent", correlation_id=correlation_id)

    def authorize(self, model_id: str, token: Optional[str]) -> DownloadTokenPayload:
        """Steps 1-5: everything decidable from the token alone"""
        if not token:
            raise Unauthenticated()

        payload = self.issuer.verify(token, check_expiry=False)
        log = self._get_logger(payload.purchase_id)

        if payload.download_count >= self.max_downloads:
            log.info("download_token_exhausted", download_count=payload.download_count)
            raise LimitExceeded()

        if self.issuer.is_expired(payload):
            log.info("download_token_expired", expires_at=payload.expires_at)
            raise TokenExpired()

        if payload.model_id != model_id:
            log.warning("download_model_mismatch", token_model_id=payload.model_id, model_id=model_id)
            raise ModelMismatch()

        return payload

    async def _record_download(self, payload: DownloadTokenPayload) -> PurchaseRecord:
        # Tokens minted before the ledger existed still count against it
        await self.ledger.create_if_absent(PurchaseRecord(
            purchase_id=payload.purchase_id,
            model_id=payload.model_id,
            customer_email=payload.customer_email,
            download_count=payload.download_count,
        ))
        return await self.ledger.increment_downloads(payload.purchase_id, self.max_downloads)

    async def fetch_download(self, model_id: str, token: Optional[str]) -> DownloadResult:
        payload = self.authorize(model_id, token)
        log = self._get_logger(payload.purchase_id)

        product = await self.catalog.get(model_id)
        if product is None:
            log.warning("download_model_missing", model_id=model_id)
            raise NotFound("Model not found")

        content = await self.assets.read(product.file_url)
        record = await self._record_download(payload)

        log.info(
            "model_downloaded",
            model_id=model_id,
            size=len(content),
            download_count=record.download_count,
            download_limit=self.max_downloads,
        )
        return DownloadResult(
            content=content,
            filename=f"{model_id}.{MODEL_FORMAT}",
            download_count=record.download_count,
            download_limit=self.max_downloads,
        )


__all__ = ["DeliveryAgent", "DownloadResult"]
