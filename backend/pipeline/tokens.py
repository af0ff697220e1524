"""
Download Token Issuer
=====================
Signed, time-boxed, usage-limited bearer credentials for one purchased model.

Tokens are self-contained HS256 JWTs. The claims bind {modelId, purchaseId,
customerEmail}; the JWT ``exp`` claim equals ``expiresAt``. Expiry is
judged against the issuer's clock only, valid through ``expiresAt``
inclusive, so issuing and checking share one time source.

pip install pyjwt pydantic structlog
"""

import time
from typing import Callable

import jwt
import structlog
from pydantic import ValidationError

from pipeline.errors import InvalidToken, InvariantViolation, TokenExpired
from schemas import DownloadTokenPayload

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


class DownloadTokenIssuer:
    """Mints and verifies download tokens with a server-held secret."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret
        self._ttl = ttl_seconds
        self._clock = clock
        self._logger = structlog.get_logger().bind(component="token_issuer")

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def now(self) -> int:
        return int(self._clock())

    def issue(
        self,
        model_id: str,
        purchase_id: str,
        customer_email: str,
        download_count: int = 0,
    ) -> str:
        iat = self.now()
        try:
            payload = DownloadTokenPayload(
                model_id=model_id,
                purchase_id=purchase_id,
                customer_email=customer_email,
                iat=iat,
                expires_at=iat + self._ttl,
                download_count=download_count,
            )
        except ValidationError as e:
            # Upstream validated these values; failing here is a bug
            self._logger.error(
                "token_payload_invalid",
                model_id=model_id,
                purchase_id=purchase_id,
                errors=e.errors(include_url=False, include_context=False),
            )
            raise InvariantViolation("Download token payload failed validation") from e

        claims = payload.to_claims()
        claims["exp"] = payload.expires_at
        token = jwt.encode(claims, self._secret, algorithm=ALGORITHM)

        self._logger.info(
            "download_token_issued",
            model_id=model_id,
            purchase_id=purchase_id,
            expires_at=payload.expires_at,
        )
        return token

    def verify(self, token: str, check_expiry: bool = True) -> DownloadTokenPayload:
        """
        Check signature and claims. Expiry is judged by this issuer's clock,
        never the library's, so ``check_expiry=False`` lets callers order
        their own checks before it.
        """
        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={
                    "require": ["exp", "iat"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            self._logger.warning("download_token_invalid", error=str(e), error_type=type(e).__name__)
            raise InvalidToken() from e

        try:
            payload = DownloadTokenPayload.model_validate(decoded)
        except ValidationError as e:
            self._logger.warning(
                "download_token_schema_invalid",
                errors=e.errors(include_url=False, include_context=False),
            )
            raise InvalidToken() from e

        if decoded["exp"] != payload.expires_at:
            self._logger.warning(
                "download_token_exp_mismatch",
                exp=decoded["exp"],
                expires_at=payload.expires_at,
            )
            raise InvalidToken()

        if check_expiry and self.is_expired(payload):
            self._logger.info("download_token_expired", expires_at=payload.expires_at)
            raise TokenExpired()
        return payload

    def is_expired(self, payload: DownloadTokenPayload) -> bool:
        """Valid through ``expiresAt`` inclusive"""
        return self.now() > payload.expires_at
