from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

import httpx

from app.core.settings import settings
from app.schemas.kyc import KYCDocumentStatus
from app.schemas.risk import RiskScoreResult


@dataclass(frozen=True)
class DocumentVerdict:
    status: KYCDocumentStatus
    reason: str | None = None


class DocumentVerifier(Protocol):
    async def verify(self, document_id: UUID) -> DocumentVerdict: ...


class RiskScorer(Protocol):
    async def score(self, application_id: UUID, amount: Decimal, credit_score: int | None) -> RiskScoreResult: ...


class CreditScoreProvider(Protocol):
    async def fetch(self, borrower_id: UUID) -> int: ...


def _timeout() -> float:
    return settings.external_call_timeout_seconds


class HttpDocumentVerifier:
    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = (base_url or settings.document_verification_url).rstrip("/")

    async def verify(self, document_id: UUID) -> DocumentVerdict:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=_timeout()) as client:
            response = await client.post(f"/documents/{document_id}/verify")
            response.raise_for_status()
        payload = response.json()
        return DocumentVerdict(
            status=KYCDocumentStatus(payload["status"]),
            reason=payload.get("reason"),
        )


class HttpRiskScorer:
    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = (base_url or settings.risk_scoring_url).rstrip("/")

    async def score(self, application_id: UUID, amount: Decimal, credit_score: int | None) -> RiskScoreResult:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=_timeout()) as client:
            response = await client.post(
                "/scores",
                json={
                    "application_id": str(application_id),
                    "amount": str(amount),
                    "credit_score": credit_score,
                },
            )
            response.raise_for_status()
        return RiskScoreResult.model_validate(response.json())


class HttpCreditScoreProvider:
    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = (base_url or settings.credit_score_url).rstrip("/")

    async def fetch(self, borrower_id: UUID) -> int:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=_timeout()) as client:
            response = await client.get(f"/borrowers/{borrower_id}/score")
            response.raise_for_status()
        return int(response.json()["score"])
