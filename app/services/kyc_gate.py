from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable
from uuid import UUID

from app.core.exceptions import (
    ApplicationValidationError,
    GatePending,
    GateRejected,
    InvalidDocumentReview,
    UnauthorizedActor,
)
from app.core.settings import settings
from app.models.kyc_document import KYCDocument
from app.models.loan_application import LoanApplication
from app.models.profile import Profile
from app.schemas.kyc import (
    KYCDocumentKind as K,
    KYCDocumentStatus,
    KYCStage,
    KYCVerdict,
    KYCVerdictResponse,
    STAGE_KINDS,
)
from app.schemas.loan import LoanApplicationStatus
from app.schemas.profile import KYCStage1Status, ProfileRole
from app.services.clients import DocumentVerifier
from app.services.context import SYSTEM_ACTOR, Actor, EngineContext
from app.services.notifications import notify_best_effort


logger = logging.getLogger(__name__)


# Each slot is satisfied by its most recent document of any listed kind.
STAGE_SLOTS: dict[KYCStage, dict[str, frozenset[K]]] = {
    KYCStage.STAGE1: {
        "identity": frozenset({K.NATIONAL_ID, K.PASSPORT, K.DRIVERS_LICENSE}),
        "residence": frozenset({K.PROOF_OF_RESIDENCE}),
    },
    KYCStage.STAGE2: {
        "proof_of_income": frozenset({K.PROOF_OF_INCOME}),
        "proof_of_funds": frozenset({K.PROOF_OF_FUNDS}),
    },
}

REVIEWER_ROLES = frozenset(
    {
        ProfileRole.LOAN_OFFICER,
        ProfileRole.MANAGING_DIRECTOR,
        ProfileRole.FINANCE_DIRECTOR,
        ProfileRole.ADMIN,
        ProfileRole.SYSTEM,
    }
)

# Statuses in which a borrower may still attach income evidence.
INCOME_UPLOAD_STATUSES = frozenset(
    {
        LoanApplicationStatus.DRAFT,
        LoanApplicationStatus.KYC_STAGE2_REQUIRED,
        LoanApplicationStatus.REJECTED,
    }
)


def _latest(documents: Iterable[KYCDocument], kinds: frozenset[K]) -> KYCDocument | None:
    candidates = [doc for doc in documents if K(doc.document_kind) in kinds]
    if not candidates:
        return None
    return max(candidates, key=lambda doc: doc.uploaded_at)


def evaluate_slots(stage: KYCStage, documents: Iterable[KYCDocument]) -> KYCVerdictResponse:
    """Reduce a stage's documents to a single verdict.

    Pure: the same documents always produce the same verdict.
    """
    documents = list(documents)
    missing: list[str] = []
    pending = False
    for slot, kinds in STAGE_SLOTS[stage].items():
        latest = _latest(documents, kinds)
        if latest is None:
            missing.append(slot)
            pending = True
            continue
        status = KYCDocumentStatus(latest.status)
        if status == KYCDocumentStatus.REJECTED:
            return KYCVerdictResponse(stage=stage, verdict=KYCVerdict.REJECTED, missing=missing)
        if status == KYCDocumentStatus.PENDING:
            pending = True
    verdict = KYCVerdict.PENDING if pending else KYCVerdict.APPROVED
    return KYCVerdictResponse(stage=stage, verdict=verdict, missing=missing)


async def stage1_documents(ctx: EngineContext, owner_id: UUID) -> list[KYCDocument]:
    return await ctx.store.list(KYCDocument, owner_id=owner_id, stage=KYCStage.STAGE1.value)


async def stage2_documents(
    ctx: EngineContext,
    application_id: UUID,
    *,
    uploaded_after: datetime | None = None,
) -> list[KYCDocument]:
    documents = await ctx.store.list(
        KYCDocument, loan_application_id=application_id, stage=KYCStage.STAGE2.value
    )
    if uploaded_after is not None:
        documents = [doc for doc in documents if doc.uploaded_at > uploaded_after]
    return documents


async def evaluate_stage1(ctx: EngineContext, owner_id: UUID) -> KYCVerdictResponse:
    return evaluate_slots(KYCStage.STAGE1, await stage1_documents(ctx, owner_id))


async def evaluate_stage2(
    ctx: EngineContext,
    application: LoanApplication,
    *,
    uploaded_after: datetime | None = None,
) -> KYCVerdictResponse:
    documents = await stage2_documents(ctx, application.id, uploaded_after=uploaded_after)
    return evaluate_slots(KYCStage.STAGE2, documents)


def raise_for_verdict(result: KYCVerdictResponse, **details) -> None:
    payload = {
        "gate": f"kyc_{result.stage.value}",
        "verdict": result.verdict.value,
        "missing": [str(slot) for slot in result.missing],
        **details,
    }
    label = "Identity verification" if result.stage == KYCStage.STAGE1 else "Income verification"
    if result.verdict == KYCVerdict.REJECTED:
        raise GateRejected(message=f"{label} was rejected", details=payload)
    if result.verdict == KYCVerdict.PENDING:
        raise GatePending(message=f"{label} is not complete yet", details=payload)


def _stage1_status(result: KYCVerdictResponse, has_documents: bool) -> KYCStage1Status:
    if result.verdict == KYCVerdict.APPROVED:
        return KYCStage1Status.VERIFIED
    if result.verdict == KYCVerdict.REJECTED:
        return KYCStage1Status.REJECTED
    return KYCStage1Status.PENDING if has_documents else KYCStage1Status.NOT_STARTED


async def refresh_stage1_status(ctx: EngineContext, owner_id: UUID) -> Profile:
    profile = await ctx.store.get_or_raise(Profile, owner_id)
    documents = await stage1_documents(ctx, owner_id)
    status = _stage1_status(evaluate_slots(KYCStage.STAGE1, documents), bool(documents))
    completed = status == KYCStage1Status.VERIFIED
    if profile.kyc_stage1_status != status.value or profile.kyc_stage1_completed != completed:
        profile.kyc_stage1_status = status.value
        profile.kyc_stage1_completed = completed
        profile = await ctx.store.update(profile)
        logger.info("KYC stage 1 status for profile=%s is now %s", owner_id, status.value)
    return profile


def _require_kind(kind: K | str, stage: KYCStage) -> K:
    try:
        document_kind = K(kind)
    except ValueError as exc:
        raise ApplicationValidationError(
            message=f"Unknown document kind {kind}", details={"document_kind": str(kind)}
        ) from exc
    if document_kind not in STAGE_KINDS[stage]:
        raise ApplicationValidationError(
            message=f"{document_kind.value} is not a {stage.value} document",
            details={"document_kind": document_kind.value, "stage": stage.value},
        )
    return document_kind


def _require_owner(actor: Actor, owner_id: UUID) -> None:
    if actor.role != ProfileRole.BORROWER or actor.id != owner_id:
        raise UnauthorizedActor(
            message="Only the owner may upload verification documents",
            details={"actor_role": actor.role.value, "owner_id": str(owner_id)},
        )


async def upload_identity_document(
    ctx: EngineContext,
    actor: Actor,
    document_kind: K | str,
    document_url: str,
) -> KYCDocument:
    kind = _require_kind(document_kind, KYCStage.STAGE1)
    _require_owner(actor, actor.id)
    await ctx.store.get_or_raise(Profile, actor.id)
    document = await ctx.store.create(
        KYCDocument(
            owner_id=actor.id,
            stage=KYCStage.STAGE1.value,
            document_kind=kind.value,
            status=KYCDocumentStatus.PENDING.value,
            document_url=document_url,
            uploaded_at=ctx.now(),
        )
    )
    await refresh_stage1_status(ctx, actor.id)
    return document


async def attach_income_document(
    ctx: EngineContext,
    application: LoanApplication,
    actor: Actor,
    document_kind: K | str,
    document_url: str,
) -> KYCDocument:
    kind = _require_kind(document_kind, KYCStage.STAGE2)
    _require_owner(actor, application.owner_id)
    status = LoanApplicationStatus(application.status)
    if status not in INCOME_UPLOAD_STATUSES:
        raise ApplicationValidationError(
            message=f"Income documents cannot be attached while the application is {status.value}",
            details={"application_id": str(application.id), "status": status.value},
        )
    return await ctx.store.create(
        KYCDocument(
            owner_id=application.owner_id,
            stage=KYCStage.STAGE2.value,
            document_kind=kind.value,
            status=KYCDocumentStatus.PENDING.value,
            loan_application_id=application.id,
            document_url=document_url,
            uploaded_at=ctx.now(),
        )
    )


async def record_document_review(
    ctx: EngineContext,
    document_id: UUID,
    status: KYCDocumentStatus | str,
    reviewer: Actor,
    rejection_reason: str | None = None,
) -> KYCDocument:
    """Record the single verify/reject decision for a document."""
    if reviewer.role not in REVIEWER_ROLES:
        raise UnauthorizedActor(
            message="Only staff may review verification documents",
            details={"actor_role": reviewer.role.value},
        )
    status = KYCDocumentStatus(status)
    if status == KYCDocumentStatus.PENDING:
        raise InvalidDocumentReview(
            message="A review must verify or reject the document",
            details={"document_id": str(document_id)},
        )
    if status == KYCDocumentStatus.REJECTED and not (rejection_reason or "").strip():
        raise InvalidDocumentReview(
            message="Rejection reason is required",
            details={"document_id": str(document_id)},
        )

    async with ctx.locks.for_entity(document_id):
        document = await ctx.store.get_or_raise(KYCDocument, document_id)
        if document.status != KYCDocumentStatus.PENDING.value:
            raise InvalidDocumentReview(
                message="Document has already been reviewed",
                details={"document_id": str(document_id), "status": document.status},
            )
        document.status = status.value
        document.rejection_reason = rejection_reason if status == KYCDocumentStatus.REJECTED else None
        document.reviewed_by = reviewer.id
        document.reviewed_at = ctx.now()
        document = await ctx.store.update(document)

    logger.info(
        "KYC document=%s kind=%s reviewed as %s by role=%s",
        document.id,
        document.document_kind,
        status.value,
        reviewer.role.value,
        extra={"application_id": document.loan_application_id, "document_id": document.id},
    )
    if document.stage == KYCStage.STAGE1.value:
        await refresh_stage1_status(ctx, document.owner_id)

    kind_label = K(document.document_kind).value.replace("_", " ")
    if status == KYCDocumentStatus.VERIFIED:
        title, message = "Document verified", f"Your {kind_label} document has been verified."
    else:
        title = "Document rejected"
        message = f"Your {kind_label} document was rejected. Reason: {rejection_reason}"
    await notify_best_effort(ctx.notifier, document.owner_id, title, message, "kyc_status")
    return document


async def sync_document_verdict(
    ctx: EngineContext,
    document_id: UUID,
    verifier: DocumentVerifier | None = None,
) -> KYCDocument:
    """Ask the verification service about a pending document.

    Failures and ``pending`` answers leave the document untouched.
    """
    document = await ctx.store.get_or_raise(KYCDocument, document_id)
    if document.status != KYCDocumentStatus.PENDING.value:
        return document
    verifier = verifier or ctx.document_verifier
    if verifier is None:
        logger.warning("No document verifier configured; document=%s stays pending", document_id)
        return document
    try:
        verdict = await asyncio.wait_for(
            verifier.verify(document_id), timeout=settings.external_call_timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.warning("Document verification timed out document=%s", document_id)
        return document
    except Exception:
        logger.warning("Document verification failed document=%s", document_id, exc_info=True)
        return document
    if verdict.status == KYCDocumentStatus.PENDING:
        return document
    reason = verdict.reason
    if verdict.status == KYCDocumentStatus.REJECTED and not reason:
        reason = "Rejected by document verification"
    return await record_document_review(ctx, document_id, verdict.status, SYSTEM_ACTOR, reason)
