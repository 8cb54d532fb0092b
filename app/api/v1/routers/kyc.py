from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.api import deps
from app.core.exceptions import UnauthorizedActor
from app.schemas.kyc import (
    KYCDocumentCreate,
    KYCDocumentDTO,
    KYCDocumentReviewRequest,
    KYCVerdictResponse,
)
from app.schemas.profile import ProfileRole
from app.services import kyc_gate, loan_applications
from app.services.context import Actor, EngineContext

router = APIRouter(prefix="/kyc", tags=["kyc"])


def _resolve_owner(actor: Actor, owner_id: UUID | None) -> UUID:
    if owner_id is None or owner_id == actor.id:
        return actor.id
    if actor.role == ProfileRole.BORROWER:
        raise UnauthorizedActor(
            message="Borrowers may only view their own verification status",
            details={"owner_id": str(owner_id)},
        )
    return owner_id


@router.post(
    "/documents",
    response_model=KYCDocumentDTO,
    status_code=201,
    summary="Upload an identity or residence document",
)
async def upload_identity_document(
    payload: KYCDocumentCreate,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> KYCDocumentDTO:
    document = await kyc_gate.upload_identity_document(
        ctx, actor, payload.document_kind, payload.document_url
    )
    return KYCDocumentDTO.model_validate(document)


@router.get("/documents", response_model=list[KYCDocumentDTO], summary="List identity documents")
async def list_identity_documents(
    owner_id: UUID | None = Query(default=None),
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> list[KYCDocumentDTO]:
    documents = await kyc_gate.stage1_documents(ctx, _resolve_owner(actor, owner_id))
    documents.sort(key=lambda doc: doc.uploaded_at, reverse=True)
    return [KYCDocumentDTO.model_validate(document) for document in documents]


@router.get("/stage1", response_model=KYCVerdictResponse, summary="Identity verification verdict")
async def get_stage1_verdict(
    owner_id: UUID | None = Query(default=None),
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> KYCVerdictResponse:
    return await kyc_gate.evaluate_stage1(ctx, _resolve_owner(actor, owner_id))


@router.post(
    "/loan-applications/{application_id}/documents",
    response_model=KYCDocumentDTO,
    status_code=201,
    summary="Attach an income document to an application",
)
async def attach_income_document(
    application_id: UUID,
    payload: KYCDocumentCreate,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> KYCDocumentDTO:
    application = await loan_applications.get_application(ctx, application_id, actor)
    document = await kyc_gate.attach_income_document(
        ctx, application, actor, payload.document_kind, payload.document_url
    )
    return KYCDocumentDTO.model_validate(document)


@router.get(
    "/loan-applications/{application_id}/stage2",
    response_model=KYCVerdictResponse,
    summary="Income verification verdict",
)
async def get_stage2_verdict(
    application_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> KYCVerdictResponse:
    application = await loan_applications.get_application(ctx, application_id, actor)
    return await kyc_gate.evaluate_stage2(ctx, application)


@router.post(
    "/documents/{document_id}/review",
    response_model=KYCDocumentDTO,
    summary="Verify or reject a document",
)
async def review_document(
    document_id: UUID,
    payload: KYCDocumentReviewRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> KYCDocumentDTO:
    document = await kyc_gate.record_document_review(
        ctx, document_id, payload.status, actor, payload.rejection_reason
    )
    return KYCDocumentDTO.model_validate(document)


@router.post(
    "/documents/{document_id}/sync",
    response_model=KYCDocumentDTO,
    summary="Pull a verdict from the document verification service",
)
async def sync_document(
    document_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> KYCDocumentDTO:
    if actor.role not in kyc_gate.REVIEWER_ROLES:
        raise UnauthorizedActor(
            message="Only staff may request document verification",
            details={"actor_role": actor.role.value},
        )
    document = await kyc_gate.sync_document_verdict(ctx, document_id)
    return KYCDocumentDTO.model_validate(document)
