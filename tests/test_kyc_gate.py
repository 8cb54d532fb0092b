import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from conftest import create_draft, make_profile, verify_identity
from app.core.exceptions import (
    ApplicationValidationError,
    GatePending,
    GateRejected,
    InvalidDocumentReview,
    UnauthorizedActor,
)
from app.core.settings import settings
from app.models.kyc_document import KYCDocument
from app.models.profile import Profile
from app.schemas.kyc import KYCDocumentKind as K, KYCDocumentStatus, KYCStage, KYCVerdict
from app.schemas.loan import LoanApplicationStatus
from app.schemas.profile import KYCStage1Status, ProfileRole
from app.services import kyc_gate, loan_applications
from app.services.context import SYSTEM_ACTOR


T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _doc(kind: K, status: KYCDocumentStatus, minutes: int, stage: KYCStage = KYCStage.STAGE1) -> KYCDocument:
    return KYCDocument(
        id=uuid4(),
        owner_id=uuid4(),
        stage=stage.value,
        document_kind=kind.value,
        status=status.value,
        uploaded_at=T0 + timedelta(minutes=minutes),
    )


def test_no_documents_is_pending_with_every_slot_missing() -> None:
    result = kyc_gate.evaluate_slots(KYCStage.STAGE1, [])

    assert result.verdict == KYCVerdict.PENDING
    assert result.missing == ["identity", "residence"]


def test_verified_slots_approve() -> None:
    docs = [
        _doc(K.DRIVERS_LICENSE, KYCDocumentStatus.VERIFIED, 1),
        _doc(K.PROOF_OF_RESIDENCE, KYCDocumentStatus.VERIFIED, 2),
    ]

    assert kyc_gate.evaluate_slots(KYCStage.STAGE1, docs).verdict == KYCVerdict.APPROVED


def test_latest_document_in_a_slot_wins() -> None:
    rejected_then_verified = [
        _doc(K.PASSPORT, KYCDocumentStatus.REJECTED, 1),
        _doc(K.NATIONAL_ID, KYCDocumentStatus.VERIFIED, 5),
        _doc(K.PROOF_OF_RESIDENCE, KYCDocumentStatus.VERIFIED, 2),
    ]
    verified_then_rejected = [
        _doc(K.PASSPORT, KYCDocumentStatus.VERIFIED, 1),
        _doc(K.NATIONAL_ID, KYCDocumentStatus.REJECTED, 5),
        _doc(K.PROOF_OF_RESIDENCE, KYCDocumentStatus.VERIFIED, 2),
    ]

    assert kyc_gate.evaluate_slots(KYCStage.STAGE1, rejected_then_verified).verdict == KYCVerdict.APPROVED
    assert kyc_gate.evaluate_slots(KYCStage.STAGE1, verified_then_rejected).verdict == KYCVerdict.REJECTED


def test_evaluation_is_idempotent() -> None:
    docs = [
        _doc(K.PROOF_OF_INCOME, KYCDocumentStatus.VERIFIED, 1, KYCStage.STAGE2),
        _doc(K.PROOF_OF_FUNDS, KYCDocumentStatus.PENDING, 2, KYCStage.STAGE2),
    ]

    first = kyc_gate.evaluate_slots(KYCStage.STAGE2, docs)
    second = kyc_gate.evaluate_slots(KYCStage.STAGE2, list(reversed(docs)))

    assert first == second
    assert first.verdict == KYCVerdict.PENDING


def test_raise_for_verdict_maps_to_gate_errors() -> None:
    pending = kyc_gate.evaluate_slots(KYCStage.STAGE2, [])
    rejected = kyc_gate.evaluate_slots(
        KYCStage.STAGE2, [_doc(K.PROOF_OF_INCOME, KYCDocumentStatus.REJECTED, 1, KYCStage.STAGE2)]
    )

    with pytest.raises(GatePending) as pending_info:
        kyc_gate.raise_for_verdict(pending)
    with pytest.raises(GateRejected):
        kyc_gate.raise_for_verdict(rejected)
    assert pending_info.value.details["gate"] == "kyc_stage2"
    assert pending_info.value.retryable is True


@pytest.mark.asyncio
async def test_upload_and_review_update_profile_status(ctx, notifier) -> None:
    borrower = await make_profile(ctx)

    passport = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")
    profile = await ctx.store.get(Profile, borrower.id)
    assert profile.kyc_stage1_status == KYCStage1Status.PENDING.value

    residence = await kyc_gate.upload_identity_document(ctx, borrower, K.PROOF_OF_RESIDENCE, "s3://kyc/bill")
    await kyc_gate.record_document_review(ctx, passport.id, KYCDocumentStatus.VERIFIED, SYSTEM_ACTOR)
    await kyc_gate.record_document_review(ctx, residence.id, KYCDocumentStatus.VERIFIED, SYSTEM_ACTOR)

    profile = await ctx.store.get(Profile, borrower.id)
    assert profile.kyc_stage1_status == KYCStage1Status.VERIFIED.value
    assert profile.kyc_stage1_completed is True
    assert [item["notification_type"] for item in notifier.sent] == ["kyc_status", "kyc_status"]


@pytest.mark.asyncio
async def test_document_is_reviewed_exactly_once(ctx) -> None:
    borrower = await make_profile(ctx)
    officer = await make_profile(ctx, ProfileRole.LOAN_OFFICER)
    document = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")

    await kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.VERIFIED, officer)

    with pytest.raises(InvalidDocumentReview):
        await kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.REJECTED, officer, "blurry")
    stored = await ctx.store.get(KYCDocument, document.id)
    assert stored.status == KYCDocumentStatus.VERIFIED.value
    assert stored.reviewed_by == officer.id


@pytest.mark.asyncio
async def test_concurrent_reviews_record_one_verdict(ctx) -> None:
    borrower = await make_profile(ctx)
    document = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")

    results = await asyncio.gather(
        kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.VERIFIED, SYSTEM_ACTOR),
        kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.REJECTED, SYSTEM_ACTOR, "fake"),
        return_exceptions=True,
    )

    assert sum(isinstance(result, InvalidDocumentReview) for result in results) == 1
    assert sum(isinstance(result, KYCDocument) for result in results) == 1


@pytest.mark.asyncio
async def test_review_rules(ctx) -> None:
    borrower = await make_profile(ctx)
    document = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")

    with pytest.raises(UnauthorizedActor):
        await kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.VERIFIED, borrower)
    with pytest.raises(InvalidDocumentReview):
        await kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.REJECTED, SYSTEM_ACTOR)
    with pytest.raises(InvalidDocumentReview):
        await kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.PENDING, SYSTEM_ACTOR)


@pytest.mark.asyncio
async def test_upload_rejects_wrong_stage_kind(ctx) -> None:
    borrower = await make_profile(ctx)
    application = await create_draft(ctx, borrower)

    with pytest.raises(ApplicationValidationError):
        await kyc_gate.upload_identity_document(ctx, borrower, K.PROOF_OF_INCOME, "s3://kyc/payslip")
    with pytest.raises(ApplicationValidationError):
        await kyc_gate.attach_income_document(ctx, application, borrower, K.PASSPORT, "s3://kyc/passport")


@pytest.mark.asyncio
async def test_only_owner_attaches_income_documents(ctx) -> None:
    borrower = await make_profile(ctx)
    stranger = await make_profile(ctx)
    application = await create_draft(ctx, borrower)

    with pytest.raises(UnauthorizedActor):
        await kyc_gate.attach_income_document(ctx, application, stranger, K.PROOF_OF_INCOME, "s3://kyc/x")


@pytest.mark.asyncio
async def test_pending_income_document_blocks_submission(ctx) -> None:
    borrower = await make_profile(ctx)
    await verify_identity(ctx, borrower)
    application = await create_draft(ctx, borrower)
    application = await loan_applications.request_income_verification(ctx, application.id, borrower)
    income = await kyc_gate.attach_income_document(ctx, application, borrower, K.PROOF_OF_INCOME, "s3://a")
    await kyc_gate.attach_income_document(ctx, application, borrower, K.PROOF_OF_FUNDS, "s3://b")
    await kyc_gate.record_document_review(ctx, income.id, KYCDocumentStatus.VERIFIED, SYSTEM_ACTOR)

    with pytest.raises(GatePending) as exc_info:
        await loan_applications.submit_application(ctx, application.id, borrower)

    assert exc_info.value.details["verdict"] == KYCVerdict.PENDING.value
    stored = await loan_applications.get_application(ctx, application.id, borrower)
    assert stored.status == LoanApplicationStatus.KYC_STAGE2_REQUIRED.value


@pytest.mark.asyncio
async def test_unverified_identity_blocks_leaving_draft(ctx) -> None:
    borrower = await make_profile(ctx)
    application = await create_draft(ctx, borrower)

    with pytest.raises(GatePending):
        await loan_applications.request_income_verification(ctx, application.id, borrower)

    document = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")
    await kyc_gate.record_document_review(ctx, document.id, KYCDocumentStatus.REJECTED, SYSTEM_ACTOR, "expired")
    with pytest.raises(GateRejected):
        await loan_applications.request_income_verification(ctx, application.id, borrower)


@pytest.mark.asyncio
async def test_sync_applies_verifier_verdict(ctx, verifier) -> None:
    borrower = await make_profile(ctx)
    document = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")
    verifier.status = KYCDocumentStatus.REJECTED

    synced = await kyc_gate.sync_document_verdict(ctx, document.id)

    assert synced.status == KYCDocumentStatus.REJECTED.value
    assert synced.rejection_reason == "Rejected by document verification"
    again = await kyc_gate.sync_document_verdict(ctx, document.id)
    assert again.status == KYCDocumentStatus.REJECTED.value
    assert verifier.calls == [document.id]


@pytest.mark.asyncio
async def test_sync_failure_leaves_document_pending(ctx, verifier) -> None:
    borrower = await make_profile(ctx)
    document = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")
    verifier.error = RuntimeError("verification service down")

    synced = await kyc_gate.sync_document_verdict(ctx, document.id)

    assert synced.status == KYCDocumentStatus.PENDING.value


@pytest.mark.asyncio
async def test_sync_timeout_leaves_document_pending(ctx, monkeypatch) -> None:
    borrower = await make_profile(ctx)
    document = await kyc_gate.upload_identity_document(ctx, borrower, K.PASSPORT, "s3://kyc/passport")
    monkeypatch.setattr(settings, "external_call_timeout_seconds", 0.01)

    class SlowVerifier:
        async def verify(self, document_id):
            await asyncio.sleep(1)

    synced = await kyc_gate.sync_document_verdict(ctx, document.id, verifier=SlowVerifier())

    assert synced.status == KYCDocumentStatus.PENDING.value
    stored = await ctx.store.get(KYCDocument, document.id)
    assert stored.reviewed_at is None
