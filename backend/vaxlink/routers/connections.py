# connections router — doctor-issued connection codes and patient redemption
# doctors generate codes and qr images, patients redeem them by typing the code or uploading the qr

import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status

from vaxlink.config import settings
from vaxlink.dependencies import (
    get_code_generator,
    get_code_store,
    get_redemption_workflow,
    require_role,
)
from vaxlink.errors import Forbidden, status_for_reason
from vaxlink.models.connection import (
    ConnectionCodeCreate,
    ConnectionCodeResponse,
    RedeemRequest,
    RedemptionResponse,
)
from vaxlink.models.user import SessionContext
from vaxlink.services.code_generator import CodeGenerator
from vaxlink.services.code_store import CodeStore
from vaxlink.services.qr_service import build_connect_uri, encode_qr
from vaxlink.services.redemption import (
    RedemptionOutcome,
    RedemptionWorkflow,
    normalize_code,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/connections", tags=["connections"])


def _to_response(outcome: RedemptionOutcome) -> RedemptionResponse:
    """success goes back as the body, failures become an http error carrying the reason"""
    if not outcome.succeeded:
        raise HTTPException(
            status_code=status_for_reason(outcome.reason),
            detail={
                "reason": outcome.reason,
                "message": outcome.message,
                "code": outcome.code,
                "doctorId": outcome.doctor_id,
            },
        )
    return RedemptionResponse(
        state=outcome.state.value,
        message=outcome.message,
        code=outcome.code,
        doctorId=outcome.doctor_id,
    )


# doctor endpoints

@router.post("/codes", response_model=ConnectionCodeCreate, status_code=status.HTTP_201_CREATED)
async def generate_connection_code(
    session: SessionContext = Depends(require_role("doctor")),
    generator: CodeGenerator = Depends(get_code_generator),
):
    """generate a new single-use connection code for a patient"""
    record = await generator.issue(session.user_id)
    return ConnectionCodeCreate(
        code=record.code,
        uri=build_connect_uri(record.code),
        expiresAt=record.expires_at,
    )


@router.get("/codes", response_model=list[ConnectionCodeResponse])
async def list_connection_codes(
    session: SessionContext = Depends(require_role("doctor")),
    store: CodeStore = Depends(get_code_store),
):
    """list all connection codes created by this doctor, newest first"""
    records = await store.list_for_doctor(session.user_id)
    return [ConnectionCodeResponse.from_record(r) for r in records]


@router.get("/codes/{code}/qr", responses={200: {"content": {"image/png": {}}}})
async def get_connection_qr(
    code: str,
    session: SessionContext = Depends(require_role("doctor")),
    store: CodeStore = Depends(get_code_store),
):
    """png qr image of the connection uri for one of the doctor's codes"""
    record = await store.find_by_code(normalize_code(code))
    if record.doctor_id != session.user_id:
        raise Forbidden("You do not have access to this connection code.")

    # rendering reads the image back through the decoder, keep it off the event loop
    png = await asyncio.to_thread(encode_qr, build_connect_uri(record.code))
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="doctor-qr-{record.code}.png"'},
    )


# patient endpoints

@router.post("/redeem", response_model=RedemptionResponse)
async def redeem_connection_code(
    body: RedeemRequest,
    session: SessionContext = Depends(require_role("patient")),
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
):
    """connect the patient to a doctor with a typed connection code"""
    outcome = await workflow.submit(session, body.code)
    return _to_response(outcome)


@router.post("/redeem/qr", response_model=RedemptionResponse)
async def redeem_connection_qr(
    file: UploadFile = File(..., description="photo or screenshot of the doctor's qr code"),
    session: SessionContext = Depends(require_role("patient")),
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
):
    """connect the patient to a doctor with an uploaded qr image"""
    image_bytes = await file.read(settings.QR_MAX_UPLOAD_BYTES + 1)
    if len(image_bytes) > settings.QR_MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="QR image is too large",
        )

    outcome = await workflow.submit_qr(session, image_bytes)
    return _to_response(outcome)


@router.post("/assignment/retry", response_model=RedemptionResponse)
async def retry_doctor_assignment(
    body: RedeemRequest,
    session: SessionContext = Depends(require_role("patient")),
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
):
    """finish linking to the doctor for a code this patient already consumed"""
    outcome = await workflow.retry_assignment(session, body.code)
    return _to_response(outcome)
