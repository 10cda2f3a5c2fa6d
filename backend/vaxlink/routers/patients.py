# patients router — doctor's patient list and the patient's assigned doctor
# reads the doctor_id reference set by connection code redemption

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from bson import ObjectId
from bson.errors import InvalidId

from vaxlink.models.user import DoctorResponse, PatientResponse, SessionContext
from vaxlink.services.db import Database, get_db
from vaxlink.dependencies import require_role

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/patients", tags=["patients"])


@router.get("", response_model=list[PatientResponse])
async def list_patients(
    session: SessionContext = Depends(require_role("doctor")),
    db: Database = Depends(get_db),
):
    """list all patients connected to the authenticated doctor"""
    cursor = db.users.find({"role": "patient", "doctor_id": session.user_id})
    patients = []
    async for doc in cursor:
        patients.append(PatientResponse.from_document(doc))

    return patients


@router.get("/me/doctor", response_model=DoctorResponse)
async def get_my_doctor(
    session: SessionContext = Depends(require_role("patient")),
    db: Database = Depends(get_db),
):
    """the doctor the authenticated patient is connected to"""
    patient = await db.users.find_one({"_id": ObjectId(session.user_id), "role": "patient"})
    doctor_id = (patient or {}).get("doctor_id")

    if not doctor_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="You are not connected to a doctor yet",
        )

    try:
        doctor = await db.users.find_one({"_id": ObjectId(doctor_id), "role": "doctor"})
    except InvalidId:
        doctor = None

    if not doctor:
        logger.warning(f"Patient {session.user_id} references missing doctor {doctor_id}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Doctor not found",
        )

    return DoctorResponse.from_document(doctor)


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: str,
    session: SessionContext = Depends(require_role("doctor")),
    db: Database = Depends(get_db),
):
    """get a specific patient by id (doctor must be the patient's assigned doctor)"""
    try:
        doc = await db.users.find_one({"_id": ObjectId(patient_id), "role": "patient"})
    except InvalidId:
        doc = None

    if not doc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found",
        )

    if doc.get("doctor_id") != session.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this patient",
        )

    return PatientResponse.from_document(doc)
