# seed script — creates a demo doctor and unassigned patients in mongodb
# run once: python -m vaxlink.seed

import asyncio
import logging
from datetime import datetime, timezone

from vaxlink.services.auth_service import create_access_token
from vaxlink.services.code_store import MongoCodeStore
from vaxlink.services.db import db

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

DOCTOR = {
    "email": "dr.mehta@vaxlink.dev",
    "name": "Dr. Priya Mehta",
    "role": "doctor",
    "phone": "+15550100",
    "license": "MD-2021-44817",
    "specialization": "Pediatrics",
    "clinic": "Little Steps Pediatric Clinic",
}

# patients start without a doctor, they connect by redeeming a code
PATIENTS = [
    {"name": "Maya Lopez", "email": "maya.lopez@email.com", "dob": "2022-03-14", "parent": "Ana Lopez", "phone": "+15550111"},
    {"name": "Noah Park", "email": "noah.park@email.com", "dob": "2021-11-02", "parent": "Jin Park", "phone": "+15550112"},
    {"name": "Liam Okafor", "email": "liam.okafor@email.com", "dob": "2023-06-21", "parent": "Ada Okafor", "phone": "+15550113"},
]


async def seed():
    """create the demo doctor and patients (skips existing) and log dev access tokens"""
    await db.connect()
    now = datetime.now(timezone.utc).isoformat()

    existing_doctor = await db.users.find_one({"email": DOCTOR["email"]})
    if existing_doctor:
        doctor_id = str(existing_doctor["_id"])
        logger.info(f"Doctor already exists: {DOCTOR['email']} (id: {doctor_id})")
    else:
        result = await db.users.insert_one({**DOCTOR, "created_at": now})
        doctor_id = str(result.inserted_id)
        logger.info(f"Created doctor: {DOCTOR['name']} (id: {doctor_id})")

    logger.info(f"Doctor token: {create_access_token({'sub': doctor_id, 'role': 'doctor'})}")

    for p in PATIENTS:
        existing = await db.users.find_one({"email": p["email"]})
        if existing:
            patient_id = str(existing["_id"])
            logger.info(f"Patient already exists: {p['name']} ({p['email']})")
        else:
            result = await db.users.insert_one({
                "email": p["email"],
                "name": p["name"],
                "role": "patient",
                "phone": p["phone"],
                "created_at": now,
                "date_of_birth": p["dob"],
                "parent_name": p["parent"],
                "parent_phone": p["phone"],
                "doctor_id": None,
            })
            patient_id = str(result.inserted_id)
            logger.info(f"Created patient: {p['name']} (id: {patient_id})")

        logger.info(f"Patient token for {p['name']}: {create_access_token({'sub': patient_id, 'role': 'patient'})}")

    # create indexes
    await db.users.create_index("email", unique=True)
    await db.users.create_index("role")
    await db.users.create_index("doctor_id")
    await MongoCodeStore(db).ensure_indexes()
    logger.info("Created indexes on users and connection_codes collections")

    logger.info("Seed complete!")
    await db.close()


if __name__ == "__main__":
    asyncio.run(seed())
