# code generator — issues human-typable, time-boxed connection codes
# format: PREFIX-XXXXXX-NNNN (6 random [A-Z0-9] chars + last 4 digits of the ms timestamp)

import logging
import re
import secrets
import string
from datetime import datetime, timezone, timedelta
from typing import Callable, Optional

from vaxlink.config import settings
from vaxlink.errors import DuplicateCode
from vaxlink.models.connection import ConnectionCode
from vaxlink.services.code_store import CodeStore

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
RANDOM_SEGMENT_LENGTH = 6
TIME_SEGMENT_LENGTH = 4


def code_pattern(prefix: Optional[str] = None) -> re.Pattern:
    prefix = prefix or settings.CONNECTION_CODE_PREFIX
    return re.compile(
        rf"{re.escape(prefix)}-[A-Z0-9]{{{RANDOM_SEGMENT_LENGTH}}}-[0-9]{{{TIME_SEGMENT_LENGTH}}}"
    )


def is_valid_code(code: str, prefix: Optional[str] = None) -> bool:
    return code_pattern(prefix).fullmatch(code) is not None


def generate_code(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """generate a connection code string, uniqueness is left to the store"""
    prefix = prefix or settings.CONNECTION_CODE_PREFIX
    now = now or datetime.now(timezone.utc)
    random_part = "".join(secrets.choice(CODE_ALPHABET) for _ in range(RANDOM_SEGMENT_LENGTH))
    time_part = str(int(now.timestamp() * 1000))[-TIME_SEGMENT_LENGTH:].zfill(TIME_SEGMENT_LENGTH)
    return f"{prefix}-{random_part}-{time_part}"


class CodeGenerator:
    """creates and persists connection codes for doctors, always with the configured prefix"""

    def __init__(
        self,
        store: CodeStore,
        ttl_hours: Optional[int] = None,
        code_factory: Callable[..., str] = generate_code,
    ):
        self.store = store
        self.ttl = timedelta(hours=ttl_hours or settings.CONNECTION_CODE_TTL_HOURS)
        self.code_factory = code_factory

    async def issue(self, doctor_id: str, now: Optional[datetime] = None) -> ConnectionCode:
        """
        generate and store a fresh code for a doctor.

        the store's unique constraint catches collisions; we regenerate once and
        let a second DuplicateCode propagate. StorageUnavailable is never retried,
        the doctor can simply ask for another code.
        """
        if not doctor_id:
            raise ValueError("doctor_id is required to issue a connection code")

        now = now or datetime.now(timezone.utc)

        for attempt in range(2):
            record = ConnectionCode(
                code=self.code_factory(now=now),
                doctor_id=doctor_id,
                created_at=now,
                expires_at=now + self.ttl,
            )
            try:
                await self.store.insert(record)
            except DuplicateCode:
                if attempt == 1:
                    logger.error(f"Connection code collided twice for doctor {doctor_id}")
                    raise
                logger.warning(f"Connection code collision on {record.code}, regenerating")
                continue

            logger.info(f"Connection code generated: {record.code} by doctor {doctor_id}")
            return record
