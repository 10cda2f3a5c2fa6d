# redemption workflow — a patient consumes a connection code to get linked to a doctor
# idle -> validating -> succeeded | failed, with the partial-assignment case kept distinct

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from vaxlink.errors import (
    AssignmentPartial,
    ConnectionCodeError,
    Forbidden,
    InvalidFormat,
    NotRedeemed,
)
from vaxlink.models.user import SessionContext
from vaxlink.services.assignment_store import AssignmentStore
from vaxlink.services.code_generator import is_valid_code
from vaxlink.services.code_store import CodeStore, check_redeemable
from vaxlink.services.qr_service import decode_qr, extract_code

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "You are now connected to your doctor."


class RedemptionState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RedemptionOutcome:
    state: RedemptionState
    message: str
    reason: Optional[str] = None
    code: Optional[str] = None
    doctor_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == RedemptionState.SUCCEEDED


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedemptionWorkflow:
    """
    one instance drives one patient's connection attempt.

    submit() never raises for expected failures, it returns a failed outcome with
    the reason and a user-facing message. the only mutations are the store's atomic
    redeem and the assignment write, and both happen only after validation passes.
    """

    def __init__(
        self,
        code_store: CodeStore,
        assignment_store: AssignmentStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.code_store = code_store
        self.assignment_store = assignment_store
        self.clock = clock
        self.state = RedemptionState.IDLE

    async def submit(self, session: SessionContext, code: str) -> RedemptionOutcome:
        """redeem a typed (or already extracted) code"""
        normalized = normalize_code(code)
        self.state = RedemptionState.VALIDATING

        try:
            doctor_id = await self._redeem(session, normalized)
        except AssignmentPartial as e:
            logger.error(
                f"Code {e.code} consumed by patient {session.user_id} but doctor {e.doctor_id} "
                f"was not assigned: {e.__cause__}"
            )
            return self._failed(e, code=e.code, doctor_id=e.doctor_id)
        except ConnectionCodeError as e:
            logger.warning(f"Redemption of {normalized!r} by {session.user_id} rejected: {e.reason}")
            return self._failed(e, code=normalized)
        except Exception:
            self.state = RedemptionState.FAILED
            raise

        self.state = RedemptionState.SUCCEEDED
        logger.info(f"Patient {session.user_id} connected to doctor {doctor_id} with code {normalized}")
        return RedemptionOutcome(
            state=self.state,
            message=SUCCESS_MESSAGE,
            code=normalized,
            doctor_id=doctor_id,
        )

    async def submit_qr(self, session: SessionContext, image_bytes: bytes) -> RedemptionOutcome:
        """redeem the code carried by an uploaded qr image"""
        self.state = RedemptionState.VALIDATING
        try:
            # opencv decoding is cpu bound, keep it off the event loop
            uri = await asyncio.to_thread(decode_qr, image_bytes)
            code = extract_code(uri)
        except ConnectionCodeError as e:
            logger.warning(f"QR upload from {session.user_id} rejected: {e.reason}")
            return self._failed(e)

        return await self.submit(session, code)

    async def retry_assignment(self, session: SessionContext, code: str) -> RedemptionOutcome:
        """
        recovery path for ASSIGNMENT_PARTIAL: re-apply the doctor assignment for a
        code this patient already consumed. used_by is the proof of entitlement,
        so no new code is needed and repeating the call is harmless.
        """
        normalized = normalize_code(code)
        self.state = RedemptionState.VALIDATING

        try:
            self._require_patient(session)
            self._require_format(normalized)
            record = await self.code_store.find_by_code(normalized)
            if not record.used:
                raise NotRedeemed()
            if record.used_by != session.user_id:
                raise Forbidden()
            await self._assign(session, record.code, record.doctor_id)
        except AssignmentPartial as e:
            logger.error(f"Assignment retry for code {normalized} still failing: {e.__cause__}")
            return self._failed(e, code=e.code, doctor_id=e.doctor_id)
        except ConnectionCodeError as e:
            logger.warning(f"Assignment retry of {normalized!r} by {session.user_id} rejected: {e.reason}")
            return self._failed(e, code=normalized)

        self.state = RedemptionState.SUCCEEDED
        logger.info(f"Assignment retry linked patient {session.user_id} to doctor {record.doctor_id}")
        return RedemptionOutcome(
            state=self.state,
            message=SUCCESS_MESSAGE,
            code=normalized,
            doctor_id=record.doctor_id,
        )

    # steps

    async def _redeem(self, session: SessionContext, code: str) -> str:
        self._require_patient(session)
        self._require_format(code)

        now = self.clock()
        # redeem() re-checks atomically, this only reports the reason early
        record = await self.code_store.find_by_code(code)
        check_redeemable(record, now)

        redeemed = await self.code_store.redeem(code, session.user_id, now)
        await self._assign(session, redeemed.code, redeemed.doctor_id)
        return redeemed.doctor_id

    async def _assign(self, session: SessionContext, code: str, doctor_id: str) -> None:
        # the code is already consumed here, any failure leaves a partial connection
        try:
            await self.assignment_store.assign_doctor(session.user_id, doctor_id)
        except Exception as e:
            raise AssignmentPartial(code=code, doctor_id=doctor_id) from e

    @staticmethod
    def _require_patient(session: SessionContext) -> None:
        if session.role != "patient":
            raise Forbidden("Only patients can connect to a doctor with a connection code.")

    @staticmethod
    def _require_format(code: str) -> None:
        if not is_valid_code(code):
            raise InvalidFormat("Invalid connection code format. Codes look like DOC-XXXXXX-XXXX.")

    def _failed(
        self,
        error: ConnectionCodeError,
        code: Optional[str] = None,
        doctor_id: Optional[str] = None,
    ) -> RedemptionOutcome:
        self.state = RedemptionState.FAILED
        return RedemptionOutcome(
            state=self.state,
            reason=error.reason,
            message=error.message,
            code=code,
            doctor_id=doctor_id,
        )
