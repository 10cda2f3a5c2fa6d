# fastapi dependency injection
# provides get_current_user, the explicit session context, role checks and the connection services

import logging
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from bson import ObjectId
from bson.errors import InvalidId

from vaxlink.models.user import SessionContext
from vaxlink.services.auth_service import decode_token
from vaxlink.services.assignment_store import AssignmentStore, MongoAssignmentStore
from vaxlink.services.code_generator import CodeGenerator
from vaxlink.services.code_store import CodeStore
from vaxlink.services.db import Database, get_db
from vaxlink.services.redemption import RedemptionWorkflow

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Database = Depends(get_db),
) -> dict:
    """extract and validate the current user from the jwt bearer token"""
    token = credentials.credentials
    payload = decode_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing subject",
        )

    # fetch user from database
    try:
        user = await db.users.find_one({"_id": ObjectId(user_id)})
    except InvalidId:
        user = None

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    # convert _id to string
    user["id"] = str(user["_id"])
    del user["_id"]
    return user


async def get_session(current_user: dict = Depends(get_current_user)) -> SessionContext:
    """the identity services act on, passed explicitly instead of read from global state"""
    return SessionContext(
        user_id=current_user["id"],
        role=current_user["role"],
        name=current_user.get("name", ""),
    )


def require_role(role: str):
    """factory for role-based access control dependency"""

    async def role_checker(session: SessionContext = Depends(get_session)) -> SessionContext:
        if session.role != role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {role}",
            )
        return session

    return role_checker


# connection services

async def get_code_store(request: Request) -> CodeStore:
    """the code store built once in the app lifespan"""
    return request.app.state.code_store


async def get_assignment_store(db: Database = Depends(get_db)) -> AssignmentStore:
    return MongoAssignmentStore(db)


async def get_code_generator(store: CodeStore = Depends(get_code_store)) -> CodeGenerator:
    return CodeGenerator(store)


async def get_redemption_workflow(
    code_store: CodeStore = Depends(get_code_store),
    assignment_store: AssignmentStore = Depends(get_assignment_store),
) -> RedemptionWorkflow:
    return RedemptionWorkflow(code_store, assignment_store)
