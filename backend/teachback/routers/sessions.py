from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..controller import ControllerRegistry
from ..domain import SessionStatus
from .deps import User, get_current_user, get_registry

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("")
async def list_sessions(
    status: Optional[SessionStatus] = None,
    user: User = Depends(get_current_user),
    registry: ControllerRegistry = Depends(get_registry),
):
    records = registry.records.load_all(user.username, status)
    return {"sessions": [r.model_dump(mode="json", by_alias=True) for r in records]}


@router.get("/{record_id}")
async def get_session(record_id: str, user: User = Depends(get_current_user), registry: ControllerRegistry = Depends(get_registry)):
    record = registry.records.get(user.username, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return record.model_dump(mode="json", by_alias=True)


@router.delete("/{record_id}")
async def delete_session(record_id: str, user: User = Depends(get_current_user), registry: ControllerRegistry = Depends(get_registry)):
    if not registry.records.delete(user.username, record_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"deleted": 1}


@router.delete("")
async def delete_all_sessions(user: User = Depends(get_current_user), registry: ControllerRegistry = Depends(get_registry)):
    removed = registry.records.delete_all(user.username)
    return {"deleted": removed}
