from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..controller import ControllerRegistry
from .deps import User, get_current_user, get_registry

router = APIRouter(prefix="/topics", tags=["topics"])


@router.get("")
async def list_topics(
    category: Optional[str] = None,
    level: Optional[str] = None,
    search: Optional[str] = None,
    user: User = Depends(get_current_user),
    registry: ControllerRegistry = Depends(get_registry),
):
    starred = registry.starred.get(user.username)
    topics = registry.content.list_topics(category=category, level=level, search=search, starred_ids=starred)
    return {"topics": [t.model_dump(by_alias=True) for t in topics]}


@router.get("/{topic_id}")
async def get_topic(topic_id: str, user: User = Depends(get_current_user), registry: ControllerRegistry = Depends(get_registry)):
    try:
        topic = registry.content.get_topic(topic_id, starred_ids=registry.starred.get(user.username))
    except LookupError:
        raise HTTPException(status_code=404, detail="Topic not found")
    return topic.model_dump(by_alias=True)


@router.post("/{topic_id}/star")
async def toggle_star(topic_id: str, user: User = Depends(get_current_user), registry: ControllerRegistry = Depends(get_registry)):
    try:
        starred = registry.starred.toggle(user.username, topic_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Topic not found")
    return {"topicId": topic_id, "starred": starred}
