from typing import List

from fastapi import APIRouter, HTTPException, Query, Request

from connection_logs.config import settings
from connection_logs.schemas.user import ExistsResponse, UserRecord
from connection_logs.services.connection_store import QueryFailure

router = APIRouter()


@router.get("/connections", response_model=List[UserRecord])
async def list_connections(
    request: Request,
    limit: int = Query(settings.recent_limit, ge=1, le=500),
) -> List[UserRecord]:
    store = request.app.state.store
    try:
        return await store.list_recent(limit)
    except QueryFailure as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/connections/{steam_id}", response_model=ExistsResponse)
async def connection_exists(request: Request, steam_id: str) -> ExistsResponse:
    store = request.app.state.store
    try:
        exists = await store.exists(steam_id)
    except QueryFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
    return ExistsResponse(steam_id=steam_id, exists=exists)
