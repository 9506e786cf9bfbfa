from fastapi import APIRouter, HTTPException, Request

from connection_logs.schemas.event import ConnectionEvent, EventAccepted
from connection_logs.services.connection_store import QueryFailure

router = APIRouter()


@router.post("/events", response_model=EventAccepted, status_code=202)
async def record_event(request: Request, body: ConnectionEvent) -> EventAccepted:
    recorder = request.app.state.recorder
    try:
        await recorder.record(body.connect_type, body.identity, body.ip_address)
    except QueryFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
    return EventAccepted()
