# api/routers/events.py
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.handler import EventQueryHandler

router = APIRouter(tags=["events"])


def get_handler(request: Request) -> EventQueryHandler:
    return request.app.state.handler


@router.get("/api/events")
def events(request: Request, handler: EventQueryHandler = Depends(get_handler)):
    """
    Recognized query parameters: start, end, days, limit, offset,
    minlat/maxlat/minlon/maxlon, lat/lon/maxrad/minrad, mindepth/maxdepth,
    minmag/maxmag, magtype, eventid, orderby, format, nocache.
    """
    status, body = handler.handle(request.query_params)
    return JSONResponse(content=body, status_code=status)


@router.get("/", include_in_schema=False)
def root(request: Request, handler: EventQueryHandler = Depends(get_handler)):
    status, body = handler.handle(request.query_params)
    return JSONResponse(content=body, status_code=status)
