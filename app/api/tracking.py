"""
Public ingestion endpoints called by the tracker on third-party pages.

Bodies are parsed from the raw request regardless of content type because
``navigator.sendBeacon`` posts JSON as ``text/plain``. Anything that does not
validate is a 400.
"""

from typing import Callable, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from app.core.errors import MalformedPayload
from app.core.rate_limit import ingest_rate_limit
from app.db import get_session
from app.schemas import ClickBatchIn, PageHeightIn, PageviewIn, PointerBatchIn, ScrollIn
from app.services import ingestion

router = APIRouter(dependencies=[Depends(ingest_rate_limit)])

T = TypeVar("T", bound=BaseModel)


def json_body(model: Type[T]) -> Callable:
    async def parse(request: Request) -> T:
        raw = await request.body()
        try:
            return model.model_validate_json(raw or b"null")
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors() if err["loc"]})
            raise MalformedPayload("invalid fields: " + ", ".join(fields) if fields else "missing fields")

    return parse


@router.post("/pv")
def track_pageview(
    body: PageviewIn = Depends(json_body(PageviewIn)),
    user_agent: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
):
    pageview = ingestion.create_pageview(session, body, user_agent=user_agent)
    return {"id": pageview.id}


@router.post("/scroll")
def track_scroll(
    body: ScrollIn = Depends(json_body(ScrollIn)),
    session: Session = Depends(get_session),
):
    ingestion.merge_scroll(session, body.pageview_id, body.max_depth, body.dwell_ms, body.zones)
    return {"ok": True}


@router.post("/click")
def track_clicks(
    body: ClickBatchIn = Depends(json_body(ClickBatchIn)),
    session: Session = Depends(get_session),
):
    count = ingestion.record_clicks(session, body.clicks)
    return {"ok": True, "count": count}


@router.post("/mouse")
def track_pointer(
    body: PointerBatchIn = Depends(json_body(PointerBatchIn)),
    session: Session = Depends(get_session),
):
    batch = ingestion.record_pointer_batch(session, body.pageview_id, body.moves)
    return {"ok": True, "count": len(batch.samples)}


@router.post("/ph")
def track_page_height(
    body: PageHeightIn = Depends(json_body(PageHeightIn)),
    session: Session = Depends(get_session),
):
    ingestion.record_page_height(session, body.pageview_id, body.height)
    return {"ok": True}
