"""
Monitored URL routes.

Endpoints for the list of product pages that scheduled and manual batches scrape.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from inventory_db import add_url, delete_url, get_url, list_urls, set_url_active

from ..services.database import get_db


router = APIRouter(prefix="/api/urls", tags=["urls"])


class MonitoredUrl(BaseModel):
    """A product page in the scrape list."""
    url_id: int
    url: str
    style_id: Optional[str] = None
    label: Optional[str] = None
    is_active: bool
    created_at: Optional[str] = None
    last_scraped_at: Optional[str] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None


class AddUrlRequest(BaseModel):
    url: str = Field(..., min_length=1)
    label: Optional[str] = None


class BulkAddRequest(BaseModel):
    urls: List[str]


class BulkAddResponse(BaseModel):
    added: List[str]
    skipped: List[str]


class UpdateUrlRequest(BaseModel):
    is_active: bool


def validate_url(url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=422, detail=f"Not an http(s) URL: {url!r}")
    return url


def to_model(row) -> MonitoredUrl:
    row = dict(row)
    row['is_active'] = bool(row['is_active'])
    return MonitoredUrl(**row)


@router.get("/", response_model=List[MonitoredUrl])
def get_urls(
    active_only: bool = Query(False, description="Only URLs included in batch runs"),
    db=Depends(get_db),
):
    """List monitored URLs in insertion order."""
    with db() as conn:
        return [to_model(row) for row in list_urls(conn, active_only=active_only)]


@router.post("/", response_model=MonitoredUrl, status_code=201)
def create_url(request: AddUrlRequest, db=Depends(get_db)):
    """
    Add a URL to the scrape list.

    Raises:
        HTTPException: 422 if the URL is not http(s), 409 if already monitored
    """
    url = validate_url(request.url)
    with db() as conn:
        url_id = add_url(conn, url, request.label)
        if url_id is None:
            raise HTTPException(status_code=409, detail=f"URL already monitored: {url}")
        return to_model(get_url(conn, url_id))


@router.post("/bulk", response_model=BulkAddResponse)
def create_urls_bulk(request: BulkAddRequest, db=Depends(get_db)):
    """Add many URLs at once; blanks and duplicates are skipped rather than rejected."""
    added, skipped = [], []
    with db() as conn:
        for raw in request.urls:
            url = raw.strip()
            if not url.startswith(("http://", "https://")):
                if url:
                    skipped.append(url)
                continue
            if add_url(conn, url) is None:
                skipped.append(url)
            else:
                added.append(url)
    return BulkAddResponse(added=added, skipped=skipped)


@router.patch("/{url_id}", response_model=MonitoredUrl)
def update_url(url_id: int, request: UpdateUrlRequest, db=Depends(get_db)):
    """Enable or disable a URL for batch runs."""
    with db() as conn:
        if not set_url_active(conn, url_id, request.is_active):
            raise HTTPException(status_code=404, detail=f"URL {url_id} not found")
        return to_model(get_url(conn, url_id))


@router.delete("/{url_id}", status_code=204)
def remove_url(url_id: int, db=Depends(get_db)):
    """Stop monitoring a URL. Inventory already scraped from it is kept."""
    with db() as conn:
        if not delete_url(conn, url_id):
            raise HTTPException(status_code=404, detail=f"URL {url_id} not found")
