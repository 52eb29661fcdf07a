"""
Scrape log routes.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from inventory_db import list_scrape_logs

from ..services.database import get_db


router = APIRouter(prefix="/api/logs", tags=["logs"])


@router.get("/")
def get_logs(
    batch_id: Optional[int] = Query(None, description="Filter by batch ID"),
    status: Optional[str] = Query(None, description="success or failed"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db=Depends(get_db),
):
    """Per-URL outcomes, newest first."""
    with db() as conn:
        logs, total = list_scrape_logs(conn, batch_id=batch_id, status=status,
                                       limit=limit, offset=offset)
    return {"logs": logs, "total": total, "limit": limit, "offset": offset}
