"""
Batch management routes.

Endpoints for starting and stopping scrape batches, checking progress,
batch history, single-URL test extraction and cron suggestions.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from batch_runner import BatchBusyError, BatchRunner
from inventory_db import get_batch, list_batches, list_scrape_logs, list_urls
from page_accessor import ScraperError

from ..services.database import get_db
from ..services.runner import get_runner


router = APIRouter(prefix="/api/batches", tags=["batches"])

# Backend directory path
BACKEND_DIR = Path(__file__).parent.parent.parent


class RunBatchRequest(BaseModel):
    """Request body for starting a batch. Without urls, all active monitored URLs run."""
    urls: Optional[List[str]] = None
    max_urls: Optional[int] = Field(None, ge=1)


class RunBatchResponse(BaseModel):
    message: str
    urls_total: int


class StopBatchResponse(BaseModel):
    message: str
    state: str


class BatchStatusResponse(BaseModel):
    """Live state of the runner."""
    state: str
    batch_id: Optional[int] = None
    triggered_by: Optional[str] = None
    started_at: Optional[str] = None
    current_url: Optional[str] = None
    urls_total: int = 0
    urls_processed: int = 0
    urls_succeeded: int = 0
    urls_failed: int = 0
    records_saved: int = 0
    last_result: Optional[Dict[str, Any]] = None


class Batch(BaseModel):
    """Scrape batch summary."""
    batch_id: int
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    status: Optional[str] = None
    triggered_by: Optional[str] = None
    urls_total: Optional[int] = None
    urls_succeeded: Optional[int] = None
    urls_failed: Optional[int] = None
    records_saved: Optional[int] = None


class BatchListResponse(BaseModel):
    batches: List[Batch]
    total: int
    limit: int
    offset: int


class ScrapeLog(BaseModel):
    log_id: int
    batch_id: Optional[int] = None
    url: str
    status: str
    records_found: Optional[int] = None
    error: Optional[str] = None
    created_at: Optional[str] = None


class BatchDetailResponse(BaseModel):
    batch: Batch
    logs: List[ScrapeLog]


class TestUrlRequest(BaseModel):
    url: str = Field(..., min_length=1)


class TestUrlResponse(BaseModel):
    url: str
    records_found: int
    records: List[Dict[str, Any]]


class CronSuggestion(BaseModel):
    """Cron schedule suggestion."""
    name: str
    cron: str
    description: str
    command: str


@router.post("/run", response_model=RunBatchResponse, status_code=202)
def run_batch(request: RunBatchRequest = None, db=Depends(get_db),
              runner: BatchRunner = Depends(get_runner)):
    """
    Start a batch in the background.

    Raises:
        HTTPException: 400 if there is nothing to scrape, 409 if a batch is already running
    """
    if not runner.is_idle:
        raise HTTPException(status_code=409, detail="A batch is already running")

    urls = request.urls if request and request.urls else None
    if urls is None:
        with db() as conn:
            urls = [row['url'] for row in list_urls(conn, active_only=True)]
    urls = [u.strip() for u in urls if u and u.strip()]
    if request and request.max_urls:
        urls = urls[:request.max_urls]

    if not urls:
        raise HTTPException(status_code=400, detail="No URLs to scrape")

    try:
        runner.start(urls, triggered_by='api')
    except BatchBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return RunBatchResponse(message=f"Started batch of {len(urls)} URLs", urls_total=len(urls))


@router.post("/stop", response_model=StopBatchResponse)
def stop_batch(runner: BatchRunner = Depends(get_runner)):
    """Ask the running batch to stop after the current page."""
    if not runner.request_stop():
        raise HTTPException(status_code=409, detail="No batch is running")
    return StopBatchResponse(message="Stop requested", state=runner.status()['state'])


@router.get("/status", response_model=BatchStatusResponse)
def get_status(runner: BatchRunner = Depends(get_runner)):
    return BatchStatusResponse(**runner.status())


@router.post("/test-url", response_model=TestUrlResponse)
def test_url(request: TestUrlRequest, runner: BatchRunner = Depends(get_runner)):
    """
    Extract one URL without saving anything.

    Raises:
        HTTPException: 409 while a batch holds the browser, 502 on login, page load or browser failure
    """
    url = request.url.strip()
    try:
        records = runner.extract_single(url)
    except BatchBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ScraperError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Extraction failed: {str(e)}")

    return TestUrlResponse(url=url, records_found=len(records),
                           records=[r.to_dict() for r in records])


@router.get("/cron-suggestions", response_model=List[CronSuggestion])
def get_cron_suggestions():
    """
    Get recommended crontab entries for scheduling batch runs.

    Returns:
        List of cron suggestions with schedule and command
    """
    backend_path = str(BACKEND_DIR)
    venv_activate = f"source {backend_path}/venv/bin/activate"
    command = (f"cd {backend_path} && {venv_activate} && python asics_scraper.py "
               f">> /var/log/asics-inventory/scraper.log 2>&1")

    return [
        CronSuggestion(
            name="Business hours",
            cron="0 8-18/2 * * 1-5",
            description="Every 2 hours from 8:00 AM to 6:00 PM, Monday to Friday",
            command=command,
        ),
        CronSuggestion(
            name="Nightly",
            cron="0 2 * * *",
            description="Daily at 2:00 AM",
            command=command,
        ),
        CronSuggestion(
            name="Weekly with CSV",
            cron="0 3 * * 1",
            description="Weekly on Monday at 3:00 AM, with CSV export",
            command=command.replace("asics_scraper.py", "asics_scraper.py --csv"),
        ),
    ]


@router.get("/", response_model=BatchListResponse)
def get_batches(
    limit: int = Query(20, ge=1, le=100, description="Number of results to return"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
    db=Depends(get_db),
):
    """List batches, newest first."""
    with db() as conn:
        rows, total = list_batches(conn, limit=limit, offset=offset)
    return BatchListResponse(batches=[Batch(**row) for row in rows], total=total,
                             limit=limit, offset=offset)


@router.get("/{batch_id}", response_model=BatchDetailResponse)
def get_batch_detail(batch_id: int, db=Depends(get_db)):
    """A batch with every per-URL log row."""
    with db() as conn:
        batch = get_batch(conn, batch_id)
        if batch is None:
            raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
        logs, _ = list_scrape_logs(conn, batch_id=batch_id, limit=10000)
    return BatchDetailResponse(batch=Batch(**batch), logs=[ScrapeLog(**row) for row in logs])
