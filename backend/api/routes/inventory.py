"""
Inventory routes.

Stored color/size quantities by style, summary totals and CSV export.
"""

import io
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from asics_scraper import CSV_COLUMNS
from inventory_db import get_inventory, get_inventory_for_style, get_inventory_summary, list_styles
from inventory_extractor import size_value

from ..services.database import get_db


router = APIRouter(prefix="/api/inventory", tags=["inventory"])


def build_matrix(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Color x size grid from a style's rows.

    Sizes are ordered numerically; a color missing a size gets None in that cell.
    """
    sizes: List[str] = []
    for row in rows:
        if row['size_us'] not in sizes:
            sizes.append(row['size_us'])
    sizes.sort(key=lambda s: (size_value(s) is None, size_value(s) or 0.0, s))

    colors: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        color = colors.setdefault(row['color_code'], {
            'color_code': row['color_code'],
            'color_name': row['color_name'],
            'quantities': {},
        })
        color['quantities'][row['size_us']] = row['quantity']

    return {
        'sizes': sizes,
        'colors': [
            {
                'color_code': c['color_code'],
                'color_name': c['color_name'],
                'quantities': [c['quantities'].get(s) for s in sizes],
            }
            for c in colors.values()
        ],
    }


# ============================================================================
# GET /api/inventory
# ============================================================================

@router.get("/")
def get_inventory_rows(
    style_id: Optional[str] = None,
    color_code: Optional[str] = None,
    search: Optional[str] = None,
    in_stock_only: bool = False,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db=Depends(get_db),
):
    """Paginated inventory rows with optional style, color, search and stock filters."""
    with db() as conn:
        rows, total = get_inventory(conn, style_id=style_id, color_code=color_code,
                                    search=search, in_stock_only=in_stock_only,
                                    limit=limit, offset=offset)
    return {"data": rows, "total": total, "limit": limit, "offset": offset}


@router.get("/styles")
def get_styles(db=Depends(get_db)):
    """One entry per stored style."""
    with db() as conn:
        return list_styles(conn)


@router.get("/summary")
def get_summary(db=Depends(get_db)):
    with db() as conn:
        return get_inventory_summary(conn)


@router.get("/export")
def export_inventory(
    style_id: Optional[str] = None,
    in_stock_only: bool = False,
    db=Depends(get_db),
):
    """Download inventory as CSV."""
    with db() as conn:
        rows, _ = get_inventory(conn, style_id=style_id, in_stock_only=in_stock_only,
                                limit=1000000)

    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    buffer = io.StringIO()
    df.to_csv(buffer, index=False)
    buffer.seek(0)

    filename = f"asics_inventory_{datetime.now().strftime('%Y-%m-%d_%H%M%S')}.csv"
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{style_id}")
def get_style_detail(style_id: str, db=Depends(get_db)):
    """
    All rows for a style plus its color x size matrix.

    Raises:
        HTTPException: 404 if nothing is stored for the style
    """
    with db() as conn:
        rows = get_inventory_for_style(conn, style_id)
    if not rows:
        raise HTTPException(status_code=404, detail=f"No inventory for style {style_id}")

    latest = max(r['extracted_at'] for r in rows)
    return {
        "style_id": rows[0]['style_id'],
        "product_name": rows[0]['product_name'],
        "last_extracted_at": latest,
        "records": rows,
        "matrix": build_matrix(rows),
    }
