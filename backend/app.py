#!/usr/bin/env python3
"""
ASICS Inventory Dashboard

Streamlit app for browsing scraped B2B inventory.
- Sidebar: style search with autocomplete + scrollable style list
- Main panel: color x size quantity grid with a freshness indicator
- Home screen: totals and recent batch history

Run with:
    cd backend
    streamlit run app.py
"""

from datetime import datetime
from typing import Optional, Tuple

import pandas as pd
import streamlit as st
from streamlit_searchbox import st_searchbox

from inventory_db import (
    DatabaseConnection,
    get_inventory_for_style,
    get_inventory_summary,
    list_batches,
    list_styles,
)
from inventory_extractor import size_value

# =============================================================================
# Configuration
# =============================================================================

st.set_page_config(
    page_title="ASICS Inventory",
    page_icon="👟",
    layout="wide",
    initial_sidebar_state="expanded"
)

# =============================================================================
# Database Connection
# =============================================================================

@st.cache_resource
def get_database() -> DatabaseConnection:
    """One reconnecting connection shared across reruns."""
    db = DatabaseConnection()
    db.connect()
    return db


def query(func, *args, **kwargs):
    db = get_database()
    result = db.execute_with_retry(func, *args, **kwargs)
    db.commit()
    return result

# =============================================================================
# Data Queries
# =============================================================================

@st.cache_data(ttl=300)  # Cache for 5 minutes
def get_all_styles() -> pd.DataFrame:
    """Get list of all stored styles for search."""
    return pd.DataFrame(query(list_styles))


def search_styles(term: str):
    """Search styles by id or product name for autocomplete."""
    if not term:
        return []

    styles_df = get_all_styles()
    if styles_df.empty:
        return []
    term = term.lower()
    mask = (styles_df['style_id'].str.lower().str.contains(term, na=False) |
            styles_df['product_name'].str.lower().str.contains(term, na=False))
    return styles_df[mask]['style_id'].tolist()[:15]


@st.cache_data(ttl=60)  # Cache for 1 minute
def get_style_rows(style_id: str) -> pd.DataFrame:
    return pd.DataFrame(query(get_inventory_for_style, style_id))


def build_quantity_grid(rows: pd.DataFrame) -> pd.DataFrame:
    """Pivot rows into a color x size grid with numerically ordered size columns."""
    rows = rows.assign(color=rows['color_code'] + ' ' + rows['color_name'].fillna(''))
    grid = rows.pivot_table(index='color', columns='size_us', values='quantity',
                            aggfunc='sum', fill_value=0)
    ordered = sorted(grid.columns, key=lambda s: (size_value(s) is None, size_value(s) or 0.0, s))
    grid = grid[ordered]
    grid.columns.name = None
    grid.index.name = None
    return grid


def get_freshness_status(extracted_at: Optional[str]) -> Tuple[str, str]:
    """
    Calculate data freshness.
    Returns (label, css class)
    """
    if not extracted_at:
        return "Unknown", "unknown"

    try:
        extracted = datetime.fromisoformat(str(extracted_at).replace('Z', '+00:00'))
    except ValueError:
        return "Unknown", "unknown"

    now = datetime.now(extracted.tzinfo) if extracted.tzinfo else datetime.now()
    hours_old = (now - extracted).total_seconds() / 3600

    if hours_old < 6:
        return f"Fresh ({int(hours_old)}h ago)", "fresh"
    if hours_old < 24:
        return f"Today ({int(hours_old)}h ago)", "recent"
    return f"Stale ({int(hours_old / 24)}d ago)", "stale"


def format_timestamp(value) -> str:
    if value is None or pd.isna(value):
        return "-"
    try:
        return pd.to_datetime(value).strftime("%m/%d/%y %H:%M")
    except (ValueError, TypeError):
        return "-"

# =============================================================================
# Main App
# =============================================================================

def render_style(style_id: str):
    rows = get_style_rows(style_id)
    if rows.empty:
        st.warning(f"No inventory stored for {style_id}")
        return

    latest = rows['extracted_at'].dropna().max()
    freshness_label, freshness_class = get_freshness_status(latest)
    product_url = rows['url'].dropna().iloc[0] if rows['url'].notna().any() else None

    st.title(f"{rows['product_name'].iloc[0]}")
    header_html = f'''
    <div style="display: flex; align-items: center; gap: 16px; margin-bottom: 16px;">
        <span style="font-weight: 600; color: #9ca3af;">{style_id}</span>
        <span class="freshness-badge freshness-{freshness_class}">{freshness_label}</span>
        {f'<a href="{product_url}" target="_blank" style="color: #3b82f6; text-decoration: none;">View on B2B portal →</a>' if product_url else ''}
    </div>
    '''
    st.markdown(header_html, unsafe_allow_html=True)

    col1, col2, col3 = st.columns(3)
    col1.metric("Colors", rows['color_code'].nunique())
    col2.metric("Sizes", rows['size_us'].nunique())
    col3.metric("Total units", f"{int(rows['quantity'].sum()):,}")

    st.divider()
    st.header("📦 Quantity by color and size")
    st.dataframe(build_quantity_grid(rows), use_container_width=True)
    st.caption("Quantities shown as 12+ on the portal are stored as 12.")

    with st.expander("📋 Raw Data", expanded=False):
        st.dataframe(rows, hide_index=True, use_container_width=True)


def render_home():
    st.title("ASICS Inventory")
    summary = query(get_inventory_summary)

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Styles", summary.get('styles') or 0)
    col2.metric("Records", summary.get('records') or 0)
    col3.metric("In stock", summary.get('in_stock_records') or 0)
    col4.metric("Active URLs", summary.get('active_urls') or 0)

    freshness_label, freshness_class = get_freshness_status(summary.get('last_extracted_at'))
    st.markdown(f'<span class="freshness-badge freshness-{freshness_class}">'
                f'Last extraction: {freshness_label}</span>', unsafe_allow_html=True)

    st.divider()
    st.markdown("**Recent batches:**")
    batches, _ = query(list_batches, limit=10)
    if not batches:
        st.info("No batches run yet")
        return

    batches_df = pd.DataFrame(batches)
    batches_df["Started"] = batches_df["started_at"].apply(format_timestamp)
    batches_df["Completed"] = batches_df["completed_at"].apply(format_timestamp)
    batches_df = batches_df.rename(columns={
        "batch_id": "Batch", "status": "Status", "triggered_by": "Trigger",
        "urls_succeeded": "Succeeded", "urls_failed": "Failed", "records_saved": "Records",
    })
    st.dataframe(
        batches_df[["Batch", "Started", "Completed", "Status", "Trigger",
                    "Succeeded", "Failed", "Records"]],
        hide_index=True, use_container_width=True,
    )


def main():
    st.markdown("""
        <style>
        .freshness-badge {
            display: inline-block;
            padding: 4px 12px;
            border-radius: 16px;
            font-size: 0.85rem;
            font-weight: 500;
        }
        .freshness-fresh, .freshness-recent {
            background: rgba(34, 197, 94, 0.12);
            color: #22c55e;
            border: 1px solid rgba(34, 197, 94, 0.4);
        }
        .freshness-stale {
            background: rgba(239, 68, 68, 0.12);
            color: #ef4444;
            border: 1px solid rgba(239, 68, 68, 0.4);
        }
        .freshness-unknown {
            background: rgba(156, 163, 175, 0.12);
            color: #9ca3af;
            border: 1px solid rgba(156, 163, 175, 0.4);
        }
        </style>
    """, unsafe_allow_html=True)

    # Sidebar - Search and style list
    with st.sidebar:
        st.title("👟 Styles")

        selected_from_search = st_searchbox(
            search_styles,
            key="style_search",
            placeholder="Style ID or product name...",
            clear_on_submit=True,
            default=None
        )

        if selected_from_search:
            if st.session_state.get('selected_style') != selected_from_search:
                st.session_state['selected_style'] = selected_from_search
                st.rerun()

        styles_df = get_all_styles()
        st.caption(f"{len(styles_df)} styles")
        if st.button("🏠 Overview", use_container_width=True):
            st.session_state['selected_style'] = None
            st.rerun()

        st.markdown("---")
        st.markdown("##### Browse All")

        with st.container(height=450):
            for idx, row in styles_df.iterrows():
                style_id = row['style_id']
                is_selected = style_id == st.session_state.get('selected_style')
                if st.button(
                    f"{style_id} · {row['product_name']}",
                    key=f"style_{idx}_{style_id}",
                    use_container_width=True,
                    type="primary" if is_selected else "secondary"
                ):
                    if st.session_state.get('selected_style') != style_id:
                        st.session_state['selected_style'] = style_id
                        st.rerun()

    selected_style = st.session_state.get('selected_style')
    if selected_style:
        render_style(selected_style)
    else:
        render_home()


if __name__ == "__main__":
    main()
