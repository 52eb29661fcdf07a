#!/usr/bin/env python3
"""
ASICS B2B Inventory Scraper

Logs into the ASICS B2B portal and extracts per color/size inventory from
product pages, saving to the database and optionally to CSV.

Usage:
    python asics_scraper.py                           # all active monitored URLs
    python asics_scraper.py --url URL [--url URL]     # specific pages
    python asics_scraper.py --urls-file urls.txt --max-urls 20 --csv
    python asics_scraper.py --html page.html --url URL  # offline, from a saved page
"""

import argparse
import os
from datetime import datetime
from typing import Dict, List

import pandas as pd

import settings
from batch_runner import BatchRunner
from inventory_db import (
    DatabaseConnection,
    add_url,
    cleanup_old_logs,
    get_inventory_for_batch,
    list_urls,
)
from inventory_extractor import InventoryExtractor, format_records
from page_accessor import HtmlSnapshotPage


CSV_COLUMNS = [
    'style_id', 'product_name', 'color_code', 'color_name', 'size_us',
    'quantity', 'raw_quantity', 'url', 'extracted_at',
]


def read_urls_file(path: str) -> List[str]:
    """One URL per line; blank lines and # comments are skipped."""
    urls = []
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#'):
                urls.append(line)
    return urls


def dedupe(urls: List[str]) -> List[str]:
    seen = set()
    result = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            result.append(url)
    return result


def save_to_csv(data: List[Dict], output_dir: str = str(settings.OUTPUT_DIR)) -> str:
    """Save inventory rows to a timestamped CSV file."""
    if not data:
        print("No data to save")
        return ""

    os.makedirs(output_dir, exist_ok=True)
    df = pd.DataFrame(data)
    ordered_cols = [c for c in CSV_COLUMNS if c in df.columns]
    ordered_cols += [c for c in df.columns if c not in CSV_COLUMNS]
    df = df[ordered_cols]

    timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    filepath = os.path.join(output_dir, f"asics_inventory_{timestamp}.csv")
    df.to_csv(filepath, index=False)
    print(f"\nSaved {len(df)} rows to {filepath}")
    return filepath


def extract_from_html(path: str, url: str) -> int:
    """Run the extractor against a saved page and print the matrix."""
    page = HtmlSnapshotPage.from_file(path, url=url)
    extractor = InventoryExtractor(settle_delay=0)
    records = extractor.extract(page, url)
    print(f"\n{len(records)} records from {path}")
    print(format_records(records))
    return len(records)


def register_urls(db: DatabaseConnection, urls: List[str]) -> int:
    added = 0
    for url in urls:
        if db.execute_with_retry(add_url, url) is not None:
            added += 1
            print(f"  Monitoring new URL: {url}")
    db.commit()
    return added


def main():
    parser = argparse.ArgumentParser(description='Scrape ASICS B2B inventory')
    parser.add_argument('--url', action='append', default=[], help='Product URL (repeatable)')
    parser.add_argument('--urls-file', help='File with one URL per line')
    parser.add_argument('--max-urls', type=int, help='Maximum URLs to scrape')
    parser.add_argument('--csv', action='store_true', help='Also write scraped rows to CSV')
    parser.add_argument('--output-dir', default=str(settings.OUTPUT_DIR),
                        help='Output directory for CSV')
    parser.add_argument('--html', metavar='FILE',
                        help='Extract from a saved HTML page instead of the live portal (needs --url)')
    args = parser.parse_args()

    if args.html:
        if len(args.url) != 1:
            parser.error('--html needs exactly one --url')
        extract_from_html(args.html, args.url[0])
        return

    print("=" * 60)
    print("ASICS B2B Inventory Scraper")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)

    print("\nInitializing database...", flush=True)
    db = DatabaseConnection()
    db.connect()
    try:
        urls = list(args.url)
        if args.urls_file:
            urls.extend(read_urls_file(args.urls_file))
        if urls:
            register_urls(db, dedupe(urls))
        else:
            urls = [row['url'] for row in db.execute_with_retry(list_urls, active_only=True)]
            print(f"  {len(urls)} active monitored URLs")
        urls = dedupe(urls)

        if args.max_urls:
            urls = urls[:args.max_urls]
            print(f"\nLimited to {args.max_urls} URLs")

        if not urls:
            print("No URLs to scrape!")
            return

        # 30 day log retention
        db.execute_with_retry(cleanup_old_logs)
        db.commit()
    finally:
        db.close()

    runner = BatchRunner()
    result = runner.run(urls, triggered_by='cli')

    if args.csv and result.batch_id is not None:
        db = DatabaseConnection()
        db.connect()
        try:
            save_to_csv(db.execute_with_retry(get_inventory_for_batch, result.batch_id),
                        args.output_dir)
        finally:
            db.close()

    print("\n" + "=" * 60)
    print(f"Batch {result.batch_id}: {result.status}")
    print(f"  URLs succeeded: {result.succeeded}")
    print(f"  URLs failed:    {result.failed}")
    print(f"  Records saved:  {result.records_saved}")
    if result.error:
        print(f"  Error: {result.error}")
    print(f"Finished at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)


if __name__ == "__main__":
    main()
