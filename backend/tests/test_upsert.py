"""
Tests for inventory persistence: upsert keyed by (style_id, color_code, size_us),
monitored URLs, batches and scrape logs.
"""
import pytest
from datetime import datetime, timedelta

from conftest import make_record


class TestUpsertInventory:
    """Insert-or-update with last-write-wins on the natural key."""

    def test_insert_new_records(self, sqlite_conn):
        from inventory_db import upsert_inventory_records

        written = upsert_inventory_records(sqlite_conn, [
            make_record(size_us='9', quantity=5),
            make_record(size_us='9.5', quantity=12, raw_quantity='12+'),
        ], batch_id=1)
        sqlite_conn.commit()

        assert written == 2
        cursor = sqlite_conn.cursor()
        cursor.execute('SELECT size_us, quantity, raw_quantity, batch_id FROM inventory ORDER BY size_us')
        rows = [tuple(r) for r in cursor.fetchall()]
        assert rows == [('9', 5, '5', 1), ('9.5', 12, '12+', 1)]

    def test_conflict_updates_quantity(self, sqlite_conn):
        from inventory_db import upsert_inventory_records

        upsert_inventory_records(sqlite_conn, [make_record(quantity=5)], batch_id=1)
        upsert_inventory_records(sqlite_conn, [
            make_record(quantity=0, raw_quantity='-', extracted_at='2024-06-02T10:00:00'),
        ], batch_id=2)
        sqlite_conn.commit()

        cursor = sqlite_conn.cursor()
        cursor.execute('SELECT COUNT(*) FROM inventory')
        assert cursor.fetchone()[0] == 1
        cursor.execute('SELECT quantity, raw_quantity, batch_id, extracted_at FROM inventory')
        row = cursor.fetchone()
        assert row['quantity'] == 0
        assert row['raw_quantity'] == '-'
        assert row['batch_id'] == 2
        assert row['extracted_at'] == '2024-06-02T10:00:00'

    def test_distinct_keys_do_not_collide(self, sqlite_conn):
        from inventory_db import upsert_inventory_records

        upsert_inventory_records(sqlite_conn, [
            make_record(color_code='001', size_us='9'),
            make_record(color_code='400', size_us='9'),
            make_record(style_id='1012B675', color_code='001', size_us='9'),
        ])
        cursor = sqlite_conn.cursor()
        cursor.execute('SELECT COUNT(*) FROM inventory')
        assert cursor.fetchone()[0] == 3

    def test_empty_is_noop(self, sqlite_conn):
        from inventory_db import upsert_inventory_records

        assert upsert_inventory_records(sqlite_conn, []) == 0

    def test_rows_for_batch(self, sqlite_conn):
        from inventory_db import get_inventory_for_batch, upsert_inventory_records

        upsert_inventory_records(sqlite_conn, [make_record(size_us='9')], batch_id=1)
        upsert_inventory_records(sqlite_conn, [make_record(size_us='10')], batch_id=2)
        rows = get_inventory_for_batch(sqlite_conn, 2)
        assert [r['size_us'] for r in rows] == ['10']


class TestInventoryQueries:

    @pytest.fixture
    def stocked(self, sqlite_conn):
        from inventory_db import upsert_inventory_records

        upsert_inventory_records(sqlite_conn, [
            make_record(color_code='001', size_us='10', quantity=3),
            make_record(color_code='001', size_us='9.5', quantity=0),
            make_record(color_code='001', size_us='9', quantity=5),
            make_record(color_code='400', size_us='9', quantity=7, color_name='BLUE'),
            make_record(style_id='1012B675', product_name='NOVABLAST 5', color_code='020',
                        size_us='8', quantity=1),
        ])
        sqlite_conn.commit()
        return sqlite_conn

    def test_filters(self, stocked):
        from inventory_db import get_inventory

        rows, total = get_inventory(stocked, style_id='1011b548')
        assert total == 4
        rows, total = get_inventory(stocked, style_id='1011B548', in_stock_only=True)
        assert total == 3
        rows, total = get_inventory(stocked, search='nova')
        assert [r['style_id'] for r in rows] == ['1012B675']

    def test_pagination(self, stocked):
        from inventory_db import get_inventory

        rows, total = get_inventory(stocked, limit=2, offset=0)
        assert total == 5
        assert len(rows) == 2

    def test_style_rows_sorted_numerically(self, stocked):
        from inventory_db import get_inventory_for_style

        rows = get_inventory_for_style(stocked, '1011B548')
        assert [(r['color_code'], r['size_us']) for r in rows] == [
            ('001', '9'), ('001', '9.5'), ('001', '10'), ('400', '9'),
        ]

    def test_list_styles(self, stocked):
        from inventory_db import list_styles

        styles = {s['style_id']: s for s in list_styles(stocked)}
        assert styles['1011B548']['colors'] == 2
        assert styles['1011B548']['total_quantity'] == 15
        assert styles['1012B675']['product_name'] == 'NOVABLAST 5'

    def test_summary(self, stocked):
        from inventory_db import add_url, get_inventory_summary

        add_url(stocked, 'https://b2b.asics.com/products/1011B548')
        summary = get_inventory_summary(stocked)
        assert summary['records'] == 5
        assert summary['styles'] == 2
        assert summary['in_stock_records'] == 4
        assert summary['total_quantity'] == 16
        assert summary['active_urls'] == 1

    def test_empty_summary(self, sqlite_conn):
        from inventory_db import get_inventory_summary

        summary = get_inventory_summary(sqlite_conn)
        assert summary['records'] == 0
        assert summary['total_quantity'] == 0


class TestMonitoredUrls:

    def test_add_derives_style(self, sqlite_conn):
        from inventory_db import add_url, get_url

        url_id = add_url(sqlite_conn, ' https://b2b.asics.com/products/1011B548 ', label='Kayano')
        row = get_url(sqlite_conn, url_id)
        assert row['url'] == 'https://b2b.asics.com/products/1011B548'
        assert row['style_id'] == '1011B548'
        assert row['label'] == 'Kayano'
        assert row['is_active'] == 1

    def test_duplicate_returns_none(self, sqlite_conn):
        from inventory_db import add_url

        assert add_url(sqlite_conn, 'https://b2b.asics.com/products/1011B548') is not None
        assert add_url(sqlite_conn, 'https://b2b.asics.com/products/1011B548') is None

    def test_active_filter(self, sqlite_conn):
        from inventory_db import add_url, list_urls, set_url_active

        first = add_url(sqlite_conn, 'https://b2b.asics.com/products/1011B548')
        add_url(sqlite_conn, 'https://b2b.asics.com/products/1012B675')
        assert set_url_active(sqlite_conn, first, False) is True

        assert len(list_urls(sqlite_conn)) == 2
        assert [r['style_id'] for r in list_urls(sqlite_conn, active_only=True)] == ['1012B675']

    def test_missing_url(self, sqlite_conn):
        from inventory_db import delete_url, get_url, set_url_active

        assert get_url(sqlite_conn, 99) is None
        assert set_url_active(sqlite_conn, 99, True) is False
        assert delete_url(sqlite_conn, 99) is False

    def test_mark_scraped(self, sqlite_conn):
        from inventory_db import add_url, get_url, mark_url_scraped

        url_id = add_url(sqlite_conn, 'https://b2b.asics.com/products/1011B548')
        mark_url_scraped(sqlite_conn, 'https://b2b.asics.com/products/1011B548', 'failed', 'timeout')
        row = get_url(sqlite_conn, url_id)
        assert row['last_status'] == 'failed'
        assert row['last_error'] == 'timeout'
        assert row['last_scraped_at'] is not None


class TestBatchesAndLogs:

    def test_batch_lifecycle(self, sqlite_conn):
        from inventory_db import create_batch, finish_batch, get_batch

        batch_id = create_batch(sqlite_conn, 12, triggered_by='api')
        batch = get_batch(sqlite_conn, batch_id)
        assert batch['status'] == 'running'
        assert batch['triggered_by'] == 'api'
        assert batch['completed_at'] is None

        finish_batch(sqlite_conn, batch_id, 'stopped', 4, 1, 60)
        batch = get_batch(sqlite_conn, batch_id)
        assert batch['status'] == 'stopped'
        assert (batch['urls_succeeded'], batch['urls_failed'], batch['records_saved']) == (4, 1, 60)
        assert batch['completed_at'] is not None

    def test_list_batches_newest_first(self, sqlite_conn):
        from inventory_db import create_batch, list_batches

        ids = [create_batch(sqlite_conn, n) for n in (1, 2, 3)]
        rows, total = list_batches(sqlite_conn, limit=2)
        assert total == 3
        assert [r['batch_id'] for r in rows] == [ids[2], ids[1]]

    def test_logs_filtering(self, sqlite_conn):
        from inventory_db import insert_scrape_log, list_scrape_logs

        insert_scrape_log(sqlite_conn, 1, 'https://a', 'success', 6)
        insert_scrape_log(sqlite_conn, 1, 'https://b', 'failed', 0, 'Authentication failed')
        insert_scrape_log(sqlite_conn, 2, 'https://c', 'success', 3)

        logs, total = list_scrape_logs(sqlite_conn, batch_id=1)
        assert total == 2
        logs, total = list_scrape_logs(sqlite_conn, status='failed')
        assert [l['url'] for l in logs] == ['https://b']
        assert logs[0]['error'] == 'Authentication failed'

    def test_cleanup_old_logs(self, sqlite_conn):
        from inventory_db import cleanup_old_logs, insert_scrape_log, list_scrape_logs

        insert_scrape_log(sqlite_conn, 1, 'https://new', 'success', 1)
        old_id = insert_scrape_log(sqlite_conn, 1, 'https://old', 'success', 1)
        cursor = sqlite_conn.cursor()
        cursor.execute('UPDATE scrape_logs SET created_at = ? WHERE log_id = ?',
                       ((datetime.now() - timedelta(days=45)).isoformat(), old_id))

        assert cleanup_old_logs(sqlite_conn, days=30) == 1
        logs, total = list_scrape_logs(sqlite_conn)
        assert [l['url'] for l in logs] == ['https://new']


class TestPlaceholders:

    def test_sqlite_placeholder(self, sqlite_conn):
        from inventory_db import db_placeholder, is_postgres

        assert is_postgres(sqlite_conn) is False
        assert db_placeholder(sqlite_conn) == '?'
