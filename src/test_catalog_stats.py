import asyncio
import unittest
from datetime import datetime, timezone

from catalog_fixtures import FakeRemoteCatalog, make_record, make_store
from medkb.services.catalog_stats import get_sync_status, summarize_records


class SummarizeRecordsTests(unittest.TestCase):
    def test_counts_and_class_table(self):
        records = [
            make_record("a", therapeutic_class="NSAID", manufacturer="Beximco"),
            make_record("b", therapeutic_class="Antibiotic", prescription_required=True),
            make_record("c", therapeutic_class="Antibiotic", prescription_required=True),
        ]

        summary = summarize_records(records)

        self.assertEqual(summary.total, 3)
        self.assertEqual(summary.therapeutic_classes, 2)
        self.assertEqual(summary.manufacturers, 2)
        self.assertEqual(summary.prescription_required, 2)
        self.assertEqual(summary.otc, 1)
        self.assertEqual(
            [(row.therapeutic_class, row.count) for row in summary.by_class],
            [("Antibiotic", 2), ("NSAID", 1)],
        )

    def test_empty_catalog(self):
        summary = summarize_records([])
        self.assertEqual(summary.total, 0)
        self.assertEqual(summary.by_class, [])


class SyncStatusTests(unittest.TestCase):
    def setUp(self):
        self.store = make_store(*[make_record(f"m-{index:02d}") for index in range(20)])

    def _client_with(self, count: int, updated_at: str = "2026-02-01T10:00:00+00:00") -> FakeRemoteCatalog:
        client = FakeRemoteCatalog()
        for index in range(count):
            client.rows[f"m-{index:02d}"] = {
                "id": f"m-{index:02d}",
                "therapeutic_class": "Analgesic",
                "manufacturer": "Square Pharmaceuticals",
                "updated_at": updated_at,
                "is_active": True,
            }
        return client

    def test_synced_at_ninety_five_percent(self):
        report = asyncio.run(get_sync_status(self._client_with(19), self.store))

        self.assertTrue(report.is_synced)
        self.assertEqual(report.remote_total, 19)
        self.assertEqual(report.local_total, 20)
        self.assertEqual(report.remote_therapeutic_classes, 1)
        self.assertEqual(report.last_updated, datetime(2026, 2, 1, 10, tzinfo=timezone.utc))

    def test_not_synced_below_threshold(self):
        report = asyncio.run(get_sync_status(self._client_with(18), self.store))
        self.assertFalse(report.is_synced)

    def test_remote_failure_reports_error(self):
        client = FakeRemoteCatalog()
        client.list_error = "permission denied"

        report = asyncio.run(get_sync_status(client, self.store))

        self.assertFalse(report.is_synced)
        self.assertEqual(report.remote_total, 0)
        self.assertEqual(report.error, "permission denied")
        self.assertIsNone(report.last_updated)


if __name__ == "__main__":
    unittest.main()
