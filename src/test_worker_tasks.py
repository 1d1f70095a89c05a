import unittest
from unittest.mock import AsyncMock, patch

from catalog_fixtures import FakeRemoteCatalog, make_record, make_store
from medkb.services.sync_orchestrator import CatalogSyncOrchestrator
from medkb.worker.tasks import celery_app, task_sync_catalog


class WorkerTasksTests(unittest.TestCase):
    def test_weekly_beat_entry_targets_sync_task(self):
        entry = celery_app.conf.beat_schedule["sync-medicine-catalog-weekly"]
        self.assertEqual(entry["task"], "task_sync_catalog")
        self.assertEqual(task_sync_catalog.name, "task_sync_catalog")

    def test_task_sync_catalog_returns_serialized_result(self):
        client = FakeRemoteCatalog()
        store = make_store(make_record("para-001"), make_record("para-002"))

        with patch("medkb.worker.tasks.build_remote_client", return_value=client), patch(
            "medkb.core.dependencies.get_catalog_store", return_value=store
        ):
            result = task_sync_catalog("rest")

        self.assertTrue(result["success"])
        self.assertEqual(result["total_processed"], 2)
        self.assertEqual(result["inserted"], 2)
        self.assertTrue(client.closed)

    def test_task_sync_catalog_propagates_configuration_errors(self):
        with self.assertRaises(ValueError):
            task_sync_catalog("ftp")

    def test_task_sync_catalog_reports_failed_batches(self):
        client = FakeRemoteCatalog(failures={"para-001": -1})
        store = make_store(make_record("para-001"))

        def _orchestrator_without_delays(remote):
            return CatalogSyncOrchestrator(remote, lambda: store, sleep=AsyncMock())

        with patch("medkb.worker.tasks.build_remote_client", return_value=client), patch(
            "medkb.worker.tasks.create_orchestrator", side_effect=_orchestrator_without_delays
        ):
            result = task_sync_catalog("rest")

        self.assertFalse(result["success"])
        self.assertEqual(result["errors"], 1)
        self.assertEqual(result["error_details"][0]["id"], "para-001")


if __name__ == "__main__":
    unittest.main()
