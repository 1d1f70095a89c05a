import asyncio
import unittest
from unittest.mock import AsyncMock

from catalog_fixtures import FakeRemoteCatalog, make_record, make_store
from medkb.services.lookup import EmptyRemotePolicy, LookupSource, MedicineLookupService
from medkb.services.remote_catalog import RemoteResult, to_wire_record


class LookupServiceTests(unittest.TestCase):
    def setUp(self):
        self.napa = make_record("para-001", brand_name="Napa", indication=["Fever"], alternatives=["Ace"])
        self.ace = make_record("para-002", brand_name="Ace", indication=["Fever"], alternatives=["Napa"])
        self.brufen = make_record(
            "ibu-001",
            generic_name="Ibuprofen",
            brand_name="Brufen",
            therapeutic_class="NSAID",
            drug_interactions=["Paracetamol"],
        )
        self.store = make_store(self.ace, self.napa, self.brufen)

    def _service(self, client, **options):
        return MedicineLookupService(client, lambda: self.store, **options)

    def test_remote_failure_falls_back_to_local_catalog(self):
        client = FakeRemoteCatalog(search_error="connection refused")

        result = asyncio.run(self._service(client).lookup("paracetamol", 5))

        self.assertEqual(result.source, LookupSource.LOCAL)
        self.assertEqual([record.id for record in result.records], ["para-002", "para-001"])
        self.assertEqual(client.search_calls, [("paracetamol", 5)])

    def test_remote_rows_are_returned_as_records(self):
        client = FakeRemoteCatalog(search_rows=[to_wire_record(self.napa)])

        result = asyncio.run(self._service(client).lookup("Napa"))

        self.assertEqual(result.source, LookupSource.REMOTE)
        self.assertEqual(result.records, (self.napa,))
        self.assertEqual(result.first, self.napa)

    def test_local_and_remote_answers_share_one_shape(self):
        remote = asyncio.run(self._service(FakeRemoteCatalog(search_rows=[to_wire_record(self.napa)])).lookup("napa"))
        local = asyncio.run(self._service(FakeRemoteCatalog(search_error="down")).lookup("napa"))
        self.assertEqual(remote.first, local.first)

    def test_empty_remote_answer_falls_back_by_default(self):
        client = FakeRemoteCatalog(search_rows=[])

        result = asyncio.run(self._service(client).lookup("napa"))

        self.assertEqual(result.source, LookupSource.LOCAL)
        self.assertEqual(result.first.id, "para-001")

    def test_empty_remote_answer_is_trusted_when_configured(self):
        client = FakeRemoteCatalog(search_rows=[])

        result = asyncio.run(self._service(client, empty_remote_policy=EmptyRemotePolicy.TRUST).lookup("napa"))

        self.assertEqual(result.source, LookupSource.EMPTY)
        self.assertEqual(result.records, ())

    def test_malformed_remote_rows_fall_back(self):
        client = FakeRemoteCatalog(search_rows=[{"id": "", "brand_name": None}])

        result = asyncio.run(self._service(client).lookup("napa"))

        self.assertEqual(result.source, LookupSource.LOCAL)

    def test_short_query_never_reaches_remote(self):
        client = FakeRemoteCatalog()

        result = asyncio.run(self._service(client).lookup(" n "))

        self.assertEqual(result.source, LookupSource.EMPTY)
        self.assertEqual(client.search_calls, [])

    def test_raising_client_is_treated_as_failure(self):
        client = FakeRemoteCatalog()
        client.search = AsyncMock(side_effect=RuntimeError("bug in client"))

        result = asyncio.run(self._service(client).lookup("brufen"))

        self.assertEqual(result.source, LookupSource.LOCAL)
        self.assertEqual(result.first.id, "ibu-001")

    def test_nothing_found_anywhere_is_empty(self):
        result = asyncio.run(self._service(FakeRemoteCatalog(search_error="down")).lookup("zzz"))
        self.assertEqual(result.source, LookupSource.EMPTY)

    def test_napa_and_ace_scenario(self):
        service = self._service(FakeRemoteCatalog(search_error="offline"))

        alternatives = asyncio.run(service.alternatives("Paracetamol"))
        napa_first = asyncio.run(service.lookup("napa", 10))

        self.assertEqual({record.brand_name for record in alternatives.records}, {"Napa", "Ace"})
        self.assertEqual(napa_first.records[0].brand_name, "Napa")
        self.assertEqual(len(napa_first.records), 2)

    def test_alternatives_prefers_remote(self):
        client = FakeRemoteCatalog()
        asyncio.run(client.upsert([to_wire_record(self.napa)]))

        result = asyncio.run(self._service(client).alternatives("paracetamol"))

        self.assertEqual(result.source, LookupSource.REMOTE)
        self.assertEqual([record.id for record in result.records], ["para-001"])

    def test_by_id_falls_back_when_remote_has_no_record(self):
        result = asyncio.run(self._service(FakeRemoteCatalog()).by_id("ibu-001"))

        self.assertEqual(result.source, LookupSource.LOCAL)
        self.assertEqual(result.first, self.brufen)

    def test_by_id_unknown_everywhere(self):
        result = asyncio.run(self._service(FakeRemoteCatalog()).by_id("nope"))
        self.assertIsNone(result.first)
        self.assertEqual(result.source, LookupSource.EMPTY)

    def test_by_indication_falls_back(self):
        result = asyncio.run(self._service(FakeRemoteCatalog(search_error="down")).by_indication("fever"))
        self.assertEqual([record.id for record in result.records], ["para-002", "para-001"])

    def test_interactions_use_remote_report_when_available(self):
        result = asyncio.run(self._service(FakeRemoteCatalog()).check_interactions(["para-001", "ibu-001"]))
        self.assertEqual(result.source, LookupSource.REMOTE)
        self.assertEqual(result.report["medicine_count"], 2)

    def test_interactions_fall_back_to_local_screening(self):
        client = FakeRemoteCatalog()
        client.check_interactions = AsyncMock(return_value=RemoteResult(error="function missing"))

        result = asyncio.run(self._service(client).check_interactions(["para-001", "ibu-001", "unknown"]))

        self.assertEqual(result.source, LookupSource.LOCAL)
        self.assertTrue(result.report["has_interactions"])
        self.assertEqual(result.report["interactions"][0]["severity"], "medium")

    def test_single_medicine_interaction_check_stays_local(self):
        client = FakeRemoteCatalog()
        client.check_interactions = AsyncMock()

        result = asyncio.run(self._service(client).check_interactions(["para-001"]))

        client.check_interactions.assert_not_awaited()
        self.assertEqual(result.report["message"], "At least 2 medicines required for interaction check")

    def test_popular_is_local(self):
        store = make_store(make_record("ome-001"), make_record("para-001"))
        service = MedicineLookupService(FakeRemoteCatalog(), lambda: store)
        self.assertEqual([record.id for record in service.popular().records], ["para-001", "ome-001"])

    def test_sync_all_runs_orchestrator_over_store(self):
        client = FakeRemoteCatalog()
        service = self._service(client)

        result = asyncio.run(service.sync_all())

        self.assertTrue(result.success)
        self.assertEqual(set(client.rows), {"para-001", "para-002", "ibu-001"})


if __name__ == "__main__":
    unittest.main()
