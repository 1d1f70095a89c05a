import unittest

from catalog_fixtures import make_record
from medkb.services.interactions import InteractionSeverity, check_interactions, interaction_severity


class InteractionSeverityTests(unittest.TestCase):
    def test_high_risk_pairs_in_either_order(self):
        self.assertEqual(interaction_severity("Anticoagulant", "NSAID"), InteractionSeverity.HIGH)
        self.assertEqual(interaction_severity("NSAID", "Anticoagulant"), InteractionSeverity.HIGH)
        self.assertEqual(
            interaction_severity("Beta Blocker", "Calcium Channel Blocker"), InteractionSeverity.HIGH
        )

    def test_different_classes_are_medium(self):
        self.assertEqual(interaction_severity("Antihistamine", "NSAID"), InteractionSeverity.MEDIUM)

    def test_same_class_is_low(self):
        self.assertEqual(interaction_severity("Analgesic", "analgesic"), InteractionSeverity.LOW)


class CheckInteractionsTests(unittest.TestCase):
    def setUp(self):
        self.warfarin = make_record("warf-1", generic_name="Warfarin", brand_name="Coumadin", therapeutic_class="Anticoagulant")
        self.ibuprofen = make_record(
            "ibu-001",
            generic_name="Ibuprofen",
            brand_name="Brufen",
            therapeutic_class="NSAID",
            drug_interactions=["Aspirin", "Warfarin"],
        )
        self.cetirizine = make_record("cet-001", generic_name="Cetirizine", brand_name="Zyrtec", therapeutic_class="Antihistamine")

    def test_requires_two_medicines(self):
        report = check_interactions([self.warfarin])
        self.assertFalse(report.has_interactions)
        self.assertEqual(report.message, "At least 2 medicines required for interaction check")
        self.assertEqual(report.medicine_count, 1)

    def test_detects_interaction_declared_by_either_side(self):
        report = check_interactions([self.warfarin, self.ibuprofen])
        self.assertTrue(report.has_interactions)
        self.assertEqual(len(report.interactions), 1)
        interaction = report.interactions[0]
        self.assertEqual((interaction.medicine1, interaction.medicine2), ("Coumadin", "Brufen"))
        self.assertEqual(interaction.severity, InteractionSeverity.HIGH)

    def test_unrelated_medicines_do_not_interact(self):
        report = check_interactions([self.warfarin, self.cetirizine])
        self.assertFalse(report.has_interactions)
        self.assertEqual(report.interactions, [])
        self.assertEqual(report.medicine_count, 2)

    def test_class_term_matches_generic_name_substring(self):
        atenolol = make_record(
            "aten-001",
            generic_name="Atenolol",
            therapeutic_class="Beta Blocker",
            drug_interactions=["Amlodipine besylate"],
        )
        amlodipine = make_record("amlo-001", generic_name="Amlodipine", therapeutic_class="Calcium Channel Blocker")
        report = check_interactions([atenolol, amlodipine])
        self.assertEqual([item.severity for item in report.interactions], [InteractionSeverity.HIGH])


if __name__ == "__main__":
    unittest.main()
