"""
ReconciliationScanner 单元测试
"""
import shutil
import tempfile
import unittest
from pathlib import Path

from core.asset_store import LocalAssetStore
from core.reconciliation import ReconciliationScanner, comparison_key, implied_number, load_report
from core.storage import CatalogStore


class TestReconciliationScanner(unittest.TestCase):
    """ReconciliationScanner 测试类"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.catalog = CatalogStore(Path(self.test_dir) / "catalog.db")
        self.catalog.connect()
        self.assets = LocalAssetStore(Path(self.test_dir) / "assets")
        self.scanner = ReconciliationScanner(self.catalog, self.assets)

    def tearDown(self):
        self.catalog.close()
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def add_card(self, code, number, language="fr", image_url=None):
        self.catalog.upsert_card((code, number, language), {"name": f"Card {number}", "image_url": image_url})

    def add_asset(self, path):
        self.assets.put(path, b"webp")

    def test_missing_image_detected(self):
        self.add_card("SOR", "007")
        self.add_card("SOR", "008", image_url="https://img.test/8.png")
        self.add_asset("SOR/fr/007.webp")

        pair = self.scanner.scan().pair("SOR", "fr")
        self.assertEqual(pair.records, 2)
        self.assertEqual(pair.with_image, 1)
        self.assertEqual(pair.missing_count, 1)
        self.assertEqual(pair.orphan_count, 0)
        self.assertEqual(pair.missing[0].number, "008")
        self.assertEqual(pair.missing[0].expected_path, "SOR/fr/008.webp")
        self.assertEqual(pair.missing[0].image_url, "https://img.test/8.png")

    def test_padding_tolerant_matching(self):
        self.add_card("SOR", "7")
        self.add_card("SOR", "012")
        self.add_asset("SOR/fr/007.webp")
        self.add_asset("SOR/fr/12.webp")

        pair = self.scanner.scan_pair("SOR", "fr")
        self.assertEqual(pair.with_image, 2)
        self.assertEqual(pair.without_image, 0)
        self.assertEqual(pair.orphans, [])

    def test_sanitized_number_matches(self):
        self.add_card("SOR", "3/P3")
        self.add_asset("SOR/fr/3-P3.webp")
        pair = self.scanner.scan_pair("SOR", "fr")
        self.assertEqual(pair.with_image, 1)
        self.assertEqual(pair.collisions, [])

    def test_sanitization_collision_reported(self):
        self.add_card("SOR", "3/P3")
        self.add_card("SOR", "3-P3")
        pair = self.scanner.scan_pair("SOR", "fr")
        self.assertEqual(len(pair.collisions), 1)
        self.assertEqual(pair.collisions[0].path, "SOR/fr/3-P3.webp")
        self.assertEqual(pair.collisions[0].numbers, ["3-P3", "3/P3"])

    def test_orphan_asset_reported(self):
        self.add_card("SOR", "001")
        self.add_asset("SOR/fr/001.webp")
        self.add_asset("SOR/fr/999.webp")
        self.add_asset("SOR/fr/notes.txt")

        pair = self.scanner.scan_pair("SOR", "fr")
        self.assertEqual(pair.assets, 2)
        self.assertEqual(pair.orphans, ["999.webp"])

    def test_filters_and_summary(self):
        self.add_card("SOR", "001", "fr")
        self.add_card("SOR", "001", "en")
        self.add_card("SHD", "001", "fr")

        report = self.scanner.scan(collection="sor")
        self.assertEqual([(p.collection, p.language) for p in report.pairs], [("SOR", "en"), ("SOR", "fr")])
        self.assertEqual(report.summary.pairs, 2)
        self.assertEqual(report.summary.missing, 2)

        report = self.scanner.scan(language="FR")
        self.assertEqual(len(report.pairs), 2)

    def test_asset_only_pair_is_scanned(self):
        self.add_card("SOR", "001", "fr")
        self.add_asset("SOR/fr/001.webp")
        self.add_asset("SOR/en/001.webp")

        report = self.scanner.scan()
        self.assertEqual([(p.collection, p.language) for p in report.pairs], [("SOR", "en"), ("SOR", "fr")])
        english = report.pair("SOR", "en")
        self.assertEqual(english.records, 0)
        self.assertEqual(english.orphans, ["001.webp"])
        self.assertEqual(report.summary.orphans, 1)

    def test_collection_without_cards_is_scanned(self):
        self.catalog.upsert_collection({"code": "SHD", "name": "Shadows"})
        self.add_asset("SHD/fr/010.webp")
        self.add_asset("series/SHD.webp")

        report = self.scanner.scan()
        self.assertEqual([(p.collection, p.language) for p in report.pairs], [("SHD", "fr")])
        self.assertEqual(report.pair("SHD", "fr").orphan_count, 1)

    def test_scan_does_not_modify_anything(self):
        self.add_card("SOR", "001")
        self.add_asset("SOR/fr/050.webp")
        self.scanner.scan()
        self.assertEqual(len(self.catalog.select_cards()), 1)
        self.assertEqual([e.name for e in self.assets.list("SOR/fr")], ["050.webp"])

    def test_report_written_and_loaded(self):
        self.add_card("SOR", "008")
        report = self.scanner.scan()
        output = self.scanner.write_report(report, Path(self.test_dir) / "reports" / "sor.json")
        loaded = load_report(output)
        self.assertEqual(loaded.pair("SOR", "fr").missing[0].number, "008")
        self.assertEqual(loaded.summary.missing, 1)


class TestComparisonHelpers(unittest.TestCase):

    def test_implied_number(self):
        self.assertEqual(implied_number("007.webp"), "007")
        self.assertEqual(implied_number("T01.a.webp"), "T01.a")
        self.assertEqual(implied_number("README"), "README")

    def test_comparison_key(self):
        self.assertEqual(comparison_key("007"), comparison_key("7"))
        self.assertEqual(comparison_key("3/P3"), comparison_key("3-P3"))
        self.assertNotEqual(comparison_key("T1"), comparison_key("T01"))


if __name__ == '__main__':
    unittest.main()
