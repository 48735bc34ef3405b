"""
LocalAssetStore 单元测试
"""
import shutil
import tempfile
import unittest
from pathlib import Path

from core.asset_store import AssetEntry, LocalAssetStore


class TestLocalAssetStore(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.store = LocalAssetStore(Path(self.test_dir), "https://cdn.test/cards/")

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_put_writes_file_and_returns_public_url(self):
        url = self.store.put("SOR/fr/005.webp", b"webp-bytes")
        self.assertEqual(url, "https://cdn.test/cards/SOR/fr/005.webp")
        self.assertEqual((Path(self.test_dir) / "SOR" / "fr" / "005.webp").read_bytes(), b"webp-bytes")

    def test_put_overwrites(self):
        self.store.put("SOR/fr/005.webp", b"old")
        self.store.put("SOR/fr/005.webp", b"new")
        self.assertEqual(self.store.list("SOR/fr"), [AssetEntry(name="005.webp", size=3)])

    def test_public_url_without_base(self):
        store = LocalAssetStore(Path(self.test_dir))
        self.assertEqual(store.public_url("/SOR/fr/005.webp"), "SOR/fr/005.webp")

    def test_list_sorted_and_skips_hidden(self):
        self.store.put("SOR/fr/010.webp", b"a")
        self.store.put("SOR/fr/002.webp", b"b")
        (Path(self.test_dir) / "SOR" / "fr" / ".partial").write_bytes(b"x")
        self.assertEqual([e.name for e in self.store.list("SOR/fr")], ["002.webp", "010.webp"])

    def test_list_missing_prefix(self):
        self.assertEqual(self.store.list("TWI/en"), [])

    def test_list_prefixes(self):
        self.store.put("SOR/fr/001.webp", b"a")
        self.store.put("SOR/en/001.webp", b"b")
        self.store.put("SOR/readme.txt", b"c")
        self.assertEqual(self.store.list_prefixes("SOR"), ["en", "fr"])
        self.assertEqual(self.store.list_prefixes("TWI"), [])

    def test_remove(self):
        self.store.put("SOR/fr/001.webp", b"a")
        self.assertEqual(self.store.remove(["SOR/fr/001.webp", "SOR/fr/404.webp"]), 1)
        self.assertEqual(self.store.list("SOR/fr"), [])

    def test_path_escaping_root_is_rejected(self):
        with self.assertRaises(ValueError):
            self.store.put("../outside.webp", b"x")


if __name__ == '__main__':
    unittest.main()
