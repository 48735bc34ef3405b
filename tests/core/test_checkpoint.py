"""
CheckpointController 单元测试（JSON 文件与 SQLite 两种后端）
"""
import json
import shutil
import tempfile
import unittest
from pathlib import Path

from core.checkpoint import CheckpointController, resolve_resume_point, resolve_start_override
from core.models import CrawlCheckpoint
from core.persistence import CatalogDocumentStore, JsonDocumentStore
from core.storage import CatalogStore


class TestCheckpointController(unittest.TestCase):
    """CheckpointController 测试类"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.path = Path(self.test_dir) / "state" / "starwars-checkpoint.json"
        self.checkpoint = CheckpointController(JsonDocumentStore(self.path))

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_load_absent_returns_fresh(self):
        checkpoint = self.checkpoint.load()
        self.assertTrue(checkpoint.is_fresh)
        self.assertEqual(checkpoint.page, 0)
        self.assertFalse(self.checkpoint.exists())

    def test_advance_and_load(self):
        self.assertTrue(self.checkpoint.advance("SOR", "fr", 3, collection_index=0))
        checkpoint = self.checkpoint.load()
        self.assertEqual(checkpoint.collection, "SOR")
        self.assertEqual(checkpoint.language, "fr")
        self.assertEqual(checkpoint.page, 3)
        self.assertFalse(checkpoint.done)
        self.assertIsNotNone(checkpoint.updated_at)

    def test_advance_overwrites_whole_document(self):
        self.checkpoint.advance("SOR", "fr", 3, collection_index=0, done=True)
        self.checkpoint.advance("SHD", "en", 1, collection_index=1)
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["collection"], "SHD")
        self.assertEqual(data["collection_index"], 1)
        self.assertFalse(data["done"])

    def test_no_temp_files_left_behind(self):
        self.checkpoint.advance("SOR", "fr", 1)
        self.checkpoint.advance("SOR", "fr", 2)
        self.assertEqual([p.name for p in self.path.parent.iterdir()], [self.path.name])

    def test_corrupt_file_is_treated_as_fresh(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("{not json", encoding="utf-8")
        self.assertTrue(self.checkpoint.load().is_fresh)

    def test_invalid_document_is_treated_as_fresh(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"collection": "SOR", "page": "three"}), encoding="utf-8")
        self.assertTrue(self.checkpoint.load().is_fresh)

    def test_clear(self):
        self.checkpoint.advance("SOR", "fr", 1)
        self.assertTrue(self.checkpoint.clear())
        self.assertFalse(self.checkpoint.exists())
        self.assertFalse(self.checkpoint.clear())


class TestCheckpointSqliteBackend(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.catalog = CatalogStore(Path(self.test_dir) / "catalog.db")
        self.catalog.connect()
        self.checkpoint = CheckpointController(CatalogDocumentStore(self.catalog, "starwars-checkpoint"))

    def tearDown(self):
        self.catalog.close()
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_roundtrip_through_documents_table(self):
        self.checkpoint.advance("TWI", "en", 4, collection_index=2)
        self.assertEqual(self.checkpoint.location, "SQLite:starwars-checkpoint")
        loaded = self.checkpoint.load()
        self.assertEqual((loaded.collection, loaded.language, loaded.page), ("TWI", "en", 4))
        self.checkpoint.clear()
        self.assertTrue(self.checkpoint.load().is_fresh)


class TestResolveResumePoint(unittest.TestCase):

    codes = ["SOR", "SHD", "TWI"]
    languages = ["fr", "en"]

    def test_fresh_checkpoint_starts_at_beginning(self):
        self.assertEqual(resolve_resume_point(CrawlCheckpoint(), self.codes, self.languages), (0, 0, 1))

    def test_resume_within_unit_at_next_page(self):
        checkpoint = CrawlCheckpoint(collection="SHD", collection_index=1, language="en", page=3)
        self.assertEqual(resolve_resume_point(checkpoint, self.codes, self.languages), (1, 1, 4))

    def test_done_unit_moves_to_next_language(self):
        checkpoint = CrawlCheckpoint(collection="SHD", collection_index=1, language="fr", page=5, done=True)
        self.assertEqual(resolve_resume_point(checkpoint, self.codes, self.languages), (1, 1, 1))

    def test_done_last_language_moves_to_next_collection(self):
        checkpoint = CrawlCheckpoint(collection="SHD", collection_index=1, language="en", page=5, done=True)
        self.assertEqual(resolve_resume_point(checkpoint, self.codes, self.languages), (2, 0, 1))

    def test_collection_matched_by_code_before_index(self):
        checkpoint = CrawlCheckpoint(collection="twi", collection_index=0, language="fr", page=1)
        self.assertEqual(resolve_resume_point(checkpoint, self.codes, self.languages), (2, 0, 2))

    def test_unknown_code_falls_back_to_index(self):
        checkpoint = CrawlCheckpoint(collection="OLD", collection_index=1, language="fr", page=2)
        self.assertEqual(resolve_resume_point(checkpoint, self.codes, self.languages), (1, 0, 3))

    def test_unknown_code_and_index_restarts(self):
        checkpoint = CrawlCheckpoint(collection="OLD", collection_index=9, language="fr", page=2)
        self.assertEqual(resolve_resume_point(checkpoint, self.codes, self.languages), (0, 0, 1))

    def test_language_not_in_run_restarts_collection(self):
        checkpoint = CrawlCheckpoint(collection="SOR", collection_index=0, language="de", page=2)
        self.assertEqual(resolve_resume_point(checkpoint, self.codes, self.languages), (0, 0, 1))


class TestResolveStartOverride(unittest.TestCase):

    codes = ["SOR", "SHD", "TWI"]

    def test_none_when_not_specified(self):
        self.assertIsNone(resolve_start_override(self.codes))

    def test_by_code_case_insensitive(self):
        self.assertEqual(resolve_start_override(self.codes, start_code="twi"), 2)

    def test_by_index(self):
        self.assertEqual(resolve_start_override(self.codes, start_index=1), 1)

    def test_unknown_code_raises(self):
        with self.assertRaises(ValueError):
            resolve_start_override(self.codes, start_code="XYZ")

    def test_invalid_index_raises(self):
        with self.assertRaises(ValueError):
            resolve_start_override(self.codes, start_index=3)
        with self.assertRaises(ValueError):
            resolve_start_override(self.codes, start_index=-1)


if __name__ == '__main__':
    unittest.main()
