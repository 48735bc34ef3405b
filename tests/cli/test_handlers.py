"""
CLI handlers 单元测试
"""
import asyncio
import io
import json
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from cli.commands import create_parser
from cli.handlers import run_command, select_languages, select_targets
from config import CollectionTarget, CrawlerConfig, LogConfig, SourceConfig, StorageConfig, config
from core.checkpoint import CheckpointController
from core.errors import SetupError
from core.failure_log import FailureLog
from core.models import ExtractedCard
from core.persistence import JsonDocumentStore
from core.session import Launcher
from core.storage import CatalogStore
from extractors.base import Extractor


class FakeLauncher(Launcher):
    name = "fake"

    async def launch(self):
        return object()

    def is_alive(self, handle):
        return True

    async def close(self, handle):
        pass


class FakeExtractor(Extractor):
    """每个单元一页两条"""

    name = "fake"

    def create_launcher(self):
        return FakeLauncher()

    async def list_page(self, handle, target, language, page):
        if page > 1:
            return []
        return [f"https://cards.test/{target.code}/{language}/{n}" for n in ("001", "002")]

    async def extract(self, handle, identifier, target, language):
        number = identifier.rsplit("/", 1)[-1]
        return ExtractedCard(number=number, name=f"Card {number}", language=language,
                             image_url=f"https://img.test/{number}.png")


def make_source():
    return SourceConfig(
        name="test",
        base_url="https://cards.test",
        languages=["fr", "en"],
        collections=[
            CollectionTarget(code="SOR", locator="sor", type="booster"),
            CollectionTarget(code="SHD", locator="shd", type="booster"),
            CollectionTarget(code="PRM", locator="promo", type="promo", languages=["en"]),
            CollectionTarget(code="OLD", locator="old", skip=True),
        ],
    )


class HandlerTestCase(unittest.TestCase):
    """把全局配置的存储路径指向临时目录"""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self._orig = (config.crawler, config.storage, config.log)
        config.crawler = CrawlerConfig(
            request_interval=0, delay_between_pages=0, delay_between_collections=0, restart_delay=0,
        )
        config.storage = StorageConfig(
            sqlite_path=self.test_dir / "catalog.db",
            asset_dir=self.test_dir / "assets",
            state_dir=self.test_dir / "state",
            reports_dir=self.test_dir / "reports",
        )
        config.log = LogConfig(log_dir=self.test_dir / "logs")

    def tearDown(self):
        config.crawler, config.storage, config.log = self._orig
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def run_cli(self, *argv):
        args = create_parser().parse_args(list(argv))
        return asyncio.run(run_command(args))

    def cards(self):
        catalog = CatalogStore(config.storage.sqlite_path)
        catalog.connect()
        try:
            return catalog.select_cards()
        finally:
            catalog.close()


class TestSelectTargets(unittest.TestCase):

    def setUp(self):
        self.source = make_source()
        self.parser = create_parser()

    def select(self, *argv):
        return select_targets(self.source, self.parser.parse_args(["crawl", "--source", "test", *argv]))

    def codes(self, *argv):
        return [t.code for t in self.select(*argv)[0]]

    def test_default_skips_flagged_collections(self):
        self.assertEqual(self.codes(), ["SOR", "SHD", "PRM"])

    def test_single_collection(self):
        self.assertEqual(self.codes("--collection", "shd"), ["SHD"])
        self.assertEqual(self.codes("--collection-index", "3"), ["OLD"])

    def test_type_and_skip_filters(self):
        self.assertEqual(self.codes("--type", "booster"), ["SOR", "SHD"])
        self.assertEqual(self.codes("--skip", "sor, prm"), ["SHD"])

    def test_start_override(self):
        self.assertEqual(self.select("--start", "SHD")[1], 1)
        self.assertEqual(self.select("--start-index", "2")[1], 2)
        self.assertIsNone(self.select()[1])

    def test_invalid_selection_raises_setup_error(self):
        for argv in (("--collection", "XYZ"), ("--collection-index", "9"), ("--start", "XYZ"),
                     ("--skip", "SOR,SHD,PRM")):
            with self.assertRaises(SetupError):
                self.select(*argv)

    def test_select_languages(self):
        self.assertEqual(select_languages(self.source, "all"), ["fr", "en"])
        self.assertEqual(select_languages(self.source, None), ["fr", "en"])
        self.assertEqual(select_languages(self.source, "EN"), ["en"])


class TestHandleCrawl(HandlerTestCase):
    """crawl 子命令（mock 数据源配置与提取器）"""

    def patch_source(self):
        source = make_source()
        return (
            patch("cli.handlers.get_source_config", return_value=source),
            patch("cli.handlers.ExtractorFactory.create", side_effect=lambda s, c: FakeExtractor(s, c)),
        )

    def test_crawl_writes_catalog(self):
        source_patch, factory_patch = self.patch_source()
        with source_patch, factory_patch:
            code = self.run_cli("crawl", "--source", "test", "--skip-images", "--collection", "SOR")
        self.assertEqual(code, 0)
        cards = self.cards()
        self.assertEqual(len(cards), 4)
        self.assertEqual({c["language"] for c in cards}, {"fr", "en"})
        self.assertEqual(cards[0]["image_url"], "https://img.test/001.png")
        self.assertFalse((self.test_dir / "state" / "test-checkpoint.json").exists())

    def test_crawl_skips_unavailable_language(self):
        source_patch, factory_patch = self.patch_source()
        with source_patch, factory_patch:
            self.run_cli("crawl", "--source", "test", "--skip-images", "--collection", "PRM")
        self.assertEqual({c["language"] for c in self.cards()}, {"en"})

    def test_dry_run_writes_nothing(self):
        source_patch, factory_patch = self.patch_source()
        with source_patch, factory_patch:
            code = self.run_cli("crawl", "--source", "test", "--dry-run")
        self.assertEqual(code, 0)
        self.assertEqual(self.cards(), [])
        self.assertFalse((self.test_dir / "state" / "test-failures.json").exists())

    def test_retry_failed_with_empty_log(self):
        source_patch, factory_patch = self.patch_source()
        with source_patch, factory_patch:
            code = self.run_cli("crawl", "--source", "test", "--retry-failed", "--skip-images")
        self.assertEqual(code, 0)
        self.assertEqual(self.cards(), [])

    def test_retry_failed_keeps_log_despite_fresh_log(self):
        failures = FailureLog(JsonDocumentStore(config.storage.state_dir / "test-failures.json"))
        failures.record_extraction_failure("https://cards.test/SOR/fr/005", "SOR", "fr", "No card data extracted")

        source_patch, factory_patch = self.patch_source()
        with source_patch, factory_patch:
            code = self.run_cli("crawl", "--source", "test", "--retry-failed", "--fresh-log", "--skip-images")

        self.assertEqual(code, 0)
        self.assertEqual([(c["number"], c["language"]) for c in self.cards()], [("005", "fr")])
        reloaded = FailureLog(JsonDocumentStore(config.storage.state_dir / "test-failures.json")).load()
        self.assertEqual(reloaded.entries, [])
        self.assertEqual(reloaded.summary()["processed"], 1)

    def test_crawl_summary_shows_catalog_statistics(self):
        source_patch, factory_patch = self.patch_source()
        output = io.StringIO()
        with source_patch, factory_patch, redirect_stdout(output):
            self.run_cli("crawl", "--source", "test", "--skip-images", "--collection", "SOR")
        text = output.getvalue()
        self.assertIn("目录总数: 4 条", text)
        self.assertIn("SOR/fr: 2", text)

    def test_unknown_source_returns_1(self):
        self.assertEqual(self.run_cli("crawl", "--source", "does-not-exist"), 1)

    def test_unknown_collection_returns_1(self):
        self.assertEqual(self.run_cli("crawl", "--source", "starwars", "--collection", "XYZ"), 1)


class TestHandleCheckpointStatus(HandlerTestCase):

    def checkpoint(self):
        return CheckpointController(JsonDocumentStore(config.storage.state_dir / "starwars-checkpoint.json"))

    def test_no_checkpoint(self):
        self.assertEqual(self.run_cli("checkpoint-status", "--source", "starwars"), 0)

    def test_with_checkpoint(self):
        self.checkpoint().advance("SHD", "fr", 4, collection_index=1)
        self.assertEqual(self.run_cli("checkpoint-status", "--source", "starwars"), 0)
        self.assertTrue(self.checkpoint().exists())

    def test_clear(self):
        self.checkpoint().advance("SHD", "fr", 4, collection_index=1)
        self.assertEqual(self.run_cli("checkpoint-status", "--source", "starwars", "--clear"), 0)
        self.assertFalse(self.checkpoint().exists())

    def test_sqlite_backend(self):
        config.storage.state_backend = "sqlite"
        self.assertEqual(self.run_cli("checkpoint-status", "--source", "starwars"), 0)


class TestHandleReconcileAndRepair(HandlerTestCase):

    def setUp(self):
        super().setUp()
        catalog = CatalogStore(config.storage.sqlite_path)
        catalog.connect()
        catalog.upsert_card(("SOR", "007", "fr"), {"name": "A", "image_url": "SOR/fr/007.webp"})
        catalog.upsert_card(("SOR", "008", "fr"), {"name": "B", "image_url": "https://img.test/8.png"})
        catalog.close()
        (self.test_dir / "assets" / "SOR" / "fr").mkdir(parents=True)
        (self.test_dir / "assets" / "SOR" / "fr" / "007.webp").write_bytes(b"webp")

    def test_reconcile_writes_report(self):
        output = self.test_dir / "out" / "report.json"
        code = self.run_cli("reconcile", "--source", "starwars", "--output", str(output))
        self.assertEqual(code, 0)
        with open(output, encoding="utf-8") as f:
            report = json.load(f)
        self.assertEqual(report["summary"]["missing"], 1)
        self.assertEqual(report["pairs"][0]["missing"][0]["number"], "008")

    def test_repair_missing_report_returns_1(self):
        code = self.run_cli("repair-images", "--source", "starwars", "--report", str(self.test_dir / "none.json"))
        self.assertEqual(code, 1)

    def test_repair_from_report(self):
        output = self.test_dir / "report.json"
        self.run_cli("reconcile", "--source", "starwars", "--output", str(output))

        async def fake_process(pipeline, url, code, language, number):
            path = f"{code}/{language}/{number}.webp"
            return pipeline.store(path, b"webp")

        with patch("cli.handlers.ImagePipeline.process", autospec=True, side_effect=fake_process):
            code = self.run_cli("repair-images", "--source", "starwars", "--report", str(output))

        self.assertEqual(code, 0)
        card = [c for c in self.cards() if c["number"] == "008"][0]
        self.assertEqual(card["image_url"], "SOR/fr/008.webp")
        self.assertTrue((self.test_dir / "assets" / "SOR" / "fr" / "008.webp").exists())


if __name__ == '__main__':
    unittest.main()
