"""
对账扫描

只读比较目录记录与资源存储中的实际文件：
- missing: 记录的期望图片路径不存在
- orphan: 资源文件反推的编号在目录中没有对应记录

编号比较先做路径安全化，再去掉开头数字段的前导零（"7" ≡ "007"）。
安全化是有损的（"3/P3" 与 "3-P3" 映射到同一文件名），这类冲突单独列出，不做修正。
"""
import json
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, Field

from core.asset_store import AssetStore
from core.images import normalize_number, sanitize_item_number
from core.models import now_iso
from core.storage import CatalogStore


class MissingImage(BaseModel):
    """缺少图片的记录"""
    number: str
    name: str = ""
    expected_path: str
    image_url: Optional[str] = None


class SanitizationCollision(BaseModel):
    """安全化后落到同一路径的不同编号"""
    path: str
    numbers: List[str]


class PairReport(BaseModel):
    """单个 (collection, language) 的对账结果"""
    collection: str
    language: str
    records: int = 0
    assets: int = 0
    with_image: int = 0
    without_image: int = 0
    orphan_count: int = 0
    missing: List[MissingImage] = Field(default_factory=list)
    orphans: List[str] = Field(default_factory=list)
    collisions: List[SanitizationCollision] = Field(default_factory=list)

    @property
    def missing_count(self) -> int:
        return self.without_image


class ReconciliationSummary(BaseModel):
    pairs: int = 0
    records: int = 0
    assets: int = 0
    with_image: int = 0
    missing: int = 0
    orphans: int = 0
    collisions: int = 0


class ReconciliationReport(BaseModel):
    """对账报告（一次扫描写一份 JSON）"""
    generated_at: str = Field(default_factory=now_iso)
    pairs: List[PairReport] = Field(default_factory=list)
    summary: ReconciliationSummary = Field(default_factory=ReconciliationSummary)

    def pair(self, collection: str, language: str) -> Optional[PairReport]:
        for report in self.pairs:
            if report.collection == collection and report.language == language:
                return report
        return None


def implied_number(asset_name: str) -> str:
    """资源文件名反推编号（去掉扩展名；安全化不可逆，得到的是安全化后的编号）"""
    return asset_name.rsplit(".", 1)[0] if "." in asset_name else asset_name


def comparison_key(number: str) -> str:
    """记录编号与资源文件名统一的比较键"""
    return normalize_number(sanitize_item_number(number))


class ReconciliationScanner:
    """
    对账扫描器

    Example:
        scanner = ReconciliationScanner(catalog, LocalAssetStore(root))
        report = scanner.scan(collection="SOR")
        scanner.write_report(report, Path("data/reports/reconcile.json"))
    """

    def __init__(self, catalog: CatalogStore, asset_store: AssetStore, ext: str = "webp"):
        self.catalog = catalog
        self.asset_store = asset_store
        self.ext = ext

    def scan(
        self,
        collection: Optional[str] = None,
        language: Optional[str] = None,
        pairs: Optional[Iterable[Tuple[str, str]]] = None,
    ) -> ReconciliationReport:
        """扫描全部（或指定的）(collection, language) 组合"""
        if pairs is None:
            pairs = self.discover_pairs()
        selected = [
            (code, lang) for code, lang in pairs
            if (collection is None or code.upper() == collection.upper())
            and (language is None or lang.lower() == language.lower())
        ]

        report = ReconciliationReport()
        for code, lang in selected:
            pair_report = self.scan_pair(code, lang)
            report.pairs.append(pair_report)
            logger.info(
                f"🔎 {code} ({lang}): {pair_report.records} records, "
                f"{pair_report.without_image} missing, {pair_report.orphan_count} orphans"
            )

        summary = report.summary
        summary.pairs = len(report.pairs)
        for pair_report in report.pairs:
            summary.records += pair_report.records
            summary.assets += pair_report.assets
            summary.with_image += pair_report.with_image
            summary.missing += pair_report.without_image
            summary.orphans += pair_report.orphan_count
            summary.collisions += len(pair_report.collisions)
        return report

    def discover_pairs(self) -> List[Tuple[str, str]]:
        """
        目录中的组合与资源存储中的组合取并集

        只有资源、没有记录的目录（例如该语言的记录已被删除）也要扫描，否则其中的孤立文件不会被发现。
        """
        pairs = set(self.catalog.card_pairs())
        for code in self.catalog.collection_codes():
            for language in self.asset_store.list_prefixes(code):
                pairs.add((code, language))
        return sorted(pairs)

    def scan_pair(self, collection: str, language: str) -> PairReport:
        """对账单个组合"""
        records = self.catalog.select_cards(collection_code=collection, language=language)
        assets = [
            entry.name for entry in self.asset_store.list(f"{collection}/{language}")
            if entry.name.endswith(f".{self.ext}")
        ]
        asset_keys = {comparison_key(implied_number(name)) for name in assets}
        record_keys = {comparison_key(record["number"]) for record in records}

        pair_report = PairReport(
            collection=collection,
            language=language,
            records=len(records),
            assets=len(assets),
        )

        by_path: Dict[str, List[str]] = defaultdict(list)
        for record in records:
            number = record["number"]
            sanitized = sanitize_item_number(number)
            by_path[sanitized].append(number)
            if comparison_key(number) in asset_keys:
                pair_report.with_image += 1
            else:
                pair_report.missing.append(MissingImage(
                    number=number,
                    name=record.get("name") or "",
                    expected_path=f"{collection}/{language}/{sanitized}.{self.ext}",
                    image_url=record.get("image_url"),
                ))

        pair_report.without_image = len(pair_report.missing)
        pair_report.orphans = sorted(
            name for name in assets
            if comparison_key(implied_number(name)) not in record_keys
        )
        pair_report.orphan_count = len(pair_report.orphans)
        pair_report.collisions = [
            SanitizationCollision(path=f"{collection}/{language}/{path}.{self.ext}", numbers=sorted(numbers))
            for path, numbers in sorted(by_path.items())
            if len(set(numbers)) > 1
        ]
        return pair_report

    def write_report(self, report: ReconciliationReport, output: Path) -> Path:
        """报告写入 JSON 文件"""
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, 'w', encoding='utf-8') as f:
            json.dump(report.model_dump(mode="json"), f, ensure_ascii=False, indent=2)
        logger.success(f"📝 对账报告已写入: {output}")
        return output


def load_report(path: Path) -> ReconciliationReport:
    """读取对账报告（修复命令使用）"""
    with open(path, 'r', encoding='utf-8') as f:
        return ReconciliationReport.model_validate(json.load(f))
