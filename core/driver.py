"""
采集驱动器

按 (collection, language) 单元顺序处理：
    PENDING → IN_PROGRESS → COMPLETED / SKIPPED
    IN_PROGRESS → FAILED_RETRYING → IN_PROGRESS（传输错误且仍有重试次数）

单元内逐页、逐条处理：限速 → 提取（带超时）→ 语言过滤 → 图片 → 入库。
每完成一页推进一次检查点；每条失败写一条失败日志。
"""
import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger
from tqdm import tqdm

from config import CollectionTarget, Config, config as default_config
from core.catalog import CatalogWriter
from core.checkpoint import CheckpointController, resolve_resume_point
from core.errors import (
    ExtractionFailure,
    ExtractionTimeout,
    ImageFailure,
    PersistenceFailure,
    TransportError,
    is_transport_error,
)
from core.failure_log import FailureLog
from core.images import ImagePipeline
from core.models import (
    FailureKind,
    FailureLogEntry,
    ItemOutcome,
    ItemStatus,
    RunSummary,
    UnitReport,
    UnitState,
    now_iso,
)
from core.rate_limiter import RateLimiter
from core.session import CrawlSession
from extractors.base import Extractor


class CrawlDriver:
    """
    采集驱动器

    Example:
        driver = CrawlDriver(extractor, session, pipeline, writer, failure_log, checkpoint)
        summary = await driver.run(source.targets, ["fr", "en"])
    """

    def __init__(
        self,
        extractor: Extractor,
        session: CrawlSession,
        image_pipeline: Optional[ImagePipeline],
        writer: CatalogWriter,
        failure_log: FailureLog,
        checkpoint: CheckpointController,
        config: Optional[Config] = None,
        rate_limiter: Optional[RateLimiter] = None,
        stop_event: Optional[asyncio.Event] = None,
        skip_images: bool = False,
        max_pages: Optional[int] = None,
    ):
        self.config = config or default_config
        self.crawler_config = self.config.crawler
        self.extractor = extractor
        self.session = session
        self.image_pipeline = image_pipeline
        self.writer = writer
        self.failure_log = failure_log
        self.checkpoint = checkpoint
        self.rate_limiter = rate_limiter or RateLimiter(self.crawler_config.request_interval)
        self.stop_event = stop_event or asyncio.Event()
        self.skip_images = skip_images or image_pipeline is None
        self.max_pages = max_pages if max_pages is not None else self.crawler_config.max_pages
        self.consecutive_errors = 0

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    async def pause(self, seconds: float):
        """可被取消信号打断的等待"""
        if seconds <= 0 or self.stopped:
            return
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ==================== 整次运行 ====================

    async def run(
        self,
        targets: List[CollectionTarget],
        languages: List[str],
        start_index: Optional[int] = None,
    ) -> RunSummary:
        """
        处理全部单元

        Args:
            targets: 本次运行的系列（有序）
            languages: 本次运行的语言（有序）
            start_index: 操作员指定的起始系列下标（优先于检查点）
        """
        summary = RunSummary()
        languages = [lang.lower() for lang in languages]
        codes = [target.code for target in targets]

        if start_index is not None:
            begin = (start_index, 0, 1)
            logger.info(f"📍 从指定位置开始: {codes[start_index]} (index {start_index})")
        else:
            begin = resolve_resume_point(self.checkpoint.load(), codes, languages)
            if begin != (0, 0, 1) and begin[0] < len(targets):
                logger.info(
                    f"♻️  从检查点继续: {codes[begin[0]]} ({languages[begin[1]]}) page {begin[2]}"
                )

        if begin[0] >= len(targets):
            logger.info("✅ 检查点显示所有单元均已完成（可用 checkpoint-status --clear 重新开始）")

        try:
            for index in range(begin[0], len(targets)):
                if self.stopped:
                    break
                target = targets[index]
                await self.prepare_collection(target)

                first_language = begin[1] if index == begin[0] else 0
                for lang_index in range(first_language, len(languages)):
                    if self.stopped:
                        break
                    language = languages[lang_index]
                    start_page = begin[2] if (index, lang_index) == begin[:2] else 1

                    if not target.offers(language):
                        logger.warning(f"⚠️  {target.code} not available in {language}, skipping...")
                        summary.units.append(UnitReport(target.code, language, state=UnitState.SKIPPED))
                        continue

                    report = await self.run_unit(target, index, language, start_page)
                    summary.units.append(report)
                    self.log_unit(report)

                    if not self.stopped:
                        await self.pause(self.crawler_config.delay_between_collections)
        finally:
            summary.cancelled = self.stopped
            summary.session_restarts = self.session.restarts
            summary.finished_at = now_iso()
            self.failure_log.mark_completed()

        if not summary.cancelled:
            self.checkpoint.clear()
        return summary

    async def prepare_collection(self, target: CollectionTarget):
        """写入系列信息（需要时处理系列图）"""
        image_url = None
        if target.image_url and not self.skip_images:
            try:
                ref = await self.image_pipeline.process_collection_image(target.image_url, target.code)
                image_url = ref.public_url
            except ImageFailure as e:
                logger.warning(f"⚠️  系列图处理失败 {target.code}: {e}")
                self.failure_log.record_image_failure(
                    target.name or target.code, "series", target.code, "", target.image_url, e.reason, e.stage,
                )
        try:
            self.writer.ensure_collection(target, image_url=image_url)
        except PersistenceFailure as e:
            logger.error(f"❌ 系列写入失败 {target.code}: {e}")

    # ==================== 单元 ====================

    async def run_unit(
        self,
        target: CollectionTarget,
        collection_index: int,
        language: str,
        start_page: int = 1,
    ) -> UnitReport:
        """处理一个 (collection, language) 单元（含传输错误重试）"""
        report = UnitReport(collection=target.code, language=language, state=UnitState.IN_PROGRESS)
        # logged: 本单元已写入失败日志的标识（重试时不重复记录）
        # resolved: 本单元已成功处理的标识；pending: 当前页尚未处理的标识
        progress = {"next_page": start_page, "seen": set(), "logged": set(), "resolved": set(), "pending": []}
        logger.info(f"📦 {target.code} - {target.name or target.locator} ({language.upper()}) 从第 {start_page} 页开始")

        while True:
            try:
                finished = await self.crawl_pages(target, collection_index, language, report, progress)
            except TransportError as e:
                report.last_error = str(e)
                if report.retries >= self.crawler_config.max_unit_retries:
                    logger.error(f"❌ {target.code} ({language}) 重试次数耗尽: {e}")
                    self.failure_log.record_extraction_failure(
                        self.extractor.build_list_url(target, language, progress["next_page"]),
                        target.code, language, f"Unit abandoned after {report.retries} retries: {e}",
                        kind=FailureKind.UNIT,
                    )
                    self.record_unattempted(target, language, progress, report.retries)
                    report.errors += 1
                    report.state = UnitState.COMPLETED
                    self.session.mark_dead(str(e))
                    self.consecutive_errors = 0
                    self.checkpoint.advance(
                        target.code, language, progress["next_page"] - 1, collection_index, done=True,
                    )
                    return report

                report.retries += 1
                report.state = UnitState.FAILED_RETRYING
                logger.warning(
                    f"🔄 {target.code} ({language}) 会话失效，重启后重试 "
                    f"({report.retries}/{self.crawler_config.max_unit_retries}): {e}"
                )
                self.session.mark_dead(str(e))
                self.consecutive_errors = 0
                await self.pause(self.crawler_config.restart_delay)
                if self.stopped:
                    return report
                report.state = UnitState.IN_PROGRESS
                continue

            if finished:
                report.state = UnitState.COMPLETED
                self.checkpoint.advance(
                    target.code, language, progress["next_page"] - 1, collection_index, done=True,
                )
            return report

    def record_unattempted(self, target: CollectionTarget, language: str, progress: Dict[str, Any], retries: int):
        """放弃单元时，当前页还没处理到的标识逐条记入失败日志（可被重放）"""
        skipped = [
            identifier for identifier in progress["pending"]
            if identifier not in progress["logged"] and identifier not in progress["resolved"]
        ]
        for identifier in skipped:
            self.failure_log.record_extraction_failure(
                identifier, target.code, language,
                f"Not attempted: unit abandoned after {retries} retries",
                kind=FailureKind.TRANSPORT,
            )
            progress["logged"].add(identifier)
        if skipped:
            logger.warning(f"⚠️  {target.code} ({language}) {len(skipped)} 条未处理，已记入失败日志")

    async def crawl_pages(
        self,
        target: CollectionTarget,
        collection_index: int,
        language: str,
        report: UnitReport,
        progress: Dict[str, Any],
    ) -> bool:
        """
        从 progress["next_page"] 开始逐页处理

        Returns:
            True 表示单元处理完毕；False 表示被取消
        """
        seen: Set[str] = progress["seen"]
        while True:
            page = progress["next_page"]
            if self.max_pages is not None and page > self.max_pages:
                logger.info(f"⏹️  达到最大页数: {self.max_pages}")
                return True
            if self.stopped:
                return False

            identifiers = await self.list_page(target, language, page, report)
            if identifiers is None:
                return True
            fresh = [identifier for identifier in identifiers if identifier not in seen]
            if not fresh:
                logger.debug(f"No new identifiers on page {page}, end of listing")
                return True

            saved_before = report.saved
            progress["pending"] = list(fresh)
            desc = f"{target.code} ({language}) p{page}"
            for identifier in tqdm(fresh, desc=desc, leave=False):
                if self.stopped:
                    logger.warning("⏹️  收到停止信号，当前页未完成")
                    return False
                outcome = await self.process_item(target, language, identifier)
                progress["pending"].remove(identifier)
                if outcome.ok:
                    progress["resolved"].add(identifier)
                self.handle_outcome(outcome, target, language, report, logged=progress["logged"])

            # 整页完成后才提交
            progress["pending"] = []
            seen.update(fresh)
            report.pages += 1
            self.checkpoint.advance(target.code, language, page, collection_index)
            self.failure_log.record_processed(report.saved - saved_before)
            progress["next_page"] = page + 1
            await self.pause(self.crawler_config.delay_between_pages)

    async def list_page(
        self,
        target: CollectionTarget,
        language: str,
        page: int,
        report: UnitReport,
        record: bool = True,
    ) -> Optional[List[str]]:
        """获取一页标识；列表页提取失败返回 None（结束该单元）"""
        list_url = self.extractor.build_list_url(target, language, page)
        handle = await self.session.acquire()
        await self.rate_limiter.wait(list_url)
        try:
            return await asyncio.wait_for(
                self.extractor.list_page(handle, target, language, page),
                timeout=self.crawler_config.request_timeout,
            )
        except TransportError:
            raise
        except asyncio.TimeoutError:
            error: Exception = ExtractionTimeout(f"Timeout while listing {list_url}", list_url)
        except ExtractionFailure as e:
            error = e
        except Exception as e:
            if is_transport_error(e):
                raise TransportError(str(e)) from e
            error = e

        logger.error(f"❌ 列表页失败 {list_url}: {error}")
        report.errors += 1
        report.last_error = str(error)
        if not record:
            return None
        self.failure_log.record_extraction_failure(
            list_url, target.code, language, f"Listing failed: {error}", kind=FailureKind.UNIT,
        )
        return None

    # ==================== 单条 ====================

    async def process_item(self, target: CollectionTarget, language: str, identifier: str) -> ItemOutcome:
        """
        处理单条记录

        传输错误向上抛出（由单元重试处理），其余错误转为 FAILED 结果。
        """
        handle = await self.session.acquire()
        await self.rate_limiter.wait(identifier)
        try:
            card = await asyncio.wait_for(
                self.extractor.extract(handle, identifier, target, language),
                timeout=self.crawler_config.request_timeout,
            )
        except TransportError:
            raise
        except asyncio.TimeoutError:
            return ItemOutcome(identifier, ItemStatus.FAILED, error=ExtractionTimeout(f"Timeout: {identifier}", identifier))
        except ExtractionFailure as e:
            return ItemOutcome(identifier, ItemStatus.FAILED, error=e)
        except Exception as e:
            if is_transport_error(e):
                raise TransportError(str(e)) from e
            return ItemOutcome(identifier, ItemStatus.FAILED, error=e)

        # 语言在提取之后过滤（列表页可能混有其他语言）
        if card.language and card.language.lower() != language.lower():
            return ItemOutcome(identifier, ItemStatus.OTHER_LANGUAGE)

        image_url = card.image_url
        image_failed = False
        if card.image_url and not self.skip_images:
            try:
                await self.rate_limiter.wait(card.image_url)
                ref = await self.image_pipeline.process(card.image_url, target.code, language, card.number)
                image_url = ref.public_url
            except ImageFailure as e:
                image_failed = True
                logger.warning(f"⚠️  图片失败 {card.number} [{e.stage}]: {e.reason}")
                self.failure_log.record_image_failure(
                    card.name, card.number, target.code, language, card.image_url, e.reason, e.stage,
                )
                image_url = card.image_url if self.config.image.fallback == "source" else None

        record = card.to_record(target.code, language, image_url)
        try:
            self.writer.upsert(record)
        except PersistenceFailure as e:
            return ItemOutcome(identifier, ItemStatus.FAILED, record=record, error=e, image_failed=image_failed)
        logger.debug(f"✓ {card.name} ({card.number})")
        return ItemOutcome(identifier, ItemStatus.SAVED, record=record, image_failed=image_failed)

    @staticmethod
    def failure_kind(error: Optional[Exception]) -> FailureKind:
        if isinstance(error, PersistenceFailure):
            return FailureKind.PERSISTENCE
        if isinstance(error, ExtractionFailure):
            return FailureKind(error.kind)
        return FailureKind.EXTRACTION

    def handle_outcome(
        self,
        outcome: ItemOutcome,
        target: CollectionTarget,
        language: str,
        report: UnitReport,
        logged: Optional[Set[str]] = None,
    ):
        """
        汇总单条结果

        同一单元内每个失败标识只记录一次（logged 保存已记录的标识）；
        连续提取失败达到阈值时视为会话不稳定，抛出 TransportError。
        """
        report.processed += 1
        if outcome.image_failed:
            report.image_errors += 1

        if outcome.status == ItemStatus.SAVED:
            report.saved += 1
            self.consecutive_errors = 0
            return
        if outcome.status == ItemStatus.OTHER_LANGUAGE:
            report.other_language += 1
            self.consecutive_errors = 0
            return

        report.last_error = str(outcome.error)
        kind = self.failure_kind(outcome.error)
        logger.error(f"❌ {outcome.identifier}: {outcome.error}")
        if logged is None or outcome.identifier not in logged:
            report.errors += 1
            self.failure_log.record_extraction_failure(
                outcome.identifier, target.code, language, str(outcome.error) or "Unknown error", kind=kind,
            )
            if logged is not None:
                logged.add(outcome.identifier)

        if kind == FailureKind.PERSISTENCE:
            return
        self.consecutive_errors += 1
        if self.consecutive_errors >= self.crawler_config.max_consecutive_errors:
            count = self.consecutive_errors
            self.consecutive_errors = 0
            raise TransportError(f"Too many consecutive errors ({count}), session may be unstable")

    # ==================== 重放 / 预览 ====================

    async def replay_failures(self, targets: Iterable[CollectionTarget]) -> Tuple[int, List[FailureLogEntry]]:
        """
        只重试失败日志中的条目

        Returns:
            (恢复数量, 仍失败的条目)
        """
        by_code = {target.code.upper(): target for target in targets}
        queue = self.failure_log.replay_queue()
        logger.info(f"🔁 重放 {len(queue)} 条失败记录")

        recovered = 0
        still_failing: List[FailureLogEntry] = []
        for entry in tqdm(queue, desc="Retrying failed cards"):
            if self.stopped:
                still_failing.append(entry)
                continue
            target = by_code.get(entry.collection.upper())
            if target is None:
                still_failing.append(entry)
                continue

            outcome = await self.replay_entry(target, entry)
            if outcome.ok:
                recovered += 1
            else:
                still_failing.append(FailureLogEntry(
                    identifier=entry.identifier,
                    collection=entry.collection,
                    language=entry.language,
                    kind=self.failure_kind(outcome.error),
                    message=f"{outcome.error} (retry)",
                ))

        self.failure_log.finish_replay(still_failing, recovered)
        logger.info(f"🔁 重放完成: 恢复 {recovered}，仍失败 {len(still_failing)}")
        return recovered, still_failing

    async def replay_entry(self, target: CollectionTarget, entry: FailureLogEntry) -> ItemOutcome:
        """重试一条记录（传输错误时重启会话，次数同单元重试预算）"""
        attempts = 0
        while True:
            try:
                return await self.process_item(target, entry.language, entry.identifier)
            except TransportError as e:
                if attempts >= self.crawler_config.max_unit_retries:
                    return ItemOutcome(entry.identifier, ItemStatus.FAILED, error=e)
                attempts += 1
                self.session.mark_dead(str(e))
                await self.pause(self.crawler_config.restart_delay)

    async def preview(self, targets: List[CollectionTarget], languages: List[str]) -> Dict[Tuple[str, str], int]:
        """只列出标识，不提取、不写入（--dry-run）"""
        counts: Dict[Tuple[str, str], int] = {}
        for target in targets:
            for language in languages:
                if self.stopped:
                    return counts
                if not target.offers(language):
                    continue
                seen: Set[str] = set()
                page = 1
                while self.max_pages is None or page <= self.max_pages:
                    identifiers = await self.list_page(
                        target, language, page, UnitReport(target.code, language), record=False,
                    )
                    fresh = [i for i in (identifiers or []) if i not in seen]
                    if not fresh:
                        break
                    seen.update(fresh)
                    page += 1
                counts[(target.code, language)] = len(seen)
                logger.info(f"👀 {target.code} ({language}): {len(seen)} 条")
        return counts

    # ==================== 汇总 ====================

    @staticmethod
    def log_unit(report: UnitReport):
        logger.success(
            f"Completed {report.collection} ({report.language}): {report.saved} cards "
            f"({report.other_language} other languages, {report.errors} errors, "
            f"{report.image_errors} image errors, {report.retries} retries)"
        )
