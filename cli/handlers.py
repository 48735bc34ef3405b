"""
CLI命令处理函数

每个处理函数返回进程退出码：启动阶段的 SetupError 返回 1，其余情况（包括单条失败）返回 0。
"""
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from config import CollectionTarget, SourceConfig, config, get_source_config
from core.asset_store import LocalAssetStore
from core.catalog import CatalogWriter
from core.checkpoint import CheckpointController, resolve_start_override
from core.driver import CrawlDriver
from core.errors import SetupError
from core.failure_log import FailureLog
from core.images import ImagePipeline
from core.models import RunSummary, UnitState
from core.persistence import make_document_store
from core.reconciliation import ReconciliationScanner, load_report
from core.repair import ImageRepairer
from core.session import CrawlSession
from core.storage import CatalogStore
from extractors import ExtractorFactory


def select_targets(source: SourceConfig, args) -> Tuple[List[CollectionTarget], Optional[int]]:
    """
    根据命令行参数确定本次运行的系列与起始下标

    Raises:
        SetupError: 系列不存在或下标无效
    """
    collection = getattr(args, 'collection', None)
    collection_index = getattr(args, 'collection_index', None)

    if collection:
        target = source.find_target(collection)
        if target is None:
            raise SetupError(f"Collection {collection} not found in {source.name}")
        targets = [target]
    elif collection_index is not None:
        if collection_index < 0 or collection_index >= len(source.collections):
            raise SetupError(f"Invalid collection index: {collection_index}")
        targets = [source.collections[collection_index]]
    else:
        targets = source.targets
        series_type = getattr(args, 'type', None)
        if series_type:
            targets = [t for t in targets if t.type.lower() == series_type.lower()]
        skip = getattr(args, 'skip', None)
        if skip:
            skip_codes = {code.strip().upper() for code in skip.split(',') if code.strip()}
            targets = [t for t in targets if t.code.upper() not in skip_codes]

    if not targets:
        raise SetupError("No collections to process")

    try:
        start_index = resolve_start_override(
            [t.code for t in targets],
            start_code=getattr(args, 'start', None),
            start_index=getattr(args, 'start_index', None),
        )
    except ValueError as e:
        raise SetupError(str(e)) from e
    return targets, start_index


def select_languages(source: SourceConfig, lang: Optional[str]) -> List[str]:
    """--lang all / 未指定 时使用数据源配置的全部语言"""
    if not lang or lang.lower() == 'all':
        return [language.lower() for language in source.languages]
    if lang.lower() not in [language.lower() for language in source.languages]:
        logger.warning(f"⚠️  语言 {lang} 不在数据源配置中: {source.languages}")
    return [lang.lower()]


def open_state(source_name: str, catalog: CatalogStore) -> Tuple[CheckpointController, FailureLog]:
    """创建该数据源的检查点与失败日志"""
    backend = config.storage.state_backend
    state_dir = config.storage.state_dir
    checkpoint = CheckpointController(
        make_document_store(backend, f"{source_name}-checkpoint", state_dir, catalog)
    )
    failure_log = FailureLog(
        make_document_store(backend, f"{source_name}-failures", state_dir, catalog)
    )
    return checkpoint, failure_log


def make_asset_store() -> LocalAssetStore:
    return LocalAssetStore(config.storage.asset_dir, config.storage.asset_base_url)


async def handle_crawl(args, stop_event: Optional[asyncio.Event] = None) -> int:
    """处理 crawl 子命令"""
    print(f"\n📌 命令: 采集")
    print(f"数据源: {args.source}")

    # 1. 加载配置（任何启动错误都在开始工作前抛出）
    source = get_source_config(args.source)
    targets, start_index = select_targets(source, args)
    languages = select_languages(source, args.lang)
    logger.info(f"📝 系列: {', '.join(t.code for t in targets)}")
    logger.info(f"🌐 语言: {', '.join(languages)}")

    config.ensure_directories()
    catalog = CatalogStore(config.storage.sqlite_path)
    catalog.connect()
    try:
        # 2. 运行状态
        checkpoint, failure_log = open_state(args.source, catalog)
        fresh_log = args.fresh_log and not args.dry_run
        if fresh_log and args.retry_failed:
            # 重放需要读取已有日志
            logger.warning("⚠️  --retry-failed 模式下忽略 --fresh-log")
            fresh_log = False
        failure_log.load(fresh=fresh_log)

        # 3. 组件
        extractor = ExtractorFactory.create(source, config)
        session = CrawlSession(extractor.create_launcher())
        pipeline = None if args.skip_images else ImagePipeline(make_asset_store(), config)
        driver = CrawlDriver(
            extractor=extractor,
            session=session,
            image_pipeline=pipeline,
            writer=CatalogWriter(catalog),
            failure_log=failure_log,
            checkpoint=checkpoint,
            config=config,
            stop_event=stop_event,
            skip_images=args.skip_images,
            max_pages=args.max_pages,
        )

        # 4. 执行
        try:
            if args.dry_run:
                counts = await driver.preview(targets, languages)
                print_preview(counts)
            elif args.retry_failed:
                recovered, still_failing = await driver.replay_failures(source.collections)
                print("\n" + "=" * 60)
                print("🔁 重放结果:")
                print(f"  恢复: {recovered}")
                print(f"  仍失败: {len(still_failing)}")
                print(f"  失败日志: {failure_log.location}")
                print("=" * 60)
            else:
                summary = await driver.run(targets, languages, start_index=start_index)
                print_summary(summary, failure_log, catalog.get_statistics())
        finally:
            await session.close()
            if pipeline is not None:
                await pipeline.close()
    finally:
        catalog.close()
    return 0


async def handle_reconcile(args) -> int:
    """处理 reconcile 子命令"""
    print(f"\n📌 命令: 对账")
    get_source_config(args.source)

    config.ensure_directories()
    catalog = CatalogStore(config.storage.sqlite_path)
    catalog.connect()
    try:
        scanner = ReconciliationScanner(catalog, make_asset_store(), ext=config.image.output_format)
        report = scanner.scan(collection=args.collection, language=args.lang)
        output = Path(args.output) if args.output else (
            config.storage.reports_dir / f"{args.source}-{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        )
        scanner.write_report(report, output)
    finally:
        catalog.close()

    summary = report.summary
    print("\n" + "=" * 60)
    print("🔎 对账结果:")
    for pair in report.pairs:
        print(f"  {pair.collection} ({pair.language}): {pair.with_image}/{pair.records} 有图, "
              f"缺失 {pair.without_image}, 孤立 {pair.orphan_count}")
    print(f"  合计: {summary.records} 条记录, 缺失 {summary.missing}, 孤立 {summary.orphans}, "
          f"路径冲突 {summary.collisions}")
    print(f"  报告: {output}")
    print("=" * 60)
    return 0


async def handle_repair_images(args) -> int:
    """处理 repair-images 子命令"""
    print(f"\n📌 命令: 修复缺失图片")
    get_source_config(args.source)

    report_path = Path(args.report)
    if not report_path.exists():
        raise SetupError(f"Report not found: {report_path}")
    report = load_report(report_path)

    config.ensure_directories()
    catalog = CatalogStore(config.storage.sqlite_path)
    catalog.connect()
    try:
        async with ImagePipeline(make_asset_store(), config) as pipeline:
            repairer = ImageRepairer(pipeline, catalog)
            stats = await repairer.repair(report, limit=args.limit)
    finally:
        catalog.close()

    print("\n" + "=" * 60)
    print("🛠️  修复结果:")
    print(f"  候选: {stats['candidates']}")
    print(f"  已修复: {stats['repaired']}")
    print(f"  跳过: {stats['skipped']}")
    print(f"  失败: {stats['failed']}")
    print("=" * 60)
    return 0


async def handle_checkpoint_status(args) -> int:
    """处理 checkpoint-status 子命令"""
    print(f"\n📌 命令: 查看检查点状态")
    print(f"数据源: {args.source}")

    catalog = CatalogStore(config.storage.sqlite_path)
    if config.storage.state_backend == "sqlite":
        catalog.connect()
    try:
        checkpoint, failure_log = open_state(args.source, catalog)
        if args.clear:
            if checkpoint.exists():
                checkpoint.clear()
                print("✅ 检查点已清除")
            else:
                print("ℹ️  没有找到检查点")
            return 0

        if not checkpoint.exists():
            print("ℹ️  没有找到检查点")
            print(f"   存储: {checkpoint.location}")
        else:
            data = checkpoint.load()
            print("\n" + "=" * 60)
            print("📂 检查点信息:")
            print(f"  存储: {checkpoint.location}")
            print(f"  系列: {data.collection} (index {data.collection_index})")
            print(f"  语言: {data.language}")
            print(f"  已完成页: {data.page}")
            print(f"  单元完成: {'是' if data.done else '否'}")
            print(f"  更新时间: {data.updated_at or 'N/A'}")
            print("=" * 60)

        failure_log.load()
        stats = failure_log.summary()
        print("\n📋 失败日志:")
        print(f"  存储: {failure_log.location}")
        print(f"  提取失败: {stats['entries']}")
        print(f"  图片失败: {stats['image_failures']}")
        if stats['units_with_errors']:
            print(f"  涉及单元: {', '.join(stats['units_with_errors'])}")
    finally:
        catalog.close()
    return 0


def print_summary(
    summary: RunSummary,
    failure_log: Optional[FailureLog] = None,
    catalog_stats: Optional[Dict[str, Any]] = None,
):
    """输出运行统计"""
    print("\n" + "=" * 60)
    print("📊 采集统计:")
    for unit in summary.units:
        if unit.state == UnitState.SKIPPED:
            print(f"  {unit.collection} ({unit.language}): 跳过")
            continue
        print(f"  {unit.collection} ({unit.language}): {unit.saved} 保存, "
              f"{unit.other_language} 其他语言, {unit.errors} 错误, {unit.image_errors} 图片错误"
              + (f", {unit.retries} 次重试" if unit.retries else ""))
    print("-" * 60)
    print(f"  处理: {summary.processed}")
    print(f"  保存: {summary.saved}")
    print(f"  错误: {summary.errors}")
    print(f"  图片错误: {summary.image_errors}")
    print(f"  会话重启: {summary.session_restarts}")
    if summary.cancelled:
        print("  ⏹️  运行被中断（已保存检查点，可直接重新运行继续）")
    if failure_log is not None and (summary.errors or summary.image_errors):
        print(f"  失败日志: {failure_log.location}（可用 --retry-failed 重试）")
    if catalog_stats:
        print("-" * 60)
        print(f"  目录总数: {catalog_stats['total_cards']} 条"
              f"（{catalog_stats['cards_with_image']} 有图, {catalog_stats['collections']} 个系列）")
        for pair, count in sorted(catalog_stats['pairs'].items()):
            print(f"    {pair}: {count}")
    print("=" * 60)


def print_preview(counts):
    """输出 --dry-run 结果"""
    print("\n" + "=" * 60)
    print("👀 预览:")
    for (code, language), count in counts.items():
        print(f"  {code} ({language}): {count}")
    print(f"  合计: {sum(counts.values())}")
    print("=" * 60)


async def run_command(args, stop_event: Optional[asyncio.Event] = None) -> int:
    """分发子命令，SetupError 转为退出码 1"""
    try:
        if args.command == 'crawl':
            return await handle_crawl(args, stop_event=stop_event)
        if args.command == 'reconcile':
            return await handle_reconcile(args)
        if args.command == 'repair-images':
            return await handle_repair_images(args)
        if args.command == 'checkpoint-status':
            return await handle_checkpoint_status(args)
    except SetupError as e:
        logger.error(f"❌ {e}")
        return 1
    logger.error(f"❌ 未知命令: {args.command}")
    return 1
