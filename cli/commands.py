"""
CLI命令定义（argparse）
"""
import argparse


def create_parser() -> argparse.ArgumentParser:
    """
    创建命令行参数解析器

    Returns:
        ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog='ingest.py',
        description='卡牌目录采集管道（子命令模式）',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
示例:
  # 采集数据源中的全部系列（默认从检查点继续）
  python ingest.py crawl --source starwars

  # 只采集一个系列 / 一种语言，不处理图片
  python ingest.py crawl --source starwars --collection SOR --lang fr --skip-images

  # 从指定系列开始，跳过部分系列，清空失败日志
  python ingest.py crawl --source starwars --start TWI --skip SOR,SHD --fresh-log

  # 只重试失败日志中的记录
  python ingest.py crawl --source starwars --retry-failed

  # 对账（目录 vs 图片存储），再按报告补齐缺失图片
  python ingest.py reconcile --source starwars --collection SOR --output data/reports/sor.json
  python ingest.py repair-images --source starwars --report data/reports/sor.json --limit 50

  # 查看 / 清除检查点
  python ingest.py checkpoint-status --source starwars
  python ingest.py checkpoint-status --source starwars --clear
        '''
    )

    # 创建子命令
    subparsers = parser.add_subparsers(dest='command', help='子命令', required=True)

    # ============================================================================
    # 子命令: crawl - 采集
    # ============================================================================
    parser_crawl = subparsers.add_parser('crawl', help='采集卡牌（检查点续传、失败日志、可重放）')
    parser_crawl.add_argument('--source', type=str, required=True,
                              help='数据源名称 (configs/ 下，如 starwars)')
    selector = parser_crawl.add_mutually_exclusive_group()
    selector.add_argument('--collection', type=str, default=None,
                          help='只采集指定系列代码（如 SOR）')
    selector.add_argument('--collection-index', type=int, default=None,
                          help='只采集指定下标的系列（从 0 开始）')
    start = parser_crawl.add_mutually_exclusive_group()
    start.add_argument('--start', type=str, default=None,
                       help='从指定系列代码开始（覆盖检查点）')
    start.add_argument('--start-index', type=int, default=None,
                       help='从指定下标开始（覆盖检查点）')
    parser_crawl.add_argument('--lang', type=str, default='all',
                              help='语言（如 fr / en），默认 all = 数据源配置的全部语言')
    parser_crawl.add_argument('--type', type=str, default=None,
                              help='只采集某类系列（booster / starter / promo ...）')
    parser_crawl.add_argument('--skip', type=str, default=None,
                              help='跳过的系列代码，逗号分隔')
    parser_crawl.add_argument('--skip-images', action='store_true',
                              help='不处理图片（image_url 保留源地址）')
    parser_crawl.add_argument('--fresh-log', action='store_true',
                              help='丢弃已有失败日志，重新开始记录')
    parser_crawl.add_argument('--retry-failed', action='store_true',
                              help='只重试失败日志中的记录')
    parser_crawl.add_argument('--max-pages', type=int, default=None,
                              help='每个单元最多翻页数')
    parser_crawl.add_argument('--dry-run', action='store_true',
                              help='只列出记录数量，不提取、不写入')

    # ============================================================================
    # 子命令: reconcile - 对账
    # ============================================================================
    parser_reconcile = subparsers.add_parser('reconcile', help='对账：目录记录 vs 图片存储（只读）')
    parser_reconcile.add_argument('--source', type=str, required=True, help='数据源名称')
    parser_reconcile.add_argument('--collection', type=str, default=None, help='只对账指定系列')
    parser_reconcile.add_argument('--lang', type=str, default=None, help='只对账指定语言')
    parser_reconcile.add_argument('--output', type=str, default=None,
                                  help='报告路径（默认 data/reports/<source>-<时间>.json）')

    # ============================================================================
    # 子命令: repair-images - 按对账报告补齐图片
    # ============================================================================
    parser_repair = subparsers.add_parser('repair-images', help='按对账报告重新处理缺失图片')
    parser_repair.add_argument('--source', type=str, required=True, help='数据源名称')
    parser_repair.add_argument('--report', type=str, required=True, help='对账报告路径')
    parser_repair.add_argument('--limit', type=int, default=None, help='最多处理的条数')

    # ============================================================================
    # 子命令: checkpoint-status - 查看检查点状态
    # ============================================================================
    parser_checkpoint = subparsers.add_parser('checkpoint-status', help='查看检查点与失败日志状态')
    parser_checkpoint.add_argument('--source', type=str, required=True, help='数据源名称')
    parser_checkpoint.add_argument('--clear', action='store_true', help='清除检查点')

    return parser
