"""
CLI模块

包含命令行接口相关功能：
- handlers: 命令处理函数
- commands: argparse 定义
"""
from cli.handlers import (
    handle_crawl,
    handle_reconcile,
    handle_repair_images,
    handle_checkpoint_status,
    print_summary,
    run_command,
)
from cli.commands import create_parser

__all__ = [
    'handle_crawl',
    'handle_reconcile',
    'handle_repair_images',
    'handle_checkpoint_status',
    'print_summary',
    'run_command',
    'create_parser',
]
