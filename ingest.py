"""
卡牌目录采集管道 - 入口
"""
import asyncio
import signal
import sys

from loguru import logger

from cli.commands import create_parser
from cli.handlers import run_command
from config import config


def setup_logging():
    """配置日志（控制台 + 轮转文件）"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=config.log.log_level,
        colorize=True
    )

    log_file = config.log.log_dir / config.log.log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        rotation=config.log.rotation,
        retention=config.log.retention,
        encoding="utf-8",
        level="DEBUG"
    )


def install_signal_handlers(stop_event: asyncio.Event):
    """SIGINT / SIGTERM 只设置停止标志，驱动器处理完当前记录后退出"""
    loop = asyncio.get_running_loop()

    def request_stop(signame: str):
        if not stop_event.is_set():
            logger.warning(f"⏹️  收到 {signame}，处理完当前记录后停止...")
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop, sig.name)
        except NotImplementedError:
            # Windows 事件循环不支持 add_signal_handler
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(request_stop, signal.Signals(signum).name))


async def main() -> int:
    """主函数 - 子命令模式"""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging()

    print("\n" + "=" * 60)
    print("🃏 卡牌目录采集管道")
    print("=" * 60)

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)
    return await run_command(args, stop_event=stop_event)


def cli_main():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
