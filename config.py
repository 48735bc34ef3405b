"""
配置管理模块 - 卡牌目录采集管道
统一配置管理，支持多数据源（configs/ 目录下每个 JSON 一个数据源）
"""
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from typing import Optional, List, Dict, Any
import os
import json
from pathlib import Path
from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# 项目根目录
BASE_DIR = Path(__file__).parent
CONFIG_DIR = BASE_DIR / "configs"
DATA_DIR = BASE_DIR / "data"


class CrawlerConfig(BaseModel):
    """爬取配置"""
    # 速率控制（秒）
    request_interval: float = Field(default=0.5, description="同一主机两次请求的最小间隔")
    delay_between_pages: float = Field(default=2.0, description="翻页间隔")
    delay_between_collections: float = Field(default=5.0, description="系列（单元）之间的间隔")
    restart_delay: float = Field(default=3.0, description="会话重启前的等待")
    request_timeout: int = Field(default=30, description="单次网络操作超时时间")

    # 重试 / 熔断
    max_unit_retries: int = Field(default=2, description="单元遇到传输错误时的重试次数")
    max_consecutive_errors: int = Field(default=10, description="连续失败达到该值视为会话不稳定")
    max_pages: Optional[int] = Field(default=None, description="单个单元最多翻页数（None 不限制）")
    http_retries: int = Field(default=3, description="提取器内部对临时 HTTP 错误的重试次数")

    # 浏览器 / 请求头
    headless: bool = Field(default=True, description="无头浏览器")
    rotate_user_agent: bool = Field(default=True, description="是否轮换UA")
    viewport_width: int = Field(default=1280, description="浏览器视口宽度")
    viewport_height: int = Field(default=800, description="浏览器视口高度")


class ImageConfig(BaseModel):
    """图片配置"""
    # 卡图
    card_max_width: int = Field(default=480, description="卡图最大宽度")
    card_max_height: int = Field(default=672, description="卡图最大高度")
    card_quality: int = Field(default=85, description="卡图压缩质量")

    # 系列图 / 图标等辅助图片
    auxiliary_max_width: int = Field(default=800, description="辅助图片最大宽度（高度按比例）")
    auxiliary_quality: int = Field(default=90, description="辅助图片压缩质量")

    output_format: str = Field(default="webp", description="输出格式")
    max_size: int = Field(default=20 * 1024 * 1024, description="最大下载大小（字节）")

    # 图片失败时 image_url 的取值: source=回退到原始URL, null=置空
    fallback: str = Field(default="source", description="图片失败回退策略: source / null")


class StorageConfig(BaseModel):
    """存储配置"""
    sqlite_path: Path = Field(default=DATA_DIR / "catalog.db", description="目录数据库 SQLite 文件")
    asset_dir: Path = Field(default=DATA_DIR / "assets", description="图片资源根目录")
    asset_base_url: str = Field(default="", description="图片公开访问前缀（为空时返回相对路径）")
    state_dir: Path = Field(default=DATA_DIR / "state", description="检查点 / 失败日志目录")
    state_backend: str = Field(default="json", description="检查点与失败日志存储: json / sqlite")
    reports_dir: Path = Field(default=DATA_DIR / "reports", description="对账报告输出目录")


class LogConfig(BaseModel):
    """日志配置"""
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=BASE_DIR / "logs", description="日志目录")
    log_file: str = Field(default="ingest.log", description="日志文件名")
    rotation: str = Field(default="100 MB", description="日志轮转大小")
    retention: str = Field(default="30 days", description="日志保留时间")


class Config(BaseModel):
    """全局配置"""
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    def ensure_directories(self):
        """创建必要的目录"""
        self.storage.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage.asset_dir.mkdir(parents=True, exist_ok=True)
        self.storage.state_dir.mkdir(parents=True, exist_ok=True)
        self.storage.reports_dir.mkdir(parents=True, exist_ok=True)
        self.log.log_dir.mkdir(parents=True, exist_ok=True)


# ============================================================================
# 数据源配置 - 从 configs/ 目录加载
# ============================================================================

class CollectionTarget(BaseModel):
    """单个待采集系列（不可变，每次运行加载一次）"""
    model_config = ConfigDict(frozen=True)

    code: str = Field(description="系列代码，如 SOR")
    locator: str = Field(description="数据源定位符（URL slug 或 API id）")
    languages: List[str] = Field(default_factory=list, description="该系列提供的语言（有序）")
    expected_count: Optional[int] = Field(default=None, description="预计卡牌数量（仅用于进度提示）")
    name: str = Field(default="", description="系列名称")
    type: str = Field(default="booster", description="系列类型: booster/starter/promo/...")
    release_date: Optional[str] = Field(default=None, description="发售日期 YYYY-MM-DD")
    image_url: Optional[str] = Field(default=None, description="系列图片源地址")
    skip: bool = Field(default=False, description="批量处理时跳过")

    def offers(self, language: str) -> bool:
        """该系列是否提供某语言（未配置语言时视为全部提供）"""
        if not self.languages:
            return True
        return language.lower() in [lang.lower() for lang in self.languages]


class SourceConfig(BaseModel):
    """数据源配置"""
    name: str = Field(description="数据源名称")
    extractor: str = Field(default="html", description="提取器类型: html / browser / json")
    base_url: str = Field(default="", description="数据源基础URL")
    languages: List[str] = Field(default_factory=lambda: ["fr"], description="默认语言列表（有序）")
    default_language: str = Field(default="fr", description="URL 中不带语言参数的语言")
    selectors: Dict[str, Any] = Field(default_factory=dict, description="HTML 选择器")
    api: Dict[str, Any] = Field(default_factory=dict, description="JSON API 字段映射")
    collections: List[CollectionTarget] = Field(default_factory=list, description="系列列表")

    @property
    def targets(self) -> List[CollectionTarget]:
        """未标记 skip 的系列"""
        return [target for target in self.collections if not target.skip]

    def find_target(self, code: str) -> Optional[CollectionTarget]:
        """按代码查找系列（不区分大小写）"""
        for target in self.collections:
            if target.code.upper() == code.upper():
                return target
        return None


def load_source_config_file(config_file: Path) -> Dict[str, Any]:
    """
    加载数据源配置文件

    Args:
        config_file: 配置文件路径

    Returns:
        配置字典

    Raises:
        FileNotFoundError: 配置文件不存在
        json.JSONDecodeError: JSON格式错误
    """
    with open(config_file, 'r', encoding='utf-8') as f:
        return json.load(f)


def list_sources() -> List[str]:
    """列出 configs/ 下可用的数据源（跳过模板文件）"""
    if not CONFIG_DIR.exists():
        logger.warning(f"配置目录不存在: {CONFIG_DIR}")
        return []
    return sorted(
        path.stem for path in CONFIG_DIR.glob("*.json")
        if path.name not in ["example.json", "template.json"]
    )


def get_source_config(name: str, config_dir: Optional[Path] = None) -> SourceConfig:
    """
    获取数据源配置

    Args:
        name: 数据源名称（configs/ 下的文件名，不含 .json 后缀）
        config_dir: 配置目录，默认 configs/

    Returns:
        SourceConfig 实例

    Raises:
        SetupError: 配置不存在或格式错误

    Examples:
        >>> source = get_source_config("starwars")
        >>> print(source.targets[0].code)
    """
    from core.errors import SetupError

    config_file = (config_dir or CONFIG_DIR) / f"{name}.json"
    if not config_file.exists():
        available = ", ".join(list_sources())
        raise SetupError(f"未知的数据源: {name}，可用: {available}")

    try:
        data = load_source_config_file(config_file)
        source = SourceConfig.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise SetupError(f"数据源配置无效: {config_file} - {e}") from e

    logger.info(f"✅ 加载数据源: {name} ({source.name}, {len(source.collections)} 个系列)")
    return source


# 从环境变量加载配置
def load_config_from_env() -> Config:
    """从环境变量加载配置"""
    config_data = {
        "crawler": {
            "request_interval": float(os.getenv("REQUEST_INTERVAL", "0.5")),
            "request_timeout": int(os.getenv("REQUEST_TIMEOUT", "30")),
            "headless": os.getenv("HEADLESS", "true").lower() == "true",
        },
        "image": {
            "fallback": os.getenv("IMAGE_FALLBACK", "source"),
        },
        "storage": {
            "sqlite_path": Path(os.getenv("CATALOG_DB_PATH", str(DATA_DIR / "catalog.db"))),
            "asset_dir": Path(os.getenv("ASSET_DIR", str(DATA_DIR / "assets"))),
            "asset_base_url": os.getenv("ASSET_BASE_URL", ""),
            "state_dir": Path(os.getenv("STATE_DIR", str(DATA_DIR / "state"))),
            "state_backend": os.getenv("STATE_BACKEND", "json"),
        },
        "log": {
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
        }
    }
    return Config(**config_data)


# 全局配置实例（默认从环境变量加载）
config = load_config_from_env()
