"""
目录存储模块（SQLite）

- 卡牌记录持久化（cards 表），以 (collection_code, number, language) 唯一标识，写入一律为 upsert。
- 系列信息（collections 表）。
- 运行状态文档（documents 表），供检查点 / 失败日志在 sqlite 后端下使用。
"""
from typing import Dict, Any, List, Optional, Tuple
import sqlite3
import json
from pathlib import Path
from datetime import datetime
from loguru import logger

from config import config
from core.errors import PersistenceFailure, SetupError


def _serialize(obj: Any) -> str:
    """序列化为 JSON 字符串（键排序，保证相同内容得到相同文本）"""
    if obj is None:
        return "null"
    if isinstance(obj, (dict, list)):
        return json.dumps(obj, ensure_ascii=False, sort_keys=True)
    return str(obj)


def _deserialize_json(s: Optional[str]) -> Any:
    """从 JSON 字符串反序列化"""
    if s is None or s == "null":
        return None
    try:
        return json.loads(s)
    except (TypeError, json.JSONDecodeError):
        return None


CARD_FIELDS = ("name", "rarity", "image_url", "attributes")


class CatalogStore:
    """目录存储（SQLite 持久化）"""

    def __init__(self, sqlite_path: Optional[Path] = None):
        self._sqlite_path = sqlite_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def sqlite_path(self) -> Path:
        return Path(self._sqlite_path or config.storage.sqlite_path)

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self):
        """连接数据库（创建 SQLite 文件及表结构）"""
        if self._conn is not None:
            return
        path = self.sqlite_path
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_schema()
            logger.success("Connected to SQLite: {}", path)
        except sqlite3.Error as e:
            self._conn = None
            raise SetupError(f"Failed to connect to SQLite {path}: {e}") from e

    def _init_schema(self):
        """初始化表结构"""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS collections (
                code TEXT PRIMARY KEY,
                name TEXT,
                type TEXT,
                release_date TEXT,
                expected_count INTEGER,
                image_url TEXT,
                created_at TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS cards (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                collection_code TEXT NOT NULL,
                number TEXT NOT NULL,
                language TEXT NOT NULL,
                name TEXT,
                rarity TEXT,
                image_url TEXT,
                attributes TEXT,
                created_at TEXT,
                updated_at TEXT,
                UNIQUE (collection_code, number, language)
            );
            CREATE INDEX IF NOT EXISTS idx_cards_pair ON cards(collection_code, language);

            CREATE TABLE IF NOT EXISTS documents (
                key TEXT PRIMARY KEY,
                body TEXT,
                updated_at TEXT
            );
        """)
        self._conn.commit()

    def close(self):
        """关闭数据库连接"""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("SQLite connection closed")

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceFailure("SQLite not connected")
        return self._conn

    # ==================== 卡牌 ====================

    def upsert_card(self, key: Tuple[str, str, str], fields: Dict[str, Any]) -> str:
        """
        写入卡牌（键存在则替换全部非键字段）

        Args:
            key: (collection_code, number, language)
            fields: name / rarity / image_url / attributes

        Returns:
            "inserted" / "updated" / "unchanged"

        Raises:
            PersistenceFailure: 写入失败
        """
        conn = self._require()
        collection_code, number, language = key
        now = datetime.now().isoformat()
        try:
            existed = conn.execute(
                "SELECT 1 FROM cards WHERE collection_code = ? AND number = ? AND language = ? LIMIT 1",
                key,
            ).fetchone() is not None
            cur = conn.execute(
                """
                INSERT INTO cards (collection_code, number, language, name, rarity, image_url, attributes, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(collection_code, number, language) DO UPDATE SET
                    name=excluded.name, rarity=excluded.rarity,
                    image_url=excluded.image_url, attributes=excluded.attributes,
                    updated_at=excluded.updated_at
                WHERE cards.name IS NOT excluded.name
                    OR cards.rarity IS NOT excluded.rarity
                    OR cards.image_url IS NOT excluded.image_url
                    OR cards.attributes IS NOT excluded.attributes
                """,
                (
                    collection_code,
                    number,
                    language,
                    fields.get("name"),
                    fields.get("rarity"),
                    fields.get("image_url"),
                    _serialize(fields.get("attributes") or {}),
                    now,
                    now,
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to upsert card {key}: {e}") from e

        if cur.rowcount == 0:
            return "unchanged"
        return "updated" if existed else "inserted"

    def get_card(self, key: Tuple[str, str, str]) -> Optional[Dict[str, Any]]:
        """按键获取卡牌"""
        rows = self.select_cards(collection_code=key[0], language=key[2], number=key[1])
        return rows[0] if rows else None

    def select_cards(
        self,
        collection_code: Optional[str] = None,
        language: Optional[str] = None,
        number: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """按条件查询卡牌（按 number 排序）"""
        conn = self._require()
        clauses, params = [], []
        for column, value in (("collection_code", collection_code), ("language", language), ("number", number)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            rows = conn.execute(f"SELECT * FROM cards {where} ORDER BY number", params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to select cards: {e}") from e
        return [self._row_to_card(row) for row in rows]

    def card_pairs(self) -> List[Tuple[str, str]]:
        """目录中出现过的全部 (collection_code, language)"""
        conn = self._require()
        rows = conn.execute(
            "SELECT DISTINCT collection_code, language FROM cards ORDER BY collection_code, language"
        ).fetchall()
        return [(row[0], row[1]) for row in rows]

    def collection_codes(self) -> List[str]:
        """系列表与卡牌表中出现过的全部系列代码"""
        conn = self._require()
        rows = conn.execute(
            "SELECT code FROM collections UNION SELECT collection_code FROM cards ORDER BY 1"
        ).fetchall()
        return [row[0] for row in rows]

    def _row_to_card(self, row: sqlite3.Row) -> Dict[str, Any]:
        """将 SQLite Row 转为卡牌字典"""
        return {
            "collection_code": row["collection_code"],
            "number": row["number"],
            "language": row["language"],
            "name": row["name"],
            "rarity": row["rarity"],
            "image_url": row["image_url"],
            "attributes": _deserialize_json(row["attributes"]) or {},
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    # ==================== 系列 ====================

    def upsert_collection(self, fields: Dict[str, Any]) -> None:
        """写入系列信息（code 唯一）"""
        conn = self._require()
        now = datetime.now().isoformat()
        try:
            conn.execute(
                """
                INSERT INTO collections (code, name, type, release_date, expected_count, image_url, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(code) DO UPDATE SET
                    name=excluded.name, type=excluded.type, release_date=excluded.release_date,
                    expected_count=excluded.expected_count,
                    image_url=COALESCE(excluded.image_url, collections.image_url),
                    updated_at=excluded.updated_at
                """,
                (
                    fields["code"],
                    fields.get("name"),
                    fields.get("type"),
                    fields.get("release_date"),
                    fields.get("expected_count"),
                    fields.get("image_url"),
                    now,
                    now,
                ),
            )
            conn.commit()
            logger.debug("Saved collection: {}", fields["code"])
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to upsert collection {fields.get('code')}: {e}") from e

    def get_collection(self, code: str) -> Optional[Dict[str, Any]]:
        conn = self._require()
        row = conn.execute("SELECT * FROM collections WHERE code = ?", (code,)).fetchone()
        return dict(row) if row else None

    def get_statistics(self) -> Dict[str, Any]:
        """获取统计信息"""
        if self._conn is None:
            return {}
        try:
            stats = {
                "total_cards": self._conn.execute("SELECT COUNT(*) FROM cards").fetchone()[0],
                "cards_with_image": self._conn.execute(
                    "SELECT COUNT(*) FROM cards WHERE image_url IS NOT NULL"
                ).fetchone()[0],
                "collections": self._conn.execute("SELECT COUNT(*) FROM collections").fetchone()[0],
            }
            rows = self._conn.execute(
                "SELECT collection_code, language, COUNT(*) FROM cards GROUP BY collection_code, language"
            ).fetchall()
            stats["pairs"] = {f"{row[0]}/{row[1]}": row[2] for row in rows}
            return stats
        except sqlite3.Error as e:
            logger.error("Failed to get statistics: {}", e)
            return {}

    # ==================== 状态文档（检查点 / 失败日志） ====================

    def save_document(self, key: str, data: Dict[str, Any]) -> bool:
        """保存文档（整体覆盖）"""
        if self._conn is None:
            logger.warning("SQLite not connected")
            return False
        try:
            self._conn.execute(
                """
                INSERT INTO documents (key, body, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET body=excluded.body, updated_at=excluded.updated_at
                """,
                (key, json.dumps(data, ensure_ascii=False), datetime.now().isoformat()),
            )
            self._conn.commit()
            logger.debug("Document saved: {}", key)
            return True
        except sqlite3.Error as e:
            logger.error("Failed to save document {}: {}", key, e)
            return False

    def load_document(self, key: str) -> Optional[Dict[str, Any]]:
        """加载文档，不存在或内容损坏返回 None"""
        if self._conn is None:
            return None
        try:
            row = self._conn.execute("SELECT body FROM documents WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error("Failed to load document {}: {}", key, e)
            return None
        if not row:
            return None
        data = _deserialize_json(row["body"])
        return data if isinstance(data, dict) else None

    def delete_document(self, key: str) -> bool:
        """删除文档"""
        if self._conn is None:
            return False
        try:
            self._conn.execute("DELETE FROM documents WHERE key = ?", (key,))
            self._conn.commit()
            logger.info("Document deleted: {}", key)
            return True
        except sqlite3.Error as e:
            logger.error("Failed to delete document {}: {}", key, e)
            return False


