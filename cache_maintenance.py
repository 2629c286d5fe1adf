# -*- coding: utf-8 -*-
"""
キャッシュメンテナンスモジュール
scripts/ 以下の管理用スクリプトから使う共通処理

- SCAN によるキーの列挙
- バッチ削除(UNLINK)+ リトライ
- 1件ずつの削除+存在確認(検証モード)
- 進捗ファイルへの保存
"""
import json
import time
import logging
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Tuple, Callable, Iterable

import redis

from kv_store import description_key

logger = logging.getLogger(__name__)

# ========================================
# 定数
# ========================================

PROGRESS_FILE = '/tmp/cache-clear-progress.json'
DEFAULT_PATTERN = 'description:*'
BATCH_SIZE = 1000
VERIFY_BATCH_SIZE = 10
MAX_RETRIES = 3
BATCH_RETRY_DELAY = 1.0   # 秒 × (試行回数)
KEY_RETRY_DELAY = 0.5     # 秒 × (試行回数)
BATCH_PAUSE = 0.1
SCAN_NAMES_LIMIT = 500


@dataclass
class DeletionStats:
    totalScanned: int = 0
    totalDeleted: int = 0
    verifiedDeleted: int = 0
    failedKeys: List[str] = field(default_factory=list)
    startTime: float = field(default_factory=time.time)
    endTime: Optional[float] = None

    @property
    def elapsed(self) -> float:
        return (self.endTime or time.time()) - self.startTime

    @property
    def rate(self) -> float:
        elapsed = self.elapsed
        return self.totalDeleted / elapsed if elapsed > 0 else 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def save_progress(stats: DeletionStats, path: str = PROGRESS_FILE) -> bool:
    """進捗をJSONで保存。失敗してもログのみ"""
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(stats.to_dict(), f, ensure_ascii=False, indent=2)
        return True
    except OSError as e:
        logger.warning(f"[Cache Clear] 進捗保存失敗: {path} - {e}")
        return False


# ========================================
# スキャン
# ========================================

def scan_keys(client: redis.Redis, pattern: str, count: int = BATCH_SIZE, limit: Optional[int] = None) -> List[str]:
    """SCAN でパターンに一致するキーを列挙(limit 指定時はその件数まで)"""
    keys: List[str] = []
    cursor = 0

    while True:
        cursor, batch = client.scan(cursor=cursor, match=pattern, count=count)
        keys.extend(batch)

        if limit is not None and len(keys) >= limit:
            return keys[:limit]
        if int(cursor) == 0:
            return keys


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


# ========================================
# 削除
# ========================================

def delete_with_retry(client: redis.Redis, keys: List[str], max_retries: int = MAX_RETRIES,
                      base_delay: float = BATCH_RETRY_DELAY) -> Optional[int]:
    """
    UNLINK でまとめて削除。エラー時は線形バックオフでリトライ
    全リトライ失敗時は None を返す
    """
    if not keys:
        return 0

    for attempt in range(max_retries + 1):
        try:
            return client.unlink(*keys)
        except redis.RedisError as e:
            if attempt < max_retries:
                logger.warning(f"[Cache Clear] 削除失敗、リトライ中... ({attempt + 1}/{max_retries}): {e}")
                time.sleep(base_delay * (attempt + 1))
            else:
                logger.error(f"[Cache Clear] 削除失敗(最大リトライ超過): {len(keys)}件 - {e}")
    return None


def delete_key_with_verify(client: redis.Redis, key: str, max_retries: int = MAX_RETRIES,
                           base_delay: float = KEY_RETRY_DELAY) -> bool:
    """1件削除して存在確認。残っていればリトライ"""
    for attempt in range(max_retries + 1):
        try:
            client.delete(key)
            if not client.exists(key):
                return True
            logger.warning(f"[Cache Clear] 削除後もキーが残存: {key} ({attempt + 1}/{max_retries + 1})")
        except redis.RedisError as e:
            logger.warning(f"[Cache Clear] 削除エラー: {key} ({attempt + 1}/{max_retries + 1}) - {e}")

        if attempt < max_retries:
            time.sleep(base_delay * (attempt + 1))

    return False


def verify_deleted(client: redis.Redis, keys: List[str]) -> Tuple[List[str], List[str]]:
    """キーの存在確認。戻り値: (削除済み, 残存)"""
    deleted, remaining = [], []
    for key in keys:
        if client.exists(key):
            remaining.append(key)
        else:
            deleted.append(key)
    return deleted, remaining


def clear_by_pattern(client: redis.Redis, pattern: str = DEFAULT_PATTERN, batch_size: Optional[int] = None,
                     limit: Optional[int] = None, verify: bool = False, progress_file: Optional[str] = PROGRESS_FILE,
                     pause: float = BATCH_PAUSE,
                     on_progress: Optional[Callable[[DeletionStats], None]] = None) -> Tuple[DeletionStats, List[str]]:
    """
    パターンに一致するキーを削除する

    - 通常モード: batch_size 件ずつ UNLINK(失敗したバッチのキーは failedKeys へ)
    - 検証モード: 1件ずつ削除して存在確認(verifiedDeleted をカウント)
    戻り値: (統計, 削除を試みたキー)
    """
    if batch_size is None:
        batch_size = VERIFY_BATCH_SIZE if verify else BATCH_SIZE

    stats = DeletionStats()
    keys = scan_keys(client, pattern, limit=limit)
    stats.totalScanned = len(keys)
    logger.info(f"[Cache Clear] {pattern}: {len(keys)}件スキャン (モード: {'検証' if verify else 'バッチ'})")

    for batch_index, batch in enumerate(_chunks(keys, batch_size)):
        if verify:
            for key in batch:
                if delete_key_with_verify(client, key):
                    stats.totalDeleted += 1
                    stats.verifiedDeleted += 1
                else:
                    stats.failedKeys.append(key)
        else:
            deleted = delete_with_retry(client, batch)
            if deleted is None:
                stats.failedKeys.extend(batch)
            else:
                stats.totalDeleted += deleted

        if progress_file:
            save_progress(stats, progress_file)
        if on_progress:
            on_progress(stats)

        if pause and batch_index * batch_size + len(batch) < len(keys):
            time.sleep(pause)

    stats.endTime = time.time()
    if progress_file:
        save_progress(stats, progress_file)

    logger.info(f"[Cache Clear] 完了: 削除={stats.totalDeleted}件, 失敗={len(stats.failedKeys)}件")
    return stats, keys


# ========================================
# 個別削除
# ========================================

def read_place_ids(path: str) -> List[str]:
    """1行1件の Place ID ファイルを読む(空行・# コメントは無視)"""
    with open(path, 'r', encoding='utf-8') as f:
        return [
            line.strip()
            for line in f
            if line.strip() and not line.strip().startswith('#')
        ]


def clear_specific_keys(client: redis.Redis, keys: List[str], pause: float = BATCH_PAUSE) -> Dict[str, List[str]]:
    """
    指定キーを1件ずつ削除(存在確認 → 削除 → 再確認)
    戻り値: {'deleted': [...], 'notFound': [...], 'failed': [...]}
    """
    results: Dict[str, List[str]] = {'deleted': [], 'notFound': [], 'failed': []}

    for i, key in enumerate(keys):
        try:
            if not client.exists(key):
                results['notFound'].append(key)
            else:
                client.delete(key)
                if client.exists(key):
                    results['failed'].append(key)
                else:
                    results['deleted'].append(key)
        except redis.RedisError as e:
            logger.error(f"[Cache Clear] 削除エラー: {key} - {e}")
            results['failed'].append(key)

        if pause and i < len(keys) - 1:
            time.sleep(pause)

    return results


def place_ids_to_keys(place_ids: List[str]) -> List[str]:
    return [description_key(place_id) for place_id in place_ids]


# ========================================
# 施設名スキャン
# ========================================

def scan_descriptions_for_names(client: redis.Redis, names: List[str],
                                max_keys: int = SCAN_NAMES_LIMIT) -> Tuple[Dict[str, str], int]:
    """
    description:* の本文に施設名を含むキーを探す
    戻り値: ({キー: 一致した施設名}, スキャン件数)
    """
    found: Dict[str, str] = {}
    keys = scan_keys(client, DEFAULT_PATTERN, count=100, limit=max_keys)

    for key in keys:
        value = client.get(key)
        if not value:
            continue
        for name in names:
            if name in value:
                found[key] = name
                break

    return found, len(keys)
