# -*- coding: utf-8 -*-
"""
キャッシュ(KVストア)管理モジュール
- Vercel KV / Upstash Redis に Redis プロトコルで接続
- JSONの保存・取得、TTL付き保存
- 接続エラー時はキャッシュなしで処理を継続(fail-open)

キー構成:
    description:{placeId}   施設説明文(期限なし)
    place:{placeId}         Place Details(7日)
    search:{query}          検索結果(7日)
    slug:{slug}             スラッグ → Place ID
    prefix:{idPrefix}       Place ID接頭辞 → Place ID
"""
import os
import json
import logging
from typing import Optional, Any, Iterator, List

import redis

logger = logging.getLogger(__name__)

# ========================================
# 定数
# ========================================

DEFAULT_CACHE_TTL = 60 * 60 * 24 * 7  # 7日


def ttl_from_env(name: str, default: int = DEFAULT_CACHE_TTL) -> int:
    """環境変数からTTL(秒)を読む。未設定・不正な値・0以下は既定値"""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        ttl = int(raw)
    except ValueError:
        logger.warning(f"[KV] {name} が不正な値のため既定値を使用: {raw!r} → {default}")
        return default
    if ttl <= 0:
        logger.warning(f"[KV] {name} が0以下のため既定値を使用: {ttl} → {default}")
        return default
    return ttl


SEARCH_CACHE_TTL = ttl_from_env('SEARCH_CACHE_TTL')
PLACE_CACHE_TTL = ttl_from_env('PLACE_CACHE_TTL')


def normalize_place_id(place_id: str) -> str:
    """"places/" 接頭辞を除去"""
    if place_id and place_id.startswith('places/'):
        return place_id[len('places/'):]
    return place_id or ''


def description_key(place_id: str) -> str:
    return f"description:{normalize_place_id(place_id)}"


def place_key(place_id: str) -> str:
    return f"place:{normalize_place_id(place_id)}"


def search_key(normalized_query: str) -> str:
    return f"search:{normalized_query}"


def slug_key(slug: str) -> str:
    return f"slug:{slug}"


def prefix_key(id_prefix: str) -> str:
    return f"prefix:{id_prefix.lower()}"


# ========================================
# Redisクライアント初期化
# ========================================

_redis_client: Optional[redis.Redis] = None


def get_kv_url() -> str:
    return os.getenv('KV_URL') or os.getenv('REDIS_URL') or ''


def get_redis_client() -> redis.Redis:
    """Redisクライアントを取得(シングルトン)"""
    global _redis_client

    if _redis_client is None:
        kv_url = get_kv_url()

        if not kv_url:
            logger.error("[KV] KV_URL または REDIS_URL が設定されていません")
            raise ValueError("KV store not configured")

        _redis_client = redis.Redis.from_url(
            kv_url,
            decode_responses=True,
            socket_timeout=10,
            socket_connect_timeout=10,
        )
        logger.info("[KV] Redisクライアント初期化完了")

    return _redis_client


# ========================================
# KVストア
# ========================================

class KVStore:
    """
    KVストア操作クラス
    - client が None の場合は全操作が「キャッシュなし」として振る舞う
    - Redisのエラーはログに記録して握りつぶす(リクエストは継続)
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    # ----------------------------------------
    # 文字列
    # ----------------------------------------

    def get(self, key: str) -> Optional[str]:
        if not self.client:
            return None
        try:
            value = self.client.get(key)
            logger.info(f"[KV GET] {key}: {'HIT' if value is not None else 'MISS'}")
            return value
        except redis.RedisError as e:
            logger.warning(f"[KV GET] エラー(キャッシュなしで継続): {key} - {e}")
            return None

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        if not self.client:
            return False
        try:
            self.client.set(key, value, ex=ttl)
            logger.info(f"[KV SET] {key} (TTL: {ttl if ttl else 'なし'})")
            return True
        except redis.RedisError as e:
            logger.warning(f"[KV SET] エラー(保存をスキップ): {key} - {e}")
            return False

    # ----------------------------------------
    # JSON
    # ----------------------------------------

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"[KV GET] JSONパースエラー: {key} - {e}")
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return self.set(key, json.dumps(value, ensure_ascii=False), ttl=ttl)

    # ----------------------------------------
    # 削除・存在確認・走査
    # ----------------------------------------

    def delete(self, *keys: str) -> int:
        if not self.client or not keys:
            return 0
        try:
            return self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"[KV DEL] エラー: {len(keys)}件 - {e}")
            return 0

    def exists(self, key: str) -> bool:
        if not self.client:
            return False
        try:
            return bool(self.client.exists(key))
        except redis.RedisError as e:
            logger.warning(f"[KV EXISTS] エラー: {key} - {e}")
            return False

    def scan_iter(self, pattern: str, count: int = 1000) -> Iterator[str]:
        if not self.client:
            return iter(())
        return self.client.scan_iter(match=pattern, count=count)

    def delete_pattern(self, pattern: str) -> int:
        """パターンに一致するキーを全て削除し、削除件数を返す"""
        if not self.client:
            return 0

        deleted = 0
        batch: List[str] = []
        try:
            for key in self.scan_iter(pattern):
                batch.append(key)
                if len(batch) >= 100:
                    deleted += self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += self.client.delete(*batch)
        except redis.RedisError as e:
            logger.error(f"[KV DEL] パターン削除エラー: {pattern} - {e}")

        logger.info(f"[KV DEL] {pattern}: {deleted}件削除")
        return deleted


_kv_store: Optional[KVStore] = None


def get_kv_store() -> KVStore:
    """
    アプリ全体で共有するKVストアを取得
    接続情報が無い場合はキャッシュ無効のストアを返す
    """
    global _kv_store

    if _kv_store is None:
        try:
            _kv_store = KVStore(get_redis_client())
        except ValueError:
            logger.warning("[KV] KVストア未設定のためキャッシュ無効で動作します")
            _kv_store = KVStore(None)

    return _kv_store


def reset_kv_store():
    """シングルトンを破棄(テスト・設定変更用)"""
    global _kv_store, _redis_client
    _kv_store = None
    _redis_client = None
