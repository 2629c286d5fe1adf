#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
KVストア (kv_store) のテスト
"""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# プロジェクトルートをパスに追加
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import kv_store
from kv_store import (
    KVStore,
    normalize_place_id,
    description_key,
    place_key,
    search_key,
    slug_key,
    prefix_key,
    get_kv_store,
    reset_kv_store,
)


# ====================================
# キー
# ====================================
class TestKeys:
    """キーの組み立て"""

    def test_place_id_normalized(self):
        """"places/" 接頭辞は除去"""
        assert normalize_place_id("places/ChIJabc") == "ChIJabc"
        assert normalize_place_id("ChIJabc") == "ChIJabc"

    def test_key_schema(self):
        assert description_key("places/ChIJabc") == "description:ChIJabc"
        assert place_key("ChIJabc") == "place:ChIJabc"
        assert search_key("練馬区 葬儀") == "search:練馬区 葬儀"
        assert slug_key("nerima-saijo") == "slug:nerima-saijo"

    def test_prefix_key_lowercase(self):
        assert prefix_key("ChIJAbCd") == "prefix:chijabcd"


# ====================================
# KVStore
# ====================================
class TestKVStore:
    """文字列・JSON・削除"""

    def test_get_set(self, kv_store, fake_redis):
        assert kv_store.get("missing") is None
        assert kv_store.set("key", "値", ttl=60) is True
        assert kv_store.get("key") == "値"
        assert fake_redis.ttls["key"] == 60

    def test_set_without_ttl(self, kv_store, fake_redis):
        """TTLなしは期限なし"""
        kv_store.set("description:abc", "紹介文")
        assert "description:abc" not in fake_redis.ttls

    def test_json_round_trip_keeps_japanese(self, kv_store, fake_redis):
        """日本語はエスケープせずに保存"""
        kv_store.set_json("place:abc", {"name": "練馬斎場", "rating": 4.2})
        assert "練馬斎場" in fake_redis.data["place:abc"]
        assert kv_store.get_json("place:abc") == {"name": "練馬斎場", "rating": 4.2}

    def test_get_json_invalid(self, kv_store, fake_redis):
        """壊れたJSONは None"""
        fake_redis.data["search:broken"] = "{not json"
        assert kv_store.get_json("search:broken") is None

    def test_delete_and_exists(self, kv_store, fake_redis):
        fake_redis.data.update({"a": "1", "b": "2"})
        assert kv_store.exists("a") is True
        assert kv_store.delete("a", "b", "c") == 2
        assert kv_store.exists("a") is False
        assert kv_store.delete() == 0

    def test_delete_pattern(self, kv_store, fake_redis):
        """パターン一致のキーのみ削除"""
        for i in range(250):
            fake_redis.data[f"search:q{i}"] = "[]"
        fake_redis.data["description:keep"] = "紹介文"

        assert kv_store.delete_pattern("search:*") == 250
        assert list(fake_redis.data) == ["description:keep"]


class TestKVStoreErrors:
    """Redisエラーはキャッシュなしとして継続"""

    def test_get_error_returns_none(self, kv_store, fake_redis):
        fake_redis.fail_on.add("get")
        assert kv_store.get("key") is None
        assert kv_store.get_json("key") is None

    def test_set_error_returns_false(self, kv_store, fake_redis):
        fake_redis.fail_on.add("set")
        assert kv_store.set("key", "value") is False

    def test_delete_error_returns_zero(self, kv_store, fake_redis):
        fake_redis.data["a"] = "1"
        fake_redis.fail_on.add("delete")
        assert kv_store.delete("a") == 0

    def test_delete_pattern_error(self, kv_store, fake_redis):
        fake_redis.data["search:a"] = "[]"
        fake_redis.fail_on.add("delete")
        assert kv_store.delete_pattern("search:*") == 0


class TestDisabledStore:
    """接続情報なし"""

    def test_disabled_operations(self):
        store = KVStore(None)
        assert store.enabled is False
        assert store.get("key") is None
        assert store.set("key", "value") is False
        assert store.delete("key") == 0
        assert store.exists("key") is False
        assert list(store.scan_iter("*")) == []
        assert store.delete_pattern("*") == 0


class TestGetKVStore:
    """シングルトン"""

    @pytest.fixture(autouse=True)
    def _reset(self):
        reset_kv_store()
        yield
        reset_kv_store()

    def test_without_url(self, monkeypatch):
        """KV_URL / REDIS_URL がなければ無効なストア"""
        monkeypatch.delenv("KV_URL", raising=False)
        monkeypatch.delenv("REDIS_URL", raising=False)

        store = get_kv_store()
        assert store.enabled is False
        assert get_kv_store() is store

    def test_with_url(self, monkeypatch, fake_redis):
        """REDIS_URL から接続"""
        monkeypatch.delenv("KV_URL", raising=False)
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")

        with patch.object(kv_store.redis.Redis, "from_url", return_value=fake_redis) as from_url:
            store = get_kv_store()

        assert store.enabled is True
        assert store.client is fake_redis
        from_url.assert_called_once()
        assert from_url.call_args[0][0] == "redis://localhost:6379/0"
        assert from_url.call_args[1]["decode_responses"] is True

    def test_kv_url_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("KV_URL", "redis://kv:6379")
        monkeypatch.setenv("REDIS_URL", "redis://other:6379")
        assert kv_store.get_kv_url() == "redis://kv:6379"


class TestTTLFromEnv:
    """TTLの環境変数"""

    def test_default(self, monkeypatch):
        monkeypatch.delenv("SEARCH_CACHE_TTL", raising=False)
        assert kv_store.ttl_from_env("SEARCH_CACHE_TTL") == kv_store.DEFAULT_CACHE_TTL

    def test_valid_value(self, monkeypatch):
        monkeypatch.setenv("SEARCH_CACHE_TTL", "3600")
        assert kv_store.ttl_from_env("SEARCH_CACHE_TTL") == 3600

    @pytest.mark.parametrize("raw", ["abc", "7d", "0", "-5"])
    def test_invalid_value_falls_back(self, monkeypatch, raw):
        """不正な値でも例外にせず既定値"""
        monkeypatch.setenv("PLACE_CACHE_TTL", raw)
        assert kv_store.ttl_from_env("PLACE_CACHE_TTL") == kv_store.DEFAULT_CACHE_TTL
