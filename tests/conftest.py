#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
pytest共通フィクスチャ
"""

import sys
import fnmatch
from pathlib import Path

import pytest
import redis

# プロジェクトルートと scripts/ をパスに追加
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "scripts"))


class FakeRedis:
    """
    テスト用のインメモリRedis
    fail_on に操作名を入れるとその操作で RedisError を送出する
    """

    def __init__(self, data=None):
        self.data = dict(data or {})
        self.ttls = {}
        self.fail_on = set()
        self.calls = []

    def _check(self, op):
        self.calls.append(op)
        if op in self.fail_on:
            raise redis.ConnectionError(f"{op} failed")

    def ping(self):
        self._check("ping")
        return True

    def get(self, key):
        self._check("get")
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self._check("set")
        self.data[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    def delete(self, *keys):
        self._check("delete")
        count = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                count += 1
        return count

    def unlink(self, *keys):
        self._check("unlink")
        count = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                count += 1
        return count

    def exists(self, *keys):
        self._check("exists")
        return sum(1 for key in keys if key in self.data)

    def _matching(self, match):
        keys = sorted(self.data)
        if match:
            keys = [key for key in keys if fnmatch.fnmatchcase(key, match)]
        return keys

    def scan(self, cursor=0, match=None, count=None):
        self._check("scan")
        keys = self._matching(match)
        step = count or 10
        start = int(cursor)
        end = start + step
        next_cursor = end if end < len(keys) else 0
        return next_cursor, keys[start:end]

    def scan_iter(self, match=None, count=None):
        self._check("scan_iter")
        for key in self._matching(match):
            yield key


@pytest.fixture
def fake_redis():
    """空のインメモリRedis"""
    return FakeRedis()


@pytest.fixture
def kv_store(fake_redis):
    """FakeRedis を使う KVStore"""
    from kv_store import KVStore

    return KVStore(fake_redis)


@pytest.fixture
def api_keys(monkeypatch):
    """Maps / Gemini のAPIキーを設定"""
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "test-maps-key")
    monkeypatch.setenv("GEMINI_API_KEY", "test-gemini-key")


@pytest.fixture
def no_api_keys(monkeypatch):
    """APIキーを全て未設定にする"""
    for name in ("GOOGLE_MAPS_API_KEY", "GOOGLE_PLACES_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def client(monkeypatch, kv_store):
    """Flaskテストクライアント(KVストアは FakeRedis)"""
    import app_sougi_finder

    monkeypatch.setattr(app_sougi_finder, "get_kv_store", lambda: kv_store)
    app_sougi_finder.app.config["TESTING"] = True

    with app_sougi_finder.app.test_client() as test_client:
        yield test_client
