#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
URLスラッグ生成 (slug_resolver) のテスト
"""

import re
import sys
from pathlib import Path

import pytest

# プロジェクトルートをパスに追加
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import slug_resolver
from slug_resolver import (
    clean_slug,
    get_place_id_suffix,
    kana_to_romaji,
    to_romaji,
    generate_facility_slug,
    extract_region_name,
    generate_region_slug,
    extract_place_id_suffix,
    get_photo_proxy_url,
    generate_facility_urls,
    romanize_with_analyzer,
)


@pytest.fixture
def fixed_analyzer(monkeypatch):
    """pykakasi の結果を固定する"""
    results = {}

    def fake(text):
        return results.get(text, "")

    monkeypatch.setattr(slug_resolver, "romanize_with_analyzer", fake)
    return results


# ====================================
# 共通ユーティリティ
# ====================================
class TestUtilities:
    """clean_slug / get_place_id_suffix"""

    def test_clean_slug(self):
        """小文字化・記号除去・ハイフン整理"""
        assert clean_slug("  Nerima  Saijo!! ") == "nerima-saijo"
        assert clean_slug("--a---b--") == "a-b"
        assert clean_slug("") == ""

    def test_place_id_suffix(self):
        """先頭8文字を小文字で返す"""
        assert get_place_id_suffix("ChIJAbCdEfGhIjKl") == "chijabcd"
        assert get_place_id_suffix("places/ChIJAbCdEfGhIjKl") == "chijabcd"
        assert get_place_id_suffix("") == ""

    def test_extract_place_id_suffix(self):
        """スラッグ末尾の8文字を取り出す"""
        assert extract_place_id_suffix("nerima-saijo-chijabcd") == "chijabcd"
        assert extract_place_id_suffix("nerima") is None
        assert extract_place_id_suffix("") is None


# ====================================
# かな変換
# ====================================
class TestKanaToRomaji:
    """1文字ずつのかな変換"""

    def test_hiragana(self):
        assert kana_to_romaji("さくら") == "sakura"

    def test_katakana_long_vowel(self):
        """長音は無視"""
        assert kana_to_romaji("ホール") == "horu"

    def test_compound_words(self):
        """熟語は読みに置換される"""
        assert kana_to_romaji("さくら葬儀") == "sakurasogi"
        assert kana_to_romaji("ひまわり会館") == "himawarikaikan"

    def test_removable_words(self):
        """会社形態は除去"""
        assert kana_to_romaji("株式会社ひまわり") == "himawari"

    def test_unconvertible(self):
        """変換できない文字のみなら空"""
        assert kana_to_romaji("漢") == ""


# ====================================
# to_romaji 変換チェーン
# ====================================
class TestToRomaji:
    """テーブル → pykakasi → かな表"""

    def test_table_hit(self):
        """regions.json の値を使う"""
        assert to_romaji("練馬区") == "nerima"
        assert to_romaji("練馬") == "nerima"
        assert to_romaji("横浜市") == "yokohama"

    def test_table_hit_after_suffix_removal(self, monkeypatch):
        """末尾の「駅」を除いた名前でも引ける"""
        assert to_romaji("北長岡駅") == "kitanagaoka"

    def test_empty_table_value_falls_back_to_kana(self, monkeypatch):
        """テーブルのローマ字が空ならかな表で変換"""
        monkeypatch.setattr(slug_resolver, "load_regions", lambda: {"さくら町": {"romaji": ""}})
        monkeypatch.setattr(slug_resolver, "load_municipalities", lambda: {})
        assert to_romaji("さくら町") == "sakura"

    def test_analyzer_used_on_table_miss(self, fixed_analyzer):
        """テーブルにない場合は pykakasi"""
        fixed_analyzer["谷原会館"] = "yaharakaikan"
        assert to_romaji("谷原会館") == "yaharakaikan"

    def test_kana_fallback_when_analyzer_fails(self, fixed_analyzer):
        """pykakasi が空ならかな表"""
        assert to_romaji("ひまわり葬儀") == "himawarisogi"

    def test_empty(self):
        assert to_romaji("") == ""
        assert to_romaji("   ") == ""

    def test_deterministic(self):
        """同じ入力なら同じ結果"""
        assert to_romaji("練馬区") == to_romaji("練馬区")


class TestRomanizeWithAnalyzer:
    """pykakasi による変換"""

    def test_converts_and_cleans(self, monkeypatch):
        """hepburn を連結して英数字のみにする"""

        class FakeKakasi:
            def convert(self, text):
                return [{"hepburn": "Nerima"}, {"hepburn": " saijou!"}]

        monkeypatch.setattr(slug_resolver, "_get_kakasi", lambda: FakeKakasi())
        assert romanize_with_analyzer("練馬斎場") == "nerimasaijou"

    def test_error_returns_empty(self, monkeypatch):
        """変換エラー時は空文字"""

        class BrokenKakasi:
            def convert(self, text):
                raise RuntimeError("broken")

        monkeypatch.setattr(slug_resolver, "_get_kakasi", lambda: BrokenKakasi())
        assert romanize_with_analyzer("練馬斎場") == ""

    def test_real_hiragana(self):
        """実際の pykakasi でひらがなを変換"""
        assert romanize_with_analyzer("さくら") == "sakura"


# ====================================
# 施設スラッグ
# ====================================
class TestGenerateFacilitySlug:
    """施設名 → スラッグ"""

    def test_plain_slug(self, fixed_analyzer):
        fixed_analyzer["練馬斎場"] = "nerimasaijo"
        assert generate_facility_slug("練馬斎場", "ChIJAbCdEfGh") == "nerimasaijo"

    def test_short_slug_gets_suffix(self, fixed_analyzer):
        """3文字未満なら Place ID の先頭8文字を付与"""
        fixed_analyzer["AB"] = "ab"
        assert generate_facility_slug("AB", "ChIJAbCdEfGh") == "ab-chijabcd"

    def test_with_suffix(self, fixed_analyzer):
        """with_suffix=True なら常に付与"""
        fixed_analyzer["練馬斎場"] = "nerimasaijo"
        slug = generate_facility_slug("練馬斎場", "places/ChIJAbCdEfGh", with_suffix=True)
        assert slug == "nerimasaijo-chijabcd"
        assert extract_place_id_suffix(slug) == "chijabcd"

    def test_unconvertible_uses_suffix(self, fixed_analyzer):
        """変換できなければ Place ID のみ"""
        assert generate_facility_slug("★★★", "ChIJAbCdEfGh") == "chijabcd"

    def test_unconvertible_without_place_id(self, fixed_analyzer):
        """Place ID もなければランダムなスラッグ"""
        slug = generate_facility_slug("★★★")
        assert re.match(r"^facility-[0-9a-f]{8}$", slug)


# ====================================
# 地域スラッグ
# ====================================
class TestRegionSlug:
    """住所 → 地域スラッグ"""

    def test_extract_ward(self):
        assert extract_region_name("東京都練馬区谷原2丁目3-8") == "練馬区"

    def test_extract_city(self):
        assert extract_region_name("神奈川県横浜市") == "横浜市"

    def test_extract_without_match(self):
        """該当しなければ住所全体"""
        assert extract_region_name("不明な住所") == "不明な住所"

    def test_nerima(self):
        """東京都練馬区谷原2丁目3-8 → nerima"""
        assert generate_region_slug("東京都練馬区谷原2丁目3-8") == "nerima"

    def test_random_fallback(self, fixed_analyzer):
        """変換できない場合はランダムなスラッグ"""
        assert re.match(r"^area-[0-9a-f]{8}$", generate_region_slug("★★★"))


# ====================================
# URL生成
# ====================================
class TestUrls:
    """URL生成"""

    def test_photo_proxy_url(self):
        """参照IDはURLエンコードされる"""
        assert get_photo_proxy_url("abc/def", 400) == "/api/photo?ref=abc%2Fdef&maxwidth=400"
        assert get_photo_proxy_url("abc").endswith("maxwidth=800")

    def test_generate_facility_urls(self, fixed_analyzer):
        fixed_analyzer["さくら葬儀"] = "sakurasogi"
        urls = generate_facility_urls("さくら葬儀", "東京都練馬区谷原2丁目3-8", "ChIJAbCdEfGh", with_suffix=True)

        assert urls == {
            "facilitySlug": "sakurasogi-chijabcd",
            "regionSlug": "nerima",
            "facilityUrl": "/detail/sakurasogi-chijabcd",
            "regionUrl": "/list/nerima",
        }
