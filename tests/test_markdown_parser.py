#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
検索結果マークダウンのパーサー (search_core) のテスト
"""

import sys
from pathlib import Path

# プロジェクトルートをパスに追加
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from search_core import parse_details_from_markdown, map_grounding_chunks, normalize_query


SAMPLE_MARKDOWN = """承知しました。以下が検索結果です。

### 練馬斎場
- **住所:** 東京都練馬区春日町4丁目17-1
- **電話番号:** 03-1234-5678
- **評価:** 4.2
- **レビュー数:** 1,234件
- **口コミ:**
  - 「スタッフの対応が丁寧でした」
  - 駐車場が広くて便利です
- **Q&A:**
  - **Q:** 駐車場はありますか?
  - **A:** 30台分あります。
- **オーナーからのメッセージ:** 心を込めてお見送りいたします。
- **オーナーからの投稿:**
  - 見学会を開催します

### 谷原会館
- **住所:** 情報なし
- **電話番号:** 情報なし
- **評価:** 3.8 (Googleマップ)
- **レビュー数:** 56
"""


# ====================================
# parse_details_from_markdown テスト
# ====================================
class TestParseDetailsFromMarkdown:
    """マークダウン → 施設詳細"""

    def test_parses_all_sections(self):
        """見出しごとに施設が分かれる"""
        result = parse_details_from_markdown(SAMPLE_MARKDOWN)
        assert list(result.keys()) == ["練馬斎場", "谷原会館"]

    def test_preamble_is_ignored(self):
        """最初の見出しより前のテキストは施設にならない"""
        result = parse_details_from_markdown(SAMPLE_MARKDOWN)
        assert all("承知" not in title for title in result)

    def test_basic_fields(self):
        """住所・電話番号・評価・レビュー数"""
        details = parse_details_from_markdown(SAMPLE_MARKDOWN)["練馬斎場"]
        assert details["address"] == "東京都練馬区春日町4丁目17-1"
        assert details["phone"] == "03-1234-5678"
        assert details["rating"] == 4.2
        assert details["reviewCount"] == 1234

    def test_no_info_is_omitted(self):
        """「情報なし」は値として保持しない"""
        details = parse_details_from_markdown(SAMPLE_MARKDOWN)["谷原会館"]
        assert "address" not in details
        assert "phone" not in details
        assert details["rating"] == 3.8
        assert details["reviewCount"] == 56

    def test_reviews_strip_quotes(self):
        """口コミの「」は除去される"""
        details = parse_details_from_markdown(SAMPLE_MARKDOWN)["練馬斎場"]
        assert details["reviews"] == ["スタッフの対応が丁寧でした", "駐車場が広くて便利です"]

    def test_owner_info(self):
        """オーナーメッセージと投稿"""
        owner = parse_details_from_markdown(SAMPLE_MARKDOWN)["練馬斎場"]["ownerInfo"]
        assert owner["message"] == "心を込めてお見送りいたします。"
        assert owner["posts"] == ["見学会を開催します"]

    def test_question_followed_by_answer(self):
        """Q の直後の A で1件の Q&A になる"""
        qanda = parse_details_from_markdown(SAMPLE_MARKDOWN)["練馬斎場"]["qanda"]
        assert qanda == [{"question": "駐車場はありますか?", "answer": "30台分あります。"}]

    def test_question_without_answer_is_dropped(self):
        """回答のない質問は破棄される"""
        markdown = """### テスト斎場
- **Q&A:**
  - **Q:** 回答のない質問
  - **Q:** 宿泊できますか?
  - **A:** はい、可能です。
  - **Q:** 最後の質問
"""
        qanda = parse_details_from_markdown(markdown)["テスト斎場"]["qanda"]
        assert qanda == [{"question": "宿泊できますか?", "answer": "はい、可能です。"}]

    def test_answer_without_question_is_ignored(self):
        """質問のない回答は無視"""
        markdown = """### テスト斎場
- **Q&A:**
  - **A:** 孤立した回答
"""
        assert parse_details_from_markdown(markdown)["テスト斎場"]["qanda"] == []

    def test_empty_input(self):
        """空文字は空の辞書"""
        assert parse_details_from_markdown("") == {}
        assert parse_details_from_markdown("見出しのないテキスト") == {}

    def test_owner_message_on_next_line(self):
        """オーナーメッセージが次行の箇条書きでも取得できる"""
        markdown = """### テスト斎場
- **オーナーからのメッセージ:**
  - お気軽にご相談ください
"""
        owner = parse_details_from_markdown(markdown)["テスト斎場"]["ownerInfo"]
        assert owner["message"] == "お気軽にご相談ください"


# ====================================
# map_grounding_chunks テスト
# ====================================
class TestMapGroundingChunks:
    """施設と groundingChunks の対応付け"""

    def test_maps_by_index(self):
        """インデックス順に uri / placeId が付与される"""
        details_map = parse_details_from_markdown(SAMPLE_MARKDOWN)
        chunks = [
            {"uri": "https://maps.google.com/?cid=1", "title": "練馬斎場", "placeId": "ChIJaaaa1111"},
            {"uri": "https://maps.google.com/?cid=2", "title": "谷原会館", "placeId": "ChIJbbbb2222"},
        ]
        places = map_grounding_chunks(details_map, chunks)

        assert [p["title"] for p in places] == ["練馬斎場", "谷原会館"]
        assert places[0]["placeId"] == "ChIJaaaa1111"
        assert places[1]["uri"] == "https://maps.google.com/?cid=2"
        assert places[0]["qanda"][0]["answer"] == "30台分あります。"

    def test_missing_chunk_excludes_place(self):
        """対応するチャンクがない施設は除外"""
        details_map = parse_details_from_markdown(SAMPLE_MARKDOWN)
        chunks = [{"uri": "https://maps.google.com/?cid=1", "title": "練馬斎場", "placeId": "ChIJaaaa1111"}]
        places = map_grounding_chunks(details_map, chunks)
        assert [p["title"] for p in places] == ["練馬斎場"]

    def test_chunk_without_place_id_excludes_place(self):
        """placeId のないチャンクは除外"""
        details_map = parse_details_from_markdown(SAMPLE_MARKDOWN)
        chunks = [
            {"uri": "https://maps.google.com/?cid=1", "title": "練馬斎場", "placeId": None},
            {"uri": "https://maps.google.com/?cid=2", "title": "谷原会館", "placeId": "ChIJbbbb2222"},
        ]
        places = map_grounding_chunks(details_map, chunks)
        assert [p["title"] for p in places] == ["谷原会館"]


# ====================================
# normalize_query テスト
# ====================================
class TestNormalizeQuery:
    """キャッシュキー用のクエリ正規化"""

    def test_whitespace_and_case(self):
        """全角スペース・大文字を正規化"""
        assert normalize_query("  練馬区　葬儀  ") == "練馬区 葬儀"
        assert normalize_query("ＡＢＣ Hall") == "abc hall"

    def test_position_is_rounded(self):
        """位置情報は小数3桁で付与"""
        query = normalize_query("葬儀", {"latitude": 35.7412345, "longitude": 139.6012345})
        assert query == "葬儀@35.741,139.601"


class TestPendingQuestionReset:
    """回答待ちの質問は項目ラベルで破棄される"""

    def test_stale_question_not_paired_with_later_answer(self):
        markdown = """### テスト斎場
- **Q&A:**
  - **Q:** 古い質問
- **オーナーからの投稿:**
  - 見学会のお知らせ
- **Q&A:**
  - **A:** 無関係な回答
"""
        details = parse_details_from_markdown(markdown)["テスト斎場"]
        assert details["qanda"] == []
        assert details["ownerInfo"]["posts"] == ["見学会のお知らせ"]

    def test_new_qanda_block_keeps_complete_pairs(self):
        """ラベルをまたいでも Q の直後の A は1件になる"""
        markdown = """### テスト斎場
- **Q&A:**
  - **Q:** 回答のない質問
- **住所:** 東京都練馬区
- **Q&A:**
  - **Q:** 宿泊できますか?
  - **A:** はい。
"""
        details = parse_details_from_markdown(markdown)["テスト斎場"]
        assert details["qanda"] == [{"question": "宿泊できますか?", "answer": "はい。"}]
        assert details["address"] == "東京都練馬区"
