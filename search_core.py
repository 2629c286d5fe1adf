# -*- coding: utf-8 -*-
"""
葬儀社検索コアモジュール
- Gemini(Googleマップ グラウンディング)の応答マークダウンを構造化データに変換
- groundingChunks との対応付け
- 検索結果のキャッシュ(search:{query}, 7日間)
"""
import re
import logging
import unicodedata
from typing import Optional, List, Dict, Any, Tuple

import api_integrations
from kv_store import KVStore, search_key, place_key, normalize_place_id, SEARCH_CACHE_TTL, PLACE_CACHE_TTL

logger = logging.getLogger(__name__)

# ========================================
# マークダウンのラベル
# ========================================

LABEL_ADDRESS = '- **住所:**'
LABEL_PHONE = '- **電話番号:**'
LABEL_RATING = '- **評価:**'
LABEL_REVIEW_COUNT = '- **レビュー数:**'
LABEL_REVIEWS = '- **口コミ:**'
LABEL_QANDA = '- **Q&A:**'
LABEL_QUESTION = '- **Q:**'
LABEL_ANSWER = '- **A:**'
LABEL_OWNER_MESSAGE = '- **オーナーからのメッセージ:**'
LABEL_OWNER_POSTS = '- **オーナーからの投稿:**'

SECTION_LABELS = (
    LABEL_ADDRESS, LABEL_PHONE, LABEL_RATING, LABEL_REVIEW_COUNT, LABEL_REVIEWS,
    LABEL_QANDA, LABEL_OWNER_MESSAGE, LABEL_OWNER_POSTS,
)

NO_INFO = '情報なし'

_NUMBER_PREFIX = re.compile(r'^\s*(\d+(?:\.\d+)?)')
_INT_PREFIX = re.compile(r'^\s*(\d[\d,]*)')

SEARCH_PROMPT_TEMPLATE = """「{query}」という検索クエリに合致する日本の葬儀社または斎場のみを検索してください。レストランや公園など無関係な施設は含めないでください。

Googleマップで見つかった各施設について、以下のフォーマットで記載してください。施設名は必ず「### 」で見出しにしてください。情報がない場合は「情報なし」と記載してください。すべて日本語で記載してください。

### [施設の正式名称]
- **住所:** [都道府県から始まる住所]
- **電話番号:** [電話番号]
- **評価:** [5段階評価の数値]
- **レビュー数:** [レビュー件数]
- **口コミ:**
  - [代表的な口コミ1]
  - [代表的な口コミ2]
- **Q&A:**
  - **Q:** [Googleマップの「質問と回答」に投稿された質問]
  - **A:** [その回答]
- **オーナーからのメッセージ:** [オーナーの挨拶文]
- **オーナーからの投稿:**
  - [オーナーの投稿]

Q&Aやオーナーからの投稿がない場合は、その項目全体を省略してください。
これを見つかった全ての施設について繰り返してください。"""


def _new_details() -> Dict[str, Any]:
    return {
        'reviews': [],
        'qanda': [],
        'ownerInfo': {'posts': []},
    }


def _label_value(line: str, label: str) -> str:
    return line[len(label):].strip()


def _strip_quotes(text: str) -> str:
    """口コミ前後の「」を除去"""
    if text.startswith('「'):
        text = text[1:]
    if text.endswith('」'):
        text = text[:-1]
    return text


# ========================================
# マークダウンパーサー
# ========================================

def parse_details_from_markdown(markdown: str) -> Dict[str, Dict[str, Any]]:
    """
    「### 施設名」で区切られたマークダウンを施設ごとの詳細情報に変換

    戻り値は施設名 → 詳細 の辞書(出現順を保持)。
    同じ施設名が複数回出現した場合は後のものが優先される。
    Q に続く A がない場合、その Q&A は破棄する。
    """
    details_map: Dict[str, Dict[str, Any]] = {}
    if not markdown:
        return details_map

    # 最初の見出しより前のテキストは破棄
    sections = markdown.split('### ')[1:]

    for section in sections:
        lines = section.split('\n')
        title = lines[0].strip()
        if not title:
            continue

        details = _new_details()
        pending_question: Optional[str] = None
        reading = None  # 'reviews' | 'qanda' | 'owner_message' | 'owner_posts'

        for line in lines[1:]:
            trimmed = line.strip()

            # 項目ラベルが来たら回答待ちの質問は破棄
            if trimmed.startswith(SECTION_LABELS):
                pending_question = None

            if trimmed.startswith(LABEL_ADDRESS):
                value = _label_value(trimmed, LABEL_ADDRESS)
                if value and value != NO_INFO:
                    details['address'] = value
                reading = None

            elif trimmed.startswith(LABEL_PHONE):
                value = _label_value(trimmed, LABEL_PHONE)
                if value and value != NO_INFO:
                    details['phone'] = value
                reading = None

            elif trimmed.startswith(LABEL_RATING):
                match = _NUMBER_PREFIX.match(_label_value(trimmed, LABEL_RATING))
                if match:
                    details['rating'] = float(match.group(1))
                reading = None

            elif trimmed.startswith(LABEL_REVIEW_COUNT):
                match = _INT_PREFIX.match(_label_value(trimmed, LABEL_REVIEW_COUNT))
                if match:
                    details['reviewCount'] = int(match.group(1).replace(',', ''))
                reading = None

            elif trimmed.startswith(LABEL_REVIEWS):
                reading = 'reviews'

            elif trimmed.startswith(LABEL_QANDA):
                reading = 'qanda'

            elif trimmed.startswith(LABEL_OWNER_MESSAGE):
                value = _label_value(trimmed, LABEL_OWNER_MESSAGE)
                if value and value != NO_INFO:
                    details['ownerInfo']['message'] = value
                reading = 'owner_message'

            elif trimmed.startswith(LABEL_OWNER_POSTS):
                reading = 'owner_posts'

            elif reading == 'qanda' and trimmed.startswith(LABEL_QUESTION):
                # 回答のない前の質問は破棄
                question = _label_value(trimmed, LABEL_QUESTION)
                pending_question = question if question and question != NO_INFO else None

            elif reading == 'qanda' and trimmed.startswith(LABEL_ANSWER):
                if pending_question:
                    answer = _label_value(trimmed, LABEL_ANSWER)
                    details['qanda'].append({'question': pending_question, 'answer': answer})
                pending_question = None

            elif reading == 'reviews' and trimmed.startswith('- '):
                review = _strip_quotes(trimmed[2:].strip())
                if review and review != NO_INFO:
                    details['reviews'].append(review)

            elif reading == 'owner_message' and trimmed.startswith('- '):
                message = _strip_quotes(trimmed[2:].strip())
                if message and message != NO_INFO and not details['ownerInfo'].get('message'):
                    details['ownerInfo']['message'] = message

            elif reading == 'owner_posts' and trimmed.startswith('- '):
                post = trimmed[2:].strip()
                if post and post != NO_INFO:
                    details['ownerInfo']['posts'].append(post)

        details_map[title] = details

    return details_map


def map_grounding_chunks(details_map: Dict[str, Dict[str, Any]], chunks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    パース結果と groundingChunks をインデックスで対応付ける
    URI / placeId のないチャンクに対応する施設は除外
    """
    places = []

    for index, (title, details) in enumerate(details_map.items()):
        chunk = chunks[index] if index < len(chunks) else None

        if not chunk or not chunk.get('uri') or not chunk.get('placeId'):
            logger.warning(f"[Mapping] Index {index}: groundingChunkなし → 除外: {title}")
            continue

        places.append({
            'title': title,
            'uri': chunk['uri'],
            'placeId': chunk['placeId'],
            'address': details.get('address'),
            'phone': details.get('phone'),
            'rating': details.get('rating'),
            'reviewCount': details.get('reviewCount'),
            'reviews': details['reviews'],
            'qanda': details['qanda'],
            'ownerInfo': details['ownerInfo'],
        })

    logger.info(f"[Mapping] {len(places)}/{len(details_map)}件の施設を対応付け")
    return places


def normalize_query(query: str, position: Optional[dict] = None) -> str:
    """検索クエリをキャッシュキー用に正規化"""
    normalized = unicodedata.normalize('NFKC', query or '').strip().lower()
    normalized = re.sub(r'\s+', ' ', normalized)

    if position and position.get('latitude') is not None and position.get('longitude') is not None:
        normalized += f"@{float(position['latitude']):.3f},{float(position['longitude']):.3f}"

    return normalized


# ========================================
# Place Details(キャッシュ付き)
# ========================================

def get_place_details_cached(place_id: str, store: KVStore) -> Tuple[dict, bool]:
    """
    place:{placeId} キャッシュを確認してから Place Details API を呼ぶ
    戻り値: (詳細, キャッシュヒットか)
    """
    key = place_key(place_id)
    cached = store.get_json(key)
    if cached:
        logger.info(f"[Place Cache] HIT: {key}")
        return cached, True

    details = api_integrations.get_place_details(normalize_place_id(place_id))
    store.set_json(key, details, ttl=PLACE_CACHE_TTL)
    return details, False


def enrich_with_place_details(places: List[dict], store: KVStore) -> List[dict]:
    """
    検索結果に Place Details の情報(写真・公式名称・営業時間など)を追加
    取得に失敗した施設はそのまま返す
    """
    enriched = []
    for place in places:
        try:
            details, _ = get_place_details_cached(place['placeId'], store)
        except api_integrations.PlacesAPIError as e:
            logger.warning(f"[Enrich] Place Details取得失敗: {place['title']} (status: {e.status})")
            enriched.append(place)
            continue
        except Exception as e:
            logger.error(f"[Enrich] エラー: {place['title']} - {e}")
            enriched.append(place)
            continue

        merged = dict(place)
        if details.get('name'):
            merged['title'] = details['name']
        merged['address'] = place.get('address') or details.get('address')
        merged['phone'] = place.get('phone') or details.get('phone')
        if merged.get('rating') is None:
            merged['rating'] = details.get('rating')
        if merged.get('reviewCount') is None:
            merged['reviewCount'] = details.get('userRatingsTotal')
        merged['photoRefs'] = details.get('photoRefs', [])
        merged['photoUrls'] = details.get('photoUrls', [])
        merged['detailedReviews'] = details.get('reviews', [])
        merged['website'] = details.get('website')
        merged['businessStatus'] = details.get('businessStatus')
        merged['priceLevel'] = details.get('priceLevel')
        merged['openingHours'] = details.get('openingHours')
        merged['wheelchairAccessible'] = details.get('wheelchairAccessible')
        enriched.append(merged)

    return enriched


# ========================================
# 検索
# ========================================

def search_funeral_homes(query: str, position: Optional[dict], store: KVStore, enrich: bool = True) -> Tuple[List[dict], bool]:
    """
    葬儀社を検索する
    1. search:{query} キャッシュ確認
    2. Gemini(マップ グラウンディング)で検索
    3. マークダウンをパースして groundingChunks と対応付け
    4. Place Details で情報を補完し、7日間キャッシュ
    戻り値: (施設リスト, キャッシュヒットか)
    """
    key = search_key(normalize_query(query, position))

    cached = store.get_json(key)
    if cached is not None:
        logger.info(f"[Search Cache] HIT: {key} ({len(cached)}件)")
        return cached, True

    logger.info(f"[Search Cache] MISS: {key}")

    prompt = SEARCH_PROMPT_TEMPLATE.format(query=query)
    text, chunks = api_integrations.search_with_maps_grounding(prompt, position)

    details_map = parse_details_from_markdown(text)
    logger.info(f"[Data Processor] パース結果: {len(details_map)}件, groundingChunks: {len(chunks)}件")

    qanda_count = sum(1 for d in details_map.values() if d['qanda'])
    owner_count = sum(1 for d in details_map.values() if d['ownerInfo'].get('message') or d['ownerInfo']['posts'])
    logger.info(f"[Data Processor] Q&Aあり: {qanda_count}件, オーナー情報あり: {owner_count}件")

    places = map_grounding_chunks(details_map, chunks)
    if enrich and places:
        places = enrich_with_place_details(places, store)

    # 空の結果はキャッシュしない
    if places:
        store.set_json(key, places, ttl=SEARCH_CACHE_TTL)

    return places, False
