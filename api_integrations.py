# -*- coding: utf-8 -*-
"""
外部API連携モジュール
- Google Places API (Place Details / Text Search / Nearby Search / Place Photo)
- Google Geocoding API
- Gemini API (Googleマップ グラウンディング / Google検索 グラウンディング)
"""
import os
import math
import logging
from typing import Optional, List, Dict, Any, Tuple

import requests
from google import genai
from google.genai import types

from slug_resolver import get_photo_proxy_url

# ロギング
logger = logging.getLogger(__name__)

# ========================================
# API Keys & Constants
# ========================================

PLACES_DETAILS_URL = 'https://maps.googleapis.com/maps/api/place/details/json'
PLACES_TEXT_SEARCH_URL = 'https://maps.googleapis.com/maps/api/place/textsearch/json'
PLACES_NEARBY_SEARCH_URL = 'https://maps.googleapis.com/maps/api/place/nearbysearch/json'
PLACES_PHOTO_URL = 'https://maps.googleapis.com/maps/api/place/photo'
GEOCODING_URL = 'https://maps.googleapis.com/maps/api/geocode/json'

PLACE_DETAILS_FIELDS = ','.join([
    'name',
    'formatted_address',
    'formatted_phone_number',
    'photos',
    'reviews',
    'website',
    'business_status',
    'price_level',
    'opening_hours',
    'wheelchair_accessible_entrance',
    'rating',
    'user_ratings_total',
])

MAX_PHOTOS = 5
MAX_REVIEWS = 5
STATION_SEARCH_RADIUS = 2000  # m
WALKING_METERS_PER_MINUTE = 80
EARTH_RADIUS_METERS = 6371000
REQUEST_TIMEOUT = 10

DEFAULT_GEMINI_MODEL = 'gemini-2.5-flash'


def get_maps_api_key() -> str:
    """Google Maps Platform のAPIキー(Places / Geocoding 共通)"""
    return os.getenv('GOOGLE_MAPS_API_KEY') or os.getenv('GOOGLE_PLACES_API_KEY') or ''


def get_gemini_api_key() -> str:
    return os.getenv('GEMINI_API_KEY') or os.getenv('GOOGLE_API_KEY') or ''


def get_gemini_model() -> str:
    return os.getenv('GEMINI_MODEL', DEFAULT_GEMINI_MODEL)


# ========================================
# 例外
# ========================================

class APIKeyNotConfiguredError(Exception):
    """APIキー未設定"""


class PlacesAPIError(Exception):
    """Places API が OK 以外のステータスを返した"""

    def __init__(self, status, message: str = ''):
        self.status = status
        super().__init__(message or f"Places API error: {status}")


class GeminiAPIError(Exception):
    """Gemini API 呼び出しの失敗"""


# ========================================
# Google Places API 連携
# ========================================

def format_reviews(reviews: Optional[List[dict]], limit: int = MAX_REVIEWS) -> List[dict]:
    """Place Details のレビューを表示用に整形(最大5件)"""
    return [
        {
            'author_name': review.get('author_name') or '匿名',
            'rating': review.get('rating', 0),
            'text': review.get('text', ''),
            'time': review.get('time', 0),
        }
        for review in (reviews or [])[:limit]
    ]


def get_place_details(place_id: str, language: str = 'ja') -> dict:
    """
    Place Details APIで施設の詳細情報を取得
    - 写真は参照IDとプロキシURLのみ返す(APIキーをクライアントに渡さない)
    - ステータスが OK 以外の場合は PlacesAPIError
    """
    api_key = get_maps_api_key()
    if not api_key:
        logger.error("[Place Details API] APIキーが設定されていません")
        raise APIKeyNotConfiguredError('API key not configured')

    params = {
        'place_id': place_id,
        'fields': PLACE_DETAILS_FIELDS,
        'language': language,
        'key': api_key,
    }

    logger.info(f"[Place Details API] 取得開始: {place_id}")

    response = requests.get(PLACES_DETAILS_URL, params=params, timeout=REQUEST_TIMEOUT)
    data = response.json()

    if data.get('status') != 'OK' or not data.get('result'):
        logger.warning(f"[Place Details API] 取得失敗: {data.get('status')} - {place_id}")
        raise PlacesAPIError(data.get('status'), 'Place not found or no data available')

    result = data['result']

    photo_refs = [
        photo['photo_reference']
        for photo in (result.get('photos') or [])[:MAX_PHOTOS]
        if photo.get('photo_reference')
    ]

    opening_hours = None
    if result.get('opening_hours'):
        opening_hours = {
            'open_now': result['opening_hours'].get('open_now'),
            'weekday_text': result['opening_hours'].get('weekday_text', []),
        }

    details = {
        'placeId': place_id,
        'name': result.get('name'),
        'address': result.get('formatted_address'),
        'phone': result.get('formatted_phone_number'),
        'rating': result.get('rating'),
        'userRatingsTotal': result.get('user_ratings_total'),
        'photoRefs': photo_refs,
        'photoUrls': [get_photo_proxy_url(ref) for ref in photo_refs],
        'reviews': format_reviews(result.get('reviews')),
        'website': result.get('website'),
        'businessStatus': result.get('business_status'),
        'priceLevel': result.get('price_level'),
        'openingHours': opening_hours,
        'wheelchairAccessible': result.get('wheelchair_accessible_entrance'),
    }

    logger.info(f"[Place Details API] 取得成功: {details['name']} (写真={len(photo_refs)}枚, レビュー={len(details['reviews'])}件)")
    return details


def search_place_by_name(name: str, language: str = 'ja') -> dict:
    """
    Text Search APIで施設名から葬儀社を検索し、先頭の1件を返す
    - 検索クエリには「葬儀」を付与
    """
    api_key = get_maps_api_key()
    if not api_key:
        logger.error("[Text Search API] APIキーが設定されていません")
        raise APIKeyNotConfiguredError('API key not configured')

    query = f"{name} 葬儀"
    params = {
        'query': query,
        'language': language,
        'key': api_key,
    }

    logger.info(f"[Text Search API] 検索: {query}")

    response = requests.get(PLACES_TEXT_SEARCH_URL, params=params, timeout=REQUEST_TIMEOUT)
    data = response.json()

    if data.get('status') != 'OK' or not data.get('results'):
        logger.info(f"[Text Search API] 結果なし: {query} (status: {data.get('status')})")
        raise PlacesAPIError(data.get('status'), 'Place not found')

    place = data['results'][0]
    result = {
        'placeId': place.get('place_id'),
        'name': place.get('name'),
        'address': place.get('formatted_address'),
        'rating': place.get('rating'),
        'userRatingsTotal': place.get('user_ratings_total'),
    }

    logger.info(f"[Text Search API] 取得成功: {result['name']} ({result['placeId']})")
    return result


def fetch_place_photo(photo_reference: str, max_width: int = 800) -> Tuple[bytes, str]:
    """
    Place Photo APIから画像を取得
    戻り値: (画像データ, Content-Type)。取得失敗時は PlacesAPIError(HTTPステータス)
    """
    api_key = get_maps_api_key()
    if not api_key:
        logger.error("[Photo API] APIキーが設定されていません")
        raise APIKeyNotConfiguredError('API key not configured')

    params = {
        'maxwidth': max_width,
        'photo_reference': photo_reference,
        'key': api_key,
    }

    response = requests.get(PLACES_PHOTO_URL, params=params, timeout=REQUEST_TIMEOUT)

    if not response.ok:
        logger.warning(f"[Photo API] 取得失敗: HTTP {response.status_code}")
        raise PlacesAPIError(response.status_code, 'Failed to fetch photo')

    content_type = response.headers.get('Content-Type', 'image/jpeg')
    logger.info(f"[Photo API] 取得成功: {len(response.content)} bytes ({content_type})")
    return response.content, content_type


# ========================================
# Geocoding / 最寄り駅
# ========================================

def geocode_address(address: str, language: str = 'ja') -> Optional[Dict[str, float]]:
    """Geocoding APIで住所から座標を取得。失敗時は None"""
    if not address:
        return None

    api_key = get_maps_api_key()
    if not api_key:
        logger.warning("[Geocoding API] APIキーが設定されていません")
        return None

    try:
        params = {
            'address': address,
            'language': language,
            'key': api_key,
        }

        response = requests.get(GEOCODING_URL, params=params, timeout=REQUEST_TIMEOUT)
        data = response.json()

        if data.get('status') != 'OK' or not data.get('results'):
            logger.warning(f"[Geocoding API] 結果なし: {address} (status: {data.get('status')})")
            return None

        location = data['results'][0].get('geometry', {}).get('location', {})
        logger.info(f"[Geocoding API] 取得成功: {address} → ({location.get('lat')}, {location.get('lng')})")
        return {'lat': location.get('lat'), 'lng': location.get('lng')}

    except requests.exceptions.Timeout:
        logger.error(f"[Geocoding API] タイムアウト: {address}")
        return None
    except Exception as e:
        logger.error(f"[Geocoding API] エラー: {e}")
        return None


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """2点間の距離(メートル) - Haversine formula"""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def find_nearest_station(lat: float, lng: float, language: str = 'ja') -> Optional[dict]:
    """
    Nearby Search APIで半径2km以内の最寄り駅を検索
    戻り値: {'name': 駅名(「駅」なし), 'distance': m, 'walkingMinutes': 分} または None
    """
    api_key = get_maps_api_key()
    if not api_key:
        logger.warning("[Station] APIキーが設定されていません")
        return None

    try:
        params = {
            'location': f"{lat},{lng}",
            'radius': STATION_SEARCH_RADIUS,
            'type': 'train_station',
            'language': language,
            'key': api_key,
        }

        response = requests.get(PLACES_NEARBY_SEARCH_URL, params=params, timeout=REQUEST_TIMEOUT)
        data = response.json()

        if data.get('status') != 'OK' or not data.get('results'):
            logger.info(f"[Station] 半径2km以内に駅なし (status: {data.get('status')})")
            return None

        nearest = None
        for station in data['results']:
            location = station.get('geometry', {}).get('location', {})
            if location.get('lat') is None or location.get('lng') is None:
                continue
            distance = calculate_distance(lat, lng, location['lat'], location['lng'])
            if nearest is None or distance < nearest[1]:
                nearest = (station, distance)

        if nearest is None:
            return None

        station, distance = nearest
        name = station.get('name', '')
        if name.endswith('駅'):
            name = name[:-1]

        result = {
            'name': name,
            'distance': round(distance),
            'walkingMinutes': math.ceil(distance / WALKING_METERS_PER_MINUTE),
        }
        logger.info(f"[Station] 最寄り駅: {result['name']}駅 ({result['distance']}m, 徒歩{result['walkingMinutes']}分)")
        return result

    except requests.exceptions.Timeout:
        logger.error("[Station] タイムアウト")
        return None
    except Exception as e:
        logger.error(f"[Station] エラー: {e}")
        return None


def find_nearest_station_for_address(address: str) -> Optional[dict]:
    """住所 → 座標 → 最寄り駅"""
    coords = geocode_address(address)
    if not coords or coords.get('lat') is None:
        return None
    return find_nearest_station(coords['lat'], coords['lng'])


# ========================================
# Gemini API 連携
# ========================================

_gemini_client: Optional[genai.Client] = None


def get_gemini_client() -> genai.Client:
    """Geminiクライアントを取得(シングルトン)"""
    global _gemini_client

    if _gemini_client is None:
        api_key = get_gemini_api_key()
        if not api_key:
            logger.error("[Gemini API] GEMINI_API_KEY が設定されていません")
            raise APIKeyNotConfiguredError('API key not configured')

        _gemini_client = genai.Client(api_key=api_key)
        logger.info("[Gemini API] クライアント初期化完了")

    return _gemini_client


def _extract_maps_chunks(response) -> List[Dict[str, Any]]:
    """レスポンスの groundingChunks から Googleマップ の情報を取り出す"""
    candidates = getattr(response, 'candidates', None) or []
    if not candidates:
        return []

    metadata = getattr(candidates[0], 'grounding_metadata', None)
    chunks = getattr(metadata, 'grounding_chunks', None) or []

    results = []
    for chunk in chunks:
        maps = getattr(chunk, 'maps', None)
        results.append({
            'uri': getattr(maps, 'uri', None) if maps else None,
            'title': getattr(maps, 'title', None) if maps else None,
            'placeId': getattr(maps, 'place_id', None) if maps else None,
        })
    return results


def search_with_maps_grounding(prompt: str, position: Optional[dict] = None) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Googleマップ グラウンディングで Gemini を呼び出す
    戻り値: (マークダウンテキスト, groundingChunks)
    """
    client = get_gemini_client()

    tool_config = None
    if position and position.get('latitude') is not None and position.get('longitude') is not None:
        tool_config = types.ToolConfig(
            retrieval_config=types.RetrievalConfig(
                lat_lng=types.LatLng(
                    latitude=position['latitude'],
                    longitude=position['longitude'],
                )
            )
        )

    config = types.GenerateContentConfig(
        tools=[types.Tool(google_maps=types.GoogleMaps())],
        tool_config=tool_config,
    )

    logger.info(f"[Gemini API] マップ検索開始 (位置情報: {'あり' if tool_config else 'なし'})")

    try:
        response = client.models.generate_content(
            model=get_gemini_model(),
            contents=prompt,
            config=config,
        )
    except Exception as e:
        logger.error(f"[Gemini API] マップ検索エラー: {e}")
        raise GeminiAPIError(str(e)) from e

    text = response.text or ''
    chunks = _extract_maps_chunks(response)
    logger.info(f"[Gemini API] マップ検索完了: {len(text)}文字, groundingChunks={len(chunks)}件")
    return text, chunks


def generate_with_search_grounding(prompt: str) -> str:
    """Google検索 グラウンディングで文章を生成"""
    client = get_gemini_client()

    config = types.GenerateContentConfig(
        tools=[types.Tool(google_search=types.GoogleSearch())],
    )

    try:
        response = client.models.generate_content(
            model=get_gemini_model(),
            contents=prompt,
            config=config,
        )
    except Exception as e:
        logger.error(f"[Gemini API] 生成エラー: {e}")
        raise GeminiAPIError(str(e)) from e

    text = response.text or ''
    logger.info(f"[Gemini API] 生成完了: {len(text)}文字")
    return text
