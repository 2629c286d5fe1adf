# -*- coding: utf-8 -*-
"""
葬儀社検索システム (Gemini API + Google Places API版)
Webアプリケーション層

モジュール構成:
- api_integrations.py: 外部API連携 (Places / Geocoding / Gemini)
- search_core.py: 検索・マークダウン解析
- description_core.py: 施設紹介文の生成
- slug_resolver.py / region_data.py: URLスラッグ・地域データ
- kv_store.py: キャッシュ
- app_sougi_finder.py: Webアプリケーション層(本ファイル)
"""
import os
import hmac
import logging
from datetime import datetime

from dotenv import load_dotenv
from flask import Flask, Response, request, jsonify
from flask_cors import CORS

# .env.local → .env の順に読み込み(既存の環境変数は上書きしない)
load_dotenv('.env.local')
load_dotenv()

import api_integrations
from api_integrations import APIKeyNotConfiguredError, PlacesAPIError, GeminiAPIError
from kv_store import get_kv_store, slug_key, prefix_key, description_key
from search_core import search_funeral_homes, get_place_details_cached
from description_core import get_or_generate_description, DescriptionTooShortError
from slug_resolver import (
    to_romaji,
    generate_facility_urls,
    extract_place_id_suffix,
    get_place_id_suffix,
    DEFAULT_PHOTO_MAX_WIDTH,
)
from region_data import (
    get_region_blocks_with_prefectures,
    get_prefecture_code,
    get_region_block_by_pref_code,
    get_regions_by_prefecture,
    find_regions_by_romaji,
    PREFECTURES,
)

# ロギング設定
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["JSON_AS_ASCII"] = False  # UTF-8エンコーディングを有効化
app.json.ensure_ascii = False

# ========================================
# CORS 設定
# ========================================

# 許可するオリジン(カンマ区切り、未設定なら全許可)
allowed_origins = [
    origin.strip()
    for origin in os.getenv('ALLOWED_ORIGINS', '*').split(',')
    if origin.strip()
]

CORS(app, resources={
    r"/api/*": {
        "origins": allowed_origins,
        "methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization", "X-Admin-Key"],
    }
})

PHOTO_CACHE_CONTROL = 'public, max-age=86400, s-maxage=86400'
MAX_PHOTO_WIDTH = 1600


@app.after_request
def after_request(response):
    # UTF-8エンコーディングを明示
    if response.content_type and 'application/json' in response.content_type:
        response.headers['Content-Type'] = 'application/json; charset=utf-8'
    return response


def internal_error(e: Exception, tag: str):
    logger.error(f"[{tag}] エラー: {e}", exc_info=True)
    return jsonify({'error': 'Internal server error', 'message': str(e)}), 500


def get_json_body():
    """
    リクエストボディを辞書で返す
    ボディなし・JSONでない場合は空の辞書、JSONオブジェクト以外(配列・文字列など)は None
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def invalid_body():
    return jsonify({'error': 'Request body must be a JSON object'}), 400


def string_field(data: dict, name: str) -> str:
    """文字列フィールドを取り出す。文字列以外は空文字として扱う"""
    value = data.get(name)
    return value.strip() if isinstance(value, str) else ''


def parse_position(position):
    """
    位置情報 {latitude, longitude} を検証して返す
    未指定は None、不正な値は ValueError
    """
    if position is None:
        return None
    if not isinstance(position, dict):
        raise ValueError('position must be an object')

    latitude = position.get('latitude')
    longitude = position.get('longitude')
    for value in (latitude, longitude):
        # bool は int のサブクラスなので除外
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError('latitude and longitude must be numbers')

    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValueError('latitude or longitude is out of range')

    return {'latitude': float(latitude), 'longitude': float(longitude)}


# ========================================
# Google Places
# ========================================

@app.route('/api/places', methods=['GET', 'OPTIONS'])
def place_details():
    """施設詳細(place:{placeId} に7日間キャッシュ)"""
    if request.method == 'OPTIONS':
        return '', 204

    place_id = request.args.get('placeId')
    if not place_id:
        return jsonify({'error': 'placeId is required'}), 400

    if not api_integrations.get_maps_api_key():
        logger.error("[Places] GOOGLE_MAPS_API_KEY が設定されていません")
        return jsonify({'error': 'API key not configured'}), 500

    try:
        details, cached = get_place_details_cached(place_id, get_kv_store())
        return jsonify(dict(details, cached=cached))

    except PlacesAPIError as e:
        return jsonify({'error': 'Place not found or no data available', 'status': e.status}), 404
    except Exception as e:
        return internal_error(e, 'Places')


@app.route('/api/search-by-name', methods=['GET', 'OPTIONS'])
def search_by_name():
    """施設名から葬儀社を1件検索"""
    if request.method == 'OPTIONS':
        return '', 204

    name = request.args.get('name')
    if not name:
        return jsonify({'error': 'name is required'}), 400

    if not api_integrations.get_maps_api_key():
        return jsonify({'error': 'API key not configured'}), 500

    try:
        return jsonify(api_integrations.search_place_by_name(name))

    except PlacesAPIError as e:
        return jsonify({'error': 'Place not found', 'status': e.status}), 404
    except Exception as e:
        return internal_error(e, 'Search By Name')


@app.route('/api/photo', methods=['GET', 'OPTIONS'])
def place_photo():
    """
    写真プロキシ
    APIキーをクライアントに公開せずに Place Photo を返す
    """
    if request.method == 'OPTIONS':
        return '', 204

    ref = request.args.get('ref')
    if not ref:
        return jsonify({'error': 'ref is required'}), 400

    try:
        max_width = int(request.args.get('maxwidth', DEFAULT_PHOTO_MAX_WIDTH))
    except ValueError:
        max_width = DEFAULT_PHOTO_MAX_WIDTH
    max_width = max(1, min(max_width, MAX_PHOTO_WIDTH))

    if not api_integrations.get_maps_api_key():
        return jsonify({'error': 'API key not configured'}), 500

    try:
        content, content_type = api_integrations.fetch_place_photo(ref, max_width)
        return Response(
            content,
            mimetype=content_type,
            headers={'Cache-Control': PHOTO_CACHE_CONTROL},
        )

    except PlacesAPIError as e:
        status = e.status if isinstance(e.status, int) else 502
        return jsonify({'error': 'Failed to fetch photo'}), status
    except Exception as e:
        return internal_error(e, 'Photo')


# ========================================
# Gemini
# ========================================

@app.route('/api/search-funeral-homes', methods=['POST', 'OPTIONS'])
def search_funeral_homes_route():
    """
    葬儀社検索
    Googleマップ グラウンディングの結果をパースし、search:{query} に7日間キャッシュ
    """
    if request.method == 'OPTIONS':
        return '', 204

    data = get_json_body()
    if data is None:
        return invalid_body()

    query = string_field(data, 'query')
    if not query:
        return jsonify({'error': 'Query is required'}), 400

    try:
        position = parse_position(data.get('position'))
    except ValueError as e:
        logger.warning(f"[Search] 不正な位置情報: {data.get('position')!r} - {e}")
        return jsonify({'error': 'Invalid position'}), 400

    if not api_integrations.get_gemini_api_key():
        logger.error("[Search] GEMINI_API_KEY が設定されていません")
        return jsonify({'error': 'API key not configured'}), 500

    try:
        places, cached = search_funeral_homes(query, position, get_kv_store())
        logger.info(f"[Search] '{query}': {len(places)}件 (cached={cached})")
        return jsonify({'places': places, 'cached': cached})

    except APIKeyNotConfiguredError:
        return jsonify({'error': 'API key not configured'}), 500
    except GeminiAPIError as e:
        logger.error(f"[Search] Gemini APIエラー: {e}")
        return jsonify({'error': 'Failed to search funeral homes', 'message': str(e)}), 500
    except Exception as e:
        return internal_error(e, 'Search')


@app.route('/api/generate-description', methods=['POST', 'OPTIONS'])
def generate_description():
    """施設紹介文(description:{placeId} に期限なしでキャッシュ)"""
    if request.method == 'OPTIONS':
        return '', 204

    data = get_json_body()
    if data is None:
        return invalid_body()

    place_id = string_field(data, 'placeId')
    title = string_field(data, 'title')
    address = string_field(data, 'address') or None

    if not place_id or not title:
        return jsonify({'error': 'placeId and title are required'}), 400

    logger.info(f"[Description API] リクエスト: placeId={place_id}, title={title}")

    store = get_kv_store()

    try:
        # キャッシュ済みならAPIキーがなくても返す
        if not api_integrations.get_gemini_api_key():
            cached = store.get(description_key(place_id))
            if cached:
                return jsonify({'description': cached, 'cached': True})
            logger.error("[Description API] GEMINI_API_KEY が設定されていません")
            return jsonify({'error': 'API key not configured'}), 500

        description, cached = get_or_generate_description(place_id, title, address, store)
        return jsonify({'description': description, 'cached': cached})

    except DescriptionTooShortError:
        return jsonify({'error': 'Generated description is too short'}), 500
    except APIKeyNotConfiguredError:
        return jsonify({'error': 'API key not configured'}), 500
    except Exception as e:
        return internal_error(e, 'Description API')


# ========================================
# スラッグ
# ========================================

@app.route('/api/slug-lookup', methods=['GET', 'POST', 'OPTIONS'])
def slug_lookup():
    """
    GET: slug または placeIdプレフィックス → placeId
    POST: slug → placeId と プレフィックス → placeId の対応を保存
    """
    if request.method == 'OPTIONS':
        return '', 204

    store = get_kv_store()

    if request.method == 'POST':
        data = get_json_body()
        if data is None:
            return invalid_body()

        slug = string_field(data, 'slug')
        place_id = string_field(data, 'placeId')
        suffix = string_field(data, 'suffix') or None

        if not slug or not place_id:
            return jsonify({'error': 'slug and placeId are required'}), 400

        try:
            if not store.set(slug_key(slug), place_id):
                logger.warning(f"[Slug Lookup] スラッグ保存失敗: {slug}")
            if suffix and not store.set(prefix_key(suffix), place_id):
                logger.warning(f"[Slug Lookup] プレフィックス保存失敗: {suffix}")

            logger.info(f"[Slug Lookup] 保存: {slug} → {place_id} (suffix={suffix})")
            return jsonify({'slug': slug, 'placeId': place_id, 'suffix': suffix, 'success': True})

        except Exception as e:
            logger.error(f"[Slug Lookup] 保存エラー: {e}", exc_info=True)
            return jsonify({'error': 'Failed to save mapping', 'message': str(e)}), 500

    slug = request.args.get('slug')
    prefix = request.args.get('prefix')

    if not slug and not prefix:
        return jsonify({'error': 'slug or prefix parameter is required'}), 400

    try:
        # プレフィックス検索を優先
        if prefix:
            place_id = store.get(prefix_key(prefix))
            if place_id:
                logger.info(f"[Slug Lookup] HIT prefix: {prefix} → {place_id}")
                return jsonify({'prefix': prefix, 'placeId': place_id, 'cached': True})
            if not slug:
                return jsonify({'error': 'Prefix not found in cache'}), 404

        place_id = store.get(slug_key(slug))
        if place_id:
            logger.info(f"[Slug Lookup] HIT slug: {slug} → {place_id}")
            return jsonify({'slug': slug, 'placeId': place_id, 'cached': True})

        # スラッグ末尾の8文字からプレフィックスを引く
        suffix = extract_place_id_suffix(slug)
        if suffix:
            place_id = store.get(prefix_key(suffix))
            if place_id:
                logger.info(f"[Slug Lookup] HIT suffix: {slug} → {place_id}")
                return jsonify({'slug': slug, 'placeId': place_id, 'cached': True})

        return jsonify({'error': 'Not found in cache'}), 404

    except Exception as e:
        return internal_error(e, 'Slug Lookup')


@app.route('/api/convert-romaji', methods=['POST', 'OPTIONS'])
def convert_romaji():
    """日本語 → ローマ字スラッグ"""
    if request.method == 'OPTIONS':
        return '', 204

    data = get_json_body()
    if data is None:
        return invalid_body()

    text = data.get('text')

    if not text or not isinstance(text, str):
        return jsonify({'error': 'Text is required'}), 400

    try:
        romaji = to_romaji(text)
        logger.info(f"[Romaji] {text} → {romaji}")
        return jsonify({'romaji': romaji, 'original': text})

    except Exception as e:
        return internal_error(e, 'Romaji')


@app.route('/api/facility-urls', methods=['POST', 'OPTIONS'])
def facility_urls():
    """
    施設のスラッグ・URLを生成し、スラッグ → placeId の対応を登録
    uniqueSuffix=false の場合はスラッグに placeId を付与しない(短い場合を除く)
    """
    if request.method == 'OPTIONS':
        return '', 204

    data = get_json_body()
    if data is None:
        return invalid_body()

    title = string_field(data, 'title')
    address = string_field(data, 'address')
    place_id = string_field(data, 'placeId')
    unique_suffix = data.get('uniqueSuffix', True)

    if not title or not place_id:
        return jsonify({'error': 'title and placeId are required'}), 400

    try:
        urls = generate_facility_urls(title, address, place_id, with_suffix=bool(unique_suffix))

        store = get_kv_store()
        suffix = get_place_id_suffix(place_id)
        store.set(slug_key(urls['facilitySlug']), place_id)
        store.set(prefix_key(suffix), place_id)

        return jsonify(dict(urls, placeId=place_id, suffix=suffix))

    except Exception as e:
        return internal_error(e, 'Facility URLs')


# ========================================
# 地域
# ========================================

@app.route('/api/prefectures', methods=['GET', 'OPTIONS'])
def prefectures():
    """8地方区分と47都道府県"""
    if request.method == 'OPTIONS':
        return '', 204

    return jsonify({'regions': get_region_blocks_with_prefectures()})


@app.route('/api/prefectures/<pref_slug>', methods=['GET', 'OPTIONS'])
def prefecture_detail(pref_slug):
    """都道府県と、その地域エントリ(優先度順)"""
    if request.method == 'OPTIONS':
        return '', 204

    code = get_prefecture_code(pref_slug)
    if not code:
        return jsonify({'error': 'Prefecture not found'}), 404

    try:
        max_priority = int(request.args.get('maxPriority', 5))
    except ValueError:
        max_priority = 5

    block = get_region_block_by_pref_code(code)
    return jsonify({
        'prefecture': PREFECTURES[code],
        'regionBlock': {'id': block['id'], 'name': block['name']} if block else None,
        'regions': get_regions_by_prefecture(code, max_priority=max_priority),
    })


@app.route('/api/regions/<region_slug>', methods=['GET', 'OPTIONS'])
def region_detail(region_slug):
    """地域スラッグ → 表示名と地域エントリ"""
    if request.method == 'OPTIONS':
        return '', 204

    if region_slug == 'current':
        return jsonify({
            'slug': 'current',
            'displayName': '現在地周辺',
            'isCurrentLocation': True,
            'entries': [],
        })

    entries = find_regions_by_romaji(region_slug)
    if not entries:
        return jsonify({'error': 'Region not found', 'slug': region_slug}), 404

    return jsonify({
        'slug': region_slug.lower(),
        'displayName': entries[0]['name'],
        'isCurrentLocation': False,
        'entries': entries,
    })


# ========================================
# 管理
# ========================================

@app.route('/api/clear-cache', methods=['GET', 'POST', 'OPTIONS'])
def clear_cache():
    """
    検索キャッシュ(search:*)と施設キャッシュ(place:*)を全削除
    管理者キーをクエリ ?key= または X-Admin-Key ヘッダーで指定
    """
    if request.method == 'OPTIONS':
        return '', 204

    expected_key = os.getenv('CACHE_CLEAR_KEY')
    if not expected_key:
        logger.error("[Cache Clear] CACHE_CLEAR_KEY が設定されていません")
        return jsonify({'error': 'Admin key not configured'}), 500

    admin_key = request.args.get('key') or request.headers.get('X-Admin-Key') or ''
    if not hmac.compare_digest(admin_key.encode('utf-8'), expected_key.encode('utf-8')):
        logger.warning("[Cache Clear] 管理者キー不一致")
        return jsonify({'error': 'Forbidden'}), 403

    store = get_kv_store()
    if not store.enabled:
        return jsonify({'error': 'KV store not configured'}), 500

    try:
        deleted_search = store.delete_pattern('search:*')
        deleted_place = store.delete_pattern('place:*')

        logger.info(f"[Cache Clear] 削除完了: search={deleted_search}件, place={deleted_place}件")
        return jsonify({
            'success': True,
            'deletedSearchKeys': deleted_search,
            'deletedPlaceKeys': deleted_place,
            'totalDeleted': deleted_search + deleted_place,
        })

    except Exception as e:
        logger.error(f"[Cache Clear] エラー: {e}", exc_info=True)
        return jsonify({'error': 'Failed to clear cache', 'message': str(e)}), 500


@app.route('/health', methods=['GET', 'OPTIONS'])
def health_check():
    """ヘルスチェック"""
    if request.method == 'OPTIONS':
        return '', 204

    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now().isoformat(),
        'services': {
            'gemini': 'ok' if api_integrations.get_gemini_api_key() else 'not configured',
            'places_api': 'ok' if api_integrations.get_maps_api_key() else 'not configured',
            'kv_store': 'ok' if get_kv_store().enabled else 'not configured',
        }
    })


if __name__ == '__main__':
    port = int(os.getenv('PORT', 8080))
    app.run(host='0.0.0.0', port=port, debug=False)
