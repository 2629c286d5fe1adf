# -*- coding: utf-8 -*-
"""
地域マスターデータモジュール
- 47都道府県 (JIS X 0401 コード準拠)
- 8地方区分
- regions.json (市区町村・駅・エリア → ローマ字スラッグ)
- municipalities.json (旧形式の市区町村マップ)
"""
import os
import json
import logging
from functools import lru_cache
from typing import Optional, Dict, List, Any

logger = logging.getLogger(__name__)

# ========================================
# データファイルのパス
# ========================================

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data')
REGIONS_JSON_PATH = os.getenv('REGIONS_JSON_PATH', os.path.join(DATA_DIR, 'regions.json'))
MUNICIPALITIES_JSON_PATH = os.getenv('MUNICIPALITIES_JSON_PATH', os.path.join(DATA_DIR, 'municipalities.json'))

REGION_TYPES = ('municipality', 'station', 'area')

# ========================================
# 47都道府県
# ========================================

PREFECTURES: Dict[str, Dict[str, str]] = {
    '01': {'code': '01', 'name': '北海道', 'romaji': 'hokkaido', 'region': '北海道'},
    '02': {'code': '02', 'name': '青森県', 'romaji': 'aomori', 'region': '東北'},
    '03': {'code': '03', 'name': '岩手県', 'romaji': 'iwate', 'region': '東北'},
    '04': {'code': '04', 'name': '宮城県', 'romaji': 'miyagi', 'region': '東北'},
    '05': {'code': '05', 'name': '秋田県', 'romaji': 'akita', 'region': '東北'},
    '06': {'code': '06', 'name': '山形県', 'romaji': 'yamagata', 'region': '東北'},
    '07': {'code': '07', 'name': '福島県', 'romaji': 'fukushima', 'region': '東北'},
    '08': {'code': '08', 'name': '茨城県', 'romaji': 'ibaraki', 'region': '関東'},
    '09': {'code': '09', 'name': '栃木県', 'romaji': 'tochigi', 'region': '関東'},
    '10': {'code': '10', 'name': '群馬県', 'romaji': 'gunma', 'region': '関東'},
    '11': {'code': '11', 'name': '埼玉県', 'romaji': 'saitama', 'region': '関東'},
    '12': {'code': '12', 'name': '千葉県', 'romaji': 'chiba', 'region': '関東'},
    '13': {'code': '13', 'name': '東京都', 'romaji': 'tokyo', 'region': '関東'},
    '14': {'code': '14', 'name': '神奈川県', 'romaji': 'kanagawa', 'region': '関東'},
    '15': {'code': '15', 'name': '新潟県', 'romaji': 'niigata', 'region': '中部'},
    '16': {'code': '16', 'name': '富山県', 'romaji': 'toyama', 'region': '中部'},
    '17': {'code': '17', 'name': '石川県', 'romaji': 'ishikawa', 'region': '中部'},
    '18': {'code': '18', 'name': '福井県', 'romaji': 'fukui', 'region': '中部'},
    '19': {'code': '19', 'name': '山梨県', 'romaji': 'yamanashi', 'region': '中部'},
    '20': {'code': '20', 'name': '長野県', 'romaji': 'nagano', 'region': '中部'},
    '21': {'code': '21', 'name': '岐阜県', 'romaji': 'gifu', 'region': '中部'},
    '22': {'code': '22', 'name': '静岡県', 'romaji': 'shizuoka', 'region': '中部'},
    '23': {'code': '23', 'name': '愛知県', 'romaji': 'aichi', 'region': '中部'},
    '24': {'code': '24', 'name': '三重県', 'romaji': 'mie', 'region': '近畿'},
    '25': {'code': '25', 'name': '滋賀県', 'romaji': 'shiga', 'region': '近畿'},
    '26': {'code': '26', 'name': '京都府', 'romaji': 'kyoto', 'region': '近畿'},
    '27': {'code': '27', 'name': '大阪府', 'romaji': 'osaka', 'region': '近畿'},
    '28': {'code': '28', 'name': '兵庫県', 'romaji': 'hyogo', 'region': '近畿'},
    '29': {'code': '29', 'name': '奈良県', 'romaji': 'nara', 'region': '近畿'},
    '30': {'code': '30', 'name': '和歌山県', 'romaji': 'wakayama', 'region': '近畿'},
    '31': {'code': '31', 'name': '鳥取県', 'romaji': 'tottori', 'region': '中国'},
    '32': {'code': '32', 'name': '島根県', 'romaji': 'shimane', 'region': '中国'},
    '33': {'code': '33', 'name': '岡山県', 'romaji': 'okayama', 'region': '中国'},
    '34': {'code': '34', 'name': '広島県', 'romaji': 'hiroshima', 'region': '中国'},
    '35': {'code': '35', 'name': '山口県', 'romaji': 'yamaguchi', 'region': '中国'},
    '36': {'code': '36', 'name': '徳島県', 'romaji': 'tokushima', 'region': '四国'},
    '37': {'code': '37', 'name': '香川県', 'romaji': 'kagawa', 'region': '四国'},
    '38': {'code': '38', 'name': '愛媛県', 'romaji': 'ehime', 'region': '四国'},
    '39': {'code': '39', 'name': '高知県', 'romaji': 'kochi', 'region': '四国'},
    '40': {'code': '40', 'name': '福岡県', 'romaji': 'fukuoka', 'region': '九州沖縄'},
    '41': {'code': '41', 'name': '佐賀県', 'romaji': 'saga', 'region': '九州沖縄'},
    '42': {'code': '42', 'name': '長崎県', 'romaji': 'nagasaki', 'region': '九州沖縄'},
    '43': {'code': '43', 'name': '熊本県', 'romaji': 'kumamoto', 'region': '九州沖縄'},
    '44': {'code': '44', 'name': '大分県', 'romaji': 'oita', 'region': '九州沖縄'},
    '45': {'code': '45', 'name': '宮崎県', 'romaji': 'miyazaki', 'region': '九州沖縄'},
    '46': {'code': '46', 'name': '鹿児島県', 'romaji': 'kagoshima', 'region': '九州沖縄'},
    '47': {'code': '47', 'name': '沖縄県', 'romaji': 'okinawa', 'region': '九州沖縄'},
}

# ローマ字 → 都道府県コード
PREFECTURE_ROMAJI_TO_CODE: Dict[str, str] = {
    pref['romaji']: code for code, pref in PREFECTURES.items()
}

# ========================================
# 8地方区分
# ========================================

REGION_BLOCKS: List[Dict[str, Any]] = [
    {'id': 'hokkaido', 'name': '北海道', 'prefCodes': ['01']},
    {'id': 'tohoku', 'name': '東北', 'prefCodes': ['02', '03', '04', '05', '06', '07']},
    {'id': 'kanto', 'name': '関東', 'prefCodes': ['08', '09', '10', '11', '12', '13', '14']},
    {'id': 'chubu', 'name': '中部', 'prefCodes': ['15', '16', '17', '18', '19', '20', '21', '22', '23']},
    {'id': 'kinki', 'name': '近畿', 'prefCodes': ['24', '25', '26', '27', '28', '29', '30']},
    {'id': 'chugoku', 'name': '中国', 'prefCodes': ['31', '32', '33', '34', '35']},
    {'id': 'shikoku', 'name': '四国', 'prefCodes': ['36', '37', '38', '39']},
    {'id': 'kyushu', 'name': '九州沖縄', 'prefCodes': ['40', '41', '42', '43', '44', '45', '46', '47']},
]


def get_prefecture_name(code: str) -> str:
    """都道府県コードから都道府県名を取得"""
    return PREFECTURES.get(code, {}).get('name', '')


def get_prefecture_romaji(code: str) -> str:
    """都道府県コードからローマ字を取得"""
    return PREFECTURES.get(code, {}).get('romaji', '')


def get_prefecture_code(romaji: str) -> str:
    """ローマ字から都道府県コードを取得"""
    return PREFECTURE_ROMAJI_TO_CODE.get((romaji or '').lower(), '')


def get_region_block_by_pref_code(pref_code: str) -> Optional[Dict[str, Any]]:
    """都道府県コードから地方区分を取得"""
    for block in REGION_BLOCKS:
        if pref_code in block['prefCodes']:
            return block
    return None


def get_region_blocks_with_prefectures() -> List[Dict[str, Any]]:
    """地方区分ごとに都道府県情報を展開したリストを返す"""
    return [
        {
            'id': block['id'],
            'name': block['name'],
            'prefectures': [PREFECTURES[code] for code in block['prefCodes']],
        }
        for block in REGION_BLOCKS
    ]


# ========================================
# regions.json / municipalities.json
# ========================================

def _load_json(path: str) -> dict:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        logger.info(f"[Region Data] 読み込み完了: {os.path.basename(path)} ({len(data)}件)")
        return data
    except FileNotFoundError:
        logger.warning(f"[Region Data] ファイルが見つかりません: {path}")
        return {}
    except json.JSONDecodeError as e:
        logger.error(f"[Region Data] JSONパースエラー: {path} - {e}")
        return {}


@lru_cache(maxsize=1)
def load_regions() -> Dict[str, Dict[str, Any]]:
    """regions.json を読み込む(プロセス内で1回のみ)"""
    return _load_json(REGIONS_JSON_PATH)


@lru_cache(maxsize=1)
def load_municipalities() -> Dict[str, str]:
    """municipalities.json を読み込む(プロセス内で1回のみ)"""
    return _load_json(MUNICIPALITIES_JSON_PATH)


def get_region_entry(name: str) -> Optional[Dict[str, Any]]:
    """表示名から RegionEntry を取得"""
    if not name:
        return None
    return load_regions().get(name)


def find_regions_by_romaji(romaji: str) -> List[Dict[str, Any]]:
    """
    ローマ字スラッグに一致する地域エントリを優先度順で返す
    - 同じスラッグに複数の表示名が登録されている場合(「練馬区」「練馬」など)は全件返す
    """
    if not romaji:
        return []

    slug = romaji.lower()
    matches = [
        dict(entry, name=name)
        for name, entry in load_regions().items()
        if entry.get('romaji') == slug
    ]
    matches.sort(key=lambda e: (e.get('priority', 5), e['name']))
    return matches


def get_regions_by_prefecture(pref_code: str, max_priority: int = 5) -> List[Dict[str, Any]]:
    """都道府県コードに属する地域エントリを優先度順で返す"""
    entries = [
        dict(entry, name=name)
        for name, entry in load_regions().items()
        if entry.get('prefecture') == pref_code and entry.get('priority', 5) <= max_priority
    ]
    entries.sort(key=lambda e: (e.get('priority', 5), e['name']))
    return entries
