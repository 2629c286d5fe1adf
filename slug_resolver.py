# -*- coding: utf-8 -*-
"""
URLスラッグ生成モジュール
日本語の施設名・地域名を英数字のURLスラッグに変換する

変換の優先順位:
1. regions.json / municipalities.json のテーブル参照
2. pykakasi によるヘボン式ローマ字変換
3. 1文字ずつのかな→ローマ字変換(最終フォールバック)

例: "東京都練馬区谷原2丁目3-8" → "練馬区" → "nerima"
"""
import re
import secrets
import logging
from functools import lru_cache
from urllib.parse import quote
from typing import Optional, Tuple, Dict

import pykakasi

from region_data import load_regions, load_municipalities

logger = logging.getLogger(__name__)

# ========================================
# 定数
# ========================================

MIN_FACILITY_SLUG_LENGTH = 3
PLACE_ID_SUFFIX_LENGTH = 8
DEFAULT_PHOTO_MAX_WIDTH = 800

# 末尾の行政区分・駅を1つだけ除去
ADMIN_SUFFIX_PATTERN = re.compile(r'(区|市|町|村|駅)$')

# 住所から市区町村を抽出(区 → 市 → 町村の順)
REGION_NAME_PATTERNS = [
    re.compile(r'([^都道府県]+区)'),
    re.compile(r'([^都道府県]+市)'),
    re.compile(r'([^都道府県]+[町村])'),
]

PLACE_ID_SUFFIX_PATTERN = re.compile(r'-([A-Za-z0-9]{8})$')

# 変換前に取り除く語(会社形態・住所単位)
REMOVABLE_WORDS = [
    '株式会社', '有限会社', '合同会社',
    '丁目', '番地', '号',
    '都', '府', '県', '区', '市', '町', '村',
]

# よく使われる熟語の読み
KANJI_READINGS: Dict[str, str] = {
    '葬儀': 'sogi',
    '家族': 'kazoku',
    '斎場': 'saijo',
    '会館': 'kaikan',
    '葬': 'so',
    '祭': 'sai',
}

KANA_ROMAJI: Dict[str, str] = {
    # 平仮名
    'あ': 'a', 'い': 'i', 'う': 'u', 'え': 'e', 'お': 'o',
    'か': 'ka', 'き': 'ki', 'く': 'ku', 'け': 'ke', 'こ': 'ko',
    'さ': 'sa', 'し': 'shi', 'す': 'su', 'せ': 'se', 'そ': 'so',
    'た': 'ta', 'ち': 'chi', 'つ': 'tsu', 'て': 'te', 'と': 'to',
    'な': 'na', 'に': 'ni', 'ぬ': 'nu', 'ね': 'ne', 'の': 'no',
    'は': 'ha', 'ひ': 'hi', 'ふ': 'fu', 'へ': 'he', 'ほ': 'ho',
    'ま': 'ma', 'み': 'mi', 'む': 'mu', 'め': 'me', 'も': 'mo',
    'や': 'ya', 'ゆ': 'yu', 'よ': 'yo',
    'ら': 'ra', 'り': 'ri', 'る': 'ru', 'れ': 're', 'ろ': 'ro',
    'わ': 'wa', 'を': 'wo', 'ん': 'n',
    # 濁音
    'が': 'ga', 'ぎ': 'gi', 'ぐ': 'gu', 'げ': 'ge', 'ご': 'go',
    'ざ': 'za', 'じ': 'ji', 'ず': 'zu', 'ぜ': 'ze', 'ぞ': 'zo',
    'だ': 'da', 'ぢ': 'ji', 'づ': 'zu', 'で': 'de', 'ど': 'do',
    'ば': 'ba', 'び': 'bi', 'ぶ': 'bu', 'べ': 'be', 'ぼ': 'bo',
    # 半濁音
    'ぱ': 'pa', 'ぴ': 'pi', 'ぷ': 'pu', 'ぺ': 'pe', 'ぽ': 'po',
    # 小書き
    'ぁ': 'a', 'ぃ': 'i', 'ぅ': 'u', 'ぇ': 'e', 'ぉ': 'o',
    'ゃ': 'ya', 'ゅ': 'yu', 'ょ': 'yo', 'っ': '',
    # カタカナ
    'ア': 'a', 'イ': 'i', 'ウ': 'u', 'エ': 'e', 'オ': 'o',
    'カ': 'ka', 'キ': 'ki', 'ク': 'ku', 'ケ': 'ke', 'コ': 'ko',
    'サ': 'sa', 'シ': 'shi', 'ス': 'su', 'セ': 'se', 'ソ': 'so',
    'タ': 'ta', 'チ': 'chi', 'ツ': 'tsu', 'テ': 'te', 'ト': 'to',
    'ナ': 'na', 'ニ': 'ni', 'ヌ': 'nu', 'ネ': 'ne', 'ノ': 'no',
    'ハ': 'ha', 'ヒ': 'hi', 'フ': 'fu', 'ヘ': 'he', 'ホ': 'ho',
    'マ': 'ma', 'ミ': 'mi', 'ム': 'mu', 'メ': 'me', 'モ': 'mo',
    'ヤ': 'ya', 'ユ': 'yu', 'ヨ': 'yo',
    'ラ': 'ra', 'リ': 'ri', 'ル': 'ru', 'レ': 're', 'ロ': 'ro',
    'ワ': 'wa', 'ヲ': 'wo', 'ン': 'n',
    'ガ': 'ga', 'ギ': 'gi', 'グ': 'gu', 'ゲ': 'ge', 'ゴ': 'go',
    'ザ': 'za', 'ジ': 'ji', 'ズ': 'zu', 'ゼ': 'ze', 'ゾ': 'zo',
    'ダ': 'da', 'ヂ': 'ji', 'ヅ': 'zu', 'デ': 'de', 'ド': 'do',
    'バ': 'ba', 'ビ': 'bi', 'ブ': 'bu', 'ベ': 'be', 'ボ': 'bo',
    'パ': 'pa', 'ピ': 'pi', 'プ': 'pu', 'ペ': 'pe', 'ポ': 'po',
    'ァ': 'a', 'ィ': 'i', 'ゥ': 'u', 'ェ': 'e', 'ォ': 'o',
    'ャ': 'ya', 'ュ': 'yu', 'ョ': 'yo', 'ッ': '',
    # 長音
    'ー': '',
}


# ========================================
# 共通ユーティリティ
# ========================================

def clean_slug(text: str) -> str:
    """小文字化し [a-z0-9-] 以外を除去、連続ハイフンを1つにまとめる"""
    slug = (text or '').lower()
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'[^a-z0-9-]', '', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def random_slug_token(prefix: str = 'facility') -> str:
    """変換不能時のランダムなスラッグ"""
    return f"{prefix}-{secrets.token_hex(4)}"


def get_place_id_suffix(place_id: str) -> str:
    """Place IDの先頭8文字(小文字)。"places/" 接頭辞は除去"""
    if not place_id:
        return ''
    normalized = place_id[len('places/'):] if place_id.startswith('places/') else place_id
    return normalized[:PLACE_ID_SUFFIX_LENGTH].lower()


# ========================================
# 1. テーブル参照
# ========================================

def _lookup_tables(text: str) -> Tuple[bool, str]:
    """
    regions.json → municipalities.json の順に参照
    戻り値: (見つかったか, ローマ字)。ローマ字が空のエントリもヒット扱い
    """
    cleaned = ADMIN_SUFFIX_PATTERN.sub('', text)
    candidates = [text] if cleaned == text or not cleaned else [text, cleaned]

    regions = load_regions()
    for key in candidates:
        entry = regions.get(key)
        if entry is not None:
            logger.debug(f"[Slug] regions.jsonヒット: {key} → {entry.get('romaji')}")
            return True, entry.get('romaji') or ''

    municipalities = load_municipalities()
    for key in candidates:
        if key in municipalities:
            logger.debug(f"[Slug] municipalities.jsonヒット: {key} → {municipalities[key]}")
            return True, municipalities[key] or ''

    return False, ''


# ========================================
# 2. pykakasi
# ========================================

@lru_cache(maxsize=1)
def _get_kakasi():
    return pykakasi.kakasi()


def romanize_with_analyzer(text: str) -> str:
    """
    pykakasi でヘボン式ローマ字に変換し、[a-z0-9] のみに整形
    変換に失敗した場合は空文字を返す(呼び出し側で次の手段へ)
    """
    if not text:
        return ''

    try:
        parts = _get_kakasi().convert(text)
    except Exception as e:
        logger.warning(f"[Slug] pykakasi変換エラー: {text} - {e}")
        return ''

    romaji = ''.join(part.get('hepburn', '') for part in parts)
    return re.sub(r'[^a-z0-9]', '', romaji.lower())


# ========================================
# 3. 1文字ずつのかな変換
# ========================================

def kana_to_romaji(text: str) -> str:
    """熟語・不要語を処理してから、かなを1文字ずつローマ字に変換"""
    slug = (text or '').lower().strip()

    for word in REMOVABLE_WORDS:
        slug = slug.replace(word, '')
    for kanji, reading in KANJI_READINGS.items():
        slug = slug.replace(kanji, reading)

    result = []
    for char in slug:
        if char in KANA_ROMAJI:
            result.append(KANA_ROMAJI[char])
        elif re.match(r'[a-z0-9]', char):
            result.append(char)
        elif char.isspace() or char == '-':
            result.append('-')
        # 変換できない文字は無視

    return clean_slug(''.join(result))


# ========================================
# 変換チェーン
# ========================================

def to_romaji(text: str) -> str:
    """日本語文字列をローマ字スラッグに変換(テーブル → pykakasi → かな表)"""
    text = (text or '').strip()
    if not text:
        return ''

    found, romaji = _lookup_tables(text)
    if found and romaji:
        return clean_slug(romaji)
    if found:
        # テーブルにあるがローマ字が空: かな表で変換
        logger.info(f"[Slug] テーブルのローマ字が空のため文字変換: {text}")
        return kana_to_romaji(text)

    romaji = romanize_with_analyzer(text)
    if romaji:
        return romaji

    return kana_to_romaji(text)


def generate_facility_slug(title: str, place_id: Optional[str] = None, with_suffix: bool = False) -> str:
    """
    施設名からURLスラッグを生成
    - 3文字未満の場合は Place ID の先頭8文字を付与
    - with_suffix=True の場合は常に付与(スラッグ↔ID対応の登録用)
    """
    base = to_romaji(title)
    suffix = get_place_id_suffix(place_id) if place_id else ''

    if suffix and (with_suffix or len(base) < MIN_FACILITY_SLUG_LENGTH):
        slug = f"{base}-{suffix}" if base else suffix
    else:
        slug = base

    slug = clean_slug(slug)
    if not slug:
        slug = random_slug_token()
        logger.warning(f"[Slug] スラッグ生成失敗のためランダムIDを使用: {title} → {slug}")

    return slug


def extract_region_name(address: str) -> str:
    """住所から市区町村名を抽出。該当しなければ住所全体を返す"""
    if not address:
        return ''
    for pattern in REGION_NAME_PATTERNS:
        match = pattern.search(address)
        if match:
            return match.group(1)
    return address


def generate_region_slug(address: str) -> str:
    """
    住所から地域スラッグを生成
    例: "東京都練馬区谷原2丁目3-8" → "nerima"
    """
    region_name = extract_region_name(address)
    slug = to_romaji(region_name)
    if not slug and region_name != address:
        slug = to_romaji(address)
    if not slug:
        slug = random_slug_token('area')
        logger.warning(f"[Slug] 地域スラッグ生成失敗のためランダムIDを使用: {address} → {slug}")
    return slug


def extract_place_id_suffix(slug: str) -> Optional[str]:
    """スラッグ末尾の8文字のPlace ID接頭辞を取り出す"""
    if not slug:
        return None
    match = PLACE_ID_SUFFIX_PATTERN.search(slug)
    return match.group(1) if match else None


# ========================================
# URL生成
# ========================================

def get_facility_url(slug: str) -> str:
    return f"/detail/{slug}"


def get_region_list_url(slug: str) -> str:
    return f"/list/{slug}"


def get_current_location_list_url() -> str:
    return "/list/current"


def get_photo_proxy_url(photo_reference: str, max_width: int = DEFAULT_PHOTO_MAX_WIDTH) -> str:
    """写真プロキシのURL(APIキーをクライアントに渡さない)"""
    return f"/api/photo?ref={quote(photo_reference, safe='')}&maxwidth={max_width}"


def generate_facility_urls(title: str, address: str, place_id: str, with_suffix: bool = False) -> dict:
    """Place IDと施設名・住所からスラッグとURLを生成"""
    facility_slug = generate_facility_slug(title, place_id, with_suffix=with_suffix)
    region_slug = generate_region_slug(address)

    return {
        'facilitySlug': facility_slug,
        'regionSlug': region_slug,
        'facilityUrl': get_facility_url(facility_slug),
        'regionUrl': get_region_list_url(region_slug),
    }
