# -*- coding: utf-8 -*-
"""
施設紹介文生成モジュール
- Gemini(Google検索 グラウンディング)で紹介文を生成
- 外国語の混入を検出・除去し、必要に応じて再生成
- AIらしい前置き文の除去・句読点の統一
- description:{placeId} に期限なしでキャッシュ
"""
import re
import logging
from typing import Optional, Tuple

import api_integrations
from kv_store import KVStore, description_key

logger = logging.getLogger(__name__)

# ========================================
# 定数
# ========================================

MAX_RETRIES = 2
MIN_SANITIZED_LENGTH = 500
MIN_DESCRIPTION_LENGTH = 300


class DescriptionTooShortError(Exception):
    """生成された紹介文が短すぎる"""

    def __init__(self, length: int):
        self.length = length
        super().__init__('Generated description is too short')


# ========================================
# 外国語検出
# ========================================

FOREIGN_PATTERNS = [
    re.compile(r'[A-Za-z]{3,}'),                              # ラテン文字(3文字以上連続)
    re.compile(r'[\u0400-\u04FF]'),                           # キリル文字
    re.compile(r'[\u0600-\u06FF\u0750-\u077F]'),              # アラビア文字
    re.compile(r'[\u0900-\u097F]'),                           # デーバナーガリー文字
    re.compile(r'[\uFB50-\uFDFF\uFE70-\uFEFF]'),              # アラビア文字(表示形)
    re.compile(r'[\u0E00-\u0E7F]'),                           # タイ文字
    re.compile(r'[\u00C0-\u00C3\u00C8-\u00CA\u00CC-\u00CD\u00D2-\u00D5\u00D9-\u00DA\u00DD'
               r'\u0102\u0110\u0128\u0168\u01A0\u01AF\u1EA0-\u1EF9]', re.IGNORECASE),  # ベトナム語の声調記号
    re.compile(r'[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]'), # ハングル
    re.compile(r'[\u31C0-\u31EF]'),                           # CJK筆画
]

# 文単位で除去しきれなかった文字の削除用
FOREIGN_REMOVAL_PATTERNS = [
    re.compile(r'[A-Za-z]{3,}'),
    re.compile(r'[\u0400-\u04FF]+'),
    re.compile(r'[\u0600-\u06FF\u0750-\u077F\uFB50-\uFDFF\uFE70-\uFEFF]+'),
    re.compile(r'[\u0900-\u097F]+'),
    re.compile(r'[\u0E00-\u0E7F]+'),
    re.compile(r'[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]+'),
]

SENTENCE_SPLIT_PATTERN = re.compile(r'(?<=[。！？\n])')

AI_PREAMBLE_PATTERNS = [
    re.compile(r'^はい[、。].{0,50}(取材記事|作成|書き|記事).{0,20}\n+'),
    re.compile(r'^承知.{0,30}\n+'),
    re.compile(r'^それでは.{0,50}\n+'),
    re.compile(r'^以下.{0,30}(です|ます)[。\n]+'),
    re.compile(r'^こんにちは.{0,50}\n+'),
    re.compile(r'^.*の取材記事を(作成|書き).{0,20}\n+'),
]


def contains_foreign_language(text: str) -> bool:
    """日本語以外の文字(英単語・キリル・アラビア・ハングル等)を含むか"""
    if not text:
        return False
    return any(pattern.search(text) for pattern in FOREIGN_PATTERNS)


def sanitize_japanese_text(text: str) -> str:
    """外国語を含む文を除去し、残った外国語文字も削除する"""
    sentences = SENTENCE_SPLIT_PATTERN.split(text or '')

    clean_sentences = []
    for sentence in sentences:
        if not sentence.strip():
            # 段落区切りの改行は保持
            if sentence:
                clean_sentences.append(sentence)
            continue
        if contains_foreign_language(sentence):
            logger.info(f"[Sanitize] 外国語を含む文を除去: {sentence.strip()[:50]}...")
            continue
        clean_sentences.append(sentence)

    result = ''.join(clean_sentences)
    for pattern in FOREIGN_REMOVAL_PATTERNS:
        result = pattern.sub('', result)

    result = result.replace('.', '。')
    result = re.sub(r'[ \t]{2,}', ' ', result)
    return result.strip()


def strip_ai_preamble(text: str) -> str:
    """「はい、〜を作成します」などの前置きを除去"""
    for pattern in AI_PREAMBLE_PATTERNS:
        if pattern.search(text):
            before = len(text)
            text = pattern.sub('', text, count=1)
            logger.info(f"[Description] 前置き文を除去: {before - len(text)}文字")
    return text


def clean_description(text: str) -> str:
    """句読点の統一と空白・改行の整理"""
    text = text.replace('.', '。').replace(',', '、')
    text = re.sub(r'\n{3,}', '\n\n', text)
    text = re.sub(r'[ \t]{2,}', ' ', text)
    return text.strip()


# ========================================
# プロンプト
# ========================================

def build_description_prompt(title: str, address: Optional[str], station: Optional[dict]) -> str:
    if station:
        station_line = f"最寄り駅: {station['name']}駅(徒歩約{station['walkingMinutes']}分、約{station['distance']}m)"
        access_rule = f"最寄り駅は{station['name']}駅(徒歩{station['walkingMinutes']}分)として記載してください。"
    else:
        station_line = ''
        access_rule = '駅やアクセス時間については言及しないでください。'

    return f"""あなたは「{title}」の広報担当者です。自社の施設をウェブサイトで紹介する文章を書いてください。

■ 設定(この情報のみを使用してください)
施設名: {title}
住所: {address or '(住所不明)'}
{station_line}

■ 制約
・{access_rule}
・駐車場台数や収容人数など、設定にない具体的な数字は書かないでください
・電話番号、箇条書き、英語は使わないでください
・「当施設」「私ども」を一人称とし、丁寧で落ち着いた敬語で書いてください

■ 構成
場所の紹介、施設の特徴、対応できる葬儀の種類、スタッフ・サービスの強み、見学・相談の案内、締めの5〜6段落(段落間は空行)。

■ 出力ルール
・前置き禁止。「{title}は〜」で始める
・800〜1200文字
・日本語のみ

Web検索で{title}の情報を確認してから書いてください。"""


# ========================================
# 生成
# ========================================

def generate_description_text(title: str, address: Optional[str] = None, station: Optional[dict] = None) -> str:
    """
    紹介文を生成する
    - 外国語が混入した場合はサニタイズし、500文字未満なら最大2回まで再生成
    - API エラーも同じ回数まで再試行
    - 最終的に300文字未満なら DescriptionTooShortError
    """
    prompt = build_description_prompt(title, address, station)

    description = ''
    foreign_detected = False
    attempt = 0

    while attempt <= MAX_RETRIES:
        try:
            description = api_integrations.generate_with_search_grounding(prompt).strip()
        except api_integrations.GeminiAPIError as e:
            logger.error(f"[Gemini API] 生成エラー (試行 {attempt + 1}/{MAX_RETRIES + 1}): {e}")
            if attempt >= MAX_RETRIES:
                raise
            attempt += 1
            continue

        logger.info(f"[Gemini API] 生成成功: {len(description)}文字")

        if not contains_foreign_language(description):
            break

        foreign_detected = True
        logger.warning(f"[Description] 外国語を検出 (試行 {attempt + 1}/{MAX_RETRIES + 1})、サニタイズします")
        sanitized = sanitize_japanese_text(description)
        logger.info(f"[Description] サニタイズ後: {len(sanitized)}文字 (元: {len(description)}文字)")

        if len(sanitized) >= MIN_SANITIZED_LENGTH:
            description = sanitized
            break

        if attempt < MAX_RETRIES:
            logger.warning(f"[Description] サニタイズ後が短すぎるため再生成 ({len(sanitized)}文字)")
            attempt += 1
            continue

        # 最大リトライ回数に到達: サニタイズ済みを優先して使用
        description = sanitized or description
        logger.warning(f"[Description] 最大リトライ回数に到達、最善の結果を使用 ({len(description)}文字)")
        break

    description = strip_ai_preamble(description)
    description = clean_description(description)

    logger.info(f"[Description] 最終文字数: {len(description)}文字, 外国語検出: {foreign_detected}")

    if len(description) < MIN_DESCRIPTION_LENGTH:
        logger.warning(f"[Description] 生成結果が短すぎます: {len(description)}文字")
        raise DescriptionTooShortError(len(description))

    return description


def get_or_generate_description(place_id: str, title: str, address: Optional[str], store: KVStore) -> Tuple[str, bool]:
    """
    キャッシュ済みの紹介文を返す。なければ最寄り駅を調べてから生成し、期限なしでキャッシュ
    戻り値: (紹介文, キャッシュヒットか)
    """
    key = description_key(place_id)

    cached = store.get(key)
    if cached:
        logger.info(f"[Description Cache] HIT: {key} ({len(cached)}文字)")
        return cached, True

    logger.info(f"[Description Cache] MISS: {key}、生成します")

    station = None
    if address:
        station = api_integrations.find_nearest_station_for_address(address)

    description = generate_description_text(title, address, station)

    if store.set(key, description):
        logger.info(f"[Description Cache] 保存成功: {key}")
    else:
        logger.warning(f"[Description Cache] 保存失敗: {key}")

    return description, False
