# -*- coding: utf-8 -*-
"""
regions.json の romaji を補完する

- romaji が空、または [a-z0-9-] 以外を含むエントリを pykakasi → かな表 で再変換
- 全エントリの romaji を ^[a-z0-9-]*$ に整形
- 変換できない場合は "unknown"

使い方:
  python scripts/fill_romaji_regions.py --dry-run
  python scripts/fill_romaji_regions.py --path=data/regions.json
"""
import os
import re
import sys
import json
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from slug_resolver import romanize_with_analyzer, kana_to_romaji, clean_slug, ADMIN_SUFFIX_PATTERN
from region_data import REGIONS_JSON_PATH

VALID_ROMAJI = re.compile(r'^[a-z0-9-]+$')
FALLBACK_ROMAJI = 'unknown'


def convert_name(name: str) -> str:
    base = ADMIN_SUFFIX_PATTERN.sub('', name) or name
    return romanize_with_analyzer(base) or kana_to_romaji(base) or FALLBACK_ROMAJI


def fill_romaji(regions: dict) -> list:
    """
    regions を直接書き換える
    戻り値: 変更したエントリの [(名前, 変更前, 変更後)]
    """
    changes = []
    for name, entry in regions.items():
        before = entry.get('romaji') or ''
        after = clean_slug(before)

        if not after or not VALID_ROMAJI.match(after):
            after = convert_name(name)

        if after != before:
            entry['romaji'] = after
            changes.append((name, before, after))

    return changes


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='regions.json の romaji を補完')
    parser.add_argument('--path', default=REGIONS_JSON_PATH, help='regions.json のパス')
    parser.add_argument('--dry-run', action='store_true', help='変更内容を表示するだけで保存しない')
    args = parser.parse_args(argv)

    try:
        with open(args.path, 'r', encoding='utf-8') as f:
            regions = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"❌ 読み込みに失敗しました: {args.path} - {e}")
        return 1

    changes = fill_romaji(regions)

    for name, before, after in changes:
        print(f"   {name}: '{before}' → '{after}'")
    print(f"📊 {len(regions)}件中 {len(changes)}件を更新")

    if args.dry_run:
        print('🔎 dry-run のため保存しません')
        return 0

    if changes:
        with open(args.path, 'w', encoding='utf-8') as f:
            json.dump(regions, f, ensure_ascii=False, indent=2)
            f.write('\n')
        print(f"✅ 保存しました: {args.path}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
