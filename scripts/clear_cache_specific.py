# -*- coding: utf-8 -*-
"""
特定施設の紹介文キャッシュを削除する

使い方:
  python scripts/clear_cache_specific.py ChIJxxxx ChIJyyyy
  python scripts/clear_cache_specific.py --file=place_ids.txt
  python scripts/clear_cache_specific.py --pattern='description:ChIJ12*' --yes
"""
import os
import sys
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from kv_store import get_kv_url, get_redis_client
from cache_maintenance import (
    clear_specific_keys,
    place_ids_to_keys,
    read_place_ids,
    scan_keys,
)

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='指定した Place ID の紹介文キャッシュを削除')
    parser.add_argument('place_ids', nargs='*', help='Place ID(複数可)')
    parser.add_argument('--file', default=None, help='Place ID を1行1件で記載したファイル')
    parser.add_argument('--pattern', default=None, help='キーのパターン(--yes が必要)')
    parser.add_argument('--yes', action='store_true', help='パターン削除を確認なしで実行')
    return parser


def main(argv=None) -> int:
    load_dotenv('.env.local')
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.place_ids and not args.file and not args.pattern:
        parser.print_usage()
        print('❌ Place ID、--file、--pattern のいずれかを指定してください')
        return 1

    if args.pattern and not args.yes:
        print(f"⚠️  パターン削除は --yes を付けて実行してください: {args.pattern}")
        return 1

    if not get_kv_url():
        print('❌ KV_URL または REDIS_URL が設定されていません')
        return 1

    try:
        client = get_redis_client()

        keys = place_ids_to_keys(args.place_ids)
        if args.file:
            keys.extend(place_ids_to_keys(read_place_ids(args.file)))
        if args.pattern:
            keys.extend(scan_keys(client, args.pattern))

        # 重複を除いて順序を保持
        keys = list(dict.fromkeys(keys))
        print(f"🗑️  {len(keys)}件のキーを削除します")

        results = clear_specific_keys(client, keys)
    except OSError as e:
        print(f"❌ ファイルを読み込めません: {e}")
        return 1
    except Exception as e:
        logger.error(f"[Cache Clear] エラー: {e}", exc_info=True)
        print(f"❌ 削除に失敗しました: {e}")
        return 1

    for key in results['deleted']:
        print(f"   ✅ 削除: {key}")
    for key in results['notFound']:
        print(f"   ➖ 存在しない: {key}")
    for key in results['failed']:
        print(f"   ❌ 失敗: {key}")

    print('')
    print(f"📊 削除: {len(results['deleted'])}件 / 存在しない: {len(results['notFound'])}件 "
          f"/ 失敗: {len(results['failed'])}件")

    return 1 if results['failed'] else 0


if __name__ == '__main__':
    sys.exit(main())
