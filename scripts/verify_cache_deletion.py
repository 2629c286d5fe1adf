# -*- coding: utf-8 -*-
"""
キャッシュ削除の検証スクリプト

使い方:
  python scripts/verify_cache_deletion.py                         # 残存件数を表示
  python scripts/verify_cache_deletion.py --count-only
  python scripts/verify_cache_deletion.py --verify-sample         # 先頭10件の存在を再確認
  python scripts/verify_cache_deletion.py --full-scan             # 残存キーを全件表示
  python scripts/verify_cache_deletion.py --keys-file=/tmp/deleted-keys.txt
"""
import os
import sys
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from kv_store import get_kv_url, get_redis_client
from cache_maintenance import (
    scan_keys,
    verify_deleted,
    read_place_ids,
    DEFAULT_PATTERN,
    VERIFY_BATCH_SIZE,
)

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)

SAMPLE_DISPLAY_LIMIT = 20


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='キャッシュが削除されたかを検証')
    parser.add_argument('--pattern', default=DEFAULT_PATTERN, help=f'検証するキーのパターン (既定: {DEFAULT_PATTERN})')
    parser.add_argument('--count-only', action='store_true', help='件数のみ表示')
    parser.add_argument('--verify-sample', action='store_true', help='サンプルの存在を再確認')
    parser.add_argument('--full-scan', action='store_true', help='残存キーを全件表示')
    parser.add_argument('--keys-file', default=None, help='削除したはずのキー一覧(1行1件)')
    return parser


def success_rate(deleted: int, total: int) -> float:
    return deleted / total * 100 if total else 100.0


def verify_keys_file(client, path: str) -> int:
    keys = read_place_ids(path)
    deleted, remaining = verify_deleted(client, keys)

    print(f"🔍 キー一覧を検証: {path} ({len(keys)}件)")
    print(f"   削除済み: {len(deleted)}件")
    print(f"   残存: {len(remaining)}件")
    print(f"   成功率: {success_rate(len(deleted), len(keys)):.1f}%")

    for key in remaining[:SAMPLE_DISPLAY_LIMIT]:
        print(f"   ❌ {key}")
    if len(remaining) > SAMPLE_DISPLAY_LIMIT:
        print(f"   ... 他 {len(remaining) - SAMPLE_DISPLAY_LIMIT}件")

    return 1 if remaining else 0


def main(argv=None) -> int:
    load_dotenv('.env.local')
    args = build_parser().parse_args(argv)

    if not get_kv_url():
        print('❌ KV_URL または REDIS_URL が設定されていません')
        return 1

    try:
        client = get_redis_client()

        if args.keys_file:
            return verify_keys_file(client, args.keys_file)

        keys = scan_keys(client, args.pattern)
        print(f"🔍 パターン {args.pattern}: 残存 {len(keys)}件")

        if args.count_only:
            return 0

        if args.verify_sample and keys:
            sample = keys[:VERIFY_BATCH_SIZE]
            _, remaining = verify_deleted(client, sample)
            print(f"   サンプル {len(sample)}件中 {len(remaining)}件が存在")

        shown = keys if args.full_scan else keys[:SAMPLE_DISPLAY_LIMIT]
        for key in shown:
            print(f"   - {key}")
        if len(keys) > len(shown):
            print(f"   ... 他 {len(keys) - len(shown)}件 (--full-scan で全件表示)")

        if keys:
            print('⚠️  キャッシュが残っています')
        else:
            print('✅ 該当するキャッシュはありません')

    except OSError as e:
        print(f"❌ ファイルを読み込めません: {e}")
        return 1
    except Exception as e:
        logger.error(f"[Cache Verify] エラー: {e}", exc_info=True)
        print(f"❌ 検証に失敗しました: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
