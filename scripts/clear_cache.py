# -*- coding: utf-8 -*-
"""
キャッシュ一括削除スクリプト

使い方:
  python scripts/clear_cache.py                          # description:* を全削除
  python scripts/clear_cache.py --limit=100              # 100件だけ削除(テスト用)
  python scripts/clear_cache.py --verify                 # 1件ずつ削除して存在確認
  python scripts/clear_cache.py --pattern='place:*' --batch-size=500
  python scripts/clear_cache.py --keys-out=/tmp/deleted-keys.txt
"""
import os
import sys
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from kv_store import get_kv_url, get_redis_client
from cache_maintenance import (
    clear_by_pattern,
    DEFAULT_PATTERN,
    PROGRESS_FILE,
)

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='KVストアのキャッシュをパターン指定で削除')
    parser.add_argument('--pattern', default=DEFAULT_PATTERN, help=f'削除するキーのパターン (既定: {DEFAULT_PATTERN})')
    parser.add_argument('--limit', type=int, default=None, help='削除する最大件数')
    parser.add_argument('--batch-size', type=int, default=None, help='1バッチの件数')
    parser.add_argument('--verify', action='store_true', help='1件ずつ削除して存在確認する')
    parser.add_argument('--progress-file', default=PROGRESS_FILE, help='進捗ファイルの保存先')
    parser.add_argument('--keys-out', default=None, help='削除対象キーの一覧を書き出すファイル')
    return parser


def print_progress(stats):
    print(f"  ⏳ 削除済み: {stats.totalDeleted}/{stats.totalScanned}件 "
          f"(失敗: {len(stats.failedKeys)}件, {stats.rate:.1f}件/秒)")


def main(argv=None) -> int:
    load_dotenv('.env.local')
    args = build_parser().parse_args(argv)

    if not get_kv_url():
        print('❌ KV_URL または REDIS_URL が設定されていません')
        return 1

    print('🗑️  キャッシュ削除を開始します')
    print(f"   パターン: {args.pattern}")
    print(f"   モード: {'検証モード(1件ずつ)' if args.verify else 'バッチモード'}")
    if args.limit:
        print(f"   上限: {args.limit}件")

    try:
        client = get_redis_client()
        stats, keys = clear_by_pattern(
            client,
            pattern=args.pattern,
            batch_size=args.batch_size,
            limit=args.limit,
            verify=args.verify,
            progress_file=args.progress_file,
            on_progress=print_progress,
        )
    except Exception as e:
        logger.error(f"[Cache Clear] エラー: {e}", exc_info=True)
        print(f"❌ 削除に失敗しました: {e}")
        return 1

    if args.keys_out:
        try:
            with open(args.keys_out, 'w', encoding='utf-8') as f:
                f.write('\n'.join(keys) + ('\n' if keys else ''))
            print(f"📝 対象キーを書き出しました: {args.keys_out} ({len(keys)}件)")
        except OSError as e:
            print(f"⚠️  キー一覧の書き出しに失敗しました: {e}")

    print('')
    print('📊 結果')
    print(f"   スキャン: {stats.totalScanned}件")
    print(f"   削除: {stats.totalDeleted}件")
    if args.verify:
        print(f"   検証済み: {stats.verifiedDeleted}件")
    print(f"   失敗: {len(stats.failedKeys)}件")
    print(f"   所要時間: {stats.elapsed:.1f}秒 ({stats.rate:.1f}件/秒)")

    if stats.failedKeys:
        print('')
        print('⚠️  削除に失敗したキー:')
        for key in stats.failedKeys:
            print(f"   - {key}")
        return 1

    print('✅ 完了')
    return 0


if __name__ == '__main__':
    sys.exit(main())
