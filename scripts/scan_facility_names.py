# -*- coding: utf-8 -*-
"""
紹介文キャッシュから施設名を含むものを探す

使い方:
  python scripts/scan_facility_names.py 練馬斎場 谷原会館 --max-keys=1000
"""
import os
import sys
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from kv_store import get_kv_url, get_redis_client
from cache_maintenance import scan_descriptions_for_names, SCAN_NAMES_LIMIT

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    load_dotenv('.env.local')

    parser = argparse.ArgumentParser(description='description:* の本文から施設名を検索')
    parser.add_argument('names', nargs='+', help='施設名(複数可)')
    parser.add_argument('--max-keys', type=int, default=SCAN_NAMES_LIMIT, help='スキャンする最大件数')
    args = parser.parse_args(argv)

    if not get_kv_url():
        print('❌ KV_URL または REDIS_URL が設定されていません')
        return 1

    try:
        found, scanned = scan_descriptions_for_names(get_redis_client(), args.names, max_keys=args.max_keys)
    except Exception as e:
        logger.error(f"[Scan] エラー: {e}", exc_info=True)
        print(f"❌ スキャンに失敗しました: {e}")
        return 1

    print(f"🔍 {scanned}件をスキャン、{len(found)}件が一致")

    for key, name in found.items():
        print(f"   {name}: {key}")

    if found:
        place_ids = ' '.join(key.split(':', 1)[1] for key in found)
        print('')
        print('🗑️  削除するには:')
        print(f"   python scripts/clear_cache_specific.py {place_ids}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
