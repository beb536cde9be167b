"""
Warm Up Product Category Cache

Populates the tree, root-id and statistics caches, e.g. right after a deploy.
Already-cached keys are left alone unless --force is given.

Run with: python backend/scripts/warmup_category_cache.py [--active-only] [--force]
"""
import argparse
import sys
from pathlib import Path

# Add backend directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.db.session import SessionLocal
from catalog.logging_config import setup_logging
from catalog.services.category_cache import CategoryCache
from catalog.services.category_query_service import CategoryQueryService


def main() -> int:
    parser = argparse.ArgumentParser(description="Warm up the product category cache")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--active-only", action="store_true", help="Only warm active-category keys")
    scope.add_argument("--all-only", action="store_true", help="Only warm keys that include disabled categories")
    parser.add_argument("--force", action="store_true", help="Flush category keys before warming")
    args = parser.parse_args()

    only_active = True if args.active_only else False if args.all_only else None

    setup_logging()
    cache = CategoryCache.from_settings()
    if not cache.enabled:
        print("❌ REDIS_URL is not configured; nothing to warm up")
        return 1

    db = SessionLocal()
    try:
        warmed = CategoryQueryService(db, cache).warmup(only_active=only_active, force=args.force)
    finally:
        db.close()

    if warmed:
        print(f"✅ Warmed {len(warmed)} keys:")
        for key in warmed:
            print(f"  • {key}")
    else:
        print("✅ Cache already warm; use --force to rebuild")
    return 0


if __name__ == "__main__":
    sys.exit(main())
