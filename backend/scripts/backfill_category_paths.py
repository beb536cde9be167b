"""
Backfill Product Category Paths

Recomputes the materialized path and depth of every category (trashed rows
included) from the parent_id chain, roots first then level by level.

Run with: python backend/scripts/backfill_category_paths.py --dry-run
"""
import argparse
import json
import sys
from pathlib import Path

# Add backend directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.core.settings import settings
from catalog.db.session import SessionLocal
from catalog.exceptions import CatalogException
from catalog.logging_config import setup_logging
from catalog.services.category_cache import CategoryCache
from catalog.services.path_backfill import backfill_paths, verify_paths


def main() -> int:
    parser = argparse.ArgumentParser(description="Fill product category path/depth from the parent chain")
    parser.add_argument("--chunk", type=int, default=settings.BACKFILL_CHUNK_SIZE,
                        help="Rows per batch (1-10000)")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing")
    parser.add_argument("--verify", action="store_true", help="Only list rows whose path is wrong")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    setup_logging()
    db = SessionLocal()

    try:
        if args.verify:
            mismatched = verify_paths(db)
            if mismatched:
                print(f"❌ {len(mismatched)} categories have an incorrect path")
                print("   IDs: " + ", ".join(str(i) for i in mismatched[:10])
                      + (f" ... and {len(mismatched) - 10} more" if len(mismatched) > 10 else ""))
                return 1
            print("✅ All category paths match their parent chain")
            return 0

        report = backfill_paths(
            db,
            chunk_size=args.chunk,
            dry_run=args.dry_run,
            cache=CategoryCache.from_settings(),
        )
    except CatalogException as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        db.close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    print("=" * 60)
    print("Product Category Path Backfill" + (" (dry run)" if report.dry_run else ""))
    print("=" * 60)
    print(f"  Total categories:  {report.total}")
    print(f"  Needing update:    {report.needs_update}")
    print(f"  {'Would update' if report.dry_run else 'Updated'}:      {report.processed}")
    print(f"  Skipped (orphans): {len(report.skipped)}")
    print(f"  Remaining:         {report.remaining}")
    print(f"  Duration:          {report.duration_seconds}s")

    if report.preview:
        print("\nSample paths:")
        for entry in report.preview[:8]:
            print(f"  • D{entry['depth']} ID:{entry['id']} => {entry['path']}")

    return 0 if report.remaining == 0 or report.dry_run else 1


if __name__ == "__main__":
    sys.exit(main())
