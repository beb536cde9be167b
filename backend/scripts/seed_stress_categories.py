"""
Seed Stress Product Categories

Generates a synthetic category tree (balanced BFS, random or linear
distribution) and bulk inserts it in chunks. Prints a JSON summary suitable
for CI checks; --mermaid writes a preview graph.

Run with: python backend/scripts/seed_stress_categories.py --count 1000 --depth 3 --dry-run
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
from catalog.services.tree_generator import Distribution, seed_stress_tree


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a synthetic product category tree")
    parser.add_argument("--count", type=int, default=1000, help="Number of categories to generate")
    parser.add_argument("--depth", type=int, default=3, help="Maximum depth (roots are depth 0)")
    parser.add_argument("--siblings", type=int, default=5, help="Children per parent")
    parser.add_argument("--chunk", type=int, default=settings.SEED_CHUNK_SIZE, help="Rows per insert batch")
    parser.add_argument("--distribution", choices=[d.value for d in Distribution],
                        default=Distribution.BALANCED.value)
    parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable trees")
    parser.add_argument("--dry-run", action="store_true", help="Generate and report without inserting")
    parser.add_argument("--clean", action="store_true", help="Delete existing categories first")
    parser.add_argument("--mermaid", type=Path, default=None, help="Write the Mermaid preview to this file")
    args = parser.parse_args()

    setup_logging()
    db = SessionLocal()

    try:
        summary = seed_stress_tree(
            db,
            count=args.count,
            depth=args.depth,
            siblings=args.siblings,
            distribution=args.distribution,
            chunk_size=args.chunk,
            dry_run=args.dry_run,
            clean=args.clean,
            seed=args.seed,
            cache=CategoryCache.from_settings(),
        )
    except CatalogException as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        db.close()

    mermaid = summary.pop("mermaid")
    if args.mermaid:
        args.mermaid.parent.mkdir(parents=True, exist_ok=True)
        args.mermaid.write_text(mermaid, encoding="utf-8")
        print(f"✅ Mermaid preview written to {args.mermaid}", file=sys.stderr)

    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
