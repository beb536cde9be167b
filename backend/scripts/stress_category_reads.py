"""
Stress Product Category Reads

Replays a mix of cached and uncached category reads and reports response
times, cache hit rate and SQL statements per request.

Run with: python backend/scripts/stress_category_reads.py --scenario cache --requests 1000
"""
import argparse
import json
import sys
from pathlib import Path

# Add backend directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.db.session import SessionLocal
from catalog.exceptions import CatalogException
from catalog.logging_config import setup_logging
from catalog.services.category_cache import CategoryCache
from catalog.services.read_stress import SCENARIOS, ReadStressRunner


def main() -> int:
    parser = argparse.ArgumentParser(description="Stress test product category reads")
    parser.add_argument("--scenario", choices=("all",) + SCENARIOS, default="all")
    parser.add_argument("--requests", type=int, default=1000, help="Requests per scenario")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable id picks")
    parser.add_argument("--json", action="store_true", help="Print the raw JSON report")
    args = parser.parse_args()

    scenarios = SCENARIOS if args.scenario == "all" else (args.scenario,)

    setup_logging()
    db = SessionLocal()
    try:
        results = ReadStressRunner(db, CategoryCache.from_settings(), seed=args.seed).run(
            scenarios, requests=args.requests,
        )
    except CatalogException as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        db.close()

    if args.json:
        print(json.dumps(results, indent=2))
        return 0

    for name, result in results.items():
        print(f"\n--- {name} ---")
        print(f"  Requests:     {result['succeeded']}/{result['total_requests']} ok, {result['errors']} errors")
        print(f"  Response ms:  avg {result['avg_response_ms']}  "
              f"min {result['min_response_ms']}  max {result['max_response_ms']}")
        if name == "cache":
            print(f"  Cache hits:   {result['cache_hits']} ({result['cache_hit_rate']}%)")
        print(f"  SQL/request:  {result['avg_db_queries']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
