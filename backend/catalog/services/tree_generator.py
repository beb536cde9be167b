"""
Bulk Tree Generator

Synthetic category trees for load and stress testing. Rows are built in
memory with ids, paths and depths already assigned, then bulk inserted
without going through CategoryMutationService; validate_no_orphans() is the
integrity check that replaces the per-row validation the bulk path skips.

Distributions:
- balanced: breadth-first fill, every level saturated before the next starts
- random:   random parents and branching, bounded by max depth
- linear:   per-level row budget decaying linearly with depth

``max_depth`` is the deepest depth value a row may get (roots are depth 0),
so trees span ``max_depth + 1`` levels; it is not a level count. With
count=31, depth=3, siblings=2 that gives 2 roots and 30 rows, where a
level-count reading would give 4 roots and 28 rows.
"""
import random
import time
import tracemalloc
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from slugify import slugify
from sqlalchemy import insert, text
from sqlalchemy.orm import Session

from catalog.core.settings import settings
from catalog.exceptions import ValidationError
from catalog.logging_config import audit_log, get_logger
from catalog.models.category import ProductCategory
from catalog.repositories.category_repository import CategoryRepository
from catalog.services.category_cache import CategoryCache
from catalog.tree import path_codec

logger = get_logger(__name__)

ACTIVE_RATIO = 0.9
RANDOM_ROOT_RATIO = 0.15
RANDOM_MAX_ROOTS = 10
MAX_ROOT_RATIO = 0.2


class Distribution(str, Enum):
    BALANCED = "balanced"
    RANDOM = "random"
    LINEAR = "linear"


class BulkTreeGenerator:
    """
    Build ``total`` category rows with depths 0..``max_depth``.

    Ids are assigned sequentially from ``start_id`` so paths can be computed
    before anything touches the database.
    """

    def __init__(self, total: int, max_depth: int, avg_siblings: int,
                 start_id: int = 1, seed: Optional[int] = None):
        if total <= 0:
            raise ValidationError("count must be greater than 0", details={"count": total})
        if max_depth <= 0:
            raise ValidationError("depth must be greater than 0", details={"depth": max_depth})
        if avg_siblings <= 0:
            raise ValidationError("siblings must be greater than 0", details={"siblings": avg_siblings})

        self.total = total
        self.max_depth = max_depth
        self.avg_siblings = avg_siblings
        self.start_id = start_id
        self.rng = random.Random(seed)

        self.rows: List[dict] = []
        self._next_id = start_id
        self._timestamp = datetime.utcnow()

    @property
    def levels(self) -> int:
        return self.max_depth + 1

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------

    def generate(self, distribution: Distribution = Distribution.BALANCED) -> List[dict]:
        distribution = Distribution(distribution)
        self.rows = []
        self._next_id = self.start_id

        if distribution is Distribution.BALANCED:
            self.generate_balanced()
        elif distribution is Distribution.RANDOM:
            self.generate_random()
        else:
            self.generate_linear()

        logger.info(
            "Generated synthetic category tree",
            extra={"distribution": distribution.value, "records": len(self.rows),
                   "levels": self.level_stats()},
        )
        return self.rows

    def generate_balanced(self) -> List[dict]:
        """Breadth-first fill: depth d is fully built before depth d+1."""
        level = [
            self._create(None, position)
            for position in range(min(self.root_count(), self.total))
        ]

        depth = 0
        while level and depth < self.max_depth and len(self.rows) < self.total:
            next_level = []
            for parent in level:
                remaining = self.total - len(self.rows)
                if remaining <= 0:
                    break
                for position in range(min(self.avg_siblings, remaining)):
                    next_level.append(self._create(parent, position))
            level = next_level
            depth += 1

        return self.rows

    def generate_random(self) -> List[dict]:
        root_count = max(1, min(RANDOM_MAX_ROOTS, int(self.total * RANDOM_ROOT_RATIO)))
        parents = [self._create(None, position) for position in range(min(root_count, self.total))]

        while len(self.rows) < self.total and parents:
            index = self.rng.randrange(len(parents))
            parent = parents[index]

            if parent["depth"] >= self.max_depth:
                parents.pop(index)
                continue

            children = min(self.rng.randint(1, self.avg_siblings * 2), self.total - len(self.rows))
            for position in range(children):
                child = self._create(parent, position)
                if child["depth"] < self.max_depth and self.rng.random() < 0.5:
                    parents.append(child)

            # Drop used parents now and then to spread the branching
            if self.rng.random() < 0.3 and parent in parents:
                parents.remove(parent)

        return self.rows

    def generate_linear(self) -> List[dict]:
        """Row budget per level proportional to (levels - depth)."""
        weights = [self.levels - depth for depth in range(self.levels)]
        total_weight = sum(weights)

        targets = []
        allocated = 0
        for depth, weight in enumerate(weights):
            if depth == self.levels - 1:
                targets.append(self.total - allocated)
            else:
                share = int(weight / total_weight * self.total)
                targets.append(share)
                allocated += share

        previous_level: List[dict] = []
        for depth in range(self.levels):
            target = min(targets[depth], self.total - len(self.rows))
            if target <= 0:
                break

            if depth == 0:
                previous_level = [self._create(None, position) for position in range(target)]
                continue

            if not previous_level:
                break

            per_parent, remainder = divmod(target, len(previous_level))
            current_level = []
            for index, parent in enumerate(previous_level):
                count = per_parent + (1 if index < remainder else 0)
                for position in range(count):
                    current_level.append(self._create(parent, position))
            previous_level = current_level

        return self.rows

    # ------------------------------------------------------------------
    # Validation and statistics
    # ------------------------------------------------------------------

    def root_count(self) -> int:
        """
        Roots needed so that a full tree with ``avg_siblings`` branching over
        ``levels`` levels lands near ``total``, capped at 20% of the rows.
        """
        if self.avg_siblings == 1:
            estimate = max(1, self.total // self.levels)
        else:
            geometric_sum = (self.avg_siblings ** self.levels - 1) / (self.avg_siblings - 1)
            estimate = max(1, int(self.total / geometric_sum))
        return min(estimate, max(1, int(self.total * MAX_ROOT_RATIO)))

    def find_orphans(self) -> List[int]:
        """Ids whose parent is missing or whose path/depth disagree with the parent."""
        by_id = {row["id"]: row for row in self.rows}
        orphans = []
        for row in self.rows:
            parent_id = row["parent_id"]
            if parent_id is None:
                if row["path"] != path_codec.encode(None, row["id"]) or row["depth"] != 0:
                    orphans.append(row["id"])
                continue

            parent = by_id.get(parent_id)
            if (
                parent is None
                or row["path"] != path_codec.encode(parent["path"], row["id"])
                or row["depth"] != parent["depth"] + 1
            ):
                orphans.append(row["id"])
        return orphans

    def validate_no_orphans(self) -> bool:
        orphans = self.find_orphans()
        if orphans:
            logger.warning(
                "Generated tree has orphan rows",
                extra={"orphans": orphans[:20], "orphan_count": len(orphans)},
            )
        return not orphans

    def level_stats(self) -> Dict[int, int]:
        stats: Dict[int, int] = {}
        for row in self.rows:
            stats[row["depth"]] = stats.get(row["depth"], 0) + 1
        return dict(sorted(stats.items()))

    def theoretical_distribution(self) -> Dict[int, int]:
        """Per-level counts a perfectly saturated tree would have."""
        roots = self.root_count()
        distribution = {0: roots}
        remaining = self.total - roots
        current = roots
        for depth in range(1, self.levels):
            if remaining <= 0:
                break
            current = min(remaining, current * self.avg_siblings)
            distribution[depth] = current
            remaining -= current
        return distribution

    def theoretical_vs_actual(self) -> List[dict]:
        actual = self.level_stats()
        comparison = []
        for depth, expected in self.theoretical_distribution().items():
            count = actual.get(depth, 0)
            variance = count - expected
            comparison.append({
                "depth": depth,
                "theoretical": expected,
                "actual": count,
                "variance": variance,
                "variance_percentage": round(variance / expected * 100, 1) if expected else 0,
            })
        return comparison

    def depth_stats(self) -> List[dict]:
        total = len(self.rows)
        return [
            {
                "depth": depth,
                "count": count,
                "percentage": round(count / total * 100, 2) if total else 0,
            }
            for depth, count in self.level_stats().items()
        ]

    # ------------------------------------------------------------------
    # Previews
    # ------------------------------------------------------------------

    def preview_graph(self, max_nodes: Optional[int] = None) -> dict:
        """Node/edge lists for the first ``max_nodes`` rows plus level counts."""
        limit = settings.SEED_PREVIEW_MAX_NODES if max_nodes is None else max_nodes
        shown = self.rows[:limit]
        shown_ids = {row["id"] for row in shown}
        return {
            "nodes": [
                {"id": row["id"], "label": row["name"], "depth": row["depth"], "status": row["status"]}
                for row in shown
            ],
            "edges": [
                [row["parent_id"], row["id"]]
                for row in shown
                if row["parent_id"] is not None and row["parent_id"] in shown_ids
            ],
            "levels": self.level_stats(),
            "truncated": max(0, len(self.rows) - len(shown)),
        }

    def to_mermaid(self, max_nodes: Optional[int] = None) -> str:
        limit = settings.SEED_PREVIEW_MAX_NODES if max_nodes is None else max_nodes
        shown = self.rows[:limit]

        lines = [
            "graph TD",
            "    %% Product category tree preview",
            f"    %% Generated: {self._timestamp:%Y-%m-%d %H:%M:%S}",
            f"    %% Categories: {len(self.rows)}",
            f"    %% Max depth: {self.max_depth}",
            "",
            "    classDef rootNode fill:#e1f5fe,stroke:#01579b,stroke-width:2px",
            "    classDef level1 fill:#f3e5f5,stroke:#4a148c,stroke-width:1px",
            "    classDef level2 fill:#e8f5e8,stroke:#1b5e20,stroke-width:1px",
            "    classDef level3 fill:#fff3e0,stroke:#e65100,stroke-width:1px",
            "    classDef inactive fill:#ffebee,stroke:#c62828,stroke-width:1px,color:#666",
            "",
        ]

        for row in shown:
            label = row["name"].replace('"', "'")
            suffix = "" if row["status"] else " [disabled]"
            lines.append(f'    C{row["id"]}["{label}{suffix}"]')
            if row["parent_id"] is not None:
                lines.append(f'    C{row["parent_id"]} --> C{row["id"]}')

        lines.append("")
        for row in shown:
            if not row["status"]:
                css = "inactive"
            elif row["depth"] == 0:
                css = "rootNode"
            else:
                css = f"level{min(row['depth'], 3)}"
            lines.append(f'    class C{row["id"]} {css}')

        hidden = len(self.rows) - len(shown)
        if hidden > 0:
            lines.append("")
            lines.append(f'    More["... {hidden} more categories"]')
            lines.append("    class More inactive")

        lines.append("")
        lines.append("    %% Level stats:")
        for depth, count in self.level_stats().items():
            lines.append(f"    %% depth {depth}: {count} categories")

        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _create(self, parent: Optional[dict], position: int) -> dict:
        category_id = self._next_id
        self._next_id += 1

        if parent is None:
            depth = 0
            name = f"Root Category {position + 1}"
            description = f"Root category number {position + 1}"
        else:
            depth = parent["depth"] + 1
            name = f"Category D{depth}-P{parent['id']}-{position + 1}"
            description = f"Category at depth {depth}"

        row = {
            "id": category_id,
            "parent_id": parent["id"] if parent else None,
            "name": name,
            "slug": f"{slugify(name)}-{category_id}",
            "description": description,
            "meta_title": f"{name} - Product Categories",
            "meta_description": f"Products filed under {name}",
            "status": self.rng.random() < ACTIVE_RATIO,
            "position": position + 1,
            "depth": depth,
            "path": path_codec.encode(parent["path"] if parent else None, category_id),
            "created_at": self._timestamp,
            "updated_at": self._timestamp,
            "deleted_at": None,
        }
        self.rows.append(row)
        return row


def seed_stress_tree(
    db: Session,
    count: int,
    depth: int,
    siblings: int,
    distribution: str = Distribution.BALANCED.value,
    chunk_size: Optional[int] = None,
    dry_run: bool = False,
    clean: bool = False,
    seed: Optional[int] = None,
    cache: Optional[CategoryCache] = None,
    preview_nodes: Optional[int] = None,
) -> dict:
    """
    Generate a synthetic tree and bulk insert it in chunks.

    Returns a JSON-serializable summary (parameters, per-depth stats,
    timings, validation, theoretical-vs-actual distribution and previews).
    Nothing is written when ``dry_run`` is set.

    Raises:
        ValidationError: bad parameters, or the generated tree failed the
            orphan check (nothing is inserted in that case)
    """
    try:
        distribution = Distribution(distribution)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid distribution '{distribution}'",
            details={"allowed": [d.value for d in Distribution]},
        ) from exc

    chunk_size = max(1, min(chunk_size or settings.SEED_CHUNK_SIZE, count))
    repository = CategoryRepository(db)

    tracemalloc.start()
    started = time.perf_counter()
    try:
        removed = 0
        if clean and not dry_run:
            removed = db.query(ProductCategory).delete(synchronize_session=False)
            db.commit()
            logger.warning("Removed existing categories before seeding", extra={"removed": removed})

        generator = BulkTreeGenerator(
            count, depth, siblings,
            start_id=repository.next_id(),
            seed=seed,
        )
        rows = generator.generate(distribution)
        generated_at = time.perf_counter()

        orphans = generator.find_orphans()
        if orphans:
            raise ValidationError(
                "Generated tree failed the orphan check; nothing inserted",
                details={"orphans": orphans[:20]},
            )

        inserted = 0
        chunks = 0
        if not dry_run:
            table = ProductCategory.__table__
            for offset in range(0, len(rows), chunk_size):
                chunk = rows[offset:offset + chunk_size]
                db.execute(insert(table), chunk)
                db.commit()
                inserted += len(chunk)
                chunks += 1
                logger.debug("Inserted category chunk", extra={"chunk": chunks, "rows": len(chunk)})
            if inserted and db.bind.dialect.name == "postgresql":
                # Explicit ids bypass the serial sequence
                db.execute(text(
                    "SELECT setval(pg_get_serial_sequence('product_categories', 'id'), "
                    "(SELECT MAX(id) FROM product_categories))"
                ))
                db.commit()
        finished = time.perf_counter()
        _, peak = tracemalloc.get_traced_memory()
    except Exception:
        db.rollback()
        raise
    finally:
        tracemalloc.stop()

    generation_seconds = generated_at - started
    level_stats = generator.level_stats()
    summary = {
        "execution_mode": "dry-run" if dry_run else "insert",
        "timestamp": datetime.utcnow().isoformat(),
        "parameters": {
            "count": count,
            "depth": depth,
            "siblings": siblings,
            "chunk": chunk_size,
            "distribution": distribution.value,
            "clean": clean,
            "seed": seed,
        },
        "records": len(rows),
        "inserted": inserted,
        "chunks": chunks,
        "removed": removed,
        "depth_stats": generator.depth_stats(),
        "performance": {
            "generation_time_seconds": round(generation_seconds, 3),
            "total_time_seconds": round(finished - started, 3),
            "memory_peak_mb": round(peak / 1024 / 1024, 2),
            "records_per_second": round(len(rows) / generation_seconds) if generation_seconds > 0 else 0,
        },
        "validation": {
            "structure_integrity": "validated",
            "orphan_nodes": 0,
            "max_depth_respected": max(level_stats) <= depth,
        },
        "theoretical_vs_actual": generator.theoretical_vs_actual(),
        "preview": generator.preview_graph(preview_nodes),
        "mermaid": generator.to_mermaid(preview_nodes),
    }

    if not dry_run:
        if cache is not None:
            cache.flush()
        audit_log(
            "CATEGORY_TREE_SEEDED",
            actor="seed_stress_categories",
            details={"records": inserted, "distribution": distribution.value, "clean": clean},
        )

    return summary
