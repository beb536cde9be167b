"""
Path Backfill

Recomputes ``path``/``depth`` for every category (trashed rows included) from
the ``parent_id`` chain. This is the only code path that repairs stored
paths; reads report corrupt paths but never fix them.

Roots are processed first, then each level in turn, so a row is always
written after its parent. Rows that cannot reach a root (missing parent or a
parent_id loop) are skipped and reported.
"""
import time
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from catalog.core.settings import settings
from catalog.exceptions import ValidationError
from catalog.logging_config import audit_log, get_logger
from catalog.models.category import ProductCategory
from catalog.services.category_cache import CategoryCache
from catalog.tree import path_codec

logger = get_logger(__name__)

MAX_CHUNK_SIZE = 10000
PREVIEW_ROWS = 20


@dataclass
class BackfillReport:
    total: int = 0
    needs_update: int = 0
    processed: int = 0
    skipped: List[int] = field(default_factory=list)
    remaining: int = 0
    chunks: int = 0
    dry_run: bool = False
    duration_seconds: float = 0.0
    preview: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _load_rows(db: Session, chunk_size: int) -> Dict[int, Tuple[Optional[int], Optional[str], int]]:
    query = db.query(
        ProductCategory.id,
        ProductCategory.parent_id,
        ProductCategory.path,
        ProductCategory.depth,
    ).yield_per(chunk_size)
    return {row.id: (row.parent_id, row.path, row.depth) for row in query}


def _expected_paths(rows: Dict[int, Tuple[Optional[int], Optional[str], int]]) -> Dict[int, str]:
    """Breadth-first from the roots; unreachable rows are absent from the result."""
    children: Dict[Optional[int], List[int]] = defaultdict(list)
    for row_id, (parent_id, _, _) in rows.items():
        children[parent_id].append(row_id)

    expected: Dict[int, str] = {}
    queue = deque((root_id, None) for root_id in sorted(children[None]))
    while queue:
        row_id, parent_path = queue.popleft()
        path = path_codec.encode(parent_path, row_id)
        expected[row_id] = path
        for child_id in sorted(children.get(row_id, ())):
            queue.append((child_id, path))
    return expected


def _mismatches(rows, expected) -> List[dict]:
    pending = []
    for row_id, path in expected.items():
        _, stored_path, stored_depth = rows[row_id]
        depth = path_codec.depth_of(path)
        if stored_path != path or stored_depth != depth:
            pending.append({"id": row_id, "path": path, "depth": depth})
    return pending


def verify_paths(db: Session) -> List[int]:
    """Ids whose stored path/depth disagree with their parent chain (or have no root)."""
    rows = _load_rows(db, settings.BACKFILL_CHUNK_SIZE)
    expected = _expected_paths(rows)
    unreachable = [row_id for row_id in rows if row_id not in expected]
    wrong = [entry["id"] for entry in _mismatches(rows, expected)]
    return sorted(unreachable + wrong)


def backfill_paths(
    db: Session,
    chunk_size: Optional[int] = None,
    dry_run: bool = False,
    cache: Optional[CategoryCache] = None,
) -> BackfillReport:
    """
    Rewrite every path/depth that differs from the parent chain.

    Args:
        db: Database session
        chunk_size: Rows per UPDATE batch and commit (1-10000)
        dry_run: Compute and report only
        cache: Flushed after a run that changed rows

    Raises:
        ValidationError: chunk_size out of range
    """
    chunk_size = settings.BACKFILL_CHUNK_SIZE if chunk_size is None else chunk_size
    if chunk_size < 1 or chunk_size > MAX_CHUNK_SIZE:
        raise ValidationError(
            f"chunk size must be between 1 and {MAX_CHUNK_SIZE}",
            details={"chunk_size": chunk_size},
        )

    started = time.perf_counter()
    rows = _load_rows(db, chunk_size)
    expected = _expected_paths(rows)
    pending = _mismatches(rows, expected)
    skipped = sorted(row_id for row_id in rows if row_id not in expected)

    report = BackfillReport(
        total=len(rows),
        needs_update=len(pending) + len(skipped),
        skipped=skipped,
        dry_run=dry_run,
        preview=pending[:PREVIEW_ROWS],
    )

    if skipped:
        logger.warning(
            "Categories without a reachable root were skipped",
            extra={"skipped": skipped[:PREVIEW_ROWS], "skipped_count": len(skipped)},
        )

    if dry_run:
        report.processed = len(pending)
        report.remaining = report.needs_update
    else:
        try:
            for offset in range(0, len(pending), chunk_size):
                chunk = pending[offset:offset + chunk_size]
                db.bulk_update_mappings(ProductCategory, chunk)
                db.commit()
                report.processed += len(chunk)
                report.chunks += 1
                logger.info(
                    "Backfilled category paths",
                    extra={"chunk": report.chunks, "rows": len(chunk), "processed": report.processed},
                )
        except Exception:
            db.rollback()
            raise

        report.remaining = len(verify_paths(db))

        if report.processed:
            if cache is not None:
                cache.flush()
            audit_log(
                "CATEGORY_PATHS_BACKFILLED",
                actor="backfill_category_paths",
                details={"processed": report.processed, "skipped": len(skipped),
                         "remaining": report.remaining},
            )

    report.duration_seconds = round(time.perf_counter() - started, 3)
    return report
