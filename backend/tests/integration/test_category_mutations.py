"""
Integration tests for category mutations

Runs the mutation service against SQLite and fakeredis: tree invariants,
slug rules, batch outcomes and post-commit cache invalidation.
"""
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from catalog.models.category import ProductCategory
from catalog.schemas.category import CategoryCreate, CategoryUpdate, PositionAssignment
from catalog.services.category_cache import CategoryCache
from catalog.services.category_mutation_service import CategoryMutationService


@pytest.fixture
def tree(create_category):
    """
    Electronics(1) ─ Phones(2) ─ Smartphones(3)
    Garden(4)
    """
    electronics = create_category("Electronics")
    phones = create_category("Phones", parent_id=electronics.id)
    smartphones = create_category("Smartphones", parent_id=phones.id)
    garden = create_category("Garden")
    return {1: electronics, 2: phones, 3: smartphones, 4: garden}


def _row(db_session, category_id) -> ProductCategory:
    db_session.expire_all()
    return db_session.query(ProductCategory).filter(ProductCategory.id == category_id).first()


class TestCreate:
    """Creating roots and children"""

    def test_root_then_child(self, create_category):
        a = create_category("A")
        b = create_category("B", parent_id=a.id)

        assert (a.id, a.path, a.depth, a.position) == (1, "/1/", 0, 1)
        assert (b.id, b.parent_id, b.path, b.depth, b.position) == (2, 1, "/1/2/", 1, 1)

    def test_positions_follow_last_sibling(self, create_category):
        parent = create_category("Parent")
        first = create_category("First", parent_id=parent.id)
        second = create_category("Second", parent_id=parent.id)

        assert first.position == 1
        assert second.position == 2

    def test_explicit_position_kept(self, create_category):
        assert create_category("Pinned", position=0).position == 0

    def test_missing_parent(self, mutations, db_session):
        result = mutations.create(CategoryCreate(name="Orphan", parent_id=999))

        assert not result.ok
        assert result.error.error_code == "PARENT_NOT_FOUND"
        assert db_session.query(ProductCategory).count() == 0

    def test_deleted_parent_counts_as_missing(self, mutations, create_category):
        parent = create_category("Gone")
        mutations.delete(parent.id).unwrap()

        result = mutations.create(CategoryCreate(name="Child", parent_id=parent.id))
        assert result.error.error_code == "PARENT_NOT_FOUND"

    def test_inactive_parent(self, mutations, create_category):
        parent = create_category("Hidden", status=False)

        result = mutations.create(CategoryCreate(name="Child", parent_id=parent.id))
        assert result.error.error_code == "PARENT_INACTIVE"

    def test_parent_without_path_rejected(self, mutations, db_session):
        db_session.add(ProductCategory(id=50, name="Legacy", slug="legacy", path=None, depth=0))
        db_session.commit()

        result = mutations.create(CategoryCreate(name="Child", parent_id=50))

        assert result.error.error_code == "CORRUPT_PATH"
        assert db_session.query(ProductCategory).count() == 1

    def test_parent_with_foreign_path_rejected(self, mutations, db_session, create_category):
        parent = create_category("Parent")
        parent.path = "/7/"
        db_session.commit()

        result = mutations.create(CategoryCreate(name="Child", parent_id=parent.id))

        assert result.error.error_code == "CORRUPT_PATH"

    def test_depth_limit(self, db_session, cache):
        service = CategoryMutationService(db_session, cache, max_depth=1)
        root = service.create(CategoryCreate(name="Root")).unwrap()
        child = service.create(CategoryCreate(name="Child", parent_id=root.id)).unwrap()

        result = service.create(CategoryCreate(name="Grandchild", parent_id=child.id))

        assert result.error.error_code == "MAX_DEPTH_EXCEEDED"
        assert db_session.query(ProductCategory).count() == 2


class TestSlugs:
    """Slug generation and uniqueness"""

    def test_slug_from_name(self, create_category):
        assert create_category("Phones and Tablets").slug == "phones-and-tablets"

    def test_numbered_suffix_on_collision(self, create_category):
        assert create_category("Phones").slug == "phones"
        assert create_category("Phones").slug == "phones-2"
        assert create_category("Phones").slug == "phones-3"

    def test_timestamp_suffix_after_retries(self, create_category):
        for _ in range(4):
            create_category("Cables")

        slug = create_category("Cables").slug
        assert slug.startswith("cables-")
        assert len(slug) > len("cables-") + 10

    def test_trashed_rows_keep_their_slug(self, mutations, create_category):
        gone = create_category("Toys")
        mutations.delete(gone.id).unwrap()

        assert create_category("Toys").slug == "toys-2"

    def test_explicit_duplicate_rejected(self, mutations, create_category):
        create_category("Phones")

        result = mutations.create(CategoryCreate(name="Other", slug="phones"))
        assert result.error.error_code == "DUPLICATE_SLUG"

    def test_rename_regenerates_slug(self, mutations, tree):
        updated = mutations.update(2, CategoryUpdate(name="Mobile Phones")).unwrap()
        assert updated.slug == "mobile-phones"

    def test_explicit_slug_wins_over_rename(self, mutations, tree):
        updated = mutations.update(2, CategoryUpdate(name="Mobile", slug="handsets")).unwrap()
        assert updated.slug == "handsets"

    def test_update_to_taken_slug(self, mutations, tree):
        result = mutations.update(2, CategoryUpdate(slug="garden"))
        assert result.error.error_code == "DUPLICATE_SLUG"


class TestMove:
    """Reparenting whole subtrees"""

    def test_subtree_paths_rewritten(self, mutations, db_session, tree):
        mutations.move(2, 4).unwrap()

        phones, smartphones = _row(db_session, 2), _row(db_session, 3)
        assert (phones.parent_id, phones.path, phones.depth) == (4, "/4/2/", 1)
        assert (smartphones.path, smartphones.depth) == ("/4/2/3/", 2)

    def test_move_to_root(self, mutations, db_session, tree):
        mutations.move(2, None).unwrap()

        assert _row(db_session, 2).path == "/2/"
        assert (_row(db_session, 3).path, _row(db_session, 3).depth) == ("/2/3/", 1)

    def test_trashed_descendants_follow(self, mutations, db_session, tree):
        mutations.delete(3).unwrap()
        mutations.move(2, 4).unwrap()

        assert _row(db_session, 3).path == "/4/2/3/"

    def test_cycle_rejected_without_writes(self, mutations, tree, snapshot):
        before = snapshot()

        result = mutations.move(1, 3)

        assert result.error.error_code == "CIRCULAR_REFERENCE_DETECTED"
        assert snapshot() == before

    def test_self_parent_rejected(self, mutations, tree, snapshot):
        before = snapshot()

        result = mutations.update(1, CategoryUpdate(parent_id=1))

        assert result.error.error_code == "CIRCULAR_REFERENCE_DETECTED"
        assert snapshot() == before

    def test_inactive_target(self, mutations, tree):
        mutations.update(4, CategoryUpdate(status=False)).unwrap()

        assert mutations.move(2, 4).error.error_code == "PARENT_INACTIVE"

    def test_depth_checked_against_deepest_descendant(self, db_session, cache, tree):
        service = CategoryMutationService(db_session, cache, max_depth=2)
        create = service.create(CategoryCreate(name="Lawn", parent_id=4)).unwrap()

        # Phones carries Smartphones, which would land at depth 3
        result = service.move(2, create.id)
        assert result.error.error_code == "MAX_DEPTH_EXCEEDED"

    def test_update_with_parent_moves(self, mutations, db_session, tree):
        mutations.update(3, CategoryUpdate(parent_id=4, name="Sprinklers")).unwrap()

        row = _row(db_session, 3)
        assert (row.parent_id, row.path, row.name) == (4, "/4/3/", "Sprinklers")

    def test_move_audited(self, mutations, tree):
        with patch("catalog.services.category_mutation_service.audit_log") as audit:
            mutations.move(2, 4).unwrap()

        event, = [c for c in audit.call_args_list if c.args[0] == "CATEGORY_MOVED"]
        assert event.kwargs["resource_id"] == 2
        assert event.kwargs["details"]["rows"] == 2


class TestUpdate:
    """Scalar updates"""

    def test_fields_applied(self, mutations, tree):
        updated = mutations.update(
            2, CategoryUpdate(description="Handsets", meta_title="Phones | Shop", position=9),
        ).unwrap()

        assert updated.description == "Handsets"
        assert updated.meta_title == "Phones | Shop"
        assert updated.position == 9

    def test_status_leaves_structure(self, mutations, tree, snapshot):
        before = snapshot()
        mutations.update(1, CategoryUpdate(status=False)).unwrap()
        after = snapshot()

        assert {k: v[:4] for k, v in after.items()} == {k: v[:4] for k, v in before.items()}

    def test_missing_category(self, mutations):
        assert mutations.update(42, CategoryUpdate(name="X")).error.error_code == "CATEGORY_NOT_FOUND"


class TestDeleteRestore:
    """Soft delete guard and restore"""

    def test_delete_with_children_rejected(self, mutations, db_session, tree):
        result = mutations.delete(2)

        assert result.error.error_code == "CATEGORY_HAS_CHILDREN"
        assert _row(db_session, 2).deleted_at is None

    def test_trashed_children_do_not_block(self, mutations, db_session, tree):
        mutations.delete(3).unwrap()
        assert mutations.delete(2).unwrap() is True
        assert _row(db_session, 2).deleted_at is not None

    def test_delete_missing(self, mutations):
        assert mutations.delete(99).error.error_code == "CATEGORY_NOT_FOUND"

    def test_restore_keeps_path(self, mutations, db_session, tree):
        mutations.delete(3).unwrap()

        restored = mutations.restore(3).unwrap()

        assert restored.deleted_at is None
        assert restored.path == "/1/2/3/"

    def test_restore_live_category_is_noop(self, mutations, tree):
        assert mutations.restore(1).unwrap().deleted_at is None

    def test_restore_under_deleted_parent(self, mutations, tree):
        mutations.delete(3).unwrap()
        mutations.delete(2).unwrap()

        assert mutations.restore(3).error.error_code == "PARENT_NOT_FOUND"


class TestBatchStatus:
    """Single-statement status changes"""

    def test_reapplying_status_reports_no_changes(self, mutations, create_category):
        ids = [create_category(f"Disabled {n}", status=False).id for n in range(3)]

        first = mutations.batch_update_status(ids, True)
        second = mutations.batch_update_status(ids, True)

        assert (first.affected, first.changed) == (3, 3)
        assert (second.affected, second.changed) == (3, 0)
        assert second.succeeded == ids

    def test_missing_ids_reported(self, mutations, tree):
        result = mutations.batch_update_status([1, 99, 1], False)

        assert result.ok
        assert result.affected == 1
        assert result.succeeded == [1]
        assert result.failed == {99: "CATEGORY_NOT_FOUND"}

    def test_paths_untouched(self, mutations, tree, snapshot):
        before = snapshot()
        mutations.batch_update_status([1, 2, 3], False)
        after = snapshot()

        assert {k: v[:3] for k, v in after.items()} == {k: v[:3] for k, v in before.items()}


class TestBatchDelete:
    """Per-id delete outcomes"""

    def test_partial_failure(self, mutations, db_session, tree):
        result = mutations.batch_delete([1, 3, 99])

        assert result.ok
        assert result.succeeded == [3]
        assert result.failed == {1: "CATEGORY_HAS_CHILDREN", 99: "CATEGORY_NOT_FOUND"}
        assert _row(db_session, 3).deleted_at is not None
        assert _row(db_session, 1).deleted_at is None

    def test_deepest_first_clears_whole_branch(self, mutations, tree):
        result = mutations.batch_delete([1, 2, 3])

        assert result.succeeded == [3, 2, 1]
        assert result.failed == {}
        assert result.affected == 3


class TestReorder:
    """Atomic position updates"""

    def test_positions_written(self, mutations, db_session, tree):
        mutations.update_positions([
            PositionAssignment(id=1, position=2),
            PositionAssignment(id=4, position=1),
        ]).unwrap()

        assert _row(db_session, 1).position == 2
        assert _row(db_session, 4).position == 1

    def test_failure_rolls_back_every_assignment(self, mutations, tree, snapshot):
        before = snapshot()

        result = mutations.update_positions([
            PositionAssignment(id=2, position=7),
            PositionAssignment(id=1, position=3, parent_id=3),
        ])

        assert result.error.error_code == "CIRCULAR_REFERENCE_DETECTED"
        assert snapshot() == before

    def test_missing_id(self, mutations, tree, snapshot):
        before = snapshot()

        result = mutations.update_positions([
            PositionAssignment(id=1, position=5),
            PositionAssignment(id=99, position=1),
        ])

        assert result.error.error_code == "CATEGORY_NOT_FOUND"
        assert snapshot() == before

    def test_duplicate_ids(self, mutations, tree):
        result = mutations.update_positions([
            PositionAssignment(id=1, position=1),
            PositionAssignment(id=1, position=2),
        ])
        assert result.error.error_code == "INVALID_POSITION"

    def test_reparent_within_reorder(self, mutations, db_session, tree):
        mutations.update_positions([PositionAssignment(id=3, position=0, parent_id=4)]).unwrap()

        row = _row(db_session, 3)
        assert (row.parent_id, row.path, row.depth, row.position) == (4, "/4/3/", 1, 0)

    def test_position_without_parent_keeps_parent(self, mutations, db_session, tree):
        mutations.update_positions([PositionAssignment(id=3, position=4)]).unwrap()
        assert _row(db_session, 3).parent_id == 2


class TestCacheInvalidation:
    """Eviction happens after commit only"""

    def test_tree_evicted_after_create(self, mutations, queries, redis_client, tree):
        queries.get_tree()
        assert redis_client.exists("test_tree:active")

        mutations.create(CategoryCreate(name="Kitchen")).unwrap()

        assert not redis_client.exists("test_tree:active")
        assert [node["name"] for node in queries.get_tree()] == ["Electronics", "Garden", "Kitchen"]

    def test_failed_mutation_keeps_cache(self, mutations, queries, redis_client, tree):
        queries.get_tree()
        queries.get_statistics()

        assert not mutations.move(1, 3).ok

        assert redis_client.exists("test_tree:active")
        assert redis_client.exists("test_statistics")

    def test_audit_written_after_commit_only(self, mutations, tree):
        with patch("catalog.services.category_mutation_service.audit_log") as audit:
            mutations.delete(2)
            audit.assert_not_called()

            mutations.delete(3)
            audit.assert_called_once()
            assert audit.call_args.args[0] == "CATEGORY_DELETED"

    def test_cache_outage_does_not_fail_mutation(self, db_session):
        client = MagicMock()
        client.delete.side_effect = RedisConnectionError("down")
        client.scan_iter.side_effect = RedisConnectionError("down")
        service = CategoryMutationService(db_session, CategoryCache(client=client, prefix="test_"))

        result = service.create(CategoryCreate(name="Resilient"))

        assert result.ok
        assert db_session.query(ProductCategory).count() == 1
