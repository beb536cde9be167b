"""
Unit tests for the synthetic category tree generator
"""
import pytest

from catalog.exceptions import ValidationError
from catalog.services.tree_generator import BulkTreeGenerator, Distribution


class TestBalancedDistribution:
    """Breadth-first, level-saturated generation"""

    def test_seed_scenario(self):
        generator = BulkTreeGenerator(total=31, max_depth=3, avg_siblings=2, seed=1)
        rows = generator.generate(Distribution.BALANCED)

        assert generator.root_count() == 2
        assert generator.validate_no_orphans() is True
        assert generator.level_stats() == {0: 2, 1: 4, 2: 8, 3: 16}
        assert sum(generator.level_stats().values()) == len(rows) == 30

    def test_levels_fill_before_next_level_starts(self):
        generator = BulkTreeGenerator(total=31, max_depth=3, avg_siblings=2)
        rows = generator.generate()

        depths = [row["depth"] for row in rows]
        assert depths == sorted(depths)

    def test_stops_at_requested_total(self):
        generator = BulkTreeGenerator(total=10, max_depth=3, avg_siblings=2)
        rows = generator.generate()

        assert len(rows) == 10
        assert generator.level_stats() == {0: 1, 1: 2, 2: 4, 3: 3}
        assert generator.validate_no_orphans()

    def test_ids_and_paths_follow_start_id(self):
        generator = BulkTreeGenerator(total=5, max_depth=2, avg_siblings=2, start_id=100)
        rows = generator.generate()

        assert [row["id"] for row in rows] == [100, 101, 102, 103, 104]
        child = rows[1]
        assert child["parent_id"] == 100
        assert child["path"] == "/100/101/"
        assert child["depth"] == 1

    def test_slugs_are_unique(self):
        rows = BulkTreeGenerator(total=200, max_depth=3, avg_siblings=4).generate()
        assert len({row["slug"] for row in rows}) == len(rows)

    def test_theoretical_matches_actual_when_saturated(self):
        generator = BulkTreeGenerator(total=31, max_depth=3, avg_siblings=2)
        generator.generate()

        assert generator.theoretical_distribution() == {0: 2, 1: 4, 2: 8, 3: 16}
        assert all(entry["variance"] == 0 for entry in generator.theoretical_vs_actual())


class TestOtherDistributions:
    """Random and linear generation share the same id/path discipline"""

    def test_random_respects_depth_and_total(self):
        generator = BulkTreeGenerator(total=300, max_depth=4, avg_siblings=3, seed=42)
        rows = generator.generate(Distribution.RANDOM)

        assert 0 < len(rows) <= 300
        assert max(row["depth"] for row in rows) <= 4
        assert generator.validate_no_orphans()

    def test_random_is_repeatable_with_seed(self):
        first = BulkTreeGenerator(total=100, max_depth=3, avg_siblings=3, seed=7).generate("random")
        second = BulkTreeGenerator(total=100, max_depth=3, avg_siblings=3, seed=7).generate("random")

        assert [(r["id"], r["parent_id"], r["status"]) for r in first] == \
               [(r["id"], r["parent_id"], r["status"]) for r in second]

    def test_linear_budget_decays_with_depth(self):
        generator = BulkTreeGenerator(total=20, max_depth=2, avg_siblings=3)
        rows = generator.generate(Distribution.LINEAR)

        assert len(rows) == 20
        assert generator.level_stats() == {0: 10, 1: 6, 2: 4}
        assert generator.validate_no_orphans()

    def test_unknown_distribution_rejected(self):
        generator = BulkTreeGenerator(total=10, max_depth=2, avg_siblings=2)
        with pytest.raises(ValueError):
            generator.generate("lopsided")


class TestValidation:
    """Parameter checks and orphan detection"""

    @pytest.mark.parametrize("total,max_depth,siblings", [(0, 3, 2), (10, 0, 2), (10, 3, 0), (-5, 3, 2)])
    def test_invalid_parameters(self, total, max_depth, siblings):
        with pytest.raises(ValidationError):
            BulkTreeGenerator(total=total, max_depth=max_depth, avg_siblings=siblings)

    def test_dangling_parent_detected(self):
        generator = BulkTreeGenerator(total=7, max_depth=2, avg_siblings=2)
        rows = generator.generate()
        rows[-1]["parent_id"] = 999

        assert generator.find_orphans() == [rows[-1]["id"]]
        assert generator.validate_no_orphans() is False

    def test_inconsistent_path_detected(self):
        generator = BulkTreeGenerator(total=7, max_depth=2, avg_siblings=2)
        rows = generator.generate()
        rows[3]["path"] = "/9/9/"

        assert rows[3]["id"] in generator.find_orphans()


class TestPreviews:
    """Preview graph and Mermaid output"""

    def test_preview_graph(self):
        generator = BulkTreeGenerator(total=31, max_depth=3, avg_siblings=2)
        generator.generate()

        graph = generator.preview_graph(max_nodes=6)

        assert len(graph["nodes"]) == 6
        assert [1, 3] in graph["edges"]
        assert graph["truncated"] == 24
        assert graph["levels"] == {0: 2, 1: 4, 2: 8, 3: 16}

    def test_mermaid_output(self):
        generator = BulkTreeGenerator(total=31, max_depth=3, avg_siblings=2)
        generator.generate()

        mermaid = generator.to_mermaid(max_nodes=5)

        assert mermaid.startswith("graph TD\n")
        assert "    C1 --> C3" in mermaid
        assert '... 25 more categories' in mermaid
        assert "%% depth 3: 16 categories" in mermaid
