"""
Tests for the MSER region filter.
"""

import pytest

from mser_evaluation import EvaluationNode, MinimaCollector
from mser_filter import RegionFilter


def make_node(size, score, value=10):
    """Helper to create a scored node outside of a graph."""
    node = EvaluationNode(0, value, size, [], None)
    node.score = score
    node.is_score_valid = True
    return node


def make_filter(min_size=50, max_size=500, max_variation=0.1):
    collector = MinimaCollector()
    return RegionFilter(min_size, max_size, max_variation, collector), collector


class TestRegionFilter:
    """Test size and variation bounds."""

    def test_too_large_discarded(self):
        region_filter, collector = make_filter()
        region_filter.found_new_minimum(make_node(600, 0.05))

        assert region_filter.num_discarded == 1
        assert len(collector) == 0

    def test_accepted_forwarded(self):
        region_filter, collector = make_filter()
        node = make_node(100, 0.05)
        region_filter.found_new_minimum(node)

        assert collector.minima == [node]
        assert region_filter.num_discarded == 0

    @pytest.mark.parametrize("size,score", [(50, 0.05), (500, 0.05), (100, 0.1)])
    def test_bounds_inclusive(self, size, score):
        region_filter, collector = make_filter()
        region_filter.found_new_minimum(make_node(size, score))

        assert len(collector) == 1

    @pytest.mark.parametrize("size,score", [(49, 0.05), (501, 0.05), (100, 0.11)])
    def test_out_of_bounds(self, size, score):
        region_filter, collector = make_filter()
        region_filter.found_new_minimum(make_node(size, score))

        assert len(collector) == 0
        assert region_filter.num_discarded == 1

    def test_repeated_calls_are_deterministic(self):
        region_filter, collector = make_filter()
        rejected = make_node(600, 0.05)
        accepted = make_node(100, 0.05)

        for _ in range(2):
            region_filter.found_new_minimum(rejected)
            region_filter.found_new_minimum(accepted)

        assert region_filter.num_discarded == 2
        assert collector.minima == [accepted, accepted]

    def test_summary(self):
        region_filter, _ = make_filter()
        region_filter.found_new_minimum(make_node(1, 0.0))
        region_filter.found_new_minimum(make_node(2, 0.0))

        assert str(region_filter) == "discarded 2 regions"


class TestRegionFilterConfiguration:
    """Malformed configurations are rejected at construction."""

    def test_min_larger_than_max(self):
        with pytest.raises(ValueError, match="larger than max_size"):
            RegionFilter(600, 500, 0.1, MinimaCollector())

    def test_negative_min_size(self):
        with pytest.raises(ValueError, match="min_size"):
            RegionFilter(-1, 500, 0.1, MinimaCollector())

    def test_negative_variation(self):
        with pytest.raises(ValueError, match="max_variation"):
            RegionFilter(0, 500, -0.1, MinimaCollector())
