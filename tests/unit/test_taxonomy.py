"""
Unit tests for the branch/twig taxonomy.
"""

from trunk.taxonomy import (
    BRANCH_COUNT,
    BRANCHES,
    TWIG_COUNT,
    all_twig_ids,
    is_valid_twig_id,
    parse_twig_id,
    twig_id,
    twig_label,
)


class TestTaxonomy:
    """Tests for twig ids and labels."""

    def test_shape(self):
        assert len(BRANCHES) == BRANCH_COUNT == 8
        assert all(len(branch.twigs) == TWIG_COUNT for branch in BRANCHES)
        assert len(all_twig_ids()) == 64
        assert len(set(all_twig_ids())) == 64

    def test_roundtrip(self):
        assert parse_twig_id(twig_id(3, 7)) == (3, 7)

    def test_invalid_ids(self):
        for value in ("branch-8-twig-0", "branch-0-twig-8", "branch-a-twig-1", "", "twig-1"):
            assert parse_twig_id(value) is None
            assert not is_valid_twig_id(value)

    def test_labels(self):
        assert twig_label("branch-0-twig-0") == "movement"
        assert twig_label("branch-7-twig-7") == "administration"

    def test_label_fallback(self):
        assert twig_label("custom-twig") == "custom-twig"
