"""Tests for ignore-region parsing, masking and diff clustering."""

import logging

import numpy as np
import pytest

from visual_verdict.comparator.regions import (
    bounding_region,
    build_keep_mask,
    find_clusters,
    merge_nearby,
    parse_ignore_region_list,
    parse_ignore_regions,
)
from visual_verdict.models.comparison import DiffRegion, IgnoreRegion


class TestParseIgnoreRegions:
    """Tests for parse_ignore_regions and parse_ignore_region_list."""

    def test_parses_semicolon_separated_quadruples(self):
        """Test the x,y,w,h;x,y,w,h encoding parses into regions."""
        regions = parse_ignore_regions("10,20,30,40;50,60,70,80")
        assert regions == [
            IgnoreRegion(x=10, y=20, width=30, height=40),
            IgnoreRegion(x=50, y=60, width=70, height=80),
        ]

    def test_tolerates_whitespace_and_trailing_separator(self):
        """Test whitespace and a trailing semicolon are accepted."""
        regions = parse_ignore_regions(" 1, 2, 3, 4 ; ")
        assert regions == [IgnoreRegion(x=1, y=2, width=3, height=4)]

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_input(self, text):
        """Test empty input yields no regions."""
        assert parse_ignore_regions(text) == []

    def test_malformed_entries_are_skipped_with_warning(self, caplog):
        """Test malformed entries are skipped and each logs a warning."""
        with caplog.at_level(logging.WARNING, logger="visual_verdict.comparator.regions"):
            regions = parse_ignore_regions("10,20,30;a,b,c,d;1,2,3,4;1,2,3,4,5")
        assert regions == [IgnoreRegion(x=1, y=2, width=3, height=4)]
        assert caplog.text.count("Invalid ignore region format") == 3

    def test_negative_values_are_rejected(self):
        """Test negative coordinates are treated as malformed."""
        assert parse_ignore_regions("-1,0,5,5") == []

    def test_parse_list_flattens(self):
        """Test several encoded strings flatten into one list."""
        regions = parse_ignore_region_list(["0,0,1,1;2,2,1,1", "5,5,5,5"])
        assert len(regions) == 3


class TestIgnoreRegion:
    """Tests for IgnoreRegion."""

    def test_bounds_clipped(self):
        """Test bounds are clipped to the image size."""
        assert IgnoreRegion(x=90, y=95, width=20, height=20).bounds(100, 100) == (90, 95, 100, 100)

    def test_bounds_outside(self):
        """Test a region outside the image has no bounds."""
        assert IgnoreRegion(x=200, y=0, width=5, height=5).bounds(100, 100) is None

    def test_zero_area(self):
        """Test a zero-width region has no bounds."""
        assert IgnoreRegion(x=0, y=0, width=0, height=5).bounds(100, 100) is None

    def test_str_round_trips_encoding(self):
        """Test str() produces the x,y,w,h encoding."""
        region = IgnoreRegion(x=1, y=2, width=3, height=4)
        assert parse_ignore_regions(str(region)) == [region]


class TestKeepMask:
    """Tests for build_keep_mask."""

    def test_masks_region(self):
        """Test pixels inside a region are excluded from the mask."""
        keep = build_keep_mask(10, 8, [IgnoreRegion(x=2, y=1, width=3, height=2)])
        assert keep.shape == (8, 10)
        assert keep.sum() == 80 - 6
        assert not keep[1, 2]
        assert keep[0, 0]

    def test_no_regions_keeps_everything(self):
        """Test no regions keeps every pixel."""
        assert build_keep_mask(4, 4, []).all()


def _mask(size=(200, 200), blocks=()):
    mask = np.zeros(size, dtype=bool)
    for x, y, w, h in blocks:
        mask[y:y + h, x:x + w] = True
    return mask


class TestBoundingRegion:
    """Tests for bounding_region."""

    def test_none_when_empty(self):
        """Test an empty mask has no bounding region."""
        assert bounding_region(_mask()) is None

    def test_covers_all_pixels(self):
        """Test the box spans every differing pixel."""
        region = bounding_region(_mask(blocks=[(5, 5, 2, 2), (100, 50, 1, 1)]))
        assert region == DiffRegion(min_x=5, min_y=5, max_x=100, max_y=50, pixel_count=5)


class TestFindClusters:
    """Tests for connected-component clustering."""

    def test_separate_defects_become_separate_clusters(self):
        """Test distant blocks become separate clusters."""
        clusters = find_clusters(_mask(blocks=[(10, 10, 5, 5), (150, 150, 5, 5)]))
        assert len(clusters) == 2
        assert clusters[0] == DiffRegion(min_x=10, min_y=10, max_x=14, max_y=14, pixel_count=25)

    def test_small_gaps_are_bridged(self):
        """Test blocks a couple of pixels apart join one cluster."""
        clusters = find_clusters(_mask(blocks=[(10, 10, 5, 5), (17, 10, 5, 5)]), merge_distance=0)
        assert len(clusters) == 1
        assert clusters[0].pixel_count == 50

    def test_noise_clusters_are_dropped(self):
        """Test clusters under the minimum size are dropped."""
        clusters = find_clusters(_mask(blocks=[(10, 10, 5, 5), (150, 150, 1, 3)]), min_pixels=10)
        assert len(clusters) == 1

    def test_nearby_clusters_merge(self):
        """Test clusters within the merge distance are merged."""
        blocks = [(10, 10, 5, 5), (150, 150, 5, 5)]
        assert len(find_clusters(_mask(blocks=blocks), merge_distance=200)) == 1

    def test_empty_mask(self):
        """Test an empty mask yields no clusters."""
        assert find_clusters(_mask()) == []


class TestMergeNearby:
    """Tests for merge_nearby."""

    def test_chain_merges_transitively(self):
        """Test a chain of nearby boxes merges into one."""
        regions = [
            DiffRegion(0, 0, 5, 5, 10),
            DiffRegion(20, 0, 25, 5, 10),
            DiffRegion(40, 0, 45, 5, 10),
        ]
        merged = merge_nearby(regions, distance=15)
        assert merged == [DiffRegion(0, 0, 45, 5, 30)]

    def test_far_regions_stay_apart(self):
        """Test boxes farther apart than the distance stay separate."""
        regions = [DiffRegion(0, 0, 5, 5, 10), DiffRegion(100, 100, 105, 105, 10)]
        assert merge_nearby(regions, distance=10) == regions
