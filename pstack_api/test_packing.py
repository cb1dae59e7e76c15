"""
Tests for the pstack_api placement policies.

These pytest-style tests:
- Pin the exact first-fit positions on small hand-checked inputs.
- Check the structural properties every run must keep (no overlap, in
  bounds, buffer capacity, promotion bound, sort stability, determinism).

Run with: pytest -q
"""

import itertools

import pytest

from pstack_api import packing as packing_core
from pstack_api.models import (
    BoxSpec,
    Buffered,
    ContainerId,
    ContainerSpec,
    MainPlaced,
    PaddedBox,
    Placement,
    Unplaced,
)

GAP = 5


def box(box_id, w, l, h):
    return BoxSpec(id=box_id, width=w, length=l, height=h)


def mixed_boxes(n=20):
    """Deterministic spread of sizes, some too big to ever fit."""
    return [
        box(str(i), 10 + (i * 37) % 50, 10 + (i * 53) % 45, 10 + (i * 29) % 40)
        for i in range(n)
    ]


@pytest.fixture
def pallet():
    return ContainerSpec(100, 100, 100)


def assert_no_overlap(run, gap):
    for container in ContainerId:
        placed = run.in_container(container)
        for a, b in itertools.combinations(placed, 2):
            pa, pb = a.padded(gap), b.padded(gap)
            assert not packing_core.aabb_overlap(
                (pa.x, pa.y, pa.z), pa.max_corner, (pb.x, pb.y, pb.z), pb.max_corner
            ), f"{a.box_id} overlaps {b.box_id}"


def assert_in_bounds(run, container):
    for p in run.placements:
        for lo, extent, bound in zip(p.corner, p.extents, container.dims):
            assert lo >= 0 and lo + extent <= bound, f"{p.box_id} out of bounds"


def ids(placements):
    return [p.box_id for p in placements]


# ----------------------------
# Overlap checker
# ----------------------------


def test_touching_padded_boxes_do_not_overlap():
    placed = [PaddedBox(0, 0, 0, 45, 45, 45)]
    assert not packing_core.is_overlap(PaddedBox(45, 0, 0, 45, 45, 45), placed)
    assert not packing_core.is_overlap(PaddedBox(0, 0, 45, 45, 45, 45), placed)
    assert packing_core.is_overlap(PaddedBox(40, 0, 0, 45, 45, 45), placed)


def test_overlap_needs_all_three_axes():
    placed = [PaddedBox(0, 0, 0, 10, 10, 10)]
    # overlaps in x and y but separated in z
    assert not packing_core.is_overlap(PaddedBox(5, 5, 10, 10, 10, 10), placed)
    assert packing_core.is_overlap(PaddedBox(5, 5, 5, 10, 10, 10), placed)
    assert not packing_core.is_overlap(PaddedBox(5, 5, 5, 10, 10, 10), [])


def test_padded_box_adds_gap_on_every_axis():
    p = Placement("A", (10, 20, 30), (40, 50, 60))
    assert p.padded(5) == PaddedBox(10, 20, 30, 45, 55, 65)


def test_anchor_is_footprint_centre_and_base():
    assert Placement("A", (0, 0, 0), (40, 40, 40)).anchor == (20, 20, 0)
    assert Placement("A", (45, 0, 10), (41, 41, 10)).anchor == (66, 21, 10)


# ----------------------------
# Greedy fill
# ----------------------------


def test_stack_all_two_cubes_side_by_side(pallet):
    run = packing_core.stack_all_boxes([box("A", 40, 40, 40), box("B", 40, 40, 40)], pallet, GAP)

    assert ids(run.placements) == ["A", "B"]
    a, b = run.placements
    assert a.anchor == (20, 20, 0) and a.rotation == 0
    assert b.corner == (45, 0, 0)
    assert b.anchor == (65, 20, 0) and b.rotation == 0
    assert all(p.container == ContainerId.MAIN for p in run.placements)


def test_stack_all_third_cube_starts_next_row(pallet):
    run = packing_core.stack_all_boxes(
        [box("A", 40, 40, 40), box("B", 40, 40, 40), box("C", 40, 40, 40)], pallet, GAP
    )
    assert run.placements[2].corner == (0, 45, 0)
    assert run.placements[2].anchor == (20, 65, 0)


def test_stack_all_goes_up_when_floor_is_full():
    pallet = ContainerSpec(50, 50, 100)
    run = packing_core.stack_all_boxes([box("A", 40, 40, 40), box("B", 40, 40, 40)], pallet, GAP)
    assert run.placements[1].corner == (0, 0, 45)
    assert run.placements[1].anchor == (20, 20, 45)


def test_stack_all_drops_box_wider_than_pallet(pallet):
    run = packing_core.stack_all_boxes([box("W", 120, 40, 40)], pallet, GAP)
    assert run.placements == []
    assert run.dropped == ["W"]
    assert run.outcomes["W"] == Unplaced("W")


def test_corner_column_fallback_never_rescues_a_box():
    """
    The (0, 0) column retry only visits corners the full scan already
    rejected. This pins that narrower behaviour: a box the scan drops stays
    dropped.
    """
    pallet = ContainerSpec(50, 50, 50)
    placed = [Placement("A", (0, 0, 0), (45, 45, 45)).padded(GAP)]
    small = (10, 10, 10)
    assert packing_core.find_first_fit(small, pallet, placed, GAP) is None
    assert packing_core.find_corner_column_fit(small, pallet, placed, GAP) is None

    run = packing_core.stack_all_boxes([box("A", 45, 45, 45), box("B", 10, 10, 10)], pallet, GAP)
    assert ids(run.placements) == ["A"]
    assert run.dropped == ["B"]


def test_corner_column_fallback_respects_footprint_bounds(pallet):
    assert packing_core.find_corner_column_fit((120, 40, 40), pallet, [], GAP) is None
    assert packing_core.find_corner_column_fit((40, 40, 40), pallet, [], GAP) == (0, 0, 0)


def test_stack_all_properties(pallet):
    run = packing_core.stack_all_boxes(mixed_boxes(), pallet, GAP)
    assert run.placements
    assert_no_overlap(run, GAP)
    assert_in_bounds(run, pallet)
    assert len(run.placements) + len(run.dropped) == 20


def test_gap_must_be_positive(pallet):
    with pytest.raises(ValueError):
        packing_core.stack_all_boxes([box("A", 10, 10, 10)], pallet, 0)


# ----------------------------
# Buffer only
# ----------------------------


def test_stack_buffer_uses_base_layer_only(pallet):
    run = packing_core.stack_buffer(
        [box("A", 40, 40, 40), box("B", 40, 40, 90), box("C", 200, 10, 10)], pallet, GAP
    )
    assert ids(run.placements) == ["A", "B"]
    assert run.placements[1].corner == (45, 0, 0)
    # consumers read these as main pallet placements
    assert all(p.container == ContainerId.MAIN for p in run.placements)
    assert all(p.corner[2] == 0 for p in run.placements)
    assert isinstance(run.outcomes["A"], Buffered)
    assert run.dropped == ["C"]
    assert run.peak_buffer_count == 2


# ----------------------------
# Buffer then promote
# ----------------------------


def test_buffered_box_is_promoted_when_main_has_room(pallet):
    boxes = [box("small", 10, 10, 10), box("large", 20, 10, 10)]
    run = packing_core.stack_with_buffer(boxes, pallet, GAP, buffer_capacity=1)

    assert ids(run.placements) == ["large", "small"]
    assert all(p.container == ContainerId.MAIN for p in run.placements)
    assert run.placements[1].corner == (25, 0, 0)
    assert run.placements[1].anchor == (30, 5, 0)
    assert run.promotions == 1
    assert run.peak_buffer_count == 1
    assert isinstance(run.outcomes["small"], MainPlaced)


def test_promotion_takes_largest_volume_first(pallet):
    boxes = [box("s1", 10, 10, 10), box("s2", 20, 20, 20)]
    run = packing_core.stack_with_buffer(boxes, pallet, GAP, buffer_capacity=2)

    assert ids(run.placements) == ["s2", "s1"]
    assert run.placements[0].corner == (0, 0, 0)
    assert run.placements[1].corner == (25, 0, 0)
    assert run.promotions == 2


def test_promotion_tie_goes_to_first_buffered(pallet):
    boxes = [box("a", 10, 10, 10), box("b", 10, 10, 10)]
    run = packing_core.stack_with_buffer(boxes, pallet, GAP, buffer_capacity=2)
    assert ids(run.placements) == ["a", "b"]
    assert run.placements[0].corner == (0, 0, 0)


def test_box_stays_buffered_when_main_is_full():
    pallet = ContainerSpec(50, 50, 50)
    boxes = [box("small", 10, 10, 10), box("big", 45, 45, 45)]
    run = packing_core.stack_with_buffer(boxes, pallet, GAP, buffer_capacity=1)

    assert [(p.box_id, p.container) for p in run.placements] == [
        ("small", ContainerId.BUFFER),
        ("big", ContainerId.MAIN),
    ]
    assert isinstance(run.outcomes["small"], Buffered)
    assert run.promotions == 0


def test_zero_capacity_sends_everything_to_main(pallet):
    boxes = [box("a", 40, 40, 40), box("huge", 200, 200, 200)]
    run = packing_core.stack_with_buffer(boxes, pallet, GAP, buffer_capacity=0)
    assert ids(run.placements) == ["a"]
    assert run.placements[0].container == ContainerId.MAIN
    assert run.dropped == ["huge"]
    assert run.peak_buffer_count == 0


def test_buffer_capacity_is_never_exceeded(pallet):
    run = packing_core.stack_with_buffer(mixed_boxes(30), pallet, GAP, buffer_capacity=3)
    assert run.peak_buffer_count <= 3
    assert len(run.in_container(ContainerId.BUFFER)) <= 3
    assert run.promotions <= run.peak_buffer_count
    assert_no_overlap(run, GAP)
    for p in run.in_container(ContainerId.MAIN):
        for lo, extent, bound in zip(p.corner, p.extents, pallet.dims):
            assert 0 <= lo and lo + extent <= bound
    for p in run.in_container(ContainerId.BUFFER):
        assert p.corner[2] == 0
        assert p.corner[0] + p.extents[0] <= pallet.width
        assert p.corner[1] + p.extents[1] <= pallet.length


def test_outcomes_match_placements(pallet):
    run = packing_core.stack_with_buffer(mixed_boxes(30), pallet, GAP, buffer_capacity=5)
    for p in run.placements:
        outcome = run.outcomes[p.box_id]
        assert outcome.placement == p
        expected = MainPlaced if p.container == ContainerId.MAIN else Buffered
        assert isinstance(outcome, expected)
    assert len(run.placements) + len(run.dropped) == 30


# ----------------------------
# Volume sorted on the grid
# ----------------------------


def test_optimized_equal_volumes_keep_input_order(pallet):
    run = packing_core.optimized_stack([box("first", 10, 50, 10), box("second", 50, 10, 10)], pallet, GAP)
    assert ids(run.placements) == ["first", "second"]
    assert run.placements[0].corner == (0, 0, 0)
    assert run.placements[1].corner == (10, 0, 0)
    assert run.placements[1].anchor == (35, 5, 0)


def test_optimized_places_larger_boxes_first(pallet):
    run = packing_core.optimized_stack([box("small", 10, 10, 10), box("big", 50, 50, 50)], pallet, GAP)
    assert ids(run.placements) == ["big", "small"]
    assert run.placements[1].corner == (50, 0, 0)


def test_optimized_rotates_into_a_slot():
    pallet = ContainerSpec(60, 40, 5)
    boxes = [box("r", 10, 20, 5), box("c", 20, 20, 5), box("a", 60, 10, 5), box("b", 40, 30, 5)]
    run = packing_core.optimized_stack(boxes, pallet, GAP)

    assert ids(run.placements) == ["b", "a", "c", "r"]
    r = run.placements[3]
    assert r.corner == (40, 20, 0)
    assert r.rotation == 90
    assert r.extents == (20, 10, 5)
    assert r.anchor == (50, 25, 0)


def test_optimized_drops_box_that_fits_nowhere(pallet):
    run = packing_core.optimized_stack([box("W", 120, 40, 40)], pallet, GAP)
    assert run.placements == []
    assert run.dropped == ["W"]


def test_optimized_sort_is_stable(pallet):
    boxes = mixed_boxes(12) + [box("dup-a", 10, 20, 30), box("dup-b", 30, 20, 10), box("dup-c", 20, 30, 10)]
    run = packing_core.optimized_stack(boxes, pallet, GAP)

    order = {b.id: i for i, b in enumerate(boxes)}
    volume = {b.id: b.volume for b in boxes}
    placed = ids(run.placements)
    for first, second in zip(placed, placed[1:]):
        assert volume[first] >= volume[second]
        if volume[first] == volume[second]:
            assert order[first] < order[second]
    assert_no_overlap(run, 0)
    assert_in_bounds(run, pallet)


def test_optimized_rejects_indivisible_pallet():
    from pstack_api.grid import GridDimensionError

    with pytest.raises(GridDimensionError):
        packing_core.optimized_stack([box("A", 10, 10, 10)], ContainerSpec(101, 100, 100), GAP)


# ----------------------------
# Debug placement
# ----------------------------


def test_origin_out_of_bound_centres_first_box_on_origin():
    run = packing_core.stack_origin_out_of_bound([box("A", 41, 40, 40), box("B", 10, 10, 10)])
    assert ids(run.placements) == ["A"]
    assert run.placements[0].anchor == (0, 0, 0)
    assert run.placements[0].container == ContainerId.MAIN
    assert run.dropped == ["B"]


def test_origin_out_of_bound_empty_input():
    assert packing_core.stack_origin_out_of_bound([]).placements == []


# ----------------------------
# Determinism
# ----------------------------


@pytest.mark.parametrize(
    "policy",
    [
        lambda bs, c: packing_core.stack_all_boxes(bs, c, GAP),
        lambda bs, c: packing_core.stack_buffer(bs, c, GAP),
        lambda bs, c: packing_core.stack_with_buffer(bs, c, GAP, buffer_capacity=4),
        lambda bs, c: packing_core.optimized_stack(bs, c, GAP),
    ],
)
def test_runs_are_deterministic(policy, pallet):
    first = policy(mixed_boxes(), pallet)
    second = policy(mixed_boxes(), pallet)
    assert first.placements == second.placements
    assert list(first.outcomes) == list(second.outcomes)


@pytest.mark.parametrize(
    "policy",
    [
        lambda bs, c: packing_core.stack_all_boxes(bs, c, GAP),
        lambda bs, c: packing_core.stack_buffer(bs, c, GAP),
        lambda bs, c: packing_core.stack_with_buffer(bs, c, GAP),
        lambda bs, c: packing_core.optimized_stack(bs, c, GAP),
    ],
)
def test_repeated_box_id_keeps_first_box(policy, pallet, caplog):
    with caplog.at_level("WARNING", logger="pstack_api.packing"):
        run = policy([box("A", 40, 40, 40), box("A", 10, 10, 10)], pallet)
    assert ids(run.placements) == ["A"]
    assert run.placements[0].extents == (40, 40, 40)
    assert list(run.outcomes) == ["A"]
    assert "Ignoring repeated box id A" in caplog.text


# ----------------------------
# Support check & summaries
# ----------------------------


def test_has_support_on_floor_and_on_boxes():
    base = [Placement("A", (0, 0, 0), (40, 40, 40))]
    assert packing_core.has_support((50, 50, 0), (10, 10, 10), [])
    assert packing_core.has_support((0, 0, 40), (40, 40, 10), base)
    # 10 of 40 wide rests on A: 25 % support
    assert not packing_core.has_support((30, 0, 40), (40, 40, 10), base)
    assert packing_core.has_support((30, 0, 40), (40, 40, 10), base, min_support_ratio=0.25)
    # floating above A
    assert not packing_core.has_support((0, 0, 45), (40, 40, 10), base)


def test_summarize_run_counts(pallet):
    run = packing_core.stack_all_boxes(
        [box("A", 40, 40, 40), box("B", 40, 40, 40), box("W", 120, 40, 40)], pallet, GAP
    )
    summary = packing_core.summarize_run(run, pallet)
    assert summary["method"] == "stack_all"
    assert summary["main_count"] == 2
    assert summary["buffer_count"] == 0
    assert summary["dropped_count"] == 1
    assert summary["main_volume"] == 128000
    assert summary["utilization"] == pytest.approx(12.8)


def test_log_stacking_summary_reports_dropped(pallet, caplog):
    run = packing_core.stack_all_boxes([box("W", 120, 40, 40)], pallet, GAP)
    with caplog.at_level("INFO", logger="pstack_api.packing"):
        packing_core.log_stacking_summary(run, pallet)
    assert "could NOT be stacked: W" in caplog.text
