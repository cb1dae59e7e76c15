# pstack_api/packing.py
"""
Core placement logic for pstack_api.

This module provides the geometry-only stacking policies and the helpers
they share:
- aabb_overlap / is_overlap: brute-force padded AABB collision tests
- find_first_fit, find_base_layer_fit: first-fit corner searches (z, y, x order)
- stack_origin_out_of_bound: single-box debug placement
- stack_all_boxes: greedy fill of the main pallet
- stack_buffer: base-layer fill of the buffer pallet
- stack_with_buffer: buffer fill followed by largest-first promotion
- optimized_stack: volume-sorted placement on the voxel grid with rotation
- has_support: base support ratio (not used by any policy yet)
- summarize_run / log_stacking_summary

Every policy builds its own state and returns a self-contained StackRun.
The implementations intentionally remain pure-Python (apart from the numpy
backed CollisionGrid) and operate on the dataclasses in `pstack_api.models`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .grid import DEFAULT_CELL_SIZE, CollisionGrid
from .models import (
    ROTATIONS,
    BoxSpec,
    Buffered,
    ContainerId,
    ContainerSpec,
    Extents,
    MainPlaced,
    PaddedBox,
    Placement,
    Position,
    StackingMethod,
    StackRun,
    Unplaced,
)

logger = logging.getLogger(__name__)

DEFAULT_GAP = 5
DEFAULT_BUFFER_CAPACITY = 100
MIN_SUPPORT_RATIO = 0.3

# ----------------------------
# Geometry helpers
# ----------------------------


def aabb_overlap(a_min, a_max, b_min, b_max) -> bool:
    """
    Axis-aligned bounding box overlap test in 3D.
    Returns True if boxes overlap (touching faces do not count).
    """
    for i in range(3):
        if a_max[i] <= b_min[i] or b_max[i] <= a_min[i]:
            return False
    return True


def _first_collision(
    candidate: PaddedBox, placed: Sequence[PaddedBox]
) -> Optional[PaddedBox]:
    c_min = (candidate.x, candidate.y, candidate.z)
    c_max = candidate.max_corner
    for other in placed:
        if aabb_overlap(c_min, c_max, (other.x, other.y, other.z), other.max_corner):
            return other
    return None


def is_overlap(candidate: PaddedBox, placed: Sequence[PaddedBox]) -> bool:
    """
    Return True if the padded `candidate` intersects any padded box in
    `placed` on all three axes at once.
    """
    return _first_collision(candidate, placed) is not None


def _axis_stops(bound: int, extent: int, stride: int) -> range:
    """Corner coordinates 0, stride, 2*stride, ... that keep `extent` inside `bound`."""
    return range(0, bound - extent + 1, stride)


def _next_stop(value: int, stride: int) -> int:
    """Smallest multiple of `stride` that is >= value."""
    return -(-value // stride) * stride


def _scan_row(
    extents: Extents, y: int, z: int, width: int, placed: Sequence[PaddedBox], gap: int
) -> Optional[int]:
    """
    First free x along one row, or None.

    When the candidate hits a box, every x short of that box's far face hits
    it as well, so the scan jumps straight past it.
    """
    x = 0
    last = width - extents[0]
    while x <= last:
        hit = _first_collision(PaddedBox.from_corner((x, y, z), extents, gap), placed)
        if hit is None:
            return x
        x = max(x + gap, _next_stop(hit.x + hit.width, gap))
    return None


def find_first_fit(
    extents: Extents,
    container: ContainerSpec,
    placed: Sequence[PaddedBox],
    gap: int,
) -> Optional[Position]:
    """
    Bottom-left-back first fit: scan z (outer), y, x (inner) with stride
    `gap` and return the first corner whose padded box is collision free.
    """
    w, l, h = extents
    if w > container.width or l > container.length:
        return None
    for z in _axis_stops(container.height, h, gap):
        for y in _axis_stops(container.length, l, gap):
            x = _scan_row(extents, y, z, container.width, placed, gap)
            if x is not None:
                return (x, y, z)
    return None


def find_base_layer_fit(
    extents: Extents,
    container: ContainerSpec,
    placed: Sequence[PaddedBox],
    gap: int,
) -> Optional[Position]:
    """First free corner on the z = 0 layer (scan y, then x)."""
    w, l, _ = extents
    if w > container.width:
        return None
    for y in _axis_stops(container.length, l, gap):
        x = _scan_row(extents, y, 0, container.width, placed, gap)
        if x is not None:
            return (x, y, 0)
    return None


def find_corner_column_fit(
    extents: Extents,
    container: ContainerSpec,
    placed: Sequence[PaddedBox],
    gap: int,
) -> Optional[Position]:
    """
    Retry restricted to the (0, 0) column, scanning z only.

    Every corner tried here is also tried by find_first_fit, so this never
    finds anything the full scan missed.
    """
    w, l, h = extents
    if w > container.width or l > container.length:
        return None
    for z in _axis_stops(container.height, h, gap):
        if not is_overlap(PaddedBox.from_corner((0, 0, z), extents, gap), placed):
            return (0, 0, z)
    return None


def _unique_boxes(boxes: Sequence[BoxSpec]) -> List[BoxSpec]:
    """Keep the first box for each id; later repeats are logged and ignored."""
    unique: Dict[str, BoxSpec] = {}
    for box in boxes:
        if box.id in unique:
            logger.warning("Ignoring repeated box id %s", box.id)
            continue
        unique[box.id] = box
    return list(unique.values())


def _new_run(method: StackingMethod, boxes: Sequence[BoxSpec]) -> StackRun:
    run = StackRun(method=method)
    for box in boxes:
        run.outcomes[box.id] = Unplaced(box.id)
    return run


def _check_gap(gap: int) -> None:
    if gap <= 0:
        raise ValueError(f"gap must be positive, got {gap}")


# ----------------------------
# Debug placement
# ----------------------------


def stack_origin_out_of_bound(boxes: Sequence[BoxSpec]) -> StackRun:
    """
    Put the first box with its footprint centre on the pallet origin.

    Half of the box hangs outside the pallet; renderers use this to check
    their coordinate handling. Every other box stays unplaced.
    """
    boxes = _unique_boxes(boxes)
    run = _new_run(StackingMethod.ORIGIN_OUT_OF_BOUND, boxes)
    if not boxes:
        return run
    box = boxes[0]
    w, l, h = box.dims
    corner = (-((w + 1) // 2), -((l + 1) // 2), 0)
    placement = Placement(box.id, corner, (w, l, h), 0, ContainerId.MAIN)
    run.placements.append(placement)
    run.outcomes[box.id] = MainPlaced(placement)
    return run


# ----------------------------
# Greedy fill
# ----------------------------


def stack_all_boxes(
    boxes: Sequence[BoxSpec], container: ContainerSpec, gap: int = DEFAULT_GAP
) -> StackRun:
    """
    Greedy-fill the main pallet in input order.

    Each box takes the first collision-free corner of the z, y, x scan. A box
    the scan rejects gets one more try in the (0, 0) column before it is
    dropped from the result.
    """
    boxes = _unique_boxes(boxes)
    _check_gap(gap)
    run = _new_run(StackingMethod.STACK_ALL, boxes)
    placed: List[PaddedBox] = []

    for box in boxes:
        corner = find_first_fit(box.dims, container, placed, gap)
        if corner is None:
            corner = find_corner_column_fit(box.dims, container, placed, gap)
        if corner is None:
            logger.debug("No position for box %s %s", box.id, box.dims)
            continue
        placement = Placement(box.id, corner, box.dims, 0, ContainerId.MAIN)
        placed.append(placement.padded(gap))
        run.placements.append(placement)
        run.outcomes[box.id] = MainPlaced(placement)

    logger.debug("stack_all_boxes placed %d of %d boxes", len(run.placements), len(boxes))
    return run


# ----------------------------
# Buffer policies
# ----------------------------


def stack_buffer(
    boxes: Sequence[BoxSpec], container: ContainerSpec, gap: int = DEFAULT_GAP
) -> StackRun:
    """
    Lay every box on the base layer of the buffer pallet, first fit.

    Outcomes are Buffered, but the placements carry the main pallet id,
    which is what consumers of this policy read.
    """
    boxes = _unique_boxes(boxes)
    _check_gap(gap)
    run = _new_run(StackingMethod.BUFFER, boxes)
    placed: List[PaddedBox] = []

    for box in boxes:
        corner = find_base_layer_fit(box.dims, container, placed, gap)
        if corner is None:
            continue
        placement = Placement(box.id, corner, box.dims, 0, ContainerId.MAIN)
        placed.append(placement.padded(gap))
        run.placements.append(placement)
        run.outcomes[box.id] = Buffered(placement)

    run.peak_buffer_count = len(placed)
    return run


def _best_buffered_candidate(
    run: StackRun, container: ContainerSpec, main: Sequence[PaddedBox], gap: int
) -> Optional[Tuple[Placement, Position]]:
    """
    Largest buffered box that still has a free corner on the main pallet.

    Ties go to the box met first in the result order.
    """
    best: Optional[Tuple[Placement, Position]] = None
    best_volume = 0
    for placement in run.in_container(ContainerId.BUFFER):
        w, l, h = placement.extents
        volume = w * l * h
        if volume <= best_volume:
            continue
        corner = find_first_fit(placement.extents, container, main, gap)
        if corner is not None:
            best = (placement, corner)
            best_volume = volume
    return best


def _promote_buffered(
    run: StackRun,
    container: ContainerSpec,
    main: List[PaddedBox],
    buffer: List[PaddedBox],
    gap: int,
) -> None:
    # each move shrinks the buffer, so its starting size bounds the loop
    for _ in range(len(buffer)):
        choice = _best_buffered_candidate(run, container, main, gap)
        if choice is None:
            break
        buffered, corner = choice
        promoted = Placement(buffered.box_id, corner, buffered.extents, 0, ContainerId.MAIN)

        run.placements.remove(buffered)
        run.placements.append(promoted)
        run.outcomes[promoted.box_id] = MainPlaced(promoted)
        run.promotions += 1
        main.append(promoted.padded(gap))
        buffer[:] = [p.padded(gap) for p in run.in_container(ContainerId.BUFFER)]
        logger.info("Moved box %s from buffer to main at %s", promoted.box_id, corner)


def stack_with_buffer(
    boxes: Sequence[BoxSpec],
    container: ContainerSpec,
    gap: int = DEFAULT_GAP,
    buffer_capacity: int = DEFAULT_BUFFER_CAPACITY,
) -> StackRun:
    """
    Two-tier stacking.

    Fill phase: while the buffer holds fewer than `buffer_capacity` boxes, a
    box first tries the buffer's base layer; otherwise (or when no buffer
    slot is free) it goes through the full main-pallet scan. Boxes that fit
    nowhere stay unplaced.

    Promotion phase: repeatedly move the largest buffered box that fits on
    the main pallet until none does.
    """
    boxes = _unique_boxes(boxes)
    _check_gap(gap)
    if buffer_capacity < 0:
        raise ValueError(f"buffer_capacity must be >= 0, got {buffer_capacity}")
    run = _new_run(StackingMethod.STACK_WITH_BUFFER, boxes)
    main: List[PaddedBox] = []
    buffer: List[PaddedBox] = []

    for box in boxes:
        if len(buffer) < buffer_capacity:
            corner = find_base_layer_fit(box.dims, container, buffer, gap)
            if corner is not None:
                placement = Placement(box.id, corner, box.dims, 0, ContainerId.BUFFER)
                buffer.append(placement.padded(gap))
                run.placements.append(placement)
                run.outcomes[box.id] = Buffered(placement)
                run.peak_buffer_count = max(run.peak_buffer_count, len(buffer))
                continue

        corner = find_first_fit(box.dims, container, main, gap)
        if corner is not None:
            placement = Placement(box.id, corner, box.dims, 0, ContainerId.MAIN)
            main.append(placement.padded(gap))
            run.placements.append(placement)
            run.outcomes[box.id] = MainPlaced(placement)

    _promote_buffered(run, container, main, buffer, gap)
    logger.debug(
        "stack_with_buffer: %d main, %d buffered, %d promoted",
        len(main),
        len(buffer),
        run.promotions,
    )
    return run


# ----------------------------
# Volume-sorted placement on the voxel grid
# ----------------------------


def _grid_first_fit(
    grid: CollisionGrid, box: BoxSpec, container: ContainerSpec, gap: int
) -> Optional[Tuple[Position, int]]:
    # scan bounds come from the unrotated extents; can_place checks the rotated ones
    w, l, h = box.dims
    for z in _axis_stops(container.height, h, gap):
        for y in _axis_stops(container.length, l, gap):
            for x in _axis_stops(container.width, w, gap):
                for rotation in ROTATIONS:
                    if grid.can_place(box.dims, (x, y, z), rotation):
                        return (x, y, z), rotation
    return None


def optimized_stack(
    boxes: Sequence[BoxSpec],
    container: ContainerSpec,
    gap: int = DEFAULT_GAP,
    cell_size: int = DEFAULT_CELL_SIZE,
) -> StackRun:
    """
    Place boxes largest volume first on a fresh CollisionGrid, trying
    rotation 0 then 90 at each corner. Equal volumes keep input order.

    No stacking gap is added here; clearance comes only from the voxel size.
    """
    boxes = _unique_boxes(boxes)
    _check_gap(gap)
    run = _new_run(StackingMethod.OPTIMIZED_STACK, boxes)
    grid = CollisionGrid(container, cell_size)

    for box in sorted(boxes, key=lambda b: -b.volume):
        found = _grid_first_fit(grid, box, container, gap)
        if found is None:
            logger.debug("No grid position for box %s %s", box.id, box.dims)
            continue
        corner, rotation = found
        grid.commit(box.dims, corner, rotation)
        placement = Placement(
            box.id, corner, box.rotated(rotation), rotation, ContainerId.MAIN
        )
        run.placements.append(placement)
        run.outcomes[box.id] = MainPlaced(placement)

    return run


# ----------------------------
# Support check
# ----------------------------


def has_support(
    corner: Position,
    extents: Extents,
    placed: Sequence[Placement],
    min_support_ratio: float = MIN_SUPPORT_RATIO,
) -> bool:
    """
    True when at least `min_support_ratio` of the base of a box at `corner`
    rests on the tops of boxes in `placed`. Boxes on the floor are always
    supported.

    No policy calls this yet; it is the hook for load-aware stacking.
    """
    x, y, z = corner
    width, length, _ = extents
    if z == 0:
        return True

    supported_area = 0
    for other in placed:
        ox, oy, oz = other.corner
        ow, ol, oh = other.extents
        if oz + oh != z:
            continue
        overlap_x = max(0, min(x + width, ox + ow) - max(x, ox))
        overlap_y = max(0, min(y + length, oy + ol) - max(y, oy))
        supported_area += overlap_x * overlap_y

    return supported_area / (width * length) >= min_support_ratio


# ----------------------------
# Summary helpers
# ----------------------------


def summarize_run(run: StackRun, container: ContainerSpec) -> Dict[str, Any]:
    """
    Counts and main-pallet utilization for a finished run.
    """
    main = run.in_container(ContainerId.MAIN)
    buffered = run.in_container(ContainerId.BUFFER)
    main_volume = sum(p.extents[0] * p.extents[1] * p.extents[2] for p in main)
    return {
        "method": run.method.value,
        "main_count": len(main),
        "buffer_count": len(buffered),
        "placed_count": len(run.placements),
        "dropped_count": len(run.dropped),
        "skipped_count": len(run.skipped),
        "promotions": run.promotions,
        "main_volume": main_volume,
        "utilization": main_volume / container.volume * 100.0,
    }


def log_stacking_summary(run: StackRun, container: ContainerSpec) -> Dict[str, Any]:
    """
    Report a run summary through logging and return it.
    """
    summary = summarize_run(run, container)
    logger.info(
        "%s: main=%d buffer=%d dropped=%d skipped=%d utilization=%.1f%%",
        summary["method"],
        summary["main_count"],
        summary["buffer_count"],
        summary["dropped_count"],
        summary["skipped_count"],
        summary["utilization"],
    )
    if run.dropped:
        logger.info("Boxes that could NOT be stacked: %s", ", ".join(run.dropped))
    return summary


__all__ = [
    "DEFAULT_GAP",
    "DEFAULT_BUFFER_CAPACITY",
    "MIN_SUPPORT_RATIO",
    "aabb_overlap",
    "is_overlap",
    "find_first_fit",
    "find_base_layer_fit",
    "find_corner_column_fit",
    "stack_origin_out_of_bound",
    "stack_all_boxes",
    "stack_buffer",
    "stack_with_buffer",
    "optimized_stack",
    "has_support",
    "summarize_run",
    "log_stacking_summary",
]
