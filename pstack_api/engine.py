# pstack_api/engine.py
"""
Engine facade: holds the box list, pallet dimensions and stacking settings,
and dispatches to one placement policy per call.

Each call to `run()` / `stack()` builds fresh per-run state inside the
selected policy, so one engine can serve any number of calls and two
engines over the same input never share anything. The engine performs no
disk, network or rendering I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from . import packing as packing_core
from .grid import DEFAULT_CELL_SIZE
from .models import (
    BoxSpec,
    ContainerSpec,
    InvalidBoxSizeError,
    Placement,
    StackingMethod,
    StackRun,
    parse_box_size,
)

logger = logging.getLogger(__name__)


class UnsupportedStrategyError(ValueError):
    """The requested stacking method is not one the engine knows."""


@dataclass(frozen=True)
class EngineConfig:
    gap: int = packing_core.DEFAULT_GAP
    cell_size: int = DEFAULT_CELL_SIZE
    buffer_capacity: int = packing_core.DEFAULT_BUFFER_CAPACITY

    def __post_init__(self) -> None:
        if self.gap <= 0:
            raise ValueError(f"gap must be > 0, got {self.gap}")
        if self.cell_size <= 0:
            raise ValueError(f"cell_size must be > 0, got {self.cell_size}")
        if self.buffer_capacity < 0:
            raise ValueError(f"buffer_capacity must be >= 0, got {self.buffer_capacity}")


BoxInput = Union[BoxSpec, Mapping[str, Any]]


def _coerce_method(method: Union[StackingMethod, str]) -> StackingMethod:
    if isinstance(method, StackingMethod):
        return method
    try:
        return StackingMethod(method)
    except ValueError:
        raise UnsupportedStrategyError(f"Invalid stacking method: {method!r}") from None


def load_boxes(records: Iterable[BoxInput]) -> Tuple[List[BoxSpec], List[str]]:
    """
    Parse `{box_id, box_size}` records into BoxSpecs.

    Records whose size is malformed or missing are logged and returned in
    the second list instead of aborting the load. BoxSpec objects are
    validated when they are built.
    """
    boxes: List[BoxSpec] = []
    skipped: List[str] = []
    for record in records:
        if isinstance(record, BoxSpec):
            boxes.append(record)
            continue
        box_id = str(record["box_id"])
        try:
            w, l, h = parse_box_size(record.get("box_size"))
            box = BoxSpec(id=box_id, width=w, length=l, height=h)
        except InvalidBoxSizeError as exc:
            logger.warning("Invalid box size for box ID %s: %s", box_id, exc)
            skipped.append(box_id)
            continue
        boxes.append(box)
    return boxes, skipped


class StackingEngine:
    """
    Facade over the placement policies.

    boxes: BoxSpec objects or `{"box_id": ..., "box_size": "[w,l,h]"}` records
    container: ContainerSpec or a (width, length, height) triple
    """

    def __init__(
        self,
        boxes: Iterable[BoxInput],
        container: Union[ContainerSpec, Sequence[int]],
        gap: int = packing_core.DEFAULT_GAP,
        buffer_capacity: int = packing_core.DEFAULT_BUFFER_CAPACITY,
        cell_size: int = DEFAULT_CELL_SIZE,
    ):
        if not isinstance(container, ContainerSpec):
            container = ContainerSpec(*container)
        self.container = container
        self.config = EngineConfig(gap=gap, cell_size=cell_size, buffer_capacity=buffer_capacity)
        boxes, skipped = load_boxes(boxes)
        self.boxes: Tuple[BoxSpec, ...] = tuple(boxes)
        self.skipped: Tuple[str, ...] = tuple(skipped)

        self._dispatch: Dict[StackingMethod, Callable[[], StackRun]] = {
            StackingMethod.ORIGIN_OUT_OF_BOUND: self._origin_out_of_bound,
            StackingMethod.STACK_ALL: self._stack_all,
            StackingMethod.BUFFER: self._buffer,
            StackingMethod.STACK_WITH_BUFFER: self._stack_with_buffer,
            StackingMethod.OPTIMIZED_STACK: self._optimized,
        }

    def _origin_out_of_bound(self) -> StackRun:
        return packing_core.stack_origin_out_of_bound(self.boxes)

    def _stack_all(self) -> StackRun:
        return packing_core.stack_all_boxes(self.boxes, self.container, self.config.gap)

    def _buffer(self) -> StackRun:
        return packing_core.stack_buffer(self.boxes, self.container, self.config.gap)

    def _stack_with_buffer(self) -> StackRun:
        return packing_core.stack_with_buffer(
            self.boxes,
            self.container,
            self.config.gap,
            buffer_capacity=self.config.buffer_capacity,
        )

    def _optimized(self) -> StackRun:
        return packing_core.optimized_stack(
            self.boxes, self.container, self.config.gap, cell_size=self.config.cell_size
        )

    def run(self, method: Union[StackingMethod, str]) -> StackRun:
        """
        Run one policy and return its StackRun, including per-box outcomes.

        Raises UnsupportedStrategyError for an unknown method and
        GridDimensionError when the grid policy gets a pallet that is not a
        multiple of the cell size.
        """
        selected = _coerce_method(method)
        logger.debug(
            "Running %s on %d boxes, pallet %s", selected.value, len(self.boxes), self.container.dims
        )
        run = self._dispatch[selected]()
        run.skipped = list(self.skipped)
        return run

    def stack(self, method: Union[StackingMethod, str]) -> List[Placement]:
        """Ordered placements produced by `method`."""
        return self.run(method).placements


__all__ = [
    "UnsupportedStrategyError",
    "EngineConfig",
    "load_boxes",
    "StackingEngine",
]
