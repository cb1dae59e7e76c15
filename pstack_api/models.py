# pstack_api/models.py
"""
Core datamodels for pstack_api.

This module provides:
- Dataclass-based core models used by the stacking engine (geometry-focused).
- Explicit per-box outcome variants produced by every strategy run.
- Pydantic models used for API input/output (serialization & validation).
- Box-size parsing and small conversion helpers between the two layers.

Keep dataclasses free of framework-specific dependencies so they can be used
directly by the placement strategies. Pydantic models are thin wrappers for
validation/IO when exposing the functionality through FastAPI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from math import ceil
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

Position = Tuple[int, int, int]
Extents = Tuple[int, int, int]

ROTATIONS: Tuple[int, int] = (0, 90)


class InvalidBoxSizeError(ValueError):
    """Raised when a box size does not hold three positive integers."""


# ----------------------------
# Dataclass core models
# ----------------------------


class ContainerId(IntEnum):
    """Pallet identifiers as emitted in `pallet_id`."""

    MAIN = 1
    BUFFER = 2


class StackingMethod(str, Enum):
    """Placement policies understood by the engine facade."""

    ORIGIN_OUT_OF_BOUND = "origin_out_of_bound"
    STACK_ALL = "stack_all"
    BUFFER = "buffer"
    STACK_WITH_BUFFER = "stack_with_buffer"
    OPTIMIZED_STACK = "optimized_stack"


def rotated_extents(dims: Extents, rotation: int) -> Extents:
    """
    Apply a yaw rotation to (width, length, height).

    90 swaps width and length; height never changes.
    """
    if rotation not in ROTATIONS:
        raise ValueError(f"unsupported rotation {rotation!r}, expected one of {ROTATIONS}")
    w, l, h = dims
    if rotation == 90:
        return (l, w, h)
    return (w, l, h)


@dataclass(frozen=True)
class BoxSpec:
    """
    Geometry-only representation of one input box.

    Attributes:
    - id: unique identifier (string)
    - width, length, height: positive integer extents along x, y, z
    """

    id: str
    width: int
    length: int
    height: int

    def __post_init__(self) -> None:
        for name in ("width", "length", "height"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise InvalidBoxSizeError(
                    f"box {self.id} {name} must be a positive integer, got {value!r}"
                )

    @property
    def dims(self) -> Extents:
        return (self.width, self.length, self.height)

    @property
    def volume(self) -> int:
        """Geometric volume (width * length * height)."""
        return self.width * self.length * self.height

    def rotated(self, rotation: int) -> Extents:
        return rotated_extents(self.dims, rotation)


@dataclass(frozen=True)
class ContainerSpec:
    """
    Pallet dimensions shared by the main and buffer containers.

    The buffer only ever uses the base layer of this footprint.
    """

    width: int
    length: int
    height: int

    def __post_init__(self) -> None:
        for name in ("width", "length", "height"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ValueError(f"container {name} must be a positive integer, got {value!r}")

    @property
    def dims(self) -> Extents:
        return (self.width, self.length, self.height)

    @property
    def volume(self) -> int:
        return self.width * self.length * self.height


@dataclass(frozen=True)
class PaddedBox:
    """
    Axis-aligned bounding box used by the brute-force overlap checker.

    (x, y, z) is the unpadded minimum corner; the extents already include
    the stacking gap when built through `from_corner`.
    """

    x: int
    y: int
    z: int
    width: int
    length: int
    height: int

    @classmethod
    def from_corner(cls, corner: Position, extents: Extents, gap: int) -> "PaddedBox":
        x, y, z = corner
        w, l, h = extents
        return cls(x, y, z, w + gap, l + gap, h + gap)

    @property
    def max_corner(self) -> Position:
        return (self.x + self.width, self.y + self.length, self.z + self.height)


@dataclass(frozen=True)
class Placement:
    """
    Concrete placed box.

    - box_id: id of the input box
    - corner: unpadded minimum corner (x, y, z) of the rotated box
    - extents: (w, l, h) after rotation
    - rotation: 0 or 90 degrees about the vertical axis
    - container: pallet the box sits on

    `anchor` is what consumers receive as `box_loc`: the x/y centre of the
    rotated footprint (rounded up) and the z of the bottom face.
    """

    box_id: str
    corner: Position
    extents: Extents
    rotation: int = 0
    container: ContainerId = ContainerId.MAIN

    @property
    def anchor(self) -> Position:
        x, y, z = self.corner
        w, l, _ = self.extents
        return (x + ceil(w / 2), y + ceil(l / 2), z)

    def padded(self, gap: int) -> PaddedBox:
        return PaddedBox.from_corner(self.corner, self.extents, gap)


# Per-box outcome variants. A strategy run yields exactly one of these for
# every valid input box, in processing order.


@dataclass(frozen=True)
class Unplaced:
    box_id: str


@dataclass(frozen=True)
class Buffered:
    placement: Placement

    @property
    def box_id(self) -> str:
        return self.placement.box_id


@dataclass(frozen=True)
class MainPlaced:
    placement: Placement

    @property
    def box_id(self) -> str:
        return self.placement.box_id


Outcome = Union[Unplaced, Buffered, MainPlaced]


@dataclass
class StackRun:
    """
    Self-contained result of one strategy invocation.

    - method: policy that produced the run
    - placements: ordered result set (processing order, not spatial order)
    - outcomes: final outcome per valid box id, in input order
    - skipped: ids whose size could not be parsed
    - peak_buffer_count: highest number of simultaneously buffered boxes
    - promotions: number of buffer -> main moves performed
    """

    method: StackingMethod
    placements: List[Placement] = field(default_factory=list)
    outcomes: Dict[str, Outcome] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    peak_buffer_count: int = 0
    promotions: int = 0

    @property
    def dropped(self) -> List[str]:
        """Ids of valid boxes that ended up without a position."""
        return [box_id for box_id, o in self.outcomes.items() if isinstance(o, Unplaced)]

    def in_container(self, container: ContainerId) -> List[Placement]:
        return [p for p in self.placements if p.container == container]


# ----------------------------
# Box-size parsing
# ----------------------------


def parse_box_size(raw: Union[str, Sequence[Any]]) -> Extents:
    """
    Turn a bracketed, comma separated triple such as "[40, 40, 40]" into
    three positive integers.

    Sequences (already decoded JSON arrays) go through the same checks.
    Unparsable tokens are logged and ignored; the triple is rejected with
    InvalidBoxSizeError when fewer than three positive integers remain.
    """
    if isinstance(raw, str):
        tokens: Sequence[Any] = raw.replace("[", "").replace("]", "").split(",")
    else:
        try:
            tokens = list(raw)
        except TypeError:
            raise InvalidBoxSizeError(f"expected a size string or sequence, got {raw!r}") from None

    sizes: List[int] = []
    for token in tokens:
        try:
            sizes.append(int(str(token).strip()))
        except ValueError:
            logger.warning("Error parsing size token: %r", token)

    if len(sizes) < 3:
        raise InvalidBoxSizeError(f"expected 3 dimensions, got {len(sizes)} from {raw!r}")
    dims = (sizes[0], sizes[1], sizes[2])
    if any(d <= 0 for d in dims):
        raise InvalidBoxSizeError(f"dimensions must be positive, got {dims}")
    return dims


# ----------------------------
# Pydantic models for API surface
# ----------------------------

# Input models (Create / Request)


class BoxRecord(BaseModel):
    box_id: str = Field(..., description="Unique id for the box")
    box_size: Union[str, List[int]] = Field(
        ..., description='Bracketed triple "[w,l,h]" or a [w, l, h] array'
    )

    model_config = ConfigDict(
        json_schema_extra={"example": {"box_id": "17", "box_size": "[40,40,40]"}}
    )

    @field_validator("box_id", mode="before")
    @classmethod
    def coerce_box_id(cls, v: Any) -> str:
        # loaders emit numeric ids
        if isinstance(v, (int, str)):
            return str(v)
        raise ValueError("box_id must be a string or an integer")


class PalletCreate(BaseModel):
    width: int = Field(..., gt=0)
    length: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    model_config = ConfigDict(
        json_schema_extra={"example": {"width": 1100, "length": 1100, "height": 1800}}
    )


class StackRequest(BaseModel):
    boxes: List[BoxRecord]
    pallet: PalletCreate
    method: str = Field(StackingMethod.STACK_ALL.value, description="Placement policy")
    gap: int = Field(5, gt=0, description="Stacking gap between boxes")
    buffer_capacity: int = Field(100, ge=0)


# Output models (Read / Response)


class PlacementRead(BaseModel):
    box_id: str
    box_loc: Tuple[int, int, int]
    box_rot: Literal[0, 90]
    pallet_id: Literal[1, 2]

    model_config = ConfigDict(from_attributes=True)


class StackResult(BaseModel):
    method: str
    placements: List[PlacementRead]
    dropped_box_ids: List[str]
    skipped_box_ids: List[str]
    summary: Optional[Dict[str, Any]] = None


# ----------------------------
# Conversion helpers
# ----------------------------


def boxrecord_to_dataclass(record: BoxRecord) -> BoxSpec:
    """Convert a BoxRecord (pydantic) to a BoxSpec dataclass. May raise InvalidBoxSizeError."""
    w, l, h = parse_box_size(record.box_size)
    return BoxSpec(id=record.box_id, width=w, length=l, height=h)


def palletcreate_to_dataclass(pc: PalletCreate) -> ContainerSpec:
    return ContainerSpec(width=pc.width, length=pc.length, height=pc.height)


def placement_from_dataclass(p: Placement) -> PlacementRead:
    """Convert dataclass Placement to the wire shape."""
    return PlacementRead(
        box_id=p.box_id,
        box_loc=p.anchor,
        box_rot=p.rotation,
        pallet_id=int(p.container),
    )


def stack_result_from_run(
    run: StackRun, summary: Optional[Dict[str, Any]] = None
) -> StackResult:
    """Convenience helper to create a Pydantic StackResult from a StackRun."""
    return StackResult(
        method=run.method.value,
        placements=[placement_from_dataclass(p) for p in run.placements],
        dropped_box_ids=run.dropped,
        skipped_box_ids=list(run.skipped),
        summary=summary or {},
    )


# Expose minimal public API from this module
__all__ = [
    "ROTATIONS",
    "InvalidBoxSizeError",
    "ContainerId",
    "StackingMethod",
    "rotated_extents",
    "BoxSpec",
    "ContainerSpec",
    "PaddedBox",
    "Placement",
    "Unplaced",
    "Buffered",
    "MainPlaced",
    "Outcome",
    "StackRun",
    "parse_box_size",
    "BoxRecord",
    "PalletCreate",
    "StackRequest",
    "PlacementRead",
    "StackResult",
    "boxrecord_to_dataclass",
    "palletcreate_to_dataclass",
    "placement_from_dataclass",
    "stack_result_from_run",
]
