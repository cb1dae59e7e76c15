"""
FastAPI application exposing the pallet stacking engine.

This module provides a small API surface built on top of the stacking
engine in pstack_api.

Endpoints:
- GET /health
- GET / (service info / version)
- GET /methods  -> stacking methods the engine accepts
- POST /stack   -> run one stacking method over a list of boxes

Notes:
- The API uses the Pydantic request/response models defined in `pstack_api.models`.
- The computational core remains pure-Python dataclasses (in `pstack_api.models`)
  and the policies in `pstack_api.packing`, dispatched by `pstack_api.engine`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__ as PACKAGE_VERSION
from . import packing as packing_core
from .engine import StackingEngine
from .models import (
    StackingMethod,
    StackRequest,
    StackResult,
    palletcreate_to_dataclass,
    stack_result_from_run,
)

logger = logging.getLogger("pstack_api")
logging.basicConfig(level=logging.INFO)

app = FastAPI(
    title="pstack_api - pallet stacking",
    version=PACKAGE_VERSION,
    description="API wrapper around the 3D pallet stacking engine.",
)

# Allow cross-origin calls for common dev scenarios (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------
# Health & info endpoints
# ---------------------------


@app.get("/", summary="Service info")
async def root() -> Dict[str, Any]:
    """
    Basic service information and version.
    """
    return {"service": "pstack_api", "version": PACKAGE_VERSION}


@app.get("/health", summary="Health check")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/methods", summary="Available stacking methods")
async def methods() -> List[str]:
    return [m.value for m in StackingMethod]


# ---------------------------
# Stacking endpoint
# ---------------------------


@app.post(
    "/stack",
    response_model=StackResult,
    summary="Stack a list of boxes on a pallet with one placement policy",
)
def stack_boxes(request: StackRequest) -> StackResult:
    """
    Request:
    - boxes: list of `{box_id, box_size}` records
    - pallet: pallet width/length/height
    - method: one of GET /methods
    - gap, buffer_capacity: optional engine settings

    Response:
    - StackResult: ordered placements, dropped/skipped box ids and a summary.

    Boxes with malformed sizes are reported in `skipped_box_ids`; boxes
    that found no position are listed in `dropped_box_ids`.
    """
    if not request.boxes:
        raise HTTPException(status_code=400, detail="`boxes` must be a non-empty list.")

    container = palletcreate_to_dataclass(request.pallet)
    logger.info(
        "stack called: %d boxes, pallet=%s, method=%s, gap=%d",
        len(request.boxes),
        container.dims,
        request.method,
        request.gap,
    )

    # CPU-bound; a sync handler lets FastAPI run it in the threadpool
    try:
        engine = StackingEngine(
            [b.model_dump() for b in request.boxes],
            container,
            gap=request.gap,
            buffer_capacity=request.buffer_capacity,
        )
        run = engine.run(request.method)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    summary = packing_core.log_stacking_summary(run, container)
    return stack_result_from_run(run, summary=summary)


# ---------------------------
# Exception handlers & utilities
# ---------------------------


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Ensure JSON responses for unexpected errors.
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
