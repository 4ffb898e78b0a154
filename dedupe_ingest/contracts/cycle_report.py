"""Cycle report contract.

The cycle report is the JSON payload written after each cycle (REPORT_DIR) and
sent to notification channels. This module defines:
- A JSON Schema (for validation)
- Helpers to build, validate and persist reports

Important:
- Record field bags are never included; only counts and failure metadata.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Union

from jsonschema import Draft202012Validator

from dedupe_ingest.pipeline.results import CycleResult


_COUNT = {"type": "integer", "minimum": 0}

CYCLE_REPORT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": [
        "cycle_id",
        "status",
        "started_at",
        "finished_at",
        "fetched",
        "duplicates_skipped",
        "appended",
        "batches_total",
        "batches_attempted",
        "batches_failed",
        "batches_not_attempted",
        "failures",
        "unconfirmed_count",
        "error",
    ],
    "properties": {
        "cycle_id": {"type": "string", "minLength": 1},
        "status": {"type": "string", "enum": ["success", "partial", "failed", "skipped"]},
        "started_at": {"type": "string", "minLength": 1},
        "finished_at": {"type": ["string", "null"]},
        "duration_seconds": {"type": "number", "minimum": 0},
        "fetched": _COUNT,
        "duplicates_skipped": _COUNT,
        "skipped_existing": _COUNT,
        "skipped_in_batch": _COUNT,
        "appended": _COUNT,
        "skipped_on_write": _COUNT,
        "batches_total": _COUNT,
        "batches_attempted": _COUNT,
        "batches_failed": _COUNT,
        "batches_not_attempted": _COUNT,
        "failures": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["batch_index", "size", "attempts", "error"],
                "properties": {
                    "batch_index": _COUNT,
                    "size": {"type": "integer", "minimum": 1},
                    "attempts": _COUNT,
                    "error": {"type": "string"},
                    "retryable": {"type": "boolean"},
                },
                "additionalProperties": False,
            },
        },
        "unconfirmed_count": _COUNT,
        "not_attempted_count": _COUNT,
        "error": {"type": ["string", "null"]},
        "cancelled": {"type": "boolean"},
        "timed_out": {"type": "boolean"},
    },
    "additionalProperties": False,
}

_VALIDATOR = Draft202012Validator(CYCLE_REPORT_SCHEMA)


def build_cycle_report(result: CycleResult) -> Dict[str, Any]:
    return result.to_dict()


def validate_cycle_report(payload: Any) -> List[str]:
    """Return schema violations as readable strings (empty list when valid)."""
    errors: List[str] = []
    for err in sorted(_VALIDATOR.iter_errors(payload), key=lambda e: [str(p) for p in e.path]):
        path = ".".join(str(p) for p in err.path) if err.path else "<root>"
        errors.append(f"{path}: {err.message}")
    if errors:
        return errors

    # Cross-field invariants the schema cannot express.
    if payload["batches_attempted"] + payload["batches_not_attempted"] != payload["batches_total"]:
        errors.append("batches: attempted + not_attempted must equal total")
    if payload["batches_failed"] != len(payload["failures"]):
        errors.append("batches_failed must equal the number of failure entries")
    if payload["status"] == "success" and (payload["batches_failed"] or payload["error"]):
        errors.append("status success cannot carry failures or an error")
    return errors


def write_cycle_report(result: CycleResult, directory: Union[str, Path]) -> Path:
    """Store the report as `<directory>/cycle_<timestamp>_<id>.json` and return the path."""
    payload = build_cycle_report(result)
    os.makedirs(directory, exist_ok=True)
    stamp = result.started_at.strftime("%Y%m%dT%H%M%SZ")
    path = Path(directory) / f"cycle_{stamp}_{result.cycle_id}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    return path
