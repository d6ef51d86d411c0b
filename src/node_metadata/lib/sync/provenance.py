"""
provenance.py
- Records which label keys a MachineSet propagated onto a Machine or Node.
- Stored as an annotation on the target: {"source": "<ns>/<name>", "keys": [...]}.
"""

import json

from loguru import logger

from node_metadata.core.constants import PROPAGATED_LABELS_ANNOTATION


def read_propagated_keys(annotations, source, annotation=PROPAGATED_LABELS_ANNOTATION):
    """
    Return the keys previously propagated from `source`.

    A record left by a different MachineSet, or one that cannot be parsed, counts as no record.
    """
    record = _parse((annotations or {}).get(annotation), annotation)
    if record is None or record.get("source") != source:
        return set()
    return {k for k in record.get("keys") or [] if isinstance(k, str)}


def _parse(raw, annotation):
    if not raw:
        return None
    try:
        record = json.loads(raw)
    except ValueError:
        logger.warning(f"[provenance] Ignoring unreadable {annotation} annotation: {raw!r}")
        return None
    return record if isinstance(record, dict) else None


def encode_record(source, keys):
    return json.dumps({"source": source, "keys": sorted(keys)}, separators=(",", ":"))


def record_propagated_keys(annotations, source, keys, annotation=PROPAGATED_LABELS_ANNOTATION):
    """
    Write the provenance record into `annotations` in place.

    An empty key set removes the annotation, unless it holds another MachineSet's record.

    Returns:
        bool: True if the annotations changed.
    """
    if not keys:
        if annotation not in annotations:
            return False
        record = _parse(annotations[annotation], annotation)
        if record is not None and record.get("source") != source:
            return False
        del annotations[annotation]
        return True

    value = encode_record(source, keys)
    if annotations.get(annotation) == value:
        return False
    annotations[annotation] = value
    return True
