import json
from copy import deepcopy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from accessaudit.features.scan.schemas.scan import Finding, ViolationCounts
from accessaudit.platform.config import settings
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)


def count_violations(findings: Sequence[Finding]) -> ViolationCounts:
    """One bucket per finding; occurrences do not affect the counts."""
    counts = ViolationCounts(total=len(findings))
    for finding in findings:
        severity = finding.severity.value
        setattr(counts, severity, getattr(counts, severity) + 1)
    return counts


def serialize_findings(payload: List[Dict[str, Any]]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _largest_trimmable(payload: List[Dict[str, Any]]) -> int:
    """Index of the finding with the most occurrences (>1), or -1."""
    max_idx = -1
    max_nodes = 1
    for idx, item in enumerate(payload):
        count = len(item.get("nodes") or [])
        if count > max_nodes:
            max_nodes = count
            max_idx = idx
    return max_idx


def truncate_violations(
    findings: Sequence[Finding],
    max_chars: Optional[int] = None,
    max_passes: Optional[int] = None,
) -> Tuple[str, bool]:
    """
    Shrink the serialized findings to fit within ``max_chars``.

    Repeatedly halves the occurrence list of whichever finding has the most,
    keeping at least one per finding so every violated rule stays represented.
    Works on a deep copy; the input is never mutated.

    Returns:
        (serialized JSON, truncated flag)
    """
    max_chars = settings.MAX_FINDINGS_CHARS if max_chars is None else max_chars
    max_passes = settings.MAX_TRUNCATION_PASSES if max_passes is None else max_passes

    payload = deepcopy([finding.to_payload() for finding in findings])
    serialized = serialize_findings(payload)
    if len(serialized) <= max_chars:
        return serialized, False

    original_size = len(serialized)
    for _ in range(max_passes):
        if len(serialized) <= max_chars:
            break

        idx = _largest_trimmable(payload)
        if idx == -1:
            # every finding is down to a single occurrence
            break

        nodes = payload[idx]["nodes"]
        payload[idx]["nodes"] = nodes[: max(1, len(nodes) // 2)]
        serialized = serialize_findings(payload)

    logger.info(f"Truncated findings payload from {original_size} to {len(serialized)} chars")
    return serialized, True
