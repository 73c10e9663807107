"""
Project task helpers: locating the project number and sorting project items.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

PROJECT_MARKERS = ("Project Number:", "GitHub Project:")

PRIORITY_BUCKETS = ("critical", "high", "medium", "low")
UNCLASSIFIED = "unclassified"

# Values of a project's "Priority" field, lower-cased
PRIORITY_ALIASES = {
    "critical": "critical",
    "urgent": "critical",
    "p0": "critical",
    "high": "high",
    "p1": "high",
    "medium": "medium",
    "normal": "medium",
    "p2": "medium",
    "low": "low",
    "p3": "low",
}


def extract_number_from_line(line: str) -> Optional[str]:
    """First whitespace-separated word made only of digits."""
    for word in line.split():
        if word.isdigit():
            return word
    return None


def find_project_number_in_text(text: str) -> Optional[str]:
    for line in text.splitlines():
        if any(marker in line for marker in PROJECT_MARKERS):
            number = extract_number_from_line(line)
            if number:
                return number
    return None


def read_project_number(document: Path) -> Optional[str]:
    """Project number declared in the tracking document, if any."""
    try:
        text = document.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Tracking document %s not readable: %s", document, exc)
        return None
    return find_project_number_in_text(text)


def _field(item: Dict[str, Any], name: str) -> Optional[str]:
    for key, value in (item.get("fields") or {}).items():
        if key.lower() == name and value is not None:
            return str(value)
    return None


def filter_tasks(
    items: Iterable[Dict[str, Any]],
    filter_type: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Keep items matching both filters (case-insensitive).

    `filter_type` matches one of the item's labels or its "Type" field;
    `status` matches its "Status" field.
    """
    wanted_type = filter_type.lower() if filter_type else None
    wanted_status = status.lower() if status else None

    result = []
    for item in items:
        if wanted_type:
            kinds = {label.lower() for label in item.get("labels") or []}
            item_type = _field(item, "type")
            if item_type:
                kinds.add(item_type.lower())
            if wanted_type not in kinds:
                continue
        if wanted_status:
            item_status = _field(item, "status")
            if not item_status or item_status.lower() != wanted_status:
                continue
        result.append(item)
    return result


def classify_priority(item: Dict[str, Any]) -> str:
    value = _field(item, "priority")
    if not value:
        return UNCLASSIFIED
    return PRIORITY_ALIASES.get(value.strip().lower(), UNCLASSIFIED)


def organize_tasks_by_priority(items: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    buckets: Dict[str, Any] = {name: [] for name in PRIORITY_BUCKETS}
    buckets[UNCLASSIFIED] = []
    total = 0
    for item in items:
        buckets[classify_priority(item)].append(item)
        total += 1
    buckets["total"] = total
    return buckets
