from __future__ import annotations
import math
from typing import Dict, Iterable, List, Tuple

MARKUPS = {
    "Games": 1.07,
    "Pulsa": 1.03,
    "Paket Data": 1.05,
    "Membership": 1.10,
}
DEFAULT_MARKUP = 1.05
ROUND_TO = 50

# denomination name keyword -> display group, first match wins
GROUP_KEYWORDS = (
    ("membership", "Membership"),
    ("member", "Membership"),
    ("pass", "Pass"),
    ("twilight", "Pass"),
    ("starlight", "Starlight"),
    ("diamond", "Top Up"),
    ("kristal", "Top Up"),
)
GROUP_ORDER = ("Membership", "Pass", "Starlight", "Top Up")


def markup_for(category: str) -> float:
    category = category or ""
    if category in MARKUPS:
        return MARKUPS[category]
    words = category.split()
    if words and words[0] in MARKUPS:
        return MARKUPS[words[0]]
    return DEFAULT_MARKUP


def selling_price(base_price: float, category: str) -> int:
    # round away float noise first: 1000 * 1.07 == 1070.0000000000002
    marked_up = round(float(base_price) * markup_for(category), 6)
    return int(math.ceil(marked_up / ROUND_TO) * ROUND_TO)


def find_denomination(entries: Iterable[dict], name: str) -> dict | None:
    for entry in entries:
        if entry.get("product_name") == name:
            return entry
    return None


def group_denominations(
    entries: Iterable[dict],
) -> Tuple[Dict[str, List[dict]], List[str]]:
    """Group a brand's denominations for the order page.

    Returns (groups, ordered group names). Every entry is copied with its
    `selling_price` added.
    """
    groups: Dict[str, List[dict]] = {}
    for entry in entries:
        denom = dict(entry)
        denom["selling_price"] = selling_price(
            denom.get("price", 0), denom.get("category", "")
        )
        name = denom.get("category", "")
        lowered = (denom.get("product_name") or "").lower()
        for keyword, group in GROUP_KEYWORDS:
            if keyword in lowered:
                name = group
                break
        groups.setdefault(name, []).append(denom)

    def rank(group: str) -> int:
        return GROUP_ORDER.index(group) if group in GROUP_ORDER else 99

    # sorted() is stable: unranked groups keep first-seen order
    return groups, sorted(groups, key=rank)
