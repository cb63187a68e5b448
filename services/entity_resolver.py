import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from services import metrics
from services.pending_selection import CandidateItem
from services.record_store import RecordStore

logger = logging.getLogger(__name__)

ITEM_VIEW = "item_stock_details"
HISTORY_VIEW = "purchase_history"

# entity kind -> (table, name column, id column)
NAMED_ENTITIES: Dict[str, Tuple[str, str, str]] = {
    "category": ("categories", "name", "id"),
    "supplier": ("suppliers", "name", "id"),
    "customer": ("customers", "name", "id"),
}


@dataclass(frozen=True)
class PurchaseHistoryEntry:
    shop_name: str
    purchase_date: str
    unit_price: float


@dataclass
class ItemLookup:
    """Result of the two-pass item search.

    status is "unique", "ambiguous" or "empty". ``via`` records which pass
    produced the candidates ("substring" or "text_search").
    """

    query: str
    status: str
    candidates: List[CandidateItem] = field(default_factory=list)
    via: str = ""

    @property
    def best(self) -> Optional[CandidateItem]:
        return self.candidates[0] if self.status == "unique" else None


def candidate_from_row(row: Dict[str, Any]) -> CandidateItem:
    stock = row.get("current_stock")
    try:
        stock_value = float(stock or 0)
    except (TypeError, ValueError):
        stock_value = 0.0
    code = str(row.get("item_code") or "").strip() or None
    rack = str(row.get("rack_no") or "").strip() or None
    name = row.get("item_name")
    return CandidateItem(
        item_id=int(row["item_id"]),
        name=str(name) if name is not None else None,
        code=code,
        current_stock=stock_value,
        rack_no=rack,
    )


def _lookup_status(candidates: List[CandidateItem]) -> str:
    if not candidates:
        return "empty"
    if len(candidates) == 1:
        return "unique"
    return "ambiguous"


def lookup_items(store: RecordStore, query: str, *, max_results: int = 5) -> ItemLookup:
    """Substring search over item names, falling back to a looser word search.

    The fallback only runs when the first pass returns nothing. Raises
    RecordStoreError from either pass.
    """
    value = str(query or "").strip()
    if not value:
        return ItemLookup(query=value, status="empty")

    limit = max(1, int(max_results))
    start = time.perf_counter()

    rows = store.find_many(
        ITEM_VIEW,
        {"item_name__icontains": value},
        order_by="item_id",
        limit=limit,
    )
    via = "substring"
    if not rows:
        rows = store.text_search(ITEM_VIEW, "item_name", value, limit=limit)
        via = "text_search"

    candidates = [candidate_from_row(row) for row in rows[:limit]]
    status = _lookup_status(candidates)
    duration_ms = (time.perf_counter() - start) * 1000
    metrics.record_lookup(via if candidates else "none", len(candidates), duration_ms)
    logger.info("Item lookup '%s' -> %s (%s candidates via %s)", value, status, len(candidates), via)
    return ItemLookup(query=value, status=status, candidates=candidates, via=via if candidates else "")


def find_named_entity(store: RecordStore, kind: str, name: str) -> Optional[Dict[str, Any]]:
    """Case-insensitive exact name match for a category, supplier or customer."""
    if kind not in NAMED_ENTITIES:
        raise ValueError(f"Unknown entity kind '{kind}'.")
    value = str(name or "").strip()
    if not value:
        return None
    table, name_col, id_col = NAMED_ENTITIES[kind]
    row = store.find_one(table, {f"{name_col}__ilike": value})
    if not row:
        return None
    return {"id": int(row[id_col]), "name": str(row[name_col] or "")}


def fetch_purchase_history(
    store: RecordStore,
    item_id: int,
    *,
    limit: int = 10,
) -> List[PurchaseHistoryEntry]:
    """Most recent purchases of an item, newest purchase first."""
    rows = store.find_many(
        HISTORY_VIEW,
        {"item_id": int(item_id)},
        order_by="-purchase_id",
        limit=max(1, int(limit)),
    )
    history: List[PurchaseHistoryEntry] = []
    for row in rows:
        try:
            price = float(row.get("unit_price") or 0.0)
        except (TypeError, ValueError):
            price = 0.0
        history.append(
            PurchaseHistoryEntry(
                shop_name=str(row.get("supplier_name") or "").strip() or "N/A",
                purchase_date=str(row.get("purchase_date") or ""),
                unit_price=price,
            )
        )
    return history
