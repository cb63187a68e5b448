"""Conversation session for the purchase assistant chat.

A session owns the only mutable interpreter state, the pending numbered
choice list. Each turn is classified, resolved against the record store and
returned as one of the outcome types below; nothing here raises for a bad
utterance or a failed lookup.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from purchase_assistant.logging import get_turn_id, log_with_context, turn_context
from services import metrics
from services.entity_resolver import (
    PurchaseHistoryEntry,
    fetch_purchase_history,
    find_named_entity,
    lookup_items,
)
from services.intents import (
    CreateCategory,
    CreateItem,
    CreatePurchase,
    CreateSale,
    HistoryQuery,
    Intent,
    Navigate,
    NumericSelection,
    StockQuery,
    Unrecognized,
    classify,
    intent_name,
    normalize_utterance,
)
from services.pending_selection import CandidateItem, PendingSelection, SelectionPurpose
from services.record_store import RecordStore, RecordStoreError

logger = logging.getLogger(__name__)

PAGE_ROUTES: Dict[str, str] = {
    "dashboard": "/",
    "overview": "/",
    "inventory": "/inventory",
    "purchases": "/purchases",
    "sales": "/sales",
    "items": "/items",
    "categories": "/categories",
    "settings": "/settings",
    "customers": "/customers",
    "suppliers": "/suppliers",
    "barcode-print": "/barcode-print",
}

# entity kind -> (form route, form action)
CREATION_FORMS: Dict[str, Tuple[str, str]] = {
    "category": ("/categories", "add-category"),
    "item": ("/items", "add-item"),
    "purchase": ("/purchases/new", "add-purchase"),
    "sale": ("/sales/new", "add-sale"),
}

WELCOME_TEXT = (
    "Hello! I'm your purchase assistant. You can ask for an item's history ('milk'), "
    "check stock ('stock of milk'), create new entries ('new category Snacks'), "
    "or ask me to navigate ('go to items')."
)

HELP_TEXT = (
    "Try one of these:\n"
    "• milk (purchase history and stock)\n"
    "• stock of milk\n"
    "• history of milk\n"
    "• new category Snacks\n"
    "• new item Green Tea in Beverages\n"
    "• new purchase from Acme Traders\n"
    "• new sale to Ravi\n"
    "• go to items"
)

INVALID_SELECTION_TEXT = (
    "That's not a valid number. Please choose a number from the list or ask a new question."
)


class Problem(str, Enum):
    LOOKUP_FAILURE = "lookup_failure"
    NOT_FOUND = "not_found"
    INVALID_SELECTION = "invalid_selection"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class ItemFacts:
    item: CandidateItem
    # None for a stock-only answer; a (possibly empty) tuple for a history answer.
    history: Optional[Tuple[PurchaseHistoryEntry, ...]] = None


@dataclass(frozen=True)
class Navigated:
    page: str
    route: str
    text: str


@dataclass(frozen=True)
class Answered:
    text: str
    facts: Optional[ItemFacts] = None
    problem: Optional[Problem] = None


@dataclass(frozen=True)
class Disambiguate:
    candidates: Tuple[CandidateItem, ...]
    purpose: SelectionPurpose
    query: str
    text: str


@dataclass(frozen=True)
class NeedsCreation:
    entity_kind: str
    hint: Dict[str, Any]
    route: str
    action: str
    text: str


Outcome = Union[Navigated, Answered, Disambiguate, NeedsCreation]


def outcome_kind(outcome: Outcome) -> str:
    if isinstance(outcome, Answered) and outcome.problem is not None:
        return outcome.problem.value
    return type(outcome).__name__


def outcome_to_dict(outcome: Outcome) -> Dict[str, Any]:
    data = dataclasses.asdict(outcome)
    data["kind"] = type(outcome).__name__
    return data


def stock_text(item: CandidateItem) -> str:
    rack = f", Rack: {item.rack_no}" if item.rack_no else ""
    return (
        f'You have {item.stock_display} of "{item.display_name}" '
        f"(Code: {item.display_code}{rack}) in stock."
    )


def history_text(item: CandidateItem, history: Sequence[PurchaseHistoryEntry]) -> str:
    lines = [
        f'For "{item.display_name}" (Code: {item.display_code}):',
        f"Current stock: {item.stock_display} units.",
    ]
    if item.rack_no:
        lines.append(f"Rack No: {item.rack_no}.")
    if history:
        lines.append("Here is the recent purchase history:")
    else:
        lines.append("No purchase history found yet.")
    return "\n".join(lines)


def numbered_candidates(candidates: Sequence[CandidateItem]) -> str:
    lines = []
    for index, item in enumerate(candidates, start=1):
        rack = f", Rack: {item.rack_no}" if item.rack_no else ""
        lines.append(
            f"{index}. {item.display_name} "
            f"(Code: {item.display_code}, {item.stock_display} in stock{rack})"
        )
    return "\n".join(lines)


class ConversationSession:
    """One chat conversation. Turns must be fed one at a time."""

    def __init__(
        self,
        store: RecordStore,
        *,
        max_candidates: int = 5,
        history_limit: int = 10,
    ):
        self.store = store
        self.max_candidates = max(1, int(max_candidates))
        self.history_limit = max(1, int(history_limit))
        self.pending = PendingSelection()

    def has_pending_selection(self) -> bool:
        return bool(self.pending)

    def handle_turn(self, text: str) -> Outcome:
        utterance = normalize_utterance(text)
        with turn_context(get_turn_id() or None):
            start = time.perf_counter()
            intent = classify(utterance, self.has_pending_selection())
            outcome = self.resolve(intent)
            duration_ms = (time.perf_counter() - start) * 1000
            log_with_context(
                logger,
                logging.INFO,
                "turn handled",
                intent=intent_name(intent),
                outcome=outcome_kind(outcome),
                pending=len(self.pending),
                duration_ms=round(duration_ms, 2),
            )
        metrics.record_turn(intent_name(intent), outcome_kind(outcome), duration_ms)
        return outcome

    def resolve(self, intent: Intent) -> Outcome:
        if isinstance(intent, NumericSelection):
            return self._resolve_selection(intent)
        if isinstance(intent, Unrecognized):
            return Answered(text=HELP_TEXT, problem=Problem.UNRECOGNIZED)

        # Any other turn invalidates the choice list offered before it.
        self.pending.clear()

        if isinstance(intent, Navigate):
            return self._navigate(intent)
        if isinstance(intent, CreateCategory):
            return self._creation(
                "category",
                {"name": intent.name},
                f'OK. I\'m opening the new category form for "{intent.name}".',
            )
        if isinstance(intent, CreateItem):
            return self._create_item(intent)
        if isinstance(intent, CreatePurchase):
            return self._create_with_party(
                kind="purchase",
                party="supplier",
                name=intent.supplier_name_hint,
                found_text=f'OK. I\'m starting a new purchase from "{intent.supplier_name_hint}".',
            )
        if isinstance(intent, CreateSale):
            return self._create_with_party(
                kind="sale",
                party="customer",
                name=intent.customer_name_hint,
                found_text=f'OK. I\'m starting a new sale to "{intent.customer_name_hint}".',
            )
        if isinstance(intent, StockQuery):
            return self._item_query(intent.item_name_hint, SelectionPurpose.STOCK_ONLY)
        if isinstance(intent, HistoryQuery):
            return self._item_query(
                intent.item_name_hint,
                SelectionPurpose.FULL_HISTORY,
                implicit=intent.implicit,
            )
        raise TypeError(f"Unsupported intent: {intent!r}")

    # --- navigation and creation ---

    def _navigate(self, intent: Navigate) -> Navigated:
        route = PAGE_ROUTES[intent.page]
        return Navigated(page=intent.page, route=route, text=f"Navigating to the {intent.page} page.")

    def _creation(self, kind: str, hint: Dict[str, Any], text: str) -> NeedsCreation:
        route, action = CREATION_FORMS[kind]
        return NeedsCreation(entity_kind=kind, hint=hint, route=route, action=action, text=text)

    def _find_entity(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return find_named_entity(self.store, kind, name)
        except RecordStoreError as exc:
            # The form can still be opened with the raw name.
            logger.error("Lookup of %s '%s' failed: %s", kind, name, exc)
            metrics.record_error("entity_resolver", "lookup_failure")
            return None

    def _create_item(self, intent: CreateItem) -> NeedsCreation:
        category = self._find_entity("category", intent.category_name_hint)
        if category:
            return self._creation(
                "item",
                {"name": intent.name, "category_id": category["id"]},
                f'OK. I\'m opening the new item form for "{intent.name}" '
                f'in the "{intent.category_name_hint}" category.',
            )
        return self._creation(
            "item",
            {"name": intent.name, "initial_category_name": intent.category_name_hint},
            f'I couldn\'t find a category named "{intent.category_name_hint}". '
            "Opening new item form, you can add the category there.",
        )

    def _create_with_party(self, *, kind: str, party: str, name: str, found_text: str) -> NeedsCreation:
        row = self._find_entity(party, name)
        if row:
            return self._creation(kind, {f"{party}_id": row["id"]}, found_text)
        return self._creation(
            kind,
            {f"initial_{party}_name": name},
            f'I couldn\'t find a {party} named "{name}". '
            f"Opening new {kind} form, you can add the {party} there.",
        )

    # --- item lookups ---

    def _item_query(self, hint: str, purpose: SelectionPurpose, *, implicit: bool = False) -> Outcome:
        try:
            lookup = lookup_items(self.store, hint, max_results=self.max_candidates)
        except RecordStoreError as exc:
            logger.error("Item lookup for '%s' failed: %s", hint, exc)
            metrics.record_error("entity_resolver", "lookup_failure")
            self.pending.clear()
            return Answered(
                text=f'Sorry, there was an error fetching items matching "{hint}". Please try again.',
                problem=Problem.LOOKUP_FAILURE,
            )

        if lookup.status == "empty":
            self.pending.clear()
            if implicit:
                return Answered(
                    text=f'Sorry, I couldn\'t find an item matching "{hint}".\n\n{HELP_TEXT}',
                    problem=Problem.UNRECOGNIZED,
                )
            if purpose is SelectionPurpose.STOCK_ONLY:
                text = (
                    f'Sorry, I couldn\'t find any item matching "{hint}" to check its stock. '
                    "Please try different keywords."
                )
            else:
                text = (
                    f'Sorry, I couldn\'t find an item matching "{hint}" to show its history. '
                    "Please try another name."
                )
            return Answered(text=text, problem=Problem.NOT_FOUND)

        if lookup.best is not None:
            return self._answer_for(lookup.best, purpose)

        candidates = tuple(lookup.candidates)
        self.pending.set(candidates, purpose)
        listing = numbered_candidates(candidates)
        if purpose is SelectionPurpose.STOCK_ONLY:
            if lookup.via == "text_search":
                intro = f'I couldn\'t find an exact match for "{hint}", but found these similar items:'
            else:
                intro = f'I found a few items matching "{hint}":'
            text = f"{intro}\n{listing}\n\nCould you be more specific? Please reply with the number."
        else:
            text = (
                f'I found several items matching "{hint}". Which one did you mean? '
                f"Please reply with the number to see its history and stock.\n{listing}"
            )
        return Disambiguate(candidates=candidates, purpose=purpose, query=hint, text=text)

    def _answer_for(self, item: CandidateItem, purpose: SelectionPurpose) -> Answered:
        if purpose is SelectionPurpose.STOCK_ONLY:
            return Answered(text=stock_text(item), facts=ItemFacts(item=item))

        try:
            history = fetch_purchase_history(self.store, item.item_id, limit=self.history_limit)
        except RecordStoreError as exc:
            logger.error("History fetch for item %s failed: %s", item.item_id, exc)
            metrics.record_error("entity_resolver", "history_failure")
            self.pending.clear()
            return Answered(
                text=f'I found "{item.display_name}", but there was an error fetching its history.',
                problem=Problem.LOOKUP_FAILURE,
            )
        return Answered(
            text=history_text(item, history),
            facts=ItemFacts(item=item, history=tuple(history)),
        )

    def _resolve_selection(self, intent: NumericSelection) -> Outcome:
        state = self.pending.get()
        if state is None:
            # Only reachable when resolve() is called directly without a pending list.
            return self._item_query(str(intent.index), SelectionPurpose.FULL_HISTORY, implicit=True)

        candidates, purpose = state
        if not 1 <= intent.index <= len(candidates):
            return Answered(text=INVALID_SELECTION_TEXT, problem=Problem.INVALID_SELECTION)

        chosen = candidates[intent.index - 1]
        self.pending.clear()
        return self._answer_for(chosen, purpose)
