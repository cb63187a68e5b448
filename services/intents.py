"""Deterministic intent detection for assistant chat turns.

Rules are tried in order and the first one that returns an intent wins. The
order matters: a pending numbered choice beats everything, navigation beats
creation, creation beats the keyword-based stock and history queries, and any
other non-empty text is looked up as an item name.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

PAGES: Tuple[str, ...] = (
    "dashboard",
    "overview",
    "inventory",
    "purchases",
    "sales",
    "items",
    "categories",
    "settings",
    "customers",
    "suppliers",
    "barcode-print",
)

STOCK_KEYWORDS: Tuple[str, ...] = ("stock", "quantity", "how many", "available", "left")
HISTORY_KEYWORDS: Tuple[str, ...] = (
    "history of",
    "supplier of",
    "past purchases of",
    "purchase history of",
)


@dataclass(frozen=True)
class Utterance:
    text: str
    lowered: str


def normalize_utterance(raw: str) -> Utterance:
    text = str(raw or "").strip()
    return Utterance(text=text, lowered=text.lower())


# --- Intents ---


@dataclass(frozen=True)
class Navigate:
    page: str


@dataclass(frozen=True)
class CreateCategory:
    name: str


@dataclass(frozen=True)
class CreateItem:
    name: str
    category_name_hint: str


@dataclass(frozen=True)
class CreatePurchase:
    supplier_name_hint: str


@dataclass(frozen=True)
class CreateSale:
    customer_name_hint: str


@dataclass(frozen=True)
class StockQuery:
    item_name_hint: str


@dataclass(frozen=True)
class HistoryQuery:
    item_name_hint: str
    implicit: bool = False


@dataclass(frozen=True)
class NumericSelection:
    index: int


@dataclass(frozen=True)
class Unrecognized:
    raw_text: str


Intent = Union[
    Navigate,
    CreateCategory,
    CreateItem,
    CreatePurchase,
    CreateSale,
    StockQuery,
    HistoryQuery,
    NumericSelection,
    Unrecognized,
]

Rule = Callable[[Utterance, bool], Optional[Intent]]


# --- Patterns ---

_DIGITS = re.compile(r"^\d+$")

_NAVIGATION = re.compile(
    r"^(?:go to|open|show me the)\s+(?P<page>"
    + "|".join(re.escape(page) for page in PAGES)
    + r")(?:\s+page)?$",
    re.IGNORECASE,
)

_NEW_CATEGORY = re.compile(r"^(?:new|add|create)\s+category\s+(?P<name>.+)$", re.IGNORECASE)
_NEW_ITEM = re.compile(
    r"^(?:new|add|create)\s+item\s+(?P<name>.+?)\s+(?:in|category)\s+(?P<category>.+)$",
    re.IGNORECASE,
)
_NEW_PURCHASE = re.compile(r"^(?:new|add|create)\s+purchase\s+(?:from|at)\s+(?P<name>.+)$", re.IGNORECASE)
_NEW_SALE = re.compile(r"^(?:new|add|create)\s+sale\s+(?:to|for)\s+(?P<name>.+)$", re.IGNORECASE)

_STOCK_PHRASE = re.compile(
    r"\b(?:stock of|how many|how much|check stock for|stock for|stock levels? of|"
    r"current stock (?:of|for)|available quantity of|remaining quantity of|"
    r"stock|quantity|available|left)\s+(?P<name>.+?)"
    r"(?:\s+(?:do i have|is in stock|in stock|available|left))?$"
)
_STOCK_TAIL = re.compile(r"\s+(?:do i have|is in stock|in stock|available|left)$")
_STOCK_SCAFFOLDING = re.compile(
    r"\b(?:what's the|what is the|show me the|how many|how much|do i have|in stock|"
    r"stock|quantity|available|left|the|of|for|is|are)\b"
)
_HISTORY_PHRASE = re.compile(
    r"(?:purchase history of|past purchases of|history of|supplier of)\s+(?P<name>.+)$"
)
_LEADING_FILLER = re.compile(r"^(?:(?:of|for|the)\s+)+")
_HISTORY_SCAFFOLDING = re.compile(r"\b(?:show me the|the|of|for)\b")

_TRAILING_PUNCT = " ?!."


def _squash(text: str) -> str:
    return " ".join(text.split()).strip(_TRAILING_PUNCT).strip()


def _original_case(utterance: Utterance, pattern: "re.Pattern[str]") -> Optional["re.Match[str]"]:
    # Entity names keep the user's casing; matching itself is case-insensitive.
    return pattern.match(utterance.text)


def extract_stock_item_name(lowered: str) -> str:
    value = lowered.strip().rstrip(_TRAILING_PUNCT).strip()
    if not value:
        return ""

    match = _STOCK_PHRASE.search(value)
    if match:
        name = _STOCK_TAIL.sub("", match.group("name").strip())
        name = _LEADING_FILLER.sub("", name)
        name = _squash(_STOCK_SCAFFOLDING.sub(" ", name)) if name in STOCK_KEYWORDS else _squash(name)
        if name:
            return name

    parts = value.split()
    if len(parts) > 1 and parts[-1] in {"stock", "left"}:
        return _squash(_STOCK_SCAFFOLDING.sub(" ", " ".join(parts[:-1])))

    return _squash(_STOCK_SCAFFOLDING.sub(" ", value))


def extract_history_item_name(lowered: str) -> str:
    value = lowered.strip()
    match = _HISTORY_PHRASE.search(value)
    if match:
        return _squash(match.group("name"))
    return _squash(_HISTORY_SCAFFOLDING.sub(" ", value))


# --- Rules ---


def _numeric_selection(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    if has_pending and _DIGITS.match(utterance.lowered):
        return NumericSelection(index=int(utterance.lowered))
    return None


def _navigation(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    match = _NAVIGATION.match(utterance.lowered)
    if match:
        return Navigate(page=match.group("page"))
    return None


def _create_category(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    match = _original_case(utterance, _NEW_CATEGORY)
    if match:
        return CreateCategory(name=match.group("name").strip())
    return None


def _create_item(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    match = _original_case(utterance, _NEW_ITEM)
    if match:
        return CreateItem(
            name=match.group("name").strip(),
            category_name_hint=match.group("category").strip(),
        )
    return None


def _create_purchase(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    match = _original_case(utterance, _NEW_PURCHASE)
    if match:
        return CreatePurchase(supplier_name_hint=match.group("name").strip())
    return None


def _create_sale(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    match = _original_case(utterance, _NEW_SALE)
    if match:
        return CreateSale(customer_name_hint=match.group("name").strip())
    return None


def _stock_query(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    if not any(keyword in utterance.lowered for keyword in STOCK_KEYWORDS):
        return None
    name = extract_stock_item_name(utterance.lowered)
    if not name:
        return None
    return StockQuery(item_name_hint=name)


def _history_query(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    if not any(keyword in utterance.lowered for keyword in HISTORY_KEYWORDS):
        return None
    name = extract_history_item_name(utterance.lowered)
    if not name:
        return None
    return HistoryQuery(item_name_hint=name)


def _implicit_item_lookup(utterance: Utterance, has_pending: bool) -> Optional[Intent]:
    if not utterance.text:
        return None
    return HistoryQuery(item_name_hint=utterance.text, implicit=True)


RULES: List[Rule] = [
    _numeric_selection,
    _navigation,
    _create_category,
    _create_item,
    _create_purchase,
    _create_sale,
    _stock_query,
    _history_query,
    _implicit_item_lookup,
]


def classify(utterance: Union[Utterance, str], has_pending_selection: bool = False) -> Intent:
    if not isinstance(utterance, Utterance):
        utterance = normalize_utterance(utterance)
    for rule in RULES:
        intent = rule(utterance, has_pending_selection)
        if intent is not None:
            return intent
    return Unrecognized(raw_text=utterance.text)


def intent_name(intent: Intent) -> str:
    return type(intent).__name__
