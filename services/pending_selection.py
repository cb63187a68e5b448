from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple


class SelectionPurpose(str, Enum):
    STOCK_ONLY = "stock_only"
    FULL_HISTORY = "full_history"


@dataclass(frozen=True)
class CandidateItem:
    item_id: int
    name: Optional[str]
    code: Optional[str]
    current_stock: float
    rack_no: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or "Unknown Item"

    @property
    def display_code(self) -> str:
        return self.code or "N/A"

    @property
    def stock_display(self) -> str:
        return format_quantity(self.current_stock)


class PendingSelection:
    """Single slot holding the numbered choice list offered in the last answer.

    A new list always replaces the previous one; the slot is never merged.
    """

    def __init__(self) -> None:
        self._candidates: Tuple[CandidateItem, ...] = ()
        self._purpose: Optional[SelectionPurpose] = None

    def set(self, candidates: Sequence[CandidateItem], purpose: SelectionPurpose) -> None:
        if not candidates:
            self.clear()
            return
        self._candidates = tuple(candidates)
        self._purpose = SelectionPurpose(purpose)

    def get(self) -> Optional[Tuple[Tuple[CandidateItem, ...], SelectionPurpose]]:
        if not self._candidates or self._purpose is None:
            return None
        return self._candidates, self._purpose

    def clear(self) -> None:
        self._candidates = ()
        self._purpose = None

    def __bool__(self) -> bool:
        return bool(self._candidates)

    def __len__(self) -> int:
        return len(self._candidates)

    def __repr__(self) -> str:
        purpose = self._purpose.value if self._purpose else None
        return f"PendingSelection(candidates={len(self._candidates)}, purpose={purpose})"


def format_quantity(value: float) -> str:
    number = float(value or 0)
    if number.is_integer():
        return str(int(number))
    return f"{number:.2f}".rstrip("0").rstrip(".")
