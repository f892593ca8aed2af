"""Token-budgeted selection of recent conversation turns."""
import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from support_chat.models.conversation import ChatTurn


class CostEstimator(Protocol):
    """Estimates how many budget units a piece of text costs."""

    def estimate(self, text: str) -> int: ...


class CharHeuristicEstimator:
    """
    Roughly ``chars_per_unit`` characters per token.

    Good enough for short English support chats; swap in a real tokenizer by
    passing another estimator to ``select_within_budget``.
    """

    def __init__(self, chars_per_unit: int = 4):
        if chars_per_unit <= 0:
            raise ValueError("chars_per_unit must be positive")
        self.chars_per_unit = chars_per_unit

    def estimate(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_unit)


DEFAULT_ESTIMATOR = CharHeuristicEstimator()


@dataclass(frozen=True)
class BudgetSelection:
    selected_newest_to_oldest: list[ChatTurn]
    used_units: int

    def oldest_to_newest(self) -> list[ChatTurn]:
        return list(reversed(self.selected_newest_to_oldest))


def select_within_budget(
    turns_newest_to_oldest: Sequence[ChatTurn],
    max_units: int,
    estimator: CostEstimator = DEFAULT_ESTIMATOR,
) -> BudgetSelection:
    """
    Pick as many of the newest turns as fit in ``max_units``.

    Walks newest to oldest and stops at the first turn that would overflow the
    budget, so the selection is always a contiguous newest-anchored run. The
    result keeps the input's newest-to-oldest order.
    """
    selected: list[ChatTurn] = []
    used = 0

    for turn in turns_newest_to_oldest:
        cost = estimator.estimate(turn.content)
        if used + cost > max_units:
            break
        selected.append(turn)
        used += cost

    return BudgetSelection(selected_newest_to_oldest=selected, used_units=used)
