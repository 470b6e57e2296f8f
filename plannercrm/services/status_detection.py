"""
services/status_detection.py — Signal-based status transition detection

Scores one message against the enabled pipeline statuses and the thread's
earlier messages.

Business Rules:
- Inbound messages are matched against inbound signals, outbound against
  outbound signals (case-insensitive substring)
- A status whose exclude phrase appears in the message is not a candidate
- score = min(1, 0.3 + 0.15 * distinct signals); a satisfied thread
  pattern adds +0.2 once (capped at 1.0)
- Only scores >= the minimum emission threshold are returned; ties break
  toward the later pipeline stage (higher order)
- from_status is passed in from the project-supplier record, never inferred

Called by: services/mailbox_sync.py, services/thread_linker.py
Depends on: services/signal_lexicon.py
"""

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from ..config import settings
from ..models import StatusDefinition
from .signal_lexicon import (
    AFTER_PREFIX,
    BACK_AND_FORTH,
    FIRST_OUTBOUND,
    REPLY_TO_OUTBOUND,
    is_excluded,
    match_signals,
    signals_for,
)

BASE_SCORE = 0.3
PER_SIGNAL = 0.15
THREAD_BONUS = 0.2


class MessageLike(Protocol):
    direction: str
    body: str | None


@dataclass
class Detection:
    to_status: str
    confidence: float
    matched_signals: list[str]
    from_status: str | None = None
    thread_patterns: list[str] = field(default_factory=list)

    @property
    def reasoning(self) -> str:
        text = "Matched: " + ", ".join(f'"{s}"' for s in self.matched_signals)
        if self.thread_patterns:
            text += "; thread: " + ", ".join(self.thread_patterns)
        return text


def signal_score(n_signals: int) -> float:
    if n_signals <= 0:
        return 0.0
    return min(1.0, BASE_SCORE + PER_SIGNAL * n_signals)


def _matches_status(msg: MessageLike, status: StatusDefinition) -> bool:
    body = msg.body or ""
    if is_excluded(body, status.exclude_patterns):
        return False
    return bool(match_signals(body, signals_for(status, msg.direction)))


def _direction_changes(directions: list[str]) -> int:
    return sum(1 for a, b in zip(directions, directions[1:]) if a != b)


def pattern_holds(
    pattern: str,
    message: MessageLike,
    history: Sequence[MessageLike],
    by_slug: dict[str, StatusDefinition],
) -> bool:
    """Evaluate one thread pattern. `history` is the earlier messages, oldest first."""
    if pattern == FIRST_OUTBOUND:
        return message.direction == "outbound" and all(
            m.direction != "outbound" for m in history
        )
    if pattern == REPLY_TO_OUTBOUND:
        return message.direction == "inbound" and bool(history) and history[-1].direction == "outbound"
    if pattern == BACK_AND_FORTH:
        earlier = {m.direction for m in history}
        directions = [m.direction for m in history] + [message.direction]
        return earlier >= {"inbound", "outbound"} and _direction_changes(directions) >= 2
    if pattern.startswith(AFTER_PREFIX):
        prior = by_slug.get(pattern[len(AFTER_PREFIX):])
        return prior is not None and any(_matches_status(m, prior) for m in history)
    return False


def detect(
    message: MessageLike,
    history: Sequence[MessageLike],
    statuses: Sequence[StatusDefinition],
    *,
    from_status: str | None = None,
    min_confidence: float | None = None,
) -> Detection | None:
    """Best status transition suggested by `message`, or None.

    `statuses` is the owner's effective (enabled) catalog; `history` holds
    the thread's earlier messages in chronological order.
    """
    threshold = settings.proposal_min_confidence if min_confidence is None else min_confidence
    body = message.body or ""
    by_slug = {s.slug: s for s in statuses}

    best: tuple[float, int, Detection] | None = None
    for status in statuses:
        if is_excluded(body, status.exclude_patterns):
            continue
        matched = match_signals(body, signals_for(status, message.direction))
        if not matched:
            continue

        score = signal_score(len(matched))
        held = [p for p in status.thread_patterns or [] if pattern_holds(p, message, history, by_slug)]
        if held:
            score = min(1.0, score + THREAD_BONUS)
        score = round(score, 4)
        if score < threshold:
            continue

        found = Detection(
            to_status=status.slug,
            confidence=score,
            matched_signals=matched,
            from_status=from_status,
            thread_patterns=held,
        )
        key = (score, status.order)
        if best is None or key > best[:2]:
            best = (score, status.order, found)

    return best[2] if best else None
