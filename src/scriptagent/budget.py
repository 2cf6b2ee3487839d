"""
Transcript budget - Token-aware trimming of ephemeral history.

Persistent entries are never dropped. When the materialized transcript
exceeds the budget, the oldest ephemeral entries are dropped first and
the drop is recorded as a TrimEvent so the information loss is visible.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from scriptagent.config import ContextConfig
from scriptagent.types import Message, Role

logger = logging.getLogger(__name__)


@dataclass
class BudgetUsage:
    """Tracks token budget usage."""
    total_budget: int
    used: int
    available: int

    @property
    def utilization(self) -> float:
        """Percentage of budget used."""
        return self.used / self.total_budget if self.total_budget > 0 else 0.0


@dataclass
class TrimEvent:
    """Records that ephemeral history was dropped to fit the budget."""
    messages_dropped: int
    tokens_dropped: int
    oldest_dropped_content: str
    reason: str = "context_budget_exceeded"


@dataclass
class TranscriptBudget:
    """
    Trims a materialized transcript to a fixed token budget.

    Tokens are estimated as chars / chars_per_token. A function result is
    never kept without the function call that produced it.
    """
    config: ContextConfig = field(default_factory=ContextConfig)
    trim_events: list[TrimEvent] = field(default_factory=list)

    def estimate_tokens(self, text: str) -> int:
        return int(len(text) / self.config.chars_per_token)

    def estimate_message_tokens(self, message: Message) -> int:
        """Estimate tokens for a single message."""
        tokens = self.estimate_tokens(message.content) + 4
        if message.name:
            tokens += self.estimate_tokens(message.name)
        if message.function_call:
            tokens += self.estimate_tokens(message.function_call.name)
            tokens += self.estimate_tokens(str(message.function_call.arguments))
        return tokens

    def usage(self, messages: list[Message], tools: list[dict[str, Any]] | None = None) -> BudgetUsage:
        """Calculate current budget usage."""
        used = sum(self.estimate_message_tokens(m) for m in messages)
        if tools:
            used += self.estimate_tokens(str(tools))
        return BudgetUsage(
            total_budget=self.config.available_budget,
            used=used,
            available=max(0, self.config.available_budget - used),
        )

    def trim(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> list[Message]:
        """
        Return the messages that fit the budget.

        The input list is not modified. Persistent entries keep their
        position at the head; ephemeral entries are kept newest-first.
        """
        persistent = [m for m in messages if m.persistent]
        ephemeral = [m for m in messages if not m.persistent]

        available = self.config.available_budget
        if tools:
            available -= self.estimate_tokens(str(tools))
        available -= sum(self.estimate_message_tokens(m) for m in persistent)

        kept: list[Message] = []
        kept_tokens = 0
        dropped: list[Message] = []
        for msg in reversed(ephemeral):
            msg_tokens = self.estimate_message_tokens(msg)
            if not dropped and kept_tokens + msg_tokens <= available:
                kept.insert(0, msg)
                kept_tokens += msg_tokens
            else:
                dropped.insert(0, msg)

        # orphaned results
        while kept and kept[0].role == Role.FUNCTION:
            dropped.append(kept.pop(0))

        if dropped:
            tokens_dropped = sum(self.estimate_message_tokens(m) for m in dropped)
            oldest = dropped[0].content
            if len(oldest) > 200:
                oldest = oldest[:200] + "..."
            self.trim_events.append(TrimEvent(
                messages_dropped=len(dropped),
                tokens_dropped=tokens_dropped,
                oldest_dropped_content=oldest,
            ))
            logger.warning(
                f"Transcript trimmed: dropped {len(dropped)} messages "
                f"(~{tokens_dropped} tokens)"
            )

        return [*persistent, *kept]
