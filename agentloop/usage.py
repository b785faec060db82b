"""Token usage and cost tracking.

Token counts are estimated from text length; the controller reports each
completed round here. A tracker instance is owned by whoever builds the
orchestrator, so tests and concurrent sessions never share counters.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone

from agentloop.schemas import ModelCosts, SessionCosts, TokenUsage

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

# USD per 1M tokens
PRICING: dict[str, dict[str, float]] = {
    "deepseek-reasoner": {"input": 0.55, "output": 2.19},
    "deepseek-chat": {"input": 0.27, "output": 1.10},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "o1": {"input": 15.00, "output": 60.00},
    "o1-mini": {"input": 3.00, "output": 12.00},
    "o3-mini": {"input": 1.10, "output": 4.40},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
    "claude-haiku-3-5-20241022": {"input": 0.80, "output": 4.00},
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-2.0-pro": {"input": 1.25, "output": 5.00},
    "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
    "llama-3.3-70b-versatile": {"input": 0.00, "output": 0.00},
    "mixtral-8x7b-32768": {"input": 0.00, "output": 0.00},
}

DEFAULT_PRICE = {"input": 1.0, "output": 3.0}


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def message_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    price = PRICING.get(model, DEFAULT_PRICE)
    return (input_tokens * price["input"] + output_tokens * price["output"]) / 1_000_000


def is_free_tier(model: str) -> bool:
    """True for models with zero pricing, or with no pricing entry at all."""
    price = PRICING.get(model)
    return price is None or (price["input"] == 0 and price["output"] == 0)


class UsageTracker:
    """Accumulates per-session token counts and estimated cost."""

    def __init__(self):
        self._lock = threading.Lock()
        self._session = SessionCosts()

    def track(self, model: str, input_text: str, output_text: str) -> TokenUsage:
        """Record one model exchange.

        Args:
            model: Model name used for pricing
            input_text: Everything sent to the model for the round
            output_text: Everything the model produced in the round

        Returns:
            TokenUsage for this exchange
        """
        input_tokens = estimate_tokens(input_text)
        output_tokens = estimate_tokens(output_text)
        cost = message_cost(model, input_tokens, output_tokens)

        with self._lock:
            session = self._session
            session.total_input += input_tokens
            session.total_output += output_tokens
            session.total_cost += cost
            session.messages += 1

            per_model = session.by_model.setdefault(model, ModelCosts())
            per_model.input += input_tokens
            per_model.output += output_tokens
            per_model.cost += cost
            per_model.count += 1

        logger.debug(f"Tracked {input_tokens}+{output_tokens} tokens for {model} (${cost:.6f})")
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
            cost=cost,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def session(self) -> SessionCosts:
        """Return a snapshot of the session totals."""
        with self._lock:
            return self._session.model_copy(deep=True)

    def reset(self) -> None:
        with self._lock:
            self._session = SessionCosts()

    def is_free_tier(self, model: str) -> bool:
        return is_free_tier(model)

    def format_display(self) -> str:
        """Human-readable session summary."""
        session = self.session()
        lines = [
            f"  Messages:    {session.messages}",
            f"  Tokens in:   {session.total_input:,}",
            f"  Tokens out:  {session.total_output:,}",
            f"  Cost:        ${session.total_cost:.4f}",
        ]
        if session.by_model:
            lines.append("")
            for model, data in session.by_model.items():
                lines.append(f"  {model}: {data.count} msgs, ${data.cost:.4f}")
        return "\n".join(lines)
