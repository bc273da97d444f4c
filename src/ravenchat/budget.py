"""Adaptive output-token budgeting.

Providers and models advertise very different real context windows. Before
each request the output budget (``max_tokens``) is shrunk according to the
estimated input size and a table of per-provider/per-model rules, so that the
request is not rejected for overflowing the context.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from .models import REASONING_MODE, STANDARD_MODE, ChatMessage, Content

logger = logging.getLogger(__name__)

MIN_BUDGET = 150
MAX_BUDGET = 4000
MIN_REASONING_BUDGET = 50
REASONING_HEADROOM = 1.5
REASONING_MAX_INCREASE = 300
CHARS_PER_TOKEN = 4

GROQ = "Groq"
OPENROUTER = "OpenRouter"
TOGETHER_AI = "Together AI"


def _content_text(content: Content) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, separators=(",", ":"), ensure_ascii=False)


def estimate_input_tokens(
    history: Iterable[ChatMessage], new_content: Optional[Content] = None
) -> int:
    """Roughly estimates prompt tokens as one token per four characters.

    Every turn is rendered as ``"role: content"`` (non-text content as compact
    JSON) and the turns are joined with newlines. ``new_content`` is the user
    turn about to be sent and is counted last.
    """
    lines = [f"{msg.role}: {_content_text(msg.content)}" for msg in history]
    if new_content is not None:
        lines.append(f"user: {_content_text(new_content)}")
    return math.ceil(len("\n".join(lines)) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class TokenBudgetContext:
    """Everything the budget depends on, captured at send time."""

    input_tokens: int
    provider: str
    model: str
    user_max_tokens: int = 500
    adaptive: bool = True
    feature_mode: str = STANDARD_MODE


@dataclass(frozen=True)
class BudgetRule:
    """One entry of the adaptive decision list.

    The rule matches when the provider (if set) equals the context's provider,
    the model contains every substring in ``model_all`` and, if ``model_any`` is
    set, at least one substring from it. A matching rule budgets
    ``base - input_tokens``, clamped to the user ceiling when
    ``clamp_to_ceiling`` is set, and never less than ``floor``.
    """

    name: str
    base: int
    floor: int
    provider: Optional[str] = None
    model_all: Tuple[str, ...] = ()
    model_any: Tuple[str, ...] = ()
    clamp_to_ceiling: bool = True

    def matches(self, context: TokenBudgetContext) -> bool:
        if self.provider is not None and context.provider != self.provider:
            return False
        if not all(pattern in context.model for pattern in self.model_all):
            return False
        if self.model_any and not any(p in context.model for p in self.model_any):
            return False
        return True

    def budget(self, context: TokenBudgetContext) -> int:
        remaining = self.base - context.input_tokens
        if self.clamp_to_ceiling:
            remaining = min(context.user_max_tokens, remaining)
        return max(self.floor, remaining)


BUDGET_RULES: Sequence[BudgetRule] = (
    BudgetRule(
        "small-legacy",
        base=700,
        floor=150,
        model_any=("DialoGPT", "medium"),
        clamp_to_ceiling=False,
    ),
    BudgetRule(
        "free-distill",
        base=450,
        floor=150,
        model_all=("free",),
        model_any=("distill", "DeepSeek"),
        clamp_to_ceiling=False,
    ),
    BudgetRule("groq-strict", base=800, floor=150, provider=GROQ, model_any=("instant", "8b")),
    BudgetRule("groq", base=1200, floor=200, provider=GROQ),
    BudgetRule("openrouter", base=2000, floor=300, provider=OPENROUTER),
    BudgetRule(
        "together-small", base=1000, floor=200, provider=TOGETHER_AI, model_any=("8b", "7B")
    ),
    BudgetRule("together", base=1500, floor=300, provider=TOGETHER_AI),
)


def match_rule(
    context: TokenBudgetContext, rules: Sequence[BudgetRule] = BUDGET_RULES
) -> Optional[BudgetRule]:
    """Returns the first rule that applies, or None for the default."""
    return next((rule for rule in rules if rule.matches(context)), None)


def adaptive_budget(
    context: TokenBudgetContext, rules: Sequence[BudgetRule] = BUDGET_RULES
) -> int:
    rule = match_rule(context, rules)
    budget = rule.budget(context) if rule else context.user_max_tokens
    return min(max(budget, MIN_BUDGET), min(context.user_max_tokens, MAX_BUDGET))


def apply_reasoning_override(budget: int) -> int:
    """Gives reasoning responses up to 1.5x headroom, at most 300 tokens more.

    The result is not capped by ``MAX_BUDGET``.
    """
    boosted = min(budget * REASONING_HEADROOM, budget + REASONING_MAX_INCREASE)
    return int(max(MIN_REASONING_BUDGET, boosted))


def compute_max_tokens(
    context: TokenBudgetContext, rules: Sequence[BudgetRule] = BUDGET_RULES
) -> int:
    """Computes the ``max_tokens`` value to send with a request."""
    if context.adaptive:
        budget = adaptive_budget(context, rules)
    else:
        budget = max(MIN_BUDGET, context.user_max_tokens)

    if context.feature_mode == REASONING_MODE:
        budget = apply_reasoning_override(budget)

    logger.info(
        "Token allocation - input: ~%d, max output: %d, model: %s",
        context.input_tokens,
        budget,
        context.model,
    )
    return budget
