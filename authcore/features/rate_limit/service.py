"""Rate limiter: general gate, per-action rules and progressive tightening."""

import logging
from datetime import timedelta

from authcore.shared.clock import Clock, utc_now

from .backends import CounterStore
from .schemas import RateLimitResult, RateLimitRule

logger = logging.getLogger(__name__)

HOUR = 60 * 60
MINUTE = 60

DEFAULT_ACTION = "default"
GENERAL_ACTION = "general"

DEFAULT_RULES: dict[str, RateLimitRule] = {
    "login": RateLimitRule(capacity=5, window_seconds=HOUR, description="Login attempts"),
    "password_reset": RateLimitRule(capacity=3, window_seconds=HOUR, description="Password reset requests"),
    "admin_api": RateLimitRule(capacity=100, window_seconds=HOUR, description="Admin API requests"),
    "public_api": RateLimitRule(capacity=60, window_seconds=MINUTE, description="Public API requests"),
    "contact_form": RateLimitRule(capacity=5, window_seconds=HOUR, description="Contact form submissions"),
    DEFAULT_ACTION: RateLimitRule(capacity=30, window_seconds=MINUTE, description="Default rate limit"),
}

GENERAL_RULE = RateLimitRule(capacity=50, window_seconds=5 * MINUTE, description="General requests")


def adjusted_rule(rule: RateLimitRule, failed_attempts: int) -> RateLimitRule:
    """Derive the progressive rule for an identifier with prior failures.

    One or more failures halve the capacity (minimum 2); three or more
    quarter it (minimum 1) and double the window. More failures never
    yield a larger capacity, even for very small rules.
    """
    description = f"Progressive {rule.description}"
    warned_capacity = min(rule.capacity, max(2, rule.capacity // 2))
    if failed_attempts >= 3:
        return RateLimitRule(
            capacity=min(warned_capacity, max(1, rule.capacity // 4)),
            window_seconds=rule.window_seconds * 2,
            description=description,
        )
    if failed_attempts >= 1:
        return RateLimitRule(
            capacity=warned_capacity,
            window_seconds=rule.window_seconds,
            description=description,
        )
    return RateLimitRule(capacity=rule.capacity, window_seconds=rule.window_seconds, description=description)


class RateLimiter:
    """Fixed-window limiter over a pluggable counter store.

    Errors inside the limiter never block the caller: the check is reported
    as allowed and the error is attached to the result (fail-open).
    """

    def __init__(
        self,
        store: CounterStore,
        *,
        rules: dict[str, RateLimitRule] | None = None,
        general_rule: RateLimitRule = GENERAL_RULE,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self._rules = dict(rules if rules is not None else DEFAULT_RULES)
        self._rules.setdefault(DEFAULT_ACTION, DEFAULT_RULES[DEFAULT_ACTION])
        self.general_rule = general_rule
        self._clock = clock

    # Rules

    def get_rule(self, action: str) -> RateLimitRule:
        """Rule for ``action``, falling back to the default rule."""
        return self._rules.get(action, self._rules[DEFAULT_ACTION])

    def rules(self) -> dict[str, RateLimitRule]:
        return {name: rule.model_copy() for name, rule in self._rules.items()}

    def update_rule(self, action: str, **changes) -> RateLimitRule:
        """Partially update (or create from the default) the rule for ``action``."""
        current = self.get_rule(action)
        updated = RateLimitRule.model_validate({**current.model_dump(), **changes})
        self._rules[action] = updated
        return updated

    # Checks

    async def check_rate_limit(self, identifier: str) -> RateLimitResult:
        """General gate: 50 requests per 5 minutes per identifier."""
        return await self._consume(f"{identifier}:{GENERAL_ACTION}", self.general_rule, GENERAL_ACTION)

    async def apply_rate_limit(self, identifier: str, action: str = DEFAULT_ACTION) -> RateLimitResult:
        """Consume one request from the named action's bucket."""
        return await self._consume(f"{identifier}:{action}", self.get_rule(action), action)

    async def apply_progressive_rate_limit(
        self, identifier: str, failed_attempts: int = 0, action: str = "login"
    ) -> RateLimitResult:
        """Consume one request under a rule tightened by prior failures.

        Progressive buckets live under their own key suffix so they never
        collide with the normal bucket for the same action.
        """
        failed_attempts = max(0, failed_attempts)
        rule = adjusted_rule(self.get_rule(action), failed_attempts)
        return await self._consume(
            f"{identifier}:{action}:progressive",
            rule,
            action,
            progressive=True,
            failed_attempts=failed_attempts,
        )

    async def status(self, identifier: str, action: str = DEFAULT_ACTION) -> RateLimitResult:
        """Current quota for the action without consuming a request."""
        rule = self.get_rule(action)
        now = self._clock()
        try:
            state = await self.store.peek(f"{identifier}:{action}")
        except Exception as exc:
            logger.error(f"Rate limit status lookup failed for action {action}: {exc}")
            state = None

        used = state.count if state else 0
        return RateLimitResult(
            allowed=used < rule.capacity,
            remaining=max(0, rule.capacity - used),
            reset_time=state.reset_at if state else now + timedelta(seconds=rule.window_seconds),
            limit=rule.capacity,
            action=action,
            description=rule.description,
        )

    async def reset(self, identifier: str, action: str = DEFAULT_ACTION) -> None:
        """Forget both the normal and the progressive bucket for an action."""
        await self.store.reset(f"{identifier}:{action}")
        await self.store.reset(f"{identifier}:{action}:progressive")

    async def sweep(self) -> int:
        removed = await self.store.sweep()
        if removed:
            logger.debug(f"Rate limiter sweep removed {removed} idle buckets")
        return removed

    async def _consume(
        self,
        key: str,
        rule: RateLimitRule,
        action: str,
        *,
        progressive: bool = False,
        failed_attempts: int | None = None,
    ) -> RateLimitResult:
        try:
            state = await self.store.increment(key, rule.window_seconds)
        except Exception as exc:
            logger.error(f"Rate limiting error for action {action}, allowing request: {exc}")
            return RateLimitResult(
                allowed=True,
                remaining=rule.capacity,
                reset_time=self._clock() + timedelta(seconds=rule.window_seconds),
                limit=rule.capacity,
                action=action,
                description=rule.description,
                progressive=progressive,
                failed_attempts=failed_attempts,
                error=str(exc),
            )

        return RateLimitResult(
            allowed=state.count <= rule.capacity,
            remaining=max(0, rule.capacity - state.count),
            reset_time=state.reset_at,
            limit=rule.capacity,
            action=action,
            description=rule.description,
            progressive=progressive,
            failed_attempts=failed_attempts,
        )
