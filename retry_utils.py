# retry_utils.py
"""Retry executors for chain transactions.

``BackoffExecutor`` retries transient network/RPC/chain failures with
exponential, jittered delays. ``GasEscalationExecutor`` retries fee-related
failures with a linearly increasing gas price multiplier. They are usually
nested: the backoff executor retries a whole attempt, and each attempt runs a
fresh gas escalation::

    await backoff.run(
        lambda: gas.run(send_with_multiplier, ctx),
        context=ctx,
    )

Both executors report progress through an injected ``TransactionLogger`` and
hold no retry state between ``run`` calls.
"""
import asyncio
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Pattern, Sequence, Tuple, TypeVar, Union

import config
from logger import get_logger
from transaction_logger import TransactionLogger

logger = get_logger("Retry", config.LOG_LEVEL)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

JITTER_RANGE: Tuple[float, float] = (0.85, 1.15)

NETWORK_ERROR_PATTERNS: Sequence[Pattern[str]] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"network error",
    r"timeout",
    r"timed out",
    r"connection refused",
    r"connection reset",
    r"connection closed",
    r"connection aborted",
    r"not connected",
    r"etimedout",
    r"econnrefused",
    r"econnreset",
    r"enotfound",
    r"eai_again",
    r"unexpected end of file",
))

RPC_ERROR_PATTERNS: Sequence[Pattern[str]] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"server error",
    r"invalid json response",
    r"too many requests",
    r"rate limited",
    r"server busy",
))

CHAIN_ERROR_PATTERNS: Sequence[Pattern[str]] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"transaction underpriced",
    r"transaction replaced",
    r"replacement transaction underpriced",
    r"nonce too low",
    r"insufficient funds for gas",
    r"gas price too low",
    r"cannot estimate gas",
    r"execution reverted",
    r"intrinsic gas too low",
))

RETRYABLE_ERROR_PATTERNS: Sequence[Pattern[str]] = (
    tuple(NETWORK_ERROR_PATTERNS) + tuple(RPC_ERROR_PATTERNS) + tuple(CHAIN_ERROR_PATTERNS)
)

FEE_ERROR_PATTERNS: Sequence[Pattern[str]] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"gas",
    r"underpriced",
    r"fee",
))


class PolicyError(ValueError):
    """Invalid retry or gas policy."""


class RetryExhaustedError(RuntimeError):
    """Raised when every allowed attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {error_message(last_error)}")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 5.0
    max_delay: float = 30.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise PolicyError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.initial_delay < 0:
            raise PolicyError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.max_delay < self.initial_delay:
            raise PolicyError(f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})")
        if self.factor <= 1:
            raise PolicyError(f"factor must be > 1, got {self.factor}")

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            max_retries=config.RETRY_MAX_ATTEMPTS,
            initial_delay=config.RETRY_INITIAL_DELAY,
            max_delay=config.RETRY_MAX_DELAY,
            factor=config.RETRY_FACTOR,
        )


@dataclass(frozen=True)
class GasPolicy:
    max_retries: int = 3
    initial_multiplier: float = 1.1
    max_multiplier: float = 2.0
    retry_delay: float = 2.0

    def __post_init__(self) -> None:
        # the multiplier schedule divides by max_retries - 1
        if self.max_retries < 2:
            raise PolicyError(f"max_retries must be >= 2, got {self.max_retries}")
        if self.initial_multiplier < 1.0:
            raise PolicyError(f"initial_multiplier must be >= 1.0, got {self.initial_multiplier}")
        if self.max_multiplier <= self.initial_multiplier:
            raise PolicyError(
                f"max_multiplier ({self.max_multiplier}) must be > initial_multiplier ({self.initial_multiplier})"
            )
        if self.retry_delay < 0:
            raise PolicyError(f"retry_delay must be >= 0, got {self.retry_delay}")

    @classmethod
    def from_config(cls) -> "GasPolicy":
        return cls(
            max_retries=config.GAS_MAX_RETRIES,
            initial_multiplier=config.GAS_INITIAL_MULTIPLIER,
            max_multiplier=config.GAS_MAX_MULTIPLIER,
            retry_delay=config.GAS_RETRY_DELAY,
        )


@dataclass(frozen=True)
class ExecutionContext:
    """Who is doing what; used only to label log entries."""
    actor_id: str
    module_name: str = "Unknown"
    action_name: str = "Transaction"


# Attempt states. Attempt numbers are 1-based.

@dataclass(frozen=True)
class Attempting:
    attempt: int


@dataclass(frozen=True)
class WaitingBackoff:
    attempt: int
    delay: float


@dataclass(frozen=True)
class Success:
    attempt: int


@dataclass(frozen=True)
class FatalFailure:
    attempt: int


@dataclass(frozen=True)
class ExhaustedFailure:
    attempt: int


AttemptState = Union[Attempting, WaitingBackoff, Success, FatalFailure, ExhaustedFailure]


def error_message(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


def is_retryable(error: Union[BaseException, str]) -> bool:
    """True if the error looks transient (network, RPC or chain congestion)."""
    message = error if isinstance(error, str) else error_message(error)
    message = message.lower()
    return any(p.search(message) for p in RETRYABLE_ERROR_PATTERNS)


def is_fee_error(error: Union[BaseException, str]) -> bool:
    """True if raising the offered gas price may fix the error."""
    message = error if isinstance(error, str) else error_message(error)
    return any(p.search(message) for p in FEE_ERROR_PATTERNS)


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Delay before attempt + 1, without jitter."""
    return min(policy.initial_delay * policy.factor ** (attempt - 1), policy.max_delay)


def next_backoff_state(policy: RetryPolicy, attempt: int, error: BaseException, jitter: float = 1.0) -> AttemptState:
    if not is_retryable(error):
        return FatalFailure(attempt)
    if attempt >= policy.max_retries:
        return ExhaustedFailure(attempt)
    return WaitingBackoff(attempt, backoff_delay(policy, attempt) * jitter)


def gas_multiplier(policy: GasPolicy, attempt: int) -> float:
    step = (policy.max_multiplier - policy.initial_multiplier) / (policy.max_retries - 1)
    return policy.initial_multiplier + step * (attempt - 1)


def next_gas_state(policy: GasPolicy, attempt: int, error: BaseException) -> AttemptState:
    if not is_fee_error(error):
        return FatalFailure(attempt)
    if attempt >= policy.max_retries:
        return ExhaustedFailure(attempt)
    return WaitingBackoff(attempt, policy.retry_delay)


def extract_tx_ref(result: Any) -> Optional[str]:
    """Finds a transaction hash on a result (``hash`` or ``transactionHash``)."""
    if result is None:
        return None
    for key in ("hash", "transactionHash"):
        if isinstance(result, dict):
            value = result.get(key)
        else:
            value = getattr(result, key, None)
        if value:
            if isinstance(value, (bytes, bytearray)):
                return "0x" + bytes(value).hex()
            return str(value)
    return None


def _format_pct(multiplier: float) -> str:
    return f"{multiplier * 100:.0f}%"


class _Executor:
    def __init__(
        self,
        tx_logger: Optional[TransactionLogger] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.tx_logger = tx_logger
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _emit(self, level: str, context: Optional[ExecutionContext], action: str,
              tx_ref: Optional[str] = None, details: Optional[str] = None) -> None:
        if self.tx_logger is None or context is None:
            return
        try:
            getattr(self.tx_logger, f"log_{level}")(
                context.actor_id, context.module_name, action, tx_ref=tx_ref, details=details
            )
        except Exception as e:
            logger.error(f"Transaction logger failed ({level} {context.module_name}/{action}): {e}")


class BackoffExecutor(_Executor):
    """Runs an async operation, retrying transient failures with exponential backoff."""

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        context: Optional[ExecutionContext] = None,
    ) -> T:
        policy = policy or RetryPolicy()
        action = context.action_name if context else "Transaction"
        state: AttemptState = Attempting(1)

        while True:
            attempt = state.attempt
            if attempt == 1:
                self._emit("info", context, f"Starting {action}")

            try:
                result = await operation()
            except Exception as error:
                message = error_message(error)
                state = next_backoff_state(policy, attempt, error, self._rng.uniform(*JITTER_RANGE))

                if isinstance(state, FatalFailure):
                    self._emit("error", context, action, details=f"Fatal error: {message}")
                    raise
                if isinstance(state, ExhaustedFailure):
                    self._emit("error", context, action, details=f"Failed after {policy.max_retries} attempts: {message}")
                    raise RetryExhaustedError(policy.max_retries, error) from error

                self._emit("warning", context, action, details=f"Error on attempt {attempt}: {message}")
                logger.info(f"Retrying {action} in {state.delay:.1f}s (attempt {attempt}/{policy.max_retries})")
                await self._sleep(state.delay)
                state = Attempting(attempt + 1)
                continue

            if attempt > 1:
                self._emit(
                    "success", context, action,
                    tx_ref=extract_tx_ref(result),
                    details=f"Completed successfully on retry attempt {attempt}",
                )
            return result


class GasEscalationExecutor(_Executor):
    """Runs a fee-aware operation, raising the gas price multiplier on fee errors.

    The operation receives the multiplier as its only argument.
    """

    async def run(
        self,
        fee_aware_operation: Callable[[float], Awaitable[T]],
        context: ExecutionContext,
        policy: Optional[GasPolicy] = None,
    ) -> T:
        policy = policy or GasPolicy()
        action = context.action_name
        state: AttemptState = Attempting(1)

        while True:
            attempt = state.attempt
            multiplier = gas_multiplier(policy, attempt)
            if attempt > 1:
                self._emit(
                    "warning", context, action,
                    details=f"Retrying with {_format_pct(multiplier)} gas price (Attempt {attempt}/{policy.max_retries})",
                )

            try:
                result = await fee_aware_operation(multiplier)
            except Exception as error:
                message = error_message(error)
                state = next_gas_state(policy, attempt, error)

                if isinstance(state, (FatalFailure, ExhaustedFailure)):
                    self._emit("error", context, action, details=f"Failed: {message}")
                    raise

                self._emit("warning", context, action, details=f"Gas error on attempt {attempt}: {message}")
                await self._sleep(state.delay)
                state = Attempting(attempt + 1)
                continue

            if attempt > 1:
                self._emit(
                    "success", context, action,
                    tx_ref=extract_tx_ref(result),
                    details=f"Completed successfully with {_format_pct(multiplier)} gas price on attempt {attempt}",
                )
            return result
