"""
Tests for the backoff and gas escalation executors.
"""

from types import SimpleNamespace

import pytest

from conftest import FixedRandom
from retry_utils import (
    BackoffExecutor,
    ExecutionContext,
    ExhaustedFailure,
    FatalFailure,
    GasEscalationExecutor,
    GasPolicy,
    PolicyError,
    RetryExhaustedError,
    RetryPolicy,
    WaitingBackoff,
    backoff_delay,
    extract_tx_ref,
    gas_multiplier,
    is_fee_error,
    is_retryable,
    next_backoff_state,
    next_gas_state,
)
from transaction_logger import LogStatus

WALLET = "0x1234567890abcdef1234567890abcdef12345678"
CTX = ExecutionContext(WALLET, "Magma", "Stake MON")


class Operation:
    """Fails with the queued errors, then returns result."""

    def __init__(self, *errors, result=None):
        self.errors = list(errors)
        self.result = result
        self.calls = 0
        self.multipliers = []

    async def __call__(self, multiplier=None):
        self.calls += 1
        if multiplier is not None:
            self.multipliers.append(multiplier)
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class AlwaysFails:
    def __init__(self, message):
        self.message = message
        self.calls = 0
        self.multipliers = []

    async def __call__(self, multiplier=None):
        self.calls += 1
        if multiplier is not None:
            self.multipliers.append(multiplier)
        raise RuntimeError(self.message)


# =============================================================================
# Classification
# =============================================================================

class TestClassification:

    @pytest.mark.parametrize("message", [
        "request timeout",
        "ECONNRESET",
        "Connection refused by peer",
        "socket not connected",
        "Server error 502",
        "Too Many Requests",
        "rate limited, slow down",
        "transaction underpriced",
        "nonce too low",
        "insufficient funds for gas * price + value",
        "execution reverted: STF",
        "intrinsic gas too low",
        "cannot estimate gas; transaction may fail",
    ])
    def test_retryable_messages(self, message):
        assert is_retryable(RuntimeError(message)) is True

    @pytest.mark.parametrize("message", ["invalid argument", "invalid address", "unknown account"])
    def test_fatal_messages(self, message):
        assert is_retryable(RuntimeError(message)) is False

    def test_classification_is_case_insensitive_and_stable(self):
        results = {is_retryable(m) for m in ("NONCE TOO LOW", "nonce too low", "Nonce Too Low") for _ in range(3)}
        assert results == {True}

    @pytest.mark.parametrize("message,expected", [
        ("replacement transaction underpriced", True),
        ("max fee per gas less than block base fee", True),
        ("Out of GAS", True),
        ("invalid address", False),
        ("nonce too low", False),
    ])
    def test_fee_errors(self, message, expected):
        assert is_fee_error(RuntimeError(message)) is expected
        assert is_fee_error(message) is expected

    def test_empty_message_uses_class_name(self):
        assert is_retryable(TimeoutError()) is True


# =============================================================================
# Policies and pure transitions
# =============================================================================

class TestPolicies:

    def test_retry_policy_defaults(self):
        policy = RetryPolicy()
        assert (policy.max_retries, policy.initial_delay, policy.max_delay, policy.factor) == (3, 5.0, 30.0, 2.0)

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": 0},
        {"initial_delay": -1},
        {"initial_delay": 10, "max_delay": 5},
        {"factor": 1},
    ])
    def test_invalid_retry_policy(self, kwargs):
        with pytest.raises(PolicyError):
            RetryPolicy(**kwargs)

    def test_gas_policy_rejects_single_attempt(self):
        with pytest.raises(PolicyError, match="max_retries"):
            GasPolicy(max_retries=1)

    @pytest.mark.parametrize("kwargs", [
        {"initial_multiplier": 0.9},
        {"initial_multiplier": 1.5, "max_multiplier": 1.5},
        {"retry_delay": -0.5},
    ])
    def test_invalid_gas_policy(self, kwargs):
        with pytest.raises(PolicyError):
            GasPolicy(**kwargs)

    def test_policy_is_immutable(self):
        policy = RetryPolicy()
        with pytest.raises(AttributeError):
            policy.max_retries = 5


class TestTransitions:

    def test_backoff_delay_grows_and_caps(self):
        policy = RetryPolicy(max_retries=10, initial_delay=5, max_delay=30, factor=2)
        assert [backoff_delay(policy, k) for k in range(1, 6)] == [5, 10, 20, 30, 30]

    def test_next_backoff_state(self):
        policy = RetryPolicy(max_retries=3)
        assert next_backoff_state(policy, 1, RuntimeError("invalid argument")) == FatalFailure(1)
        assert next_backoff_state(policy, 3, RuntimeError("timeout")) == ExhaustedFailure(3)
        state = next_backoff_state(policy, 2, RuntimeError("timeout"), jitter=1.1)
        assert isinstance(state, WaitingBackoff)
        assert state.attempt == 2
        assert state.delay == pytest.approx(11.0)

    def test_gas_multiplier_schedule(self):
        policy = GasPolicy(max_retries=3, initial_multiplier=1.1, max_multiplier=2.0)
        assert [gas_multiplier(policy, a) for a in (1, 2, 3)] == pytest.approx([1.1, 1.55, 2.0])

    def test_next_gas_state(self):
        policy = GasPolicy()
        assert next_gas_state(policy, 1, RuntimeError("invalid address")) == FatalFailure(1)
        assert next_gas_state(policy, 3, RuntimeError("gas too low")) == ExhaustedFailure(3)
        assert next_gas_state(policy, 1, RuntimeError("gas too low")) == WaitingBackoff(1, 2.0)


class TestExtractTxRef:

    def test_mapping_and_attributes(self):
        assert extract_tx_ref({"hash": "0xabc"}) == "0xabc"
        assert extract_tx_ref({"transactionHash": "0xdef"}) == "0xdef"
        assert extract_tx_ref(SimpleNamespace(hash="0x123")) == "0x123"
        assert extract_tx_ref(SimpleNamespace(transactionHash=b"\x01\x02")) == "0x0102"

    def test_missing(self):
        assert extract_tx_ref(None) is None
        assert extract_tx_ref({"stakeAmount": 5}) is None
        assert extract_tx_ref(42) is None


# =============================================================================
# BackoffExecutor
# =============================================================================

class TestBackoffExecutor:

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, tx_logger, fake_sleep):
        op = Operation(result={"hash": "0xabc"})
        executor = BackoffExecutor(tx_logger, sleep=fake_sleep)

        assert await executor.run(op, context=CTX) == {"hash": "0xabc"}
        assert op.calls == 1
        assert fake_sleep.calls == []
        assert [(e.status, e.action_name) for e in tx_logger.history] == [(LogStatus.INFO, "Starting Stake MON")]

    @pytest.mark.asyncio
    async def test_success_after_retry(self, tx_logger, fake_sleep):
        result = {"hash": "0xabc"}
        op = Operation(RuntimeError("timeout"), result=result)
        executor = BackoffExecutor(tx_logger, sleep=fake_sleep, rng=FixedRandom(0.5))

        assert await executor.run(op, RetryPolicy(), CTX) is result
        assert op.calls == 2
        assert fake_sleep.calls == [pytest.approx(5.0)]

        statuses = [e.status for e in tx_logger.history]
        assert statuses == [LogStatus.INFO, LogStatus.WARNING, LogStatus.SUCCESS]
        success = tx_logger.history[-1]
        assert success.tx_ref == "0xabc"
        assert success.details == "Completed successfully on retry attempt 2"
        assert tx_logger.history[1].details == "Error on attempt 1: timeout"

    @pytest.mark.asyncio
    async def test_retry_ceiling(self, tx_logger, fake_sleep):
        op = AlwaysFails("connection reset")
        policy = RetryPolicy(max_retries=4, initial_delay=1, max_delay=100, factor=3)
        executor = BackoffExecutor(tx_logger, sleep=fake_sleep)

        with pytest.raises(RetryExhaustedError, match="Failed after 4 attempts") as exc_info:
            await executor.run(op, policy, CTX)

        assert op.calls == 4
        assert len(fake_sleep.calls) == 3
        assert str(exc_info.value) == "Failed after 4 attempts: connection reset"
        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        last = tx_logger.history[-1]
        assert last.status is LogStatus.ERROR
        assert last.details == "Failed after 4 attempts: connection reset"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("point", [0.0, 0.5, 1.0])
    async def test_delay_bounds(self, fake_sleep, point):
        policy = RetryPolicy(max_retries=5, initial_delay=2, max_delay=10, factor=2)
        executor = BackoffExecutor(sleep=fake_sleep, rng=FixedRandom(point))

        with pytest.raises(RetryExhaustedError):
            await executor.run(AlwaysFails("too many requests"), policy)

        assert len(fake_sleep.calls) == 4
        for k, waited in enumerate(fake_sleep.calls, start=1):
            base = 2 * 2 ** (k - 1)
            assert min(base, 10) * 0.85 - 1e-9 <= waited <= min(base, 10) * 1.15 + 1e-9

    @pytest.mark.asyncio
    async def test_random_jitter_stays_in_bounds(self, fake_sleep):
        policy = RetryPolicy(max_retries=6, initial_delay=1, max_delay=8, factor=2)
        executor = BackoffExecutor(sleep=fake_sleep)

        with pytest.raises(RetryExhaustedError):
            await executor.run(AlwaysFails("server busy"), policy)

        for k, waited in enumerate(fake_sleep.calls, start=1):
            capped = min(2 ** (k - 1), 8)
            assert capped * 0.85 <= waited <= capped * 1.15

    @pytest.mark.asyncio
    async def test_fatal_short_circuit(self, tx_logger, fake_sleep):
        error = ValueError("invalid argument")
        op = Operation(error, result="never")
        executor = BackoffExecutor(tx_logger, sleep=fake_sleep)

        with pytest.raises(ValueError) as exc_info:
            await executor.run(op, context=CTX)

        assert exc_info.value is error
        assert op.calls == 1
        assert fake_sleep.calls == []
        assert tx_logger.history[-1].details == "Fatal error: invalid argument"

    @pytest.mark.asyncio
    async def test_no_context_logs_nothing(self, tx_logger, fake_sleep):
        executor = BackoffExecutor(tx_logger, sleep=fake_sleep)
        await executor.run(Operation(RuntimeError("timeout"), result=1))
        assert tx_logger.history == []

    @pytest.mark.asyncio
    async def test_logger_failure_does_not_mask_outcome(self, fake_sleep):
        class BrokenLogger:
            def __getattr__(self, name):
                def fail(*args, **kwargs):
                    raise IOError("disk full")
                return fail

        executor = BackoffExecutor(BrokenLogger(), sleep=fake_sleep)
        assert await executor.run(Operation(RuntimeError("timeout"), result=7), context=CTX) == 7

        with pytest.raises(ValueError, match="invalid argument"):
            await executor.run(Operation(ValueError("invalid argument")), context=CTX)

    @pytest.mark.asyncio
    async def test_runs_are_independent(self, fake_sleep):
        executor = BackoffExecutor(sleep=fake_sleep)
        policy = RetryPolicy(max_retries=2, initial_delay=1, max_delay=1)

        with pytest.raises(RetryExhaustedError):
            await executor.run(AlwaysFails("timeout"), policy)
        op = Operation(RuntimeError("timeout"), result="ok")
        assert await executor.run(op, policy) == "ok"
        assert op.calls == 2


# =============================================================================
# GasEscalationExecutor
# =============================================================================

class TestGasEscalationExecutor:

    @pytest.mark.asyncio
    async def test_multiplier_schedule(self, tx_logger, fake_sleep):
        op = AlwaysFails("transaction underpriced")
        executor = GasEscalationExecutor(tx_logger, sleep=fake_sleep)
        policy = GasPolicy(max_retries=3, initial_multiplier=1.1, max_multiplier=2.0)

        with pytest.raises(RuntimeError, match="transaction underpriced"):
            await executor.run(op, CTX, policy)

        assert op.multipliers == pytest.approx([1.1, 1.55, 2.0])
        assert fake_sleep.calls == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_original(self, tx_logger, fake_sleep):
        errors = [RuntimeError("fee too low"), RuntimeError("fee too low"), RuntimeError("max fee exceeded")]
        op = Operation(*errors)
        executor = GasEscalationExecutor(tx_logger, sleep=fake_sleep)

        with pytest.raises(RuntimeError) as exc_info:
            await executor.run(op, CTX)

        assert exc_info.value is errors[2]
        assert tx_logger.history[-1].status is LogStatus.ERROR
        assert tx_logger.history[-1].details == "Failed: max fee exceeded"

    @pytest.mark.asyncio
    async def test_non_fee_short_circuit(self, tx_logger, fake_sleep):
        error = RuntimeError("invalid address")
        op = Operation(error, result="never")
        executor = GasEscalationExecutor(tx_logger, sleep=fake_sleep)

        with pytest.raises(RuntimeError) as exc_info:
            await executor.run(op, CTX)

        assert exc_info.value is error
        assert op.calls == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_success_after_gas_retry(self, tx_logger, fake_sleep):
        op = Operation(RuntimeError("replacement transaction underpriced"), result={"transactionHash": "0xfeed"})
        executor = GasEscalationExecutor(tx_logger, sleep=fake_sleep)

        result = await executor.run(op, CTX)

        assert result == {"transactionHash": "0xfeed"}
        assert op.multipliers == pytest.approx([1.1, 1.55])
        details = [e.details for e in tx_logger.history]
        assert details == [
            "Gas error on attempt 1: replacement transaction underpriced",
            "Retrying with 155% gas price (Attempt 2/3)",
            "Completed successfully with 155% gas price on attempt 2",
        ]
        assert tx_logger.history[-1].tx_ref == "0xfeed"

    @pytest.mark.asyncio
    async def test_first_attempt_success_is_silent(self, tx_logger, fake_sleep):
        op = Operation(result={"hash": "0x1"})
        executor = GasEscalationExecutor(tx_logger, sleep=fake_sleep)
        assert await executor.run(op, CTX) == {"hash": "0x1"}
        assert op.multipliers == pytest.approx([1.1])
        assert tx_logger.history == []


# =============================================================================
# Nesting
# =============================================================================

class TestNestedExecutors:

    @pytest.mark.asyncio
    async def test_backoff_retries_whole_gas_run(self, tx_logger, fake_sleep):
        op = Operation(RuntimeError("nonce too low"), RuntimeError("gas price too low"), result={"hash": "0xbeef"})
        backoff = BackoffExecutor(tx_logger, sleep=fake_sleep, rng=FixedRandom(0.5))
        gas = GasEscalationExecutor(tx_logger, sleep=fake_sleep)

        result = await backoff.run(lambda: gas.run(op, CTX), context=CTX)

        assert result == {"hash": "0xbeef"}
        # gas run 1: nonce error is not fee related -> backoff retries with a fresh gas run
        assert op.multipliers == pytest.approx([1.1, 1.1, 1.55])
        assert fake_sleep.calls == [pytest.approx(5.0), 2.0]

    @pytest.mark.asyncio
    async def test_gas_exhaustion_becomes_backoff_retry(self, fake_sleep):
        op = AlwaysFails("transaction underpriced")
        backoff = BackoffExecutor(sleep=fake_sleep)
        gas = GasEscalationExecutor(sleep=fake_sleep)
        policy = RetryPolicy(max_retries=2, initial_delay=1, max_delay=1)

        with pytest.raises(RetryExhaustedError, match="Failed after 2 attempts: transaction underpriced"):
            await backoff.run(lambda: gas.run(op, CTX), policy, CTX)

        assert op.calls == 6
