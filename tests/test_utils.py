"""
Tests for formatting helpers, log redaction, the error taxonomy and the
retry policy.
"""

import asyncio
import logging

import pytest

from sui_volume_bot.models import SUI_TYPE, SwapRequest, TransactionDraft, require_amount
from sui_volume_bot.retry import RetryPolicy
from sui_volume_bot.utils import (
    SecureLogger,
    format_address,
    format_duration,
    format_mist,
    sanitize_error_message,
    BalanceQueryError,
    ConfigError,
    NoRouteFound,
    TransientError,
)


class TestFormatting:

    @pytest.mark.parametrize("amount,expected", [
        (0, "0"),
        (1, "0.000000001"),
        (1_500_000_000, "1.5"),
        (12_345 * 10 ** 9, "12,345"),
        (-250_000_000, "-0.25"),
    ])
    def test_format_mist(self, amount, expected):
        assert format_mist(amount) == expected

    def test_format_address(self):
        address = "0x" + "ab" * 32
        assert format_address(address) == "0xababab...ababab"
        assert format_address("0x2") == "0x2"

    def test_format_duration(self):
        assert format_duration(42) == "42s"
        assert format_duration(125) == "2m 5s"
        assert format_duration(3720) == "1h 2m"


class TestRedaction:

    def test_sanitize_error_message(self):
        message = sanitize_error_message(
            "failed with suiprivkey1qqqsyqcyq5rqwzqf at https://node.example/rpc?token=x"
        )
        assert "suiprivkey1" not in message
        assert "node.example" not in message

    def test_secure_logger_redacts_keys(self, caplog):
        base = logging.getLogger("redaction_test")
        secure = SecureLogger(base)

        with caplog.at_level(logging.INFO, logger="redaction_test"):
            secure.info("loaded private_key=abcdef123 for 0x" + "1" * 64)

        assert "abcdef123" not in caplog.text
        assert "private_key=[REDACTED]" in caplog.text
        assert "0x" + "1" * 64 in caplog.text


class TestErrors:

    def test_swap_error_carries_context(self):
        error = NoRouteFound("no routes", state="resolving", from_asset=SUI_TYPE,
                             to_asset="0x5::usdc::USDC", amount=10)
        text = str(error)
        assert text.startswith("no_route: no routes")
        assert "sui::SUI->usdc::USDC" in text
        assert "amount=10" in text
        assert "state=resolving" in text

    def test_balance_query_error_is_transient(self):
        error = BalanceQueryError("0x" + "1" * 64, SUI_TYPE, TimeoutError("slow"))
        assert isinstance(error, TransientError)
        assert isinstance(error.cause, TimeoutError)


class TestModels:

    @pytest.mark.parametrize("value", [1.5, True, "10"])
    def test_amounts_must_be_ints(self, value):
        with pytest.raises(TypeError):
            require_amount(value)

    def test_negative_amount(self):
        with pytest.raises(ValueError):
            require_amount(-1)

    def test_swap_request_validation(self):
        with pytest.raises(ValueError):
            SwapRequest(from_asset=SUI_TYPE, to_asset="0x5::usdc::USDC", amount=1, slippage=1.5)
        with pytest.raises(ValueError):
            SwapRequest(from_asset=SUI_TYPE, to_asset="0x5::usdc::USDC", amount=1, batch_count=0)

    def test_signed_draft_budget_is_frozen(self):
        draft = TransactionDraft(sender="0x1")
        draft.set_budget(100)
        draft.tx_bytes = "AAAA"
        draft.mark_signed()

        with pytest.raises(RuntimeError):
            draft.set_budget(200)
        assert draft.gas_budget == 100

    def test_budget_change_drops_built_bytes(self):
        draft = TransactionDraft(sender="0x1")
        draft.tx_bytes = "AAAA"
        draft.set_budget(100)
        assert draft.tx_bytes is None

        with pytest.raises(RuntimeError):
            draft.mark_signed()


class TestRetryPolicy:

    def test_retries_transient_until_success(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise TransientError("timeout")
            return "ok"

        assert RetryPolicy(max_attempts=5, delay_seconds=0).call(flaky) == "ok"
        assert len(attempts) == 3

    def test_gives_up_after_max_attempts(self):
        attempts = []

        def always_fails():
            attempts.append(1)
            raise TransientError("timeout")

        with pytest.raises(TransientError):
            RetryPolicy(max_attempts=2, delay_seconds=0).call(always_fails)
        assert len(attempts) == 2

    def test_fatal_errors_never_retried(self):
        attempts = []

        async def bad_config():
            attempts.append(1)
            raise ConfigError("missing url")

        policy = RetryPolicy(max_attempts=None, delay_seconds=0, retry_on=(Exception,))
        with pytest.raises(ConfigError):
            asyncio.run(policy.call_async(bad_config))
        assert len(attempts) == 1

    def test_pause_wakes_on_stop(self):
        policy = RetryPolicy(delay_seconds=30)

        async def scenario():
            stop = asyncio.Event()
            asyncio.get_running_loop().call_later(0.01, stop.set)
            return await asyncio.wait_for(policy.pause(stop), timeout=5)

        assert asyncio.run(scenario()) is True

    def test_pause_times_out(self):
        policy = RetryPolicy(delay_seconds=0.01)

        async def scenario():
            return await policy.pause(asyncio.Event())

        assert asyncio.run(scenario()) is False
