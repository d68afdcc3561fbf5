"""Tests for ubuntu_usb_creator.util.retry."""

from unittest.mock import Mock

import pytest

from ubuntu_usb_creator.util import retry, wait_for


class TestRetry:
    """Tests for retry()."""

    def test_returns_first_success(self):
        func = Mock(return_value="ok")
        sleep = Mock()
        assert retry(func, sleep=sleep) == "ok"
        func.assert_called_once_with()
        sleep.assert_not_called()

    def test_retries_then_succeeds(self):
        func = Mock(side_effect=[OSError("boom"), OSError("boom"), "ok"])
        sleep = Mock()
        assert retry(func, attempts=3, base_delay=2.0, sleep=sleep) == "ok"
        assert func.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0]

    def test_delay_capped(self):
        func = Mock(side_effect=[OSError(), OSError(), OSError(), "ok"])
        sleep = Mock()
        retry(func, attempts=4, base_delay=10.0, max_delay=15.0, sleep=sleep)
        assert [c.args[0] for c in sleep.call_args_list] == [10.0, 15.0, 15.0]

    def test_last_error_reraised(self):
        func = Mock(side_effect=[OSError("first"), OSError("last")])
        with pytest.raises(OSError, match="last"):
            retry(func, attempts=2, sleep=Mock())

    def test_unlisted_exception_not_retried(self):
        func = Mock(side_effect=KeyError("nope"))
        with pytest.raises(KeyError):
            retry(func, attempts=3, retry_on=(OSError,), sleep=Mock())
        func.assert_called_once_with()

    def test_should_retry_veto(self):
        func = Mock(side_effect=ValueError("fatal"))
        with pytest.raises(ValueError):
            retry(func, attempts=3, should_retry=lambda error: False, sleep=Mock())
        func.assert_called_once_with()

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            retry(Mock(), attempts=0)


class TestWaitFor:
    """Tests for wait_for()."""

    def test_returns_truthy_value(self):
        predicate = Mock(side_effect=[None, "", "E"])
        assert wait_for(predicate, timeout=10, sleep=Mock()) == "E"
        assert predicate.call_count == 3

    def test_times_out(self):
        ticks = iter([0.0, 0.5, 1.0, 1.5, 2.0])
        result = wait_for(
            lambda: False,
            timeout=1.0,
            clock=lambda: next(ticks),
            sleep=Mock(),
        )
        assert result is None
