"""Tests for hookweave.utils.logging."""
from unittest.mock import patch

from hookweave.utils import logging as logging_module
from hookweave.utils.logging import LogOnce, log_event


class TestLogOnce:
    """Tests for LogOnce window suppression."""

    def test_repeats_inside_window_hidden(self):
        """Only the first warning in a window reaches log_event."""
        log_once = LogOnce(period_sec=60)
        with patch.object(logging_module, "log_event") as log:
            for _ in range(3):
                log_once.warning("instrument", "site_skipped", "stream_end", candidates=["a"])
        log.assert_called_once_with(
            "instrument", "site_skipped", {"msg": "stream_end", "candidates": ["a"]}, "warning")

    def test_hidden_count_reported_after_window(self):
        """The first warning after the window carries the suppressed count."""
        log_once = LogOnce(period_sec=60)
        with patch.object(logging_module, "time") as clock, \
                patch.object(logging_module, "log_event") as log:
            clock.monotonic.side_effect = [0.0, 10.0, 20.0, 100.0]
            for _ in range(4):
                log_once.warning("models", "unknown_event", "tool:during")
        assert log.call_count == 2
        assert log.call_args.args[2] == {"msg": "tool:during", "suppressed": 2}

    def test_keys_are_independent(self):
        """Different messages do not suppress each other."""
        log_once = LogOnce()
        assert log_once.admit(("a", "b", "one")) == 0
        assert log_once.admit(("a", "b", "two")) == 0
        assert log_once.admit(("a", "b", "one")) is None


class TestLogEvent:
    """Tests for log_event."""

    def test_never_raises(self):
        """Unknown levels and odd data are swallowed."""
        log_event("test", "odd", {"obj": object()}, "no-such-level")
