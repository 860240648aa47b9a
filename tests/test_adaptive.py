"""
Adaptive Controller Tests
=========================

Degradation policy as a function of the consecutive error count.
"""

import pytest

from framecast.config import AdaptiveConfig
from framecast.models import LinkState
from framecast.stream.adaptive import AdaptiveController


@pytest.fixture
def controller() -> AdaptiveController:
    return AdaptiveController(AdaptiveConfig())


class TestPolicy:
    """Tests for the derived skip, size and delay values."""

    def test_baseline(self, controller):
        assert controller.error_count == 0
        assert controller.link_state is LinkState.NORMAL
        assert controller.skip_ratio == 2
        assert controller.max_frame_bytes == 25 * 1024
        assert controller.frame_delay == 0.05

    def test_first_error_halves_ceiling(self, controller):
        backoff = controller.record_error(during_payload=False)

        assert backoff == 0.5
        assert controller.link_state is LinkState.DEGRADED
        assert controller.max_frame_bytes == 12800
        assert controller.skip_ratio == 2
        assert controller.frame_delay == 0.2

    def test_repeated_errors_raise_skip_ratio(self, controller):
        controller.record_error()
        controller.record_error()

        assert controller.skip_ratio == 12

    def test_payload_error_backs_off_longer(self, controller):
        assert controller.record_error(during_payload=True) == 1.0

    def test_max_errors_opens_circuit(self, controller):
        """Five consecutive errors trigger the 5 s cooldown."""
        backoffs = [controller.record_error() for _ in range(5)]

        assert backoffs[:4] == [0.5] * 4
        assert backoffs[4] == 5.0
        assert controller.cooling_down
        assert controller.link_state is LinkState.COOLDOWN

    def test_complete_cooldown_restores_baseline(self, controller):
        for _ in range(5):
            controller.record_error()

        controller.complete_cooldown()

        assert controller.error_count == 0
        assert not controller.cooling_down
        assert controller.link_state is LinkState.NORMAL
        assert controller.max_frame_bytes == 25 * 1024
        assert controller.skip_ratio == 2

    def test_custom_max_errors(self):
        controller = AdaptiveController(AdaptiveConfig(max_errors=1, cooldown_seconds=2.0))

        assert controller.record_error() == 2.0
        assert controller.cooling_down


class TestRecordSuccess:
    """Tests for success handling and size statistics."""

    def test_success_resets_error_count(self, controller):
        controller.record_error()
        controller.record_error()

        controller.record_success(1000)

        assert controller.error_count == 0
        assert controller.link_state is LinkState.NORMAL

    def test_delay_uses_error_count_before_reset(self, controller):
        """The first good frame after errors is still paced at the degraded rate."""
        controller.record_error()

        assert controller.record_success(1000) == 0.2
        assert controller.record_success(1000) == 0.05

    def test_size_statistics(self, controller):
        controller.record_success(1000)
        controller.record_success(2000)

        snapshot = controller.snapshot()
        assert snapshot.frames_observed == 2
        assert snapshot.mean_frame_bytes == pytest.approx(1200.0)
        assert snapshot.peak_frame_bytes == 2000

    def test_snapshot_counts_cooldowns(self, controller):
        for _ in range(5):
            controller.record_error()
        controller.complete_cooldown()

        snapshot = controller.snapshot()
        assert snapshot.cooldowns == 1
        assert snapshot.error_count == 0
        assert snapshot.link_state is LinkState.NORMAL
