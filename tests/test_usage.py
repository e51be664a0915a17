from scene_copilot.usage import MINUTE_WINDOW_SECONDS, UsageTracker


def test_fresh_tracker_accepts(clock):
    tracker = UsageTracker(clock=clock)
    assert tracker.can_make_request(5)
    assert tracker.statistics() == (0, 0)


def test_limit_reached_within_window(clock):
    tracker = UsageTracker(clock=clock)
    for _ in range(3):
        assert tracker.can_make_request(3)
        tracker.update_usage()
        clock.advance(1)
    assert not tracker.can_make_request(3)
    assert tracker.statistics() == (3, 3)


def test_window_resets_lazily_after_a_minute(clock):
    tracker = UsageTracker(clock=clock)
    for _ in range(3):
        tracker.update_usage()
    assert not tracker.can_make_request(3)

    clock.advance(MINUTE_WINDOW_SECONDS)
    assert tracker.can_make_request(3)
    tracker.update_usage()
    assert tracker.statistics() == (4, 1)
    assert tracker.minute_window_start == clock.now


def test_zero_limit_never_accepts(clock):
    tracker = UsageTracker(clock=clock)
    assert not tracker.can_make_request(0)


def test_reset(clock):
    tracker = UsageTracker(clock=clock)
    tracker.update_usage()
    tracker.reset()
    assert tracker.statistics() == (0, 0)
    assert tracker.minute_window_start is None
