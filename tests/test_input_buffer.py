import logging

import pytest

from input_buffer import TrackedAction
from input_map import InputMap


def test_register_unknown_action_warns_and_is_not_tracked(tracker, caplog):
    with caplog.at_level(logging.WARNING):
        assert tracker.register_action("fly") is False
    assert "fly" in caplog.text
    assert not tracker.is_tracked("fly")


def test_register_starts_consumed(tracker):
    assert tracker.register_action("jump")
    rec = tracker.tracked_actions()["jump"]
    assert rec == TrackedAction(action_id="jump")
    assert rec.consumed is True


@pytest.mark.parametrize("window", [0.0, 0.15, 5.0, -1.0])
def test_no_press_means_nothing_available(tracker, window):
    tracker.register_action("jump")
    tracker.tick([])
    assert tracker.is_buffered("jump", window) is False
    assert tracker.consume_buffered_input("jump", window) is False
    assert tracker.is_buffered_frames("jump", 100) is False


def test_untracked_queries_return_sentinels(tracker):
    assert tracker.is_buffered("jump") is False
    assert tracker.consume_buffered_input("jump") is False
    assert tracker.peek_buffered_input_frames("jump") is False
    assert tracker.time_since_pressed("jump") == -1.0
    assert tracker.frames_since_pressed("jump") == -1


def test_press_is_available_until_window_passes(tracker, clock):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    assert tracker.is_buffered("jump", 0.0)
    assert tracker.is_buffered("jump", 0.25)

    clock.advance(0.25)
    assert tracker.is_buffered("jump", 0.25)

    clock.advance(0.25)
    assert not tracker.is_buffered("jump", 0.25)
    # Expiry by time does not consume; a longer window still sees it.
    assert tracker.is_buffered("jump", 1.0)


def test_negative_window_only_matches_same_instant(tracker, clock):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    assert tracker.is_buffered("jump", -0.5)
    clock.advance(0.015625)
    assert not tracker.is_buffered("jump", -0.5)


def test_consume_is_at_most_once_per_press(tracker, clock):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    assert tracker.consume_buffered_input("jump", 0.15)
    assert not tracker.consume_buffered_input("jump", 0.15)
    assert not tracker.is_buffered("jump", 10.0)

    # A new press makes it available again
    clock.advance(0.5)
    tracker.tick(["jump"])
    assert tracker.consume_buffered_input("jump", 0.15)


def test_failed_consume_leaves_state_alone(tracker, clock):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    clock.advance(0.5)
    assert not tracker.consume_buffered_input("jump", 0.15)
    assert tracker.tracked_actions()["jump"].consumed is False
    assert tracker.consume_buffered_input("jump", 1.0)


def test_jump_buffer_scenario(tracker, clock):
    tracker.register_action("jump")
    tracker.register_action("dash")
    tracker.tick(["jump"])  # frame 1
    clock.advance(0.1)
    assert tracker.consume_buffered_input("jump", 0.15) is True
    assert tracker.consume_buffered_input("jump", 0.15) is False
    assert tracker.consume_buffered_input("dash", 0.15) is False


def test_peek_does_not_consume(tracker):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    assert tracker.peek_buffered_input("jump", 0.15)
    assert tracker.peek_buffered_input("jump", 0.15)
    assert tracker.consume_buffered_input("jump", 0.15)


def test_frame_window(tracker):
    tracker.register_action("dash")
    tracker.tick(["dash"])
    assert tracker.frames_since_pressed("dash") == 0
    tracker.tick([])
    tracker.tick([])
    assert tracker.frames_since_pressed("dash") == 2
    assert tracker.peek_buffered_input_frames("dash", 2)
    assert not tracker.is_buffered_frames("dash", 1)
    assert tracker.consume_buffered_input_frames("dash", 3)
    assert not tracker.consume_buffered_input_frames("dash", 3)


def test_time_since_pressed_for_fresh_press(tracker, clock):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    assert abs(tracker.time_since_pressed("jump")) < 1.0 / 60
    clock.advance(0.5)
    assert tracker.time_since_pressed("jump") == pytest.approx(0.5)


def test_reregister_resets_consumed(tracker):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    assert tracker.is_buffered("jump")
    assert tracker.register_action("jump")
    assert not tracker.is_buffered("jump")


def test_unregister(tracker):
    tracker.register_action("jump")
    assert tracker.unregister_action("jump") is True
    assert tracker.unregister_action("jump") is False
    tracker.tick(["jump"])
    assert not tracker.is_buffered("jump")


def test_presses_for_untracked_actions_are_ignored(tracker):
    tracker.register_action("jump")
    assert tracker.advance(["dash", "jump"], now=3.0, frame=7) == ["jump"]
    rec = tracker.tracked_actions()["jump"]
    assert rec.last_pressed_time == 3.0
    assert rec.last_pressed_frame == 7
    assert not tracker.is_tracked("dash")


def test_action_names_are_case_insensitive(tracker):
    tracker.register_action("Jump")
    tracker.tick([" JUMP "])
    assert tracker.consume_buffered_input("jump")


def test_clear_all(tracker, events):
    tracker.register_action("jump")
    tracker.register_sequence(["a", "b"])
    tracker.tick(["jump"])
    tracker.clear_all()
    assert tracker.tracked_actions() == {}
    assert tracker.sequences() == {}
    assert not tracker.is_buffered("jump")
    assert events[-1] == {"type": "buffers_cleared"}


def test_emits_press_and_consume(tracker, events):
    tracker.register_action("jump")
    tracker.tick(["jump"])
    tracker.consume_buffered_input("jump")
    assert [e["type"] for e in events] == ["action_pressed", "action_consumed"]
    assert events[0]["frame"] == 1


def test_broken_emitter_does_not_break_tick(tracker):
    def boom(_msg):
        raise RuntimeError("socket gone")

    tracker.set_emitter(boom)
    tracker.register_action("jump")
    tracker.tick(["jump"])
    assert tracker.consume_buffered_input("jump")


def test_set_input_map_drops_unknown_records(tracker, caplog):
    tracker.register_action("jump")
    tracker.register_action("dash")
    tracker.register_sequence(["a", "b"])
    tracker.register_sequence(["jump", "jump"])

    with caplog.at_level(logging.WARNING):
        dropped = tracker.set_input_map(InputMap.from_bindings({"jump": ["space"]}))
    assert dropped == ["dash", "a,b"]
    assert list(tracker.tracked_actions()) == ["jump"]
    assert list(tracker.sequences()) == ["jump,jump"]
    assert "dash" in caplog.text
