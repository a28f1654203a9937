import pytest

from input_buffer import InputBufferTracker
from input_map import InputMap


class FakeClock:
    def __init__(self, t: float = 10.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float):
        self.t += dt


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def input_map():
    return InputMap.from_bindings(
        {
            "jump": ["space"],
            "dash": ["shift"],
            "a": ["j"],
            "b": ["k"],
            "c": ["l"],
        }
    )


@pytest.fixture
def tracker(input_map, clock):
    return InputBufferTracker(input_map, clock=clock)


@pytest.fixture
def events(tracker):
    sent = []
    tracker.set_emitter(sent.append)
    return sent
