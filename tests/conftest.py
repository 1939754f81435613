import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


class MockSerial:
    """Stands in for ``serial.Serial``; each write queues the next canned reply."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.written = []
        self.incoming = bytearray()
        self.kwargs = {}
        self.opened = 0
        self.is_open = False
        self.out_waiting = 0
        self.input_resets = 0
        self.output_resets = 0

    def __call__(self, **kwargs):
        self.kwargs = kwargs
        self.opened += 1
        self.is_open = True
        return self

    def queue(self, *replies):
        self.replies.extend(replies)

    @property
    def in_waiting(self):
        return len(self.incoming)

    def read(self, size):
        data = bytes(self.incoming[:size])
        del self.incoming[:size]
        return data

    def write(self, data):
        self.written.append(bytes(data))
        if self.replies:
            self.incoming.extend(self.replies.pop(0))
        return len(data)

    def reset_input_buffer(self):
        self.input_resets += 1
        self.incoming.clear()

    def reset_output_buffer(self):
        self.output_resets += 1

    def close(self):
        self.is_open = False


@pytest.fixture
def mock_serial(monkeypatch):
    mock = MockSerial()
    monkeypatch.setattr("force_sensor.serial_port.serial.Serial", mock)
    return mock


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr("force_sensor.dynpick.time.sleep", sleeps.append)
    return sleeps

