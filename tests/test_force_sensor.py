import copy
import pickle

import pytest
import serial

from force_sensor.errors import FailureKind
from force_sensor.sensor import (
    BUFFER_MAX_SIZE,
    ForceSensor,
    Measurement,
    RawFrame,
    SensorCommand,
    SensorState,
    SensorVariant,
)
from force_sensor.serial_port import SerialConfig, SerialPort

GOOD_FRAME = b"OK\n"


class EchoVariant(SensorVariant):
    """Accepts only GOOD_FRAME, which decodes to a fixed reading."""

    def __init__(self, init_result=True):
        self.init_result = init_result
        self.last_error = None

    def convert_cmd(self, command):
        return {SensorCommand.REQUEST_SEND_DATA_ONCE: b"R", SensorCommand.USER_1: b"p"}.get(command, b"")

    def parse_data(self, frame):
        if frame.data != GOOD_FRAME:
            self.last_error = FailureKind.MALFORMED_FRAME
            return None
        self.last_error = None
        return Measurement(1.0, 2.0, 3.0, 4.0, 5.0, 6.0)

    def init(self, sensor):
        return self.init_result


def _sensor(**kwargs):
    return ForceSensor(variant=EchoVariant(**kwargs), config=SerialConfig(port="COM1"))


def test_requires_config_or_transport():
    with pytest.raises(ValueError):
        ForceSensor(variant=EchoVariant())


def test_injected_transport_is_used(mock_serial):
    transport = SerialPort(SerialConfig(port="COM7"))
    sensor = ForceSensor(variant=EchoVariant(), transport=transport)

    assert sensor.open()
    assert transport.is_open()
    assert sensor.config.port == "COM7"


def test_state_machine(mock_serial):
    sensor = _sensor()
    assert sensor.state is SensorState.CLOSED

    assert sensor.open()
    assert sensor.state is SensorState.UNCALIBRATED

    assert sensor.init()
    assert sensor.state is SensorState.READY

    sensor.close()
    assert sensor.state is SensorState.CLOSED
    sensor.open()
    assert sensor.state is SensorState.UNCALIBRATED


def test_failed_init_keeps_sensor_uncalibrated(mock_serial):
    sensor = _sensor(init_result=False)
    sensor.open()
    assert sensor.init() is False
    assert sensor.state is SensorState.UNCALIBRATED


def test_open_failure_reports_device_unavailable(monkeypatch):
    def failing_serial(**kwargs):
        raise serial.SerialException("could not open port")

    monkeypatch.setattr("force_sensor.serial_port.serial.Serial", failing_serial)
    sensor = _sensor()

    assert sensor.open() is False
    assert sensor.is_open() is False
    assert sensor.last_error is FailureKind.DEVICE_UNAVAILABLE


def test_close_is_idempotent(mock_serial):
    sensor = _sensor()
    sensor.close()
    sensor.open()
    sensor.close()
    sensor.close()
    assert sensor.is_open() is False


def test_send_cmd_rejects_unknown_code(mock_serial):
    sensor = _sensor()
    sensor.open()

    assert sensor.send_cmd(7) is False
    assert sensor.last_error is FailureKind.UNKNOWN_COMMAND
    assert mock_serial.written == []


def test_send_cmd_rejects_unmapped_command(mock_serial):
    sensor = _sensor()
    sensor.open()

    assert sensor.send_cmd(SensorCommand.USER_2) is False
    assert sensor.last_error is FailureKind.UNKNOWN_COMMAND
    assert mock_serial.written == []


def test_send_cmd_requires_open_transport():
    sensor = _sensor()
    assert sensor.send_cmd(SensorCommand.REQUEST_SEND_DATA_ONCE) is False
    assert sensor.last_error is FailureKind.NOT_OPEN


def test_send_cmd_accepts_plain_int(mock_serial):
    sensor = _sensor()
    sensor.open()
    assert sensor.send_cmd(1)
    assert mock_serial.written == [b"p"]


def test_send_cmd_reports_busy_output(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.out_waiting = 1

    assert sensor.send_cmd(SensorCommand.REQUEST_SEND_DATA_ONCE) is False
    assert sensor.last_error is FailureKind.WRITE_REJECTED


def test_update_buffer_stores_frame_and_flushes(mock_serial):
    sensor = _sensor()
    sensor.open()
    resets_after_open = mock_serial.input_resets
    mock_serial.queue(b"hello\r\n")

    assert sensor.update_buffer(SensorCommand.REQUEST_SEND_DATA_ONCE)
    assert sensor.get_buffer() == RawFrame(b"hello\r\n")
    assert mock_serial.written == [b"R"]
    assert mock_serial.input_resets == resets_after_open + 1
    assert sensor.last_error is None


def test_update_buffer_without_reply_keeps_previous_frame(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.queue(b"first\n", b"")

    assert sensor.update_buffer()
    assert sensor.update_buffer() is False
    assert sensor.last_error is FailureKind.SHORT_OR_FAILED_READ
    assert sensor.get_buffer().data == b"first\n"


def test_update_buffer_reserves_terminator_slot(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.queue(b"x" * 80)

    assert sensor.update_buffer()
    assert len(sensor.get_buffer()) == BUFFER_MAX_SIZE - 1
    assert mock_serial.in_waiting == 0


def test_update_buffer_until_correct_is_a_single_attempt(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.queue(b"", b"late\n")

    assert sensor.update_buffer_until_correct(SensorCommand.USER_1) is False
    assert mock_serial.written == [b"p"]


def test_update_data_until_correct_bounds_attempts(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.queue(*([b"garbage\n"] * 20))

    assert sensor.update_data_until_correct(3) is False
    assert len(mock_serial.written) == 4
    assert sensor.last_error is FailureKind.RETRIES_EXHAUSTED
    assert sensor.last_cause is FailureKind.MALFORMED_FRAME


def test_update_data_until_correct_keeps_last_cause_for_silent_device(mock_serial):
    sensor = _sensor()
    sensor.open()

    assert sensor.update_data_until_correct(2) is False
    assert len(mock_serial.written) == 3
    assert sensor.last_cause is FailureKind.SHORT_OR_FAILED_READ


def test_update_data_until_correct_masks_transient_errors(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.queue(b"", b"noise", GOOD_FRAME)

    assert sensor.update_data_until_correct()
    assert len(mock_serial.written) == 3
    assert sensor.get_data() == Measurement(1.0, 2.0, 3.0, 4.0, 5.0, 6.0)
    assert sensor.last_error is None
    assert sensor.last_cause is None


def test_read_data_returns_zero_and_keeps_cache_on_failure(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.queue(GOOD_FRAME)

    first = sensor.read_data()
    assert first.fz == 3.0

    assert sensor.read_data(max_count=1) == Measurement.zero()
    assert sensor.get_data() == first


def test_read_buffer_returns_empty_frame_on_failure(mock_serial):
    sensor = _sensor()
    sensor.open()
    mock_serial.queue(b"abc\n")

    assert sensor.read_buffer().data == b"abc\n"
    assert sensor.read_buffer() == RawFrame()
    assert sensor.get_buffer().data == b"abc\n"


def test_sensor_cannot_be_duplicated(mock_serial):
    sensor = _sensor()
    with pytest.raises(TypeError):
        copy.copy(sensor)
    with pytest.raises(TypeError):
        copy.deepcopy(sensor)
    with pytest.raises(TypeError):
        pickle.dumps(sensor)


def test_context_manager_releases_port(mock_serial):
    with _sensor() as sensor:
        assert sensor.is_open()
    assert not sensor.is_open()
    assert mock_serial.is_open is False


def test_raw_frame_capacity():
    with pytest.raises(ValueError):
        RawFrame(b"x" * BUFFER_MAX_SIZE)
    assert len(RawFrame()) == 0
    assert RawFrame(b"R\n").text() == "R\n"


def test_send_cmd_reports_failed_write(mock_serial, monkeypatch):
    def broken_write(data):
        raise serial.SerialException("write failed")

    sensor = _sensor()
    sensor.open()
    monkeypatch.setattr(mock_serial, "write", broken_write)

    assert sensor.send_cmd(SensorCommand.REQUEST_SEND_DATA_ONCE) is False
    assert sensor.last_error is FailureKind.WRITE_REJECTED


def test_config_must_match_injected_transport():
    transport = SerialPort(SerialConfig(port="COM7"))

    with pytest.raises(ValueError):
        ForceSensor(variant=EchoVariant(), config=SerialConfig(port="COM1"), transport=transport)

    sensor = ForceSensor(variant=EchoVariant(), config=SerialConfig(port="COM7"), transport=transport)
    assert sensor.transport is transport


def test_failed_repeat_init_keeps_ready_state(mock_serial):
    variant = EchoVariant()
    sensor = ForceSensor(variant=variant, config=SerialConfig(port="COM1"))
    sensor.open()
    assert sensor.init()

    variant.init_result = False
    assert sensor.init() is False
    assert sensor.state is SensorState.READY
