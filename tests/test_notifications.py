"""Tests for heart-rate notification handling."""

import logging

import pytest

from pulselink.ble.constants import (
    BLEConfig,
    HEART_RATE_MEASUREMENT_UUID,
    HEART_RATE_SERVICE_UUID,
)
from pulselink.ble.exceptions import NotificationDecodeError
from pulselink.ble.models import Session
from pulselink.ble.notifications import NotificationStream, decode_heart_rate


@pytest.fixture
def session(peripheral):
    return Session(peripheral=peripheral, transport=object())


@pytest.fixture
def stream(gateway):
    return NotificationStream(gateway)


def subscribe(stream, session, samples):
    return stream.subscribe(
        session,
        HEART_RATE_SERVICE_UUID,
        HEART_RATE_MEASUREMENT_UUID,
        lambda sess, bpm: samples.append((sess, bpm)),
    )


@pytest.mark.parametrize(
    "payload, expected",
    [
        (b"\x00\x48", 72),
        (bytearray(b"\x00\x3c"), 60),
        (b"\x16\xb4\x01\x02", 180),  # flags set, trailing RR intervals ignored
        (b"\x00\x00", 0),
        (b"\x00\xff", 255),
    ],
)
def test_decode_heart_rate(payload, expected):
    assert decode_heart_rate(payload) == expected


@pytest.mark.parametrize("payload", [b"", b"\x00"])
def test_decode_heart_rate_rejects_short_payloads(payload):
    with pytest.raises(NotificationDecodeError):
        decode_heart_rate(payload)


class TestNotificationStream:
    """Test cases for NotificationStream."""

    def test_samples_are_delivered_with_session(self, stream, gateway, session):
        samples = []
        handle = subscribe(stream, session, samples)
        gateway.notify(b"\x00\x48")
        gateway.notify(b"\x00\x4a")
        assert samples == [(session, 72), (session, 74)]
        assert handle.active
        assert stream.handle is handle
        assert handle.characteristic_id == HEART_RATE_MEASUREMENT_UUID

    def test_malformed_payload_is_skipped(self, stream, gateway, session):
        samples = []
        handle = subscribe(stream, session, samples)
        gateway.notify(b"\x00")
        gateway.notify(b"\x00\x50")
        assert samples == [(session, 80)]
        assert handle.active

    def test_handler_error_keeps_subscription(self, stream, gateway, session):
        calls = []

        def _handler(_session, bpm):
            calls.append(bpm)
            raise ValueError("handler failure")

        handle = stream.subscribe(
            session, HEART_RATE_SERVICE_UUID, HEART_RATE_MEASUREMENT_UUID, _handler
        )
        gateway.notify(b"\x00\x48")
        gateway.notify(b"\x00\x49")
        assert calls == [72, 73]
        assert handle.active

    def test_malformed_threshold_warns_and_resets(self, stream, gateway, session, caplog):
        subscribe(stream, session, [])
        with caplog.at_level(logging.WARNING, logger="pulselink.ble"):
            for _ in range(BLEConfig.MALFORMED_NOTIFICATION_THRESHOLD - 1):
                gateway.notify(b"\x00")
            assert "malformed" not in caplog.text
            gateway.notify(b"\x00")
            assert "malformed heart rate notifications" in caplog.text
        assert stream._malformed_notification_count == 0

    def test_valid_payload_resets_malformed_counter(self, stream, gateway, session):
        subscribe(stream, session, [])
        gateway.notify(b"\x00")
        gateway.notify(b"\x00")
        assert stream._malformed_notification_count == 2
        gateway.notify(b"\x00\x48")
        assert stream._malformed_notification_count == 0

    def test_unsubscribe_is_idempotent(self, stream, gateway, session):
        handle = subscribe(stream, session, [])
        stream.unsubscribe(handle)
        stream.unsubscribe(handle)
        stream.unsubscribe(None)
        assert not handle.active
        assert stream.handle is None
        assert gateway.call_names().count("unsubscribe") == 1

    def test_late_payloads_after_release_are_dropped(self, stream, gateway, session):
        samples = []
        handle = subscribe(stream, session, samples)
        late_callback = gateway.notification_callback
        handle.release()
        late_callback(b"\x00\x48")
        assert samples == []

    def test_second_subscribe_releases_first(self, stream, gateway, session):
        first_samples, second_samples = [], []
        first = subscribe(stream, session, first_samples)
        first_callback = gateway.notification_callback
        second = subscribe(stream, session, second_samples)

        assert not first.active
        assert second.active
        assert stream.handle is second
        first_callback(b"\x00\x48")
        gateway.notify(b"\x00\x49")
        assert first_samples == []
        assert second_samples == [(session, 73)]

    def test_unsubscribe_survives_transport_failure(self, session, mocker):
        gateway = mocker.Mock()
        transport_subscription = mocker.Mock()
        transport_subscription.remove.side_effect = RuntimeError("transport gone")
        gateway.subscribe_characteristic.return_value = transport_subscription
        stream = NotificationStream(gateway)

        handle = subscribe(stream, session, [])
        stream.unsubscribe(handle)

        assert not handle.active
        transport_subscription.remove.assert_called_once()
