import logging

from cabin.config import ClientConfig
from cabin.errors import AcquisitionFailure, RoomError
from cabin.services.logging_utils import RedactingFilter


def test_from_env_reads_cabin_variables(monkeypatch):
    monkeypatch.setenv("CABIN_SIGNALING_URL", "wss://relay.example:8765")
    monkeypatch.setenv("CABIN_ROOM", "standup")
    monkeypatch.setenv("CABIN_USER_ID", "u-1")
    monkeypatch.setenv("CABIN_REAR_CAMERA", "/dev/video2")
    monkeypatch.setenv("CABIN_MOBILE", "yes")
    monkeypatch.setenv("CABIN_ORIENTATION", "VERTICAL")
    monkeypatch.setenv("CABIN_ICE_SERVERS", "stun:a:3478, turn:b:3478")
    monkeypatch.setenv("CABIN_VERIFY_TLS", "0")

    config = ClientConfig.from_env()

    assert config.signaling_url == "wss://relay.example:8765"
    assert config.room_address == "standup"
    assert config.user_id == "u-1"
    assert config.rear_camera == "/dev/video2"
    assert config.mobile is True
    assert config.orientation == "vertical"
    assert config.ice_servers == ["stun:a:3478", "turn:b:3478"]
    assert config.verify_tls is False


def test_defaults_fill_audio_source(monkeypatch):
    for name in ("CABIN_AUDIO_DEVICE", "CABIN_USER_ID", "CABIN_ICE_SERVERS"):
        monkeypatch.delenv(name, raising=False)

    config = ClientConfig.from_env()

    assert config.audio_device
    assert config.audio_format
    assert config.user_id
    assert config.ice_servers == ["stun:stun.l.google.com:19302"]


def test_redacting_filter_masks_key_material():
    record = logging.LogRecord(
        "cabin", logging.INFO, __file__, 1, "handshake salt=%s a=ice-pwd:%s", ("c2FsdA==", "secret"), None)

    RedactingFilter().filter(record)

    assert record.getMessage() == "handshake salt=*** a=ice-pwd:***"


def test_room_error_describes_itself():
    error = AcquisitionFailure("switch_source", detail="no device", participant_id="bob")

    assert isinstance(error, RoomError)
    assert error.code == "ACQUISITION_FAILED"
    assert str(error) == "ACQUISITION_FAILED in switch_source (participant=bob): no device"
    assert error.user_message == AcquisitionFailure.default_message
