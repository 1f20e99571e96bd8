import pytest
from pydantic import ValidationError

from attendguard.models.attendance import DeviceComponents, DeviceInfo
from attendguard.services.device import (
    SOURCE_CLIENT_FINGERPRINT,
    SOURCE_SERVER,
    SOURCE_VISITOR_ID,
    components_match,
    device_meta,
    find_probable_duplicate,
    mask_signature,
    resolve_device_signature,
    server_fingerprint,
)

UA = "Mozilla/5.0 (Linux; Android 14; Pixel 7) Chrome/126.0"
PHONE = DeviceComponents(screen_resolution="1080x2400", timezone="Africa/Lagos", languages=["en-NG", "en"])


def test_visitor_id_wins_over_everything():
    info = DeviceInfo(visitor_id="fpjs-abc", device_fingerprint="client-123", platform="Android")
    device = resolve_device_signature(info, UA, "10.0.0.7")
    assert device.signature == "fpjs-abc"
    assert device.source == SOURCE_VISITOR_ID
    assert device.high_confidence


def test_client_fingerprint_used_verbatim():
    device = resolve_device_signature(DeviceInfo(device_fingerprint="client-123"), UA, "10.0.0.7")
    assert device.signature == "client-123"
    assert device.source == SOURCE_CLIENT_FINGERPRINT
    assert not device.high_confidence


def test_server_fallback_without_device_info():
    device = resolve_device_signature(None, UA, "10.0.0.7")
    assert device.source == SOURCE_SERVER
    assert device.signature == server_fingerprint(UA, "10.0.0.7")
    assert len(device.signature) == 64


def test_server_fingerprint_is_stable_and_field_order_independent():
    a = DeviceInfo(platform="Android", timezone="Africa/Lagos", screen_resolution="1080x2400")
    b = DeviceInfo(screen_resolution="1080x2400", platform="Android", timezone="Africa/Lagos")
    assert server_fingerprint(UA, "10.0.0.7", a) == server_fingerprint(UA, "10.0.0.7", a)
    assert server_fingerprint(UA, "10.0.0.7", a) == server_fingerprint(UA, "10.0.0.7", b)


@pytest.mark.parametrize(
    "user_agent,ip,info",
    [
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_5) Safari/604.1", "10.0.0.7", None),
        (UA, "10.0.0.8", None),
        (UA, "10.0.0.7", DeviceInfo(platform="Android")),
    ],
)
def test_server_fingerprint_differs_across_devices(user_agent, ip, info):
    assert server_fingerprint(user_agent, ip, info) != server_fingerprint(UA, "10.0.0.7")


def test_high_confidence_extras_do_not_change_fallback():
    plain = DeviceInfo(platform="Android")
    with_version = DeviceInfo(platform="Android", version="3.11.0", components=PHONE)
    assert server_fingerprint(UA, "10.0.0.7", plain) == server_fingerprint(UA, "10.0.0.7", with_version)


def test_device_info_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        DeviceInfo.model_validate({"platform": "Android", "battery_level": 0.4})


def test_device_components_reject_unknown_fields():
    with pytest.raises(ValidationError):
        DeviceInfo.model_validate({"components": {"timezone": "UTC", "gpu": "Adreno"}})


def test_components_match_requires_all_three():
    assert components_match(PHONE, PHONE.model_copy())
    assert not components_match(PHONE, PHONE.model_copy(update={"timezone": "Europe/London"}))
    assert not components_match(PHONE, PHONE.model_copy(update={"languages": ["en"]}))
    partial = DeviceComponents(screen_resolution="1080x2400", timezone="Africa/Lagos")
    assert not components_match(partial, partial)
    assert not components_match(PHONE, None)


class _Row:
    def __init__(self, matric, components):
        self.matric_no_submitted = matric
        self.components = components


def test_find_probable_duplicate_returns_first_full_match():
    rows = [
        _Row("CSC/2021/004", None),
        _Row("CSC/2021/005", PHONE.model_copy(update={"screen_resolution": "720x1600"})),
        _Row("CSC/2021/006", PHONE.model_copy()),
    ]
    match = find_probable_duplicate(PHONE, rows)
    assert match.matric_no_submitted == "CSC/2021/006"
    assert find_probable_duplicate(None, rows) is None


def test_mask_signature():
    assert mask_signature("abcdef0123456789") == "abcdef01..."


def test_device_meta_prefers_header_user_agent():
    meta = device_meta(DeviceInfo(user_agent="client-ua", platform="Android"), UA, "10.0.0.7")
    assert meta.user_agent == UA
    assert meta.platform == "Android"
    assert meta.ip == "10.0.0.7"
    assert device_meta(None, "", None).user_agent is None
