"""Device signature resolution and the same-device similarity heuristic.

A submission is tied to one signature string, chosen from the most
trustworthy signal available:

1. a high-confidence ``visitor_id`` from the client fingerprinting agent,
2. a client-computed ``device_fingerprint``,
3. a server-side SHA-256 over the request's descriptors.

The similarity check is best-effort. Two browsers that report the same
screen geometry, timezone and language list are treated as one physical
device, which catches a student switching browsers on a shared phone but
will also flag two identical lab machines. It is a deterrent, not proof.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from attendguard.models.attendance import DeviceComponents, DeviceInfo
from attendguard.models.device import DeviceMeta

SOURCE_VISITOR_ID = "visitor_id"
SOURCE_CLIENT_FINGERPRINT = "client_fingerprint"
SOURCE_SERVER = "server_fallback"

# Descriptors that are stable for a given browser install.
_FALLBACK_FIELDS = {
    "platform",
    "browser",
    "screen_resolution",
    "timezone",
    "user_agent",
    "language",
    "os",
    "device_type",
}


@dataclass(frozen=True)
class ResolvedDevice:
    signature: str
    source: str

    @property
    def high_confidence(self) -> bool:
        return self.source == SOURCE_VISITOR_ID


def server_fingerprint(user_agent: str | None, ip: str | None, device_info: DeviceInfo | None = None) -> str:
    descriptors: dict[str, Any] = {
        "header_user_agent": user_agent or "",
        "ip": ip or "",
    }
    if device_info:
        descriptors.update(device_info.model_dump(include=_FALLBACK_FIELDS, exclude_none=True))
    payload = json.dumps(descriptors, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def resolve_device_signature(
    device_info: DeviceInfo | None,
    user_agent: str | None,
    ip: str | None,
) -> ResolvedDevice:
    if device_info and device_info.visitor_id:
        return ResolvedDevice(device_info.visitor_id, SOURCE_VISITOR_ID)
    if device_info and device_info.device_fingerprint:
        return ResolvedDevice(device_info.device_fingerprint, SOURCE_CLIENT_FINGERPRINT)
    return ResolvedDevice(server_fingerprint(user_agent, ip, device_info), SOURCE_SERVER)


def components_match(current: DeviceComponents | None, previous: DeviceComponents | None) -> bool:
    """True only when all three components are present on both sides and equal."""
    if current is None or previous is None:
        return False
    for field in ("screen_resolution", "timezone", "languages"):
        a = getattr(current, field)
        b = getattr(previous, field)
        if not a or not b or a != b:
            return False
    return True


def find_probable_duplicate(components: DeviceComponents | None, previous_records: Iterable[Any]) -> Optional[Any]:
    if components is None:
        return None
    for record in previous_records:
        if components_match(components, getattr(record, "components", None)):
            return record
    return None


def mask_signature(signature: str) -> str:
    return signature[:8] + "..."


def device_meta(device_info: DeviceInfo | None, user_agent: str | None, ip: str | None) -> DeviceMeta:
    info = device_info or DeviceInfo()
    return DeviceMeta(
        ip=ip,
        user_agent=user_agent or info.user_agent,
        platform=info.platform,
        browser=info.browser,
        screen_resolution=info.screen_resolution,
        timezone=info.timezone,
        language=info.language,
        os=info.os,
        device_type=info.device_type,
    )
