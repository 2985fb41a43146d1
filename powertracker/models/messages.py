"""Typed Home Assistant WebSocket API messages.

Inbound frames are decoded into one of the dataclasses below; anything that
does not have the expected shape raises ``ProtocolError``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from powertracker.errors import ProtocolError

AUTH_OK = "auth_ok"
STATISTICS_DURING_PERIOD = "recorder/statistics_during_period"


def decode_frame(raw: Any) -> Dict[str, Any]:
    """Parse one text/binary frame into a JSON object."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"frame is not valid UTF-8: {exc}") from exc
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def _require_type(payload: Dict[str, Any]) -> str:
    msg_type = payload.get("type")
    if not isinstance(msg_type, str):
        raise ProtocolError(f"message has no string 'type' field: {payload!r}")
    return msg_type


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    return str(value)


@dataclass
class AuthRequired:
    type: str
    ha_version: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AuthRequired":
        return cls(type=_require_type(payload), ha_version=_optional_str(payload, "ha_version"))


@dataclass
class AuthRequest:
    access_token: str
    type: str = "auth"

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "access_token": self.access_token}


@dataclass
class AuthResult:
    type: str
    message: Optional[str] = None
    ha_version: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.type == AUTH_OK

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AuthResult":
        return cls(
            type=_require_type(payload),
            message=_optional_str(payload, "message"),
            ha_version=_optional_str(payload, "ha_version"),
        )


@dataclass
class StatisticsRequest:
    id: int
    start_time: str
    end_time: str
    statistic_ids: List[str]
    period: str = "hour"
    types: List[str] = field(default_factory=lambda: ["change"])
    units: Dict[str, str] = field(default_factory=lambda: {"energy": "kWh"})
    type: str = STATISTICS_DURING_PERIOD

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "statistic_ids": list(self.statistic_ids),
            "period": self.period,
            "types": list(self.types),
            "units": dict(self.units),
        }


@dataclass
class StatisticBucket:
    change: float
    start: Any = None
    end: Any = None

    @classmethod
    def from_payload(cls, payload: Any) -> "StatisticBucket":
        if not isinstance(payload, dict):
            raise ProtocolError(f"statistic bucket is not an object: {payload!r}")
        change = payload.get("change")
        if change is None:
            # Recorder reports null for hours without a state change.
            change = 0.0
        elif isinstance(change, bool) or not isinstance(change, (int, float)):
            raise ProtocolError(f"statistic bucket 'change' is not a number: {change!r}")
        return cls(change=float(change), start=payload.get("start"), end=payload.get("end"))


@dataclass
class ResponseError:
    code: Optional[str] = None
    message: Optional[str] = None

    def __str__(self) -> str:
        if self.code and self.message:
            return f"{self.code}: {self.message}"
        return self.message or self.code or "unknown error"


@dataclass
class StatisticsResponse:
    id: Optional[int]
    type: str
    success: bool
    result: Dict[str, List[StatisticBucket]]
    error: Optional[ResponseError] = None

    def buckets_for(self, statistic_id: str) -> List[StatisticBucket]:
        return self.result.get(statistic_id, [])

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StatisticsResponse":
        msg_type = _require_type(payload)

        msg_id = payload.get("id")
        if msg_id is not None and (isinstance(msg_id, bool) or not isinstance(msg_id, int)):
            raise ProtocolError(f"response 'id' is not an integer: {msg_id!r}")

        success = payload.get("success", False)
        if not isinstance(success, bool):
            raise ProtocolError(f"response 'success' is not a boolean: {success!r}")

        error = None
        raw_error = payload.get("error")
        if isinstance(raw_error, dict):
            error = ResponseError(
                code=_optional_str(raw_error, "code"),
                message=_optional_str(raw_error, "message"),
            )
        elif raw_error is not None:
            raise ProtocolError(f"response 'error' is not an object: {raw_error!r}")

        result: Dict[str, List[StatisticBucket]] = {}
        raw_result = payload.get("result")
        if success:
            if raw_result is None:
                raw_result = {}
            if not isinstance(raw_result, dict):
                raise ProtocolError(f"response 'result' is not an object: {raw_result!r}")
            for statistic_id, buckets in raw_result.items():
                if not isinstance(buckets, list):
                    raise ProtocolError(f"result for '{statistic_id}' is not a list")
                result[statistic_id] = [StatisticBucket.from_payload(b) for b in buckets]

        return cls(id=msg_id, type=msg_type, success=success, result=result, error=error)
