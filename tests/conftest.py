import base64
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import pytest

from majsoul_api.codec import encode_envelope
from majsoul_api.config import ServiceConfig, Settings
from majsoul_api.main import Runtime
from majsoul_api.schemas.envelope import Envelope
from majsoul_api.schemas.registry import SchemaRegistry
from majsoul_api.transport.adapters import MockTransport


def _f(type_: str, id_: int, **extra) -> Dict[str, Any]:
    field = {"type": type_, "id": id_}
    field.update(extra)
    return field


# The slice of the service schema the tests exercise, in the service's
# protobufjs JSON layout.
SCHEMA: Dict[str, Any] = {
    "nested": {
        "lq": {
            "nested": {
                "Error": {"fields": {"code": _f("uint32", 1), "u32_params": _f("uint32", 2, rule="repeated")}},
                "ClientVersionInfo": {"fields": {"resource": _f("string", 1), "package": _f("string", 2)}},
                "ClientDeviceInfo": {"fields": {
                    "platform": _f("string", 1),
                    "hardware": _f("string", 2),
                    "os": _f("string", 3),
                    "os_version": _f("string", 4),
                    "is_browser": _f("bool", 5),
                    "software": _f("string", 6),
                    "sale_platform": _f("string", 7),
                }},
                "ReqOauth2Login": {"fields": {
                    "type": _f("uint32", 1),
                    "access_token": _f("string", 2),
                    "reconnect": _f("bool", 3),
                    "device": _f("ClientDeviceInfo", 4),
                    "random_key": _f("string", 5),
                    "client_version": _f("ClientVersionInfo", 6),
                    "client_version_string": _f("string", 7),
                }},
                "ResLogin": {"fields": {"error": _f("Error", 1), "account_id": _f("uint32", 2)}},
                "RecordGame": {"fields": {
                    "uuid": _f("string", 1),
                    "start_time": _f("uint32", 2),
                    "end_time": _f("uint32", 3),
                }},
                "ReqGameRecord": {"fields": {"game_uuid": _f("string", 1), "client_version_string": _f("string", 2)}},
                "ResGameRecord": {"fields": {
                    "error": _f("Error", 1),
                    "head": _f("RecordGame", 3),
                    "data": _f("bytes", 4),
                    "data_url": _f("string", 5),
                }},
                "GameDetailRecords": {"fields": {
                    "records": _f("bytes", 1, rule="repeated"),
                    "version": _f("uint32", 11),
                    "actions": _f("GameAction", 12, rule="repeated"),
                    "bar": _f("bytes", 13),
                }},
                "GameAction": {"fields": {
                    "passed": _f("uint32", 1),
                    "type": _f("uint32", 2),
                    "result": _f("bytes", 3),
                }},
                "RecordNewRound": {"fields": {
                    "chang": _f("uint32", 1),
                    "ju": _f("uint32", 2),
                    "ben": _f("uint32", 3),
                    "scores": _f("int32", 5, rule="repeated"),
                }},
                "RecordDiscardTile": {"fields": {
                    "seat": _f("uint32", 1),
                    "tile": _f("string", 2),
                    "is_liqi": _f("bool", 3),
                }},
                "RecordHule": {
                    "fields": {"hules": _f("HuleInfo", 1, rule="repeated"), "old_scores": _f("int32", 2, rule="repeated")},
                    "nested": {"HuleInfo": {"fields": {
                        "seat": _f("uint32", 1),
                        "zimo": _f("bool", 2),
                        "point_rong": _f("uint32", 3),
                    }}},
                },
                "ContestState": {"values": {"CONTEST_STATE_UNKNOWN": 0, "RUNNING": 1, "FINISHED": 2}},
                "CustomizedContest": {
                    "fields": {
                        "unique_id": _f("uint32", 1),
                        "contest_id": _f("uint32", 3),
                        "contest_name": _f("string", 4),
                        "state": _f("ContestState", 5),
                        "tags": _f("uint32", 6, keyType="string"),
                        "open_url": _f("string", 7),
                        "invite_code": _f("string", 8),
                    },
                    "oneofs": {"entry": {"oneof": ["open_url", "invite_code"]}},
                },
                "ReqFetchCustomizedContestByContestId": {"fields": {"contest_id": _f("uint32", 1)}},
                "ResFetchCustomizedContestByContestId": {"fields": {
                    "error": _f("Error", 1),
                    "contest_info": _f("CustomizedContest", 2),
                }},
                "ReqFetchCustomizedContestGameRecords": {"fields": {
                    "unique_id": _f("uint32", 1),
                    "last_index": _f("uint32", 2),
                }},
                "ResFetchCustomizedContestGameRecords": {"fields": {
                    "error": _f("Error", 1),
                    "next_index": _f("uint32", 2),
                    "record_list": _f("RecordGame", 3, rule="repeated"),
                }},
                "NotifyAccountLogout": {"fields": {}},
                # references a type the descriptor never defines
                "Broken": {"fields": {"ghost": _f("Ghost", 1)}},
                "Lobby": {"methods": {
                    "oauth2Login": {"requestType": "ReqOauth2Login", "responseType": "ResLogin"},
                    "fetchGameRecord": {"requestType": "ReqGameRecord", "responseType": "ResGameRecord"},
                    "fetchCustomizedContestByContestId": {
                        "requestType": "ReqFetchCustomizedContestByContestId",
                        "responseType": "ResFetchCustomizedContestByContestId",
                    },
                    "fetchCustomizedContestGameRecords": {
                        "requestType": "ReqFetchCustomizedContestGameRecords",
                        "responseType": "ResFetchCustomizedContestGameRecords",
                    },
                }},
            }
        }
    }
}


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def schema() -> Dict[str, Any]:
    return SCHEMA


@pytest.fixture
def registry() -> SchemaRegistry:
    return SchemaRegistry(SCHEMA)


@pytest.fixture
def service_config() -> ServiceConfig:
    return ServiceConfig(
        version="0.11.1.w",
        schema_version_tag="v0.11.1.w",
        message_schema=SCHEMA,
        discovery_endpoints=["https://route.example/api/clientgate/routes"],
    )


@pytest.fixture
def wrap() -> Callable[[str, bytes], bytes]:
    """Encode an envelope: wrap(".lq.RecordNewRound", payload_bytes)."""
    def _wrap(type_name: str, payload: bytes) -> bytes:
        return encode_envelope(Envelope(type_name=type_name, payload=payload))
    return _wrap


@pytest.fixture
def make_event(registry, wrap) -> Callable[[str, Mapping[str, Any]], bytes]:
    """Return a helper building a wrapped game event blob.

    Usage: blob = make_event("RecordDiscardTile", {"seat": 1, "tile": "5m"})
    """
    def _make(name: str, fields: Mapping[str, Any]) -> bytes:
        return wrap(f".lq.{name}", registry.lookup(name).encode(fields))
    return _make


@pytest.fixture
def make_game_record(registry, wrap):
    """Return a helper building a wrapped GameDetailRecords blob.

    ``actions`` are dicts whose ``result`` (if any) is raw wrapped bytes.
    """
    def _make(version: int, records: Iterable[bytes] = (), actions: Iterable[Mapping[str, Any]] = ()) -> bytes:
        encoded_actions = []
        for action in actions:
            action = dict(action)
            if "result" in action:
                action["result"] = b64(action["result"])
            encoded_actions.append(action)
        fields = {"version": version, "records": [b64(r) for r in records], "actions": encoded_actions}
        return wrap(".lq.GameDetailRecords", registry.lookup("GameDetailRecords").encode(fields))
    return _make


@pytest.fixture
def make_runtime(registry, service_config):
    """Return a helper wiring a Runtime over a MockTransport.

    Usage: runtime, transport = make_runtime({"fetchGameRecord": {...}})
    """
    def _make(responses: Optional[Mapping[str, Any]] = None, fatal=None):
        transport = MockTransport({"oauth2Login": {"account_id": 1001}, **dict(responses or {})})
        runtime = Runtime.build(Settings(access_token="token"), service_config, registry, transport, fatal=fatal)
        return runtime, transport
    return _make


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch):
    """Keep logging quiet and on stdout only."""
    monkeypatch.delenv("MAJSOUL_API_LOG_DIR", raising=False)
    monkeypatch.setenv("MAJSOUL_API_LOG_LEVEL", "WARNING")
    yield
