"""Tests for the httpx events gateway."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from eventsync.events.errors import RemoteRequestError, TransientRemoteError
from eventsync.events.gateway import HttpEventGateway, StaticTokenProvider, event_to_wire
from eventsync.events.models import Event, EventType, RemoteId

pytestmark = pytest.mark.unit

BASE_URL = "http://api.test"


def _gateway(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    token: str | None = "secret-token",
) -> tuple[HttpEventGateway, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def _recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_recording))
    gateway = HttpEventGateway(
        base_url=f"{BASE_URL}/",
        token_provider=StaticTokenProvider(token),
        http_client=client,
    )
    return gateway, requests


def _json(status: int, payload: Any) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, json=payload)


class TestReads:
    async def test_list_events_parses_rows(self):
        payload = {
            "success": True,
            "data": [
                {
                    "Id": 7,
                    "title": "Team Cup",
                    "description": None,
                    "activity": "steps",
                    "goal": "10000",
                    "start_date": "2025-06-01 00:00:00",
                    "end_date": "2025-06-30T23:59:59.000Z",
                    "location": "Oslo",
                    "event_type": "team",
                    "team_count": 2,
                    "members_per_team": 5,
                },
                {"title": "missing id"},
            ],
        }
        gateway, requests = _gateway(_json(200, payload))

        records = await gateway.list_events()

        assert len(records) == 1
        record = records[0]
        assert record.external_id == "7"
        assert record.event_type == EventType.TEAM
        assert record.goal == 10000
        assert record.description == ""
        assert record.start_raw == "2025-06-01 00:00:00"
        assert record.current_value is None
        assert requests[0].url == f"{BASE_URL}/events"
        assert requests[0].headers["Authorization"] == "Bearer secret-token"

    async def test_list_events_zeroes_non_finite_sizing(self):
        body = (
            b'{"success": true, "data": ['
            b'{"id": 1, "title": "Cup", "event_type": "team", "team_count": "NaN",'
            b' "members_per_team": 1e999, "goal": "inf"},'
            b'{"id": 2, "title": "Walk", "total_participants": "1e999"}]}'
        )
        gateway, _ = _gateway(lambda request: httpx.Response(200, content=body))

        records = await gateway.list_events()

        assert [record.external_id for record in records] == ["1", "2"]
        assert records[0].team_count == 0
        assert records[0].members_per_team == 0
        assert records[0].goal == 0
        assert records[1].total_participants == 0

    async def test_list_events_requires_data_array(self):
        gateway, _ = _gateway(_json(200, {"success": True}))

        with pytest.raises(RemoteRequestError):
            await gateway.list_events()

    async def test_get_event(self):
        gateway, requests = _gateway(
            _json(200, {"success": True, "data": {"id": "12", "title": "Walk", "progress": 30}})
        )

        record = await gateway.get_event("12")

        assert record.external_id == "12"
        assert record.current_value == 30
        assert requests[0].url.path == "/events/12"

    async def test_list_participants(self):
        payload = {
            "success": True,
            "isTeamEvent": False,
            "participants": [{"user_id": 4, "name": "Ada", "individual_progress": 90}],
        }
        gateway, requests = _gateway(_json(200, payload))

        roster = await gateway.list_participants("3")

        assert roster.participants[0].user_id == "4"
        assert requests[0].url.path == "/events/3/participants"

    async def test_missing_token_sends_no_authorization(self, caplog):
        gateway, requests = _gateway(_json(200, {"success": True, "data": []}), token="  ")

        await gateway.list_events()

        assert "Authorization" not in requests[0].headers
        assert "No bearer token" in caplog.text


class TestWrites:
    async def test_create_posts_wire_body(self):
        gateway, requests = _gateway(_json(201, {"success": True, "eventId": 55}))

        body = {"title": "Walk", "start_date": "2025-06-01 00:00:00"}
        event_id = await gateway.create_event(body)

        assert event_id == "55"
        sent = json.loads(requests[0].content)
        assert sent["auto_join"] is True
        assert sent["title"] == "Walk"
        assert requests[0].method == "POST"

    async def test_create_accepts_data_envelope(self):
        gateway, _ = _gateway(_json(200, {"success": True, "data": {"Id": 8}}))

        assert await gateway.create_event({"title": "Walk"}) == "8"

    async def test_create_without_id_is_rejected(self):
        gateway, _ = _gateway(_json(200, {"success": True, "message": "created"}))

        with pytest.raises(RemoteRequestError):
            await gateway.create_event({"title": "Walk"})

    async def test_update_progress_body(self):
        gateway, requests = _gateway(_json(200, {"success": True}))

        await gateway.update_progress("9", 42)

        assert requests[0].method == "PUT"
        assert requests[0].url.path == "/events/9/progress"
        assert json.loads(requests[0].content) == {"progress": 42}

    async def test_update_event(self):
        gateway, requests = _gateway(_json(200, {"success": True, "message": "Event updated"}))

        await gateway.update_event("9", {"title": "New"})

        assert requests[0].method == "PUT"
        assert json.loads(requests[0].content) == {"title": "New"}

    async def test_delete_requires_confirmation(self):
        gateway, _ = _gateway(_json(200, {"message": "maybe"}))

        with pytest.raises(RemoteRequestError):
            await gateway.delete_event("9")

    async def test_delete_confirmed(self):
        gateway, requests = _gateway(_json(200, {"success": True}))

        await gateway.delete_event("9")

        assert requests[0].method == "DELETE"


class TestFailures:
    @pytest.mark.parametrize("status", [500, 503, 401, 403, 408, 429])
    async def test_transient_statuses(self, status):
        gateway, _ = _gateway(_json(status, {"success": False, "message": "nope"}))

        with pytest.raises(TransientRemoteError) as exc_info:
            await gateway.list_events()

        assert exc_info.value.status_code == status
        assert exc_info.value.operation == "list_events"

    @pytest.mark.parametrize("status", [400, 404, 409])
    async def test_request_errors(self, status):
        gateway, _ = _gateway(_json(status, {"success": False, "message": "Event not found"}))

        with pytest.raises(RemoteRequestError) as exc_info:
            await gateway.delete_event("9")

        assert exc_info.value.status_code == status
        assert "Event not found" in str(exc_info.value)

    async def test_transport_error_is_transient(self):
        def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway, _ = _gateway(_handler)

        with pytest.raises(TransientRemoteError) as exc_info:
            await gateway.list_events()

        assert exc_info.value.status_code is None

    async def test_invalid_json(self):
        gateway, _ = _gateway(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(RemoteRequestError):
            await gateway.list_events()

    async def test_success_false_envelope(self):
        gateway, _ = _gateway(_json(200, {"success": False, "message": "Only the creator"}))

        with pytest.raises(RemoteRequestError, match="Only the creator"):
            await gateway.update_event("1", {})


class TestLifecycle:
    def test_blank_base_url_rejected(self):
        with pytest.raises(ValueError):
            HttpEventGateway(base_url="  ", token_provider=StaticTokenProvider(None))

    async def test_shutdown_keeps_injected_client_open(self):
        gateway, _ = _gateway(_json(200, {}))
        await gateway.shutdown()
        assert not gateway._http_client.is_closed

    async def test_shutdown_closes_owned_client(self):
        gateway = HttpEventGateway(base_url=BASE_URL, token_provider=StaticTokenProvider(None))
        await gateway.shutdown()
        assert gateway._http_client.is_closed


def test_event_to_wire_uses_server_date_form():
    event = Event(
        id=RemoteId(value="1"),
        title="Cup",
        start_instant=datetime(2025, 6, 1, 8, tzinfo=UTC),
        end_instant=datetime(2025, 6, 30, tzinfo=UTC),
        event_type=EventType.TEAM,
        team_count=2,
        members_per_team=3,
    )

    body = event_to_wire(event)

    assert body["start_date"] == "2025-06-01 08:00:00"
    assert body["end_date"] == "2025-06-30 00:00:00"
    assert body["event_type"] == "team"
    assert body["team_count"] == 2
    assert body["total_participants"] == 0
    assert body["activity"] == "steps"
