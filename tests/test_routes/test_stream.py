"""
Tests for the projector view and the SSE stream

This test file covers:
- Projector snapshot ordering and counts
- Stream endpoint 404s
- Event formatting
- Snapshot, celebration and archive events from the generator
- Dashboard celebrations needing an earlier critical phase
- Dashboard and projector celebrating the same recovery
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from classpulse.config import Settings
from classpulse.ledger import VoteLedger
from classpulse.models import EventType, VoteType
from classpulse.routes.stream import event_generator, format_event
from classpulse.services.sessions import create_session


def parse_event(raw: str) -> tuple[str, dict]:
    lines = raw.strip().split("\n")
    event_type = lines[0].removeprefix("event: ")
    data = json.loads(lines[1].removeprefix("data: "))
    return event_type, data


async def next_event(stream, event_type: str, timeout: float = 2.0) -> dict:
    """Read events until one of the given type arrives"""

    async def read() -> dict:
        while True:
            raw = await stream.__anext__()
            if raw.startswith(":"):
                continue
            kind, data = parse_event(raw)
            if kind == event_type:
                return data

    return await asyncio.wait_for(read(), timeout)


@pytest.fixture
def fast_settings(test_settings: Settings, monkeypatch) -> Settings:
    import classpulse.config

    monkeypatch.setattr(classpulse.config, "settings", test_settings)
    return test_settings


class TestProjector:
    """Test cases for the projector view"""

    def test_projector(self, client: TestClient) -> None:
        """Test that the projector lists every topic, most urgent first"""
        data = client.post(
            "/teacher/sessions",
            json={"subject": "History", "topics": ["Rome", "Greece", "Egypt"]},
        ).json()
        session_id = data["session"]["id"]
        rome, greece, _ = [t["id"] for t in data["topics"]]

        for topic_id, vote in [(rome, "good"), (greece, "bad")]:
            client.cookies.clear()
            client.post(f"/s/{session_id}/vote", json={"topic_id": topic_id, "vote_type": vote})

        response = client.get(f"/projector/{session_id}")

        assert response.status_code == 200
        body = response.json()
        assert [v["topic"]["name"] for v in body["topics"]] == ["Greece", "Rome", "Egypt"]
        assert body["total_votes"] == 2
        assert body["critical"] == 1
        assert body["healthy"] == 1

    def test_projector_missing_session(self, client: TestClient) -> None:
        """Test that an unknown session returns 404"""
        assert client.get("/projector/404").status_code == 404


class TestStreamEndpoint:
    """Test cases for stream endpoint errors"""

    def test_unknown_session(self, client: TestClient) -> None:
        """Test that streaming an unknown session returns 404"""
        assert client.get("/stream/404").status_code == 404

    def test_unknown_view(self, client: TestClient) -> None:
        """Test that an unknown view returns 404"""
        session_id = client.post("/teacher/sessions", json={"subject": "Art"}).json()[
            "session"
        ]["id"]

        response = client.get(f"/stream/{session_id}?view=hallway")

        assert response.status_code == 404


class TestEventFormat:
    """Test cases for SSE formatting"""

    def test_format_event(self) -> None:
        """Test the event and data lines"""
        raw = format_event(EventType.ARCHIVED, {"topic_id": 3})

        assert raw == 'event: archived\ndata: {"topic_id": 3}\n\n'


class TestEventGenerator:
    """Test cases for streamed events"""

    @pytest.mark.asyncio
    async def test_connect_then_snapshot(self, ledger: VoteLedger, fast_settings: Settings) -> None:
        """Test that the stream opens with a comment and then a snapshot"""
        session, topics = await create_session(ledger.store, "Math", initial_topics=["Limits"])
        stream = event_generator(session.id, fast_settings.get_view("projector"), ledger)

        try:
            assert await stream.__anext__() == ": connected\n\n"
            snapshot = await next_event(stream, "snapshot")
        finally:
            await stream.aclose()

        assert snapshot["session_id"] == session.id
        assert [v["topic"]["id"] for v in snapshot["topics"]] == [topics[0].id]
        assert snapshot["topics"][0]["health"]["status"] == "neutral"
        assert snapshot["archived"] == []

    @pytest.mark.asyncio
    async def test_celebration_and_archive(
        self, ledger: VoteLedger, fast_settings: Settings
    ) -> None:
        """Test that a topic turning healthy is celebrated and then archived"""
        session, topics = await create_session(ledger.store, "Math", initial_topics=["Limits"])
        topic_id = topics[0].id
        stream = event_generator(session.id, fast_settings.get_view("projector"), ledger)

        try:
            await next_event(stream, "snapshot")
            await ledger.insert_vote(topic_id, "tok-a", VoteType.GOOD)
            await ledger.adjust_counter(topic_id, VoteType.GOOD, 1)

            celebration = await next_event(stream, "celebration")
            archived = await next_event(stream, "archived")
        finally:
            await stream.aclose()

        assert celebration == {"topic_id": topic_id, "topic_name": "Limits", "good_pct": 100}
        assert archived == {"topic_id": topic_id}

    @pytest.mark.asyncio
    async def test_dashboard_requires_critical(
        self, ledger: VoteLedger, fast_settings: Settings
    ) -> None:
        """Test the dashboard celebrates only a recovery from critical"""
        session, topics = await create_session(ledger.store, "Math", initial_topics=["Limits"])
        topic_id = topics[0].id
        stream = event_generator(session.id, fast_settings.get_view("dashboard"), ledger)

        async def set_counts(bad: int, understanding: int, good: int) -> None:
            await ledger.store.update(
                "topics",
                {"votes_bad": bad, "votes_understanding": understanding, "votes_good": good},
                {"id": topic_id},
            )

        async def snapshot_with(status: str) -> dict:
            while True:
                data = await next_event(stream, "snapshot")
                if data["topics"] and data["topics"][0]["health"]["status"] == status:
                    return data

        try:
            await next_event(stream, "snapshot")
            await set_counts(3, 0, 1)
            await snapshot_with("critical")
            await set_counts(1, 2, 1)
            await snapshot_with("caution")
            await set_counts(1, 1, 3)

            celebration = await next_event(stream, "celebration")
        finally:
            await stream.aclose()

        assert celebration["topic_id"] == topic_id
        assert celebration["good_pct"] == 60

    @pytest.mark.asyncio
    async def test_dashboard_and_projector_both_celebrate(
        self, ledger: VoteLedger, fast_settings: Settings
    ) -> None:
        """Test that one recovery is announced on the dashboard and the projector alike"""
        session, topics = await create_session(ledger.store, "Math", initial_topics=["Limits"])
        topic_id = topics[0].id
        dashboard = event_generator(session.id, fast_settings.get_view("dashboard"), ledger)
        projector = event_generator(session.id, fast_settings.get_view("projector"), ledger)

        async def set_counts(bad: int, understanding: int, good: int) -> None:
            await ledger.store.update(
                "topics",
                {"votes_bad": bad, "votes_understanding": understanding, "votes_good": good},
                {"id": topic_id},
            )

        async def snapshot_with(stream, status: str) -> None:
            while True:
                data = await next_event(stream, "snapshot")
                if data["topics"] and data["topics"][0]["health"]["status"] == status:
                    return

        try:
            for stream in (dashboard, projector):
                await next_event(stream, "snapshot")
            for counts, status in (((3, 0, 1), "critical"), ((1, 2, 1), "caution")):
                await set_counts(*counts)
                for stream in (dashboard, projector):
                    await snapshot_with(stream, status)
            await set_counts(0, 1, 3)

            on_dashboard = await next_event(dashboard, "celebration")
            on_projector = await next_event(projector, "celebration")
        finally:
            await dashboard.aclose()
            await projector.aclose()

        assert on_dashboard == on_projector
        assert on_dashboard == {"topic_id": topic_id, "topic_name": "Limits", "good_pct": 75}
