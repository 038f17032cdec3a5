"""
Tests for instructor routes

This test file covers:
- Session creation with initial topics
- Request validation
- Session lookup and 404s
- Dashboard filtering and counts
- Ending a session
- CSV export
"""

import csv
import io

import redis
from fastapi.testclient import TestClient


def create_session(client: TestClient, **body) -> dict:
    payload = {"subject": "Physics", "topics": ["Forces", "Energy"], **body}
    response = client.post("/teacher/sessions", json=payload)
    assert response.status_code == 201
    return response.json()


def join_and_vote(client: TestClient, code: str, session_id: int, topic_id: int, vote: str) -> None:
    client.cookies.clear()
    assert client.post("/join", data={"code": code}).status_code == 200
    response = client.post(
        f"/s/{session_id}/vote", json={"topic_id": topic_id, "vote_type": vote}
    )
    assert response.status_code == 200


class TestCreateSession:
    """Test cases for session creation"""

    def test_create_session(self, client: TestClient, redis_client: redis.Redis) -> None:
        """Test creating a session returns a code and topics"""
        data = create_session(client, teacher_name="Dr. Okafor")

        session = data["session"]
        assert len(session["code"]) == 4
        assert session["code"].isdigit()
        assert session["subject"] == "Physics"
        assert session["teacher_name"] == "Dr. Okafor"
        assert session["active"] is True
        assert [t["name"] for t in data["topics"]] == ["Forces", "Energy"]

        # Check the code reservation in Redis
        assert redis_client.get(f"tbl:sessions:uniq:code:{session['code']}") == str(session["id"])

    def test_blank_subject_rejected(self, client: TestClient) -> None:
        """Test that a whitespace subject is rejected"""
        response = client.post("/teacher/sessions", json={"subject": "   "})
        assert response.status_code == 422

    def test_long_topic_rejected(self, client: TestClient) -> None:
        """Test that an over-long topic name is rejected"""
        response = client.post(
            "/teacher/sessions", json={"subject": "Physics", "topics": ["x" * 101]}
        )
        assert response.status_code == 422


class TestSessionLookup:
    """Test cases for session details"""

    def test_get_session(self, client: TestClient) -> None:
        """Test fetching session details"""
        session = create_session(client)["session"]

        response = client.get(f"/teacher/{session['id']}")

        assert response.status_code == 200
        assert response.json()["code"] == session["code"]

    def test_missing_session(self, client: TestClient) -> None:
        """Test that unknown sessions return 404"""
        assert client.get("/teacher/999").status_code == 404
        assert client.get("/teacher/999/dashboard").status_code == 404
        assert client.post("/teacher/999/end").status_code == 404
        assert client.get("/teacher/999/export.csv").status_code == 404


class TestDashboard:
    """Test cases for the dashboard"""

    def test_dashboard_hides_unvoted_topics(self, client: TestClient) -> None:
        """Test that the dashboard lists only topics with votes, most urgent first"""
        data = create_session(client, topics=["Forces", "Energy", "Waves"])
        session = data["session"]
        forces, energy, _ = [t["id"] for t in data["topics"]]

        join_and_vote(client, session["code"], session["id"], forces, "good")
        join_and_vote(client, session["code"], session["id"], energy, "bad")
        join_and_vote(client, session["code"], session["id"], energy, "understanding")

        response = client.get(f"/teacher/{session['id']}/dashboard")

        assert response.status_code == 200
        dashboard = response.json()
        assert [v["topic"]["name"] for v in dashboard["topics"]] == ["Energy", "Forces"]
        assert dashboard["topics"][0]["health"]["status"] == "critical"
        assert dashboard["topics"][1]["health"]["status"] == "healthy"
        assert dashboard["active_topics"] == 2
        assert dashboard["total_votes"] == 3


class TestEndSession:
    """Test cases for ending sessions"""

    def test_end_session(self, client: TestClient) -> None:
        """Test that an ended session can no longer be joined"""
        session = create_session(client)["session"]

        response = client.post(f"/teacher/{session['id']}/end")

        assert response.status_code == 200
        assert response.json()["active"] is False

        join = client.post("/join", data={"code": session["code"]})
        assert join.status_code == 410


class TestExport:
    """Test cases for CSV export"""

    def test_export_csv(self, client: TestClient) -> None:
        """Test downloading the vote report"""
        data = create_session(client)
        session = data["session"]
        forces = data["topics"][0]["id"]
        join_and_vote(client, session["code"], session["id"], forces, "bad")
        join_and_vote(client, session["code"], session["id"], forces, "good")

        response = client.get(f"/teacher/{session['id']}/export.csv")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"classpulse-{session['code']}.csv" in response.headers["content-disposition"]

        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert [row["topic"] for row in rows] == ["Forces", "Energy"]
        assert rows[0]["need_help"] == "1"
        assert rows[0]["clear"] == "1"
        assert rows[0]["status"] == "critical"
        assert rows[1]["total"] == "0"
