from contextlib import nullcontext

import pytest
from fastapi.testclient import TestClient

from assessment.events import RecordingPublisher
from auth.security import create_access_token
from database.database import get_db
from exam_api import app
from routers.deps import get_attempt_lock, get_event_publisher


def auth(user_id, role):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id), 'role': role})}"}


TEACHER = auth(1, "teacher")
STUDENT = auth(5, "student")


@pytest.fixture
def client(session_factory):
    publisher = RecordingPublisher()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_attempt_lock] = lambda: (lambda attempt_id: nullcontext())
    client = TestClient(app)
    client.publisher = publisher
    yield client
    app.dependency_overrides.clear()


def create_questions(client, n=10, correct="B"):
    for i in range(n):
        resp = client.post("/questions", headers=TEACHER, json={
            "bank_id": 1,
            "prompt": f"Question {i}",
            "answer_key": {"type": "single_choice", "correct_option": correct},
            "content": {"options": ["A", "B", "C"]},
        })
        assert resp.status_code == 201, resp.text


def published_exam(client):
    create_questions(client)
    resp = client.post("/blueprints/banks/1/assemble", headers=TEACHER, json={"count": 10, "title": "Final"})
    assert resp.status_code == 201, resp.text
    blueprint_id = resp.json()[0]["id"]
    resp = client.post(f"/blueprints/{blueprint_id}/publish", headers=TEACHER)
    assert resp.status_code == 200, resp.text
    return blueprint_id


def test_full_attempt_flow(client):
    blueprint_id = published_exam(client)

    resp = client.post(f"/blueprints/{blueprint_id}/attempts", headers=STUDENT)
    assert resp.status_code == 201, resp.text
    attempt_id = resp.json()["id"]

    view = client.get(f"/attempts/{attempt_id}", headers=STUDENT).json()
    assert len(view["questions"]) == 10
    assert "answer_key" not in str(view)

    for q in view["questions"][:4]:
        resp = client.put(f"/attempts/{attempt_id}/answers/{q['position']}", headers=STUDENT, json={"payload": {"selected": "B"}})
        assert resp.status_code == 200, resp.text

    resp = client.post(f"/attempts/{attempt_id}/submit", headers=STUDENT)
    assert resp.status_code == 200, resp.text
    result = resp.json()
    assert result["state"] == "submitted"
    assert result["score"] == pytest.approx(40.0)
    assert result["passed"] is False
    assert [e.attempt_id for e in client.publisher.events] == [attempt_id]

    again = client.post(f"/attempts/{attempt_id}/submit", headers=STUDENT)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "attempt_already_finalized"

    late = client.put(f"/attempts/{attempt_id}/answers/1", headers=STUDENT, json={"payload": {"selected": "B"}})
    assert late.status_code == 409

    fetched = client.get(f"/attempts/{attempt_id}/result", headers=STUDENT).json()
    assert fetched["score"] == result["score"]
    assert len(fetched["breakdown"]) == 10

    score = client.get(f"/blueprints/{blueprint_id}/score", headers=STUDENT).json()
    assert score["score"] == pytest.approx(40.0)


def test_second_open_attempt_conflicts(client):
    blueprint_id = published_exam(client)
    first = client.post(f"/blueprints/{blueprint_id}/attempts", headers=STUDENT).json()
    resp = client.post(f"/blueprints/{blueprint_id}/attempts", headers=STUDENT)
    assert resp.status_code == 409
    assert resp.json()["detail"] == {
        "code": "attempt_in_progress",
        "message": f"Attempt {first['id']} is already in progress",
        "attempt_id": first["id"],
    }


def test_draft_exam_is_not_available(client):
    create_questions(client)
    draft = client.post("/blueprints/banks/1/assemble", headers=TEACHER, json={"count": 10}).json()[0]
    resp = client.post(f"/blueprints/{draft['id']}/attempts", headers=STUDENT)
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "not_available"


def test_assembly_errors_are_unprocessable(client):
    create_questions(client, n=3)
    resp = client.post("/blueprints/banks/1/assemble", headers=TEACHER, json={"count": 5})
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "insufficient_questions"

    resp = client.post("/blueprints/banks/1/preview", headers=TEACHER, json={
        "count": 2, "difficulty_percentages": {"easy": 50, "medium": 30},
    })
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "invalid_percentage_distribution"


def test_unknown_attempt_is_not_found(client):
    resp = client.get("/attempts/999", headers=STUDENT)
    assert resp.status_code == 404


def test_roles_are_enforced(client):
    body = {"bank_id": 1, "prompt": "Q", "answer_key": {"type": "single_choice", "correct_option": "A"}}
    assert client.post("/questions", headers=STUDENT, json=body).status_code == 403
    create_questions(client, n=1)
    assert client.get("/questions/bank/1", headers=STUDENT).status_code == 403
    assert client.get("/questions/bank/1", headers=auth(1, "teacher")).status_code == 200


def test_invalid_token_is_rejected(client):
    resp = client.get("/attempts/1", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_malformed_answer_key_is_rejected(client):
    resp = client.post("/questions", headers=TEACHER, json={
        "bank_id": 1, "prompt": "Broken", "answer_key": {"type": "hotspot", "regions": []},
    })
    assert resp.status_code == 422


def test_question_update_and_deactivate(client):
    create_questions(client, n=1)
    question = client.get("/questions/bank/1", headers=TEACHER).json()[0]

    resp = client.patch(f"/questions/{question['id']}", headers=TEACHER, json={"weight": 2.5})
    assert resp.json()["weight"] == 2.5

    resp = client.delete(f"/questions/{question['id']}", headers=TEACHER)
    assert resp.json()["active"] is False
    assert client.get("/questions/bank/1", headers=TEACHER).json() == []
    assert client.get("/questions/999", headers=TEACHER).status_code == 404
