import copy
import threading

import pytest
from fastapi.testclient import TestClient

import actions
from auth import issue_session_token
from config import get_settings
from database import Base, build_engine, build_sessionmaker
from insights import InsightGenerator
from main import create_app
from schemas import InsightReport


@pytest.fixture()
def settings():
    settings = copy.copy(get_settings())
    settings.environment = "test"
    settings.openai_api_key = None
    return settings


def make_app(settings, *, create_tables=True, insight_generator=None):
    engine = build_engine("sqlite:///:memory:")
    if create_tables:
        Base.metadata.create_all(engine)
    return create_app(
        settings=settings,
        session_factory=build_sessionmaker(engine),
        insight_generator=insight_generator or InsightGenerator(settings),
    )


@pytest.fixture()
def client(settings):
    with TestClient(make_app(settings)) as test_client:
        yield test_client


def signup(client, email="ada@example.com", password="hunter22"):
    resp = client.post(
        "/api/auth/signup",
        json={"name": "Ada", "email": email, "password": password},
    )
    assert resp.status_code == 201
    token = client.get("/api/csrf").json()["csrf_token"]
    return {"X-CSRF-Token": token}


def test_health(client) -> None:
    assert client.get("/api/health").json()["status"] == "ok"


def test_anonymous_requests_are_rejected(client) -> None:
    assert client.get("/api/auth/me").json() == {"user": None}
    assert client.get("/api/expenses").status_code == 401
    assert client.get("/api/summary").status_code == 401


def test_signup_login_logout_cycle(client) -> None:
    signup(client)
    me = client.get("/api/auth/me").json()["user"]
    assert me["email"] == "ada@example.com"
    assert "password_hash" not in me

    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").json() == {"user": None}

    bad = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "wrong"}
    )
    assert bad.status_code == 401
    assert bad.json()["success"] is False

    good = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "hunter22"}
    )
    assert good.status_code == 200
    assert client.get("/api/auth/me").json()["user"]["id"] == me["id"]


def test_duplicate_signup_is_a_conflict(client) -> None:
    signup(client)
    resp = client.post(
        "/api/auth/signup",
        json={"name": "Other", "email": "ada@example.com", "password": "secret12"},
    )
    assert resp.status_code == 409
    assert resp.json()["success"] is False


def test_forged_session_cookie_is_anonymous(client) -> None:
    client.cookies.set("userId", "not-a-signed-id")
    assert client.get("/api/auth/me").json() == {"user": None}


def test_mutations_require_csrf_header(client) -> None:
    signup(client)
    resp = client.post(
        "/api/expenses",
        json={"amount": 5, "category": "Food", "date": "2024-03-05"},
    )
    assert resp.status_code == 400
    assert client.get("/api/expenses").json() == []


def test_empty_account_gets_start_tracking_insights(client) -> None:
    signup(client)

    summary = client.get("/api/summary").json()
    assert summary["total_spent"] == 0
    assert summary["total_budget"] == 0
    assert summary["category_summary"] == {}

    insights = client.get("/api/insights").json()
    assert insights["used_fallback"] is True
    assert [i["title"] for i in insights["insights"]] == ["No Expenses Yet"]
    assert [r["title"] for r in insights["recommendations"]] == ["Start Tracking"]


def test_over_budget_summary_and_savings(client) -> None:
    headers = signup(client)
    created = client.post(
        "/api/expenses",
        json={"amount": 120, "category": "food", "date": "2024-03-05"},
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["category"] == "Food"
    client.post(
        "/api/budgets",
        json={"category": "Food", "amount": 100, "period": "monthly"},
        headers=headers,
    )

    summary = client.get("/api/summary").json()
    assert summary["total_spent"] == 120
    assert summary["total_budget"] == 100
    assert summary["overview"]["percent_used"] == pytest.approx(120.0)
    assert summary["budget_usage"][0]["percentage"] == pytest.approx(120.0)

    savings = client.get("/api/savings").json()
    assert savings["used_fallback"] is True
    food = savings["opportunities"][0]
    assert food["category"] == "Food"
    assert food["potential_savings"] == pytest.approx(20.0)

    report = client.get("/api/reports/categories").json()
    assert report == {"Food": {"budget": 100.0, "spent": 120.0}}


def test_budget_upsert_through_api(client) -> None:
    headers = signup(client)
    client.post(
        "/api/budgets",
        json={"category": "Rent", "amount": 800, "period": "monthly"},
        headers=headers,
    )
    client.post(
        "/api/budgets",
        json={"category": "Rent", "amount": 900, "period": "yearly"},
        headers=headers,
    )

    budgets = client.get("/api/budgets").json()
    assert len(budgets) == 1
    assert budgets[0]["amount"] == 900
    assert budgets[0]["period"] == "yearly"

    deleted = client.delete(f"/api/budgets/{budgets[0]['id']}", headers=headers)
    assert deleted.json()["success"] is True
    assert client.get("/api/budgets").json() == []


def test_deleting_missing_expense_reports_failure(client) -> None:
    headers = signup(client)
    resp = client.delete("/api/expenses/does-not-exist", headers=headers)

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Failed to delete expense"}


def test_users_cannot_delete_each_others_expenses(client) -> None:
    headers = signup(client)
    expense_id = client.post(
        "/api/expenses",
        json={"amount": 9, "category": "Travel", "date": "2024-03-07"},
        headers=headers,
    ).json()["id"]
    client.post("/api/auth/logout")

    other = signup(client, email="bob@example.com")
    resp = client.delete(f"/api/expenses/{expense_id}", headers=other)
    assert resp.status_code == 404
    assert client.get("/api/expenses").json() == []


def test_invalid_expense_payload_is_rejected(client) -> None:
    headers = signup(client)
    resp = client.post(
        "/api/expenses",
        json={"amount": -1, "category": "Food", "date": "2024-03-05"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_profile_update(client) -> None:
    headers = signup(client)
    resp = client.patch("/api/profile", json={"bio": "Saving up"}, headers=headers)

    assert resp.status_code == 200
    profile = client.get("/api/profile").json()["user"]
    assert profile["bio"] == "Saving up"
    assert profile["name"] == "Ada"


def test_category_list(client, settings) -> None:
    body = client.get("/api/categories").json()
    assert body["categories"] == list(settings.categories)
    assert body["allow_custom"] is True


def test_restricted_category_list_rejects_unknown_names(settings) -> None:
    settings.allow_custom_categories = False
    with TestClient(make_app(settings)) as client:
        headers = signup(client)
        resp = client.post(
            "/api/budgets",
            json={"category": "Rent", "amount": 800, "period": "monthly"},
            headers=headers,
        )

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Unknown category 'Rent'"}


def test_unreadable_user_store_reads_as_logged_out(settings) -> None:
    with TestClient(make_app(settings, create_tables=False)) as client:
        client.cookies.set("userId", issue_session_token("0" * 32, settings))

        me = client.get("/api/auth/me")
        expenses = client.get("/api/expenses")

    assert me.status_code == 200
    assert me.json() == {"user": None}
    assert expenses.status_code == 401


class ThreadRecordingGenerator:
    def __init__(self):
        self.thread_id = None

    async def generate(self, snapshot):
        self.thread_id = threading.get_ident()
        return InsightReport(
            insights=[{"title": "Noted", "description": "Recorded."}]
        )


def test_insight_snapshot_is_loaded_off_the_event_loop(settings, monkeypatch) -> None:
    generator = ThreadRecordingGenerator()
    loaded_on = []
    real_snapshot = actions.financial_snapshot

    def recording_snapshot(db, user_id):
        loaded_on.append(threading.get_ident())
        return real_snapshot(db, user_id)

    monkeypatch.setattr(actions, "financial_snapshot", recording_snapshot)

    with TestClient(make_app(settings, insight_generator=generator)) as client:
        signup(client)
        body = client.get("/api/insights").json()

    assert body["insights"][0]["title"] == "Noted"
    assert loaded_on and generator.thread_id is not None
    assert loaded_on[0] != generator.thread_id
