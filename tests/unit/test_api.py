"""
API tests -- FastAPI endpoints via TestClient (no live server needed).
"""
import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routers.sessions import get_session_backend
from src.session.backend_client import BackendError, MockReportingBackend

PARAMS = {"budget_year": "2024", "fund_codes": ["100"], "departments": ["001"]}


class FlakyBackend(MockReportingBackend):
    """Fails the first chat round trip."""

    def __init__(self):
        super().__init__()
        self.failed = False

    async def chat(self, request):
        if not self.failed:
            self.failed = True
            raise BackendError("connection refused")
        return await super().chat(request)


@pytest.fixture()
def backend():
    return MockReportingBackend()


@pytest.fixture()
def client(backend):
    app.dependency_overrides[get_session_backend] = lambda: backend
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create(client, user="alice"):
    resp = client.post("/sessions", json={"user_name": user})
    assert resp.status_code == 201
    return resp.json()


def _submitted(client):
    snap = _create(client)
    resp = client.post(f"/sessions/{snap['handle']}/parameters", json=PARAMS)
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── Filters ─────────────────────────────────────────────


def test_filter_catalog(client):
    resp = client.get("/filters/catalog")
    assert resp.status_code == 200
    data = resp.json()
    assert data["table_alias"] == "a"
    assert [d["name"] for d in data["dimensions"]] == ["node", "parent", "dept", "fund", "account"]
    budget = next(m for m in data["measures"] if m["name"] == "budget_amt")
    assert budget["column"] == "total_budget_amt"
    assert budget["sides"] == ["exp", "rev"]


def test_compile_preview(client):
    payload = {
        "dimensionFilters": {
            "dept": {"type": "single", "values": ["001"]},
            "fund": {"type": "bogus"},
        },
        "measureFilters": {"rev_amt": {"operator": "=", "value": 10}},
    }
    resp = client.post("/filters/compile", json=payload)
    assert resp.status_code == 200
    data = resp.json()
    assert data["fragments"]["dimension_filter_exp"] == " and a.deptid = '001'"
    assert data["fragments"]["dimension_filter_rev"] == ""
    assert data["fragments"]["measures_filter_rev"] == "where total_rev_amt = 10"
    assert data["fragments"]["measures_filter_exp"] == ""

    skipped = {(s["side"], s["field"]): s for s in data["skipped"]}
    assert skipped[("rev", "fund")]["malformed"] is True
    assert skipped[("rev", "dept")]["reason"] == "not applicable to this side"
    assert skipped[("exp", "rev_amt")]["reason"] == "not applicable to this side"
    assert data["summary"].startswith("Selected Dimension Filters:")


# ── Session lifecycle ───────────────────────────────────


def test_create_session(client):
    snap = _create(client)
    assert snap["state"] == "awaiting_parameters"
    assert snap["chat_enabled"] is False
    assert snap["session"]["user_name"] == "alice"
    assert snap["session"]["api_session_id"]
    assert snap["storage"]["user"] == "alice"
    assert snap["messages"][0]["text"].startswith("Hi alice!")


def test_create_session_validates_name(client):
    assert client.post("/sessions", json={"user_name": ""}).status_code == 422


def test_unknown_session_is_404(client):
    assert client.get("/sessions/nope").status_code == 404
    assert client.post("/sessions/nope/parameters", json=PARAMS).status_code == 404


def test_init_failure_and_retry():
    flaky = FlakyBackend()
    app.dependency_overrides[get_session_backend] = lambda: flaky
    try:
        with TestClient(app) as client:
            snap = _create(client)
            assert snap["state"] == "error"
            assert snap["init_error"]

            resp = client.post(f"/sessions/{snap['handle']}/retry")
            assert resp.status_code == 200
            assert resp.json()["state"] == "awaiting_parameters"
    finally:
        app.dependency_overrides.clear()


def test_retry_without_failure_is_conflict(client):
    snap = _create(client)
    assert client.post(f"/sessions/{snap['handle']}/retry").status_code == 409


def test_restart_keeps_handle(client):
    snap = _create(client)
    resp = client.post(f"/sessions/{snap['handle']}/restart", json={"user_name": "bob"})
    assert resp.status_code == 200
    new = resp.json()
    assert new["handle"] == snap["handle"]
    assert new["session"]["session_id"] != snap["session"]["session_id"]
    assert new["session"]["user_name"] == "bob"


def test_delete_session(client):
    snap = _create(client)
    assert client.delete(f"/sessions/{snap['handle']}").status_code == 200
    assert client.get(f"/sessions/{snap['handle']}").status_code == 404


# ── Parameters, filters, chat ───────────────────────────


def test_submit_parameters(client, backend):
    snap = _submitted(client)
    assert snap["state"] == "parameters_submitted"
    assert snap["chat_enabled"] is True
    assert snap["parameters"]["budget_year"] == "2024"
    last = snap["messages"][-1]
    assert last["type"] == "report"
    assert last["report_url"].endswith("/budget_report.csv")
    assert snap["last_report"]["has_report"] is True


def test_submit_parameters_twice_is_conflict(client):
    snap = _submitted(client)
    resp = client.post(f"/sessions/{snap['handle']}/parameters", json=PARAMS)
    assert resp.status_code == 409


def test_submit_parameters_validates(client):
    snap = _create(client)
    resp = client.post(f"/sessions/{snap['handle']}/parameters", json={"budget_year": ""})
    assert resp.status_code == 422


def test_update_filters_regenerates(client, backend):
    snap = _submitted(client)
    payload = {
        "dimensionFilters": {"fund": {"type": "multiple", "values": ["100", "200"]}},
        "measureFilters": {"expenses": {"operator": "<", "value": 50}},
    }
    resp = client.put(f"/sessions/{snap['handle']}/filters", json=payload)
    assert resp.status_code == 200
    data = resp.json()
    assert data["fragments"]["dimension_filter_rev"] == " and a.fund_code in ('100','200')"
    assert data["fragments"]["measures_filter_exp"] == "where total_expenses < 50"

    request = [req for name, req in backend.calls if name == "generate_report"][-1]
    assert request.dimension_filter_exp == " and a.fund_code in ('100','200')"
    assert request.measures_filter_rev is None


def test_clear_filters(client):
    snap = _submitted(client)
    handle = snap["handle"]
    client.put(f"/sessions/{handle}/filters", json={"dimensionFilters": {"dept": {"type": "single", "values": ["1"]}}})
    resp = client.delete(f"/sessions/{handle}/filters")
    assert resp.status_code == 200
    assert resp.json()["filters"] == {"dimensionFilters": {}, "measureFilters": {}}


def test_messages_need_parameters(client):
    snap = _create(client)
    resp = client.post(f"/sessions/{snap['handle']}/messages", json={"text": "hi"})
    assert resp.status_code == 409


def test_send_message(client):
    snap = _submitted(client)
    resp = client.post(f"/sessions/{snap['handle']}/messages", json={"text": "why so high?"})
    assert resp.status_code == 200
    assert resp.json()["messages"][-1]["text"] == "Noted: why so high?"


def test_clear_chat(client):
    snap = _submitted(client)
    resp = client.post(f"/sessions/{snap['handle']}/clear")
    assert resp.status_code == 200
    data = resp.json()
    assert data["messages"] == []
    assert data["chat_cleared"] is True
    assert data["state"] == "awaiting_parameters"
    assert data["session"]["api_session_id"] == snap["session"]["api_session_id"]


# ── Option lookups ──────────────────────────────────────


def test_option_lookups(client):
    handle = _create(client)["handle"]
    years = client.get(f"/sessions/{handle}/options/budget-years").json()["options"]
    assert "2024" in years

    funds = client.get(f"/sessions/{handle}/options/fund-codes", params={"year": "2024"}).json()
    assert funds["options"][0] == ["100", "General Fund"]

    depts = client.get(
        f"/sessions/{handle}/options/departments",
        params={"year": "2024", "fund_codes": ["100", "200"]},
    ).json()
    assert ["0011019", "Finance"] in depts["options"]

    dims = client.get(f"/sessions/{handle}/options/dimensions").json()
    assert "deptid" in dims["options"]["dimensions"]

    measures = client.get(f"/sessions/{handle}/options/measures").json()
    assert "total_budget_amt" in measures["options"]["measures"]


def test_departments_without_fund_codes(client):
    handle = _create(client)["handle"]
    resp = client.get(f"/sessions/{handle}/options/departments", params={"year": "2024"})
    assert resp.json()["options"] == []


def test_fund_codes_need_year(client):
    handle = _create(client)["handle"]
    assert client.get(f"/sessions/{handle}/options/fund-codes").status_code == 422
