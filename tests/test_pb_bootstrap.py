import pytest

import pb_bootstrap
from core.exceptions import CloudError
from pb_bootstrap import PBAdmin, seed_document, spec_state_collection, upsert_collection

from fakes import FakeResponse, FakeSession

BASE = "http://pb.local:8090"
RECORDS = f"{BASE}/api/collections/protrack/records"


def logged_in():
    session = FakeSession()
    session.route("POST", f"{BASE}/api/admins/auth-with-password", FakeResponse(200, {"token": "admintok"}))
    admin = PBAdmin(BASE + "/", session=session)
    admin.admin_login("admin@example.com", "secret")
    return admin, session


class TestCollectionSchema:
    def test_payload_and_owner_fields(self):
        spec = spec_state_collection()
        assert spec["name"] == "protrack"
        assert {f["name"]: f["type"] for f in spec["schema"]} == {"payload": "json", "owner": "relation"}
        assert spec["viewRule"] == "owner = @request.auth.id"

    def test_custom_name(self):
        assert spec_state_collection("team_state")["name"] == "team_state"


class TestAdmin:
    def test_login_sets_bearer(self):
        _, session = logged_in()
        assert session.headers["Authorization"] == "Bearer admintok"

    def test_login_failure(self):
        with pytest.raises(CloudError, match="LOGIN"):
            PBAdmin(BASE, session=FakeSession()).admin_login("admin@example.com", "wrong")

    def test_network_failure(self):
        session = FakeSession()
        session.fail("GET", f"{BASE}/api/collections/protrack")
        with pytest.raises(CloudError):
            PBAdmin(BASE, session=session).get_collection("protrack")

    def test_creates_missing_collection(self):
        admin, session = logged_in()
        session.route("POST", f"{BASE}/api/collections", FakeResponse(200, {"id": "c1", "name": "protrack"}))
        assert upsert_collection(admin, spec_state_collection())["id"] == "c1"
        assert session.calls[-1][0] == "POST"

    def test_updates_existing_collection(self):
        admin, session = logged_in()
        session.route("GET", f"{BASE}/api/collections/protrack", FakeResponse(200, {"id": "c1", "name": "protrack"}))
        session.route("PATCH", f"{BASE}/api/collections/c1", FakeResponse(200, {"id": "c1", "name": "protrack"}))
        upsert_collection(admin, spec_state_collection())
        method, url, kwargs = session.calls[-1]
        assert (method, url) == ("PATCH", f"{BASE}/api/collections/c1")
        assert kwargs["json"]["id"] == "c1"


class TestSeed:
    def test_seeds_empty_aggregate(self):
        admin, session = logged_in()
        session.route("POST", RECORDS, FakeResponse(200, {"id": "protrackstate01"}))
        _, created = seed_document(admin, "protrack", "protrackstate01", owner="user1")
        assert created
        body = session.calls[-1][2]["json"]
        assert body["payload"] == {"tasks": [], "logs": [], "observations": [], "offDays": []}
        assert body["owner"] == "user1"

    def test_seed_without_owner_is_refused(self):
        admin, session = logged_in()
        with pytest.raises(CloudError, match="owner"):
            seed_document(admin, "protrack", "protrackstate01", None)
        assert session.calls[-1][1].endswith("auth-with-password")

    def test_existing_record_is_left_alone(self):
        admin, session = logged_in()
        session.route("GET", f"{RECORDS}/protrackstate01", FakeResponse(200, {"id": "protrackstate01"}))
        _, created = seed_document(admin, "protrack", "protrackstate01", "user1")
        assert not created
        assert session.calls[-1][0] == "GET"


class TestMain:
    def test_requires_credentials(self, monkeypatch):
        monkeypatch.delenv("PB_ADMIN_EMAIL", raising=False)
        monkeypatch.delenv("PB_ADMIN_PASSWORD", raising=False)
        with pytest.raises(SystemExit):
            pb_bootstrap.main(["--url", BASE])

    def test_server_errors_exit(self, monkeypatch, capsys):
        monkeypatch.setattr(pb_bootstrap.requests, "Session", FakeSession)
        with pytest.raises(SystemExit):
            pb_bootstrap.main(["--url", BASE, "--email", "a@b.c", "--password", "x"])
        assert "[LOGIN] 404" in capsys.readouterr().out

    def test_seed_requires_owner(self, monkeypatch, capsys):
        monkeypatch.setattr(pb_bootstrap.requests, "Session", FakeSession)
        with pytest.raises(SystemExit):
            pb_bootstrap.main(["--url", BASE, "--email", "a@b.c", "--password", "x", "--seed"])
        assert "--owner" in capsys.readouterr().out
