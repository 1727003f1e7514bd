import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


@pytest.fixture
def settings(tmp_path):
    return Settings.from_env(
        db_path=str(tmp_path / "api.db"),
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        disable_rate_limit=True,
        max_pastes=50,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


def create(client, **fields):
    fields.setdefault("content", "hello world")
    res = client.post("/paste", json=fields)
    assert res.status_code == 201, res.text
    return res.json()


def test_index_reports_options_and_stats(client):
    create(client, is_public=True)
    body = client.get("/").json()
    assert body["total_pastes"] == 1
    assert body["public_count"] == 1
    assert body["faded"] == 0
    assert "python" in body["languages"]
    assert body["token_lengths"] == [4, 6, 8, 12]


def test_create_and_view_json(client):
    created = create(client, content="print('hi')\nmore", language="PYTHON", token_length=8)
    assert len(created["token"]) == 8
    assert created["path"] == f"/p/{created['token']}"
    assert created["language"] == "python"

    res = client.get(created["path"])
    assert res.status_code == 200
    body = res.json()
    assert body["content"] == "print('hi')\nmore"
    assert body["title"] == "print('hi')"
    assert body["views"] == 1
    assert body["remaining_views"] is None


def test_unsupported_options_fall_back_to_defaults(client):
    created = create(client, token_length=5, expires_in=17, language="klingon")
    assert len(created["token"]) == 6
    assert created["language"] == "auto"
    body = client.get(created["path"]).json()
    assert body["expires_at"] - body["created_at"] == 86400


def test_plain_text_body(client):
    res = client.post("/paste", content="just text", headers={"content-type": "text/plain"})
    assert res.status_code == 201
    token = res.json()["token"]
    assert client.get(f"/r/{token}").text == "just text"


def test_form_post_redirects_to_paste(client):
    res = client.post(
        "/paste",
        data={"content": "from a form", "max_views": "2", "is_public": "on"},
        follow_redirects=False,
    )
    assert res.status_code == 303
    location = res.headers["location"]
    assert location.startswith("/p/")
    body = client.get(location).json()
    assert body["content"] == "from a form"
    assert body["max_views"] == 2
    assert body["is_public"] is False


def test_rejects_empty_and_oversized_content(client, settings):
    assert client.post("/paste", json={"content": "   "}).status_code == 400
    too_long = "x" * (settings.max_content_length + 1)
    res = client.post("/paste", json={"content": too_long})
    assert res.status_code == 400
    assert "max chars" in res.json()["message"]


def test_rejects_malformed_json(client):
    res = client.post("/paste", content=b"{not json", headers={"content-type": "application/json"})
    assert res.status_code == 400


def test_burn_after_reading(client):
    created = create(client, content="secret", max_views=2)
    assert created["remaining_views"] == 2
    assert client.get(created["path"]).json()["remaining_views"] == 1
    assert client.get(f"/r/{created['token']}").text == "secret"
    res = client.get(created["path"])
    assert res.status_code == 404
    assert res.json()["faded"] == 1


def test_not_found_looks_the_same_for_every_cause(client):
    burned = create(client, max_views=1)
    client.get(burned["path"])
    gone = client.get(burned["path"])
    missing = client.get("/p/doesnotexist")
    assert gone.status_code == missing.status_code == 404
    assert gone.json()["message"] == missing.json()["message"]


def test_html_views(client):
    created = create(client, content="<b>bold</b>", title="Markup")
    res = client.get(created["path"], headers={"accept": "text/html"})
    assert res.status_code == 200
    assert "text/html" in res.headers["content-type"]
    assert "&lt;b&gt;bold&lt;/b&gt;" in res.text
    missing = client.get("/p/nope", headers={"accept": "text/html"})
    assert missing.status_code == 404
    assert "faded away" in missing.text


def test_raw_view_headers(client):
    created = create(client, content="raw body")
    res = client.get(f"/r/{created['token']}")
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/plain")
    assert res.headers["content-disposition"] == f'inline; filename="paste-{created["token"]}.txt"'
    assert client.get("/r/nope").status_code == 404


def test_renew_responses(client):
    public = create(client, is_public=True)
    private = create(client)
    assert client.post(f"{public['path']}/renew").status_code == 400
    assert client.post(f"{private['path']}/renew").status_code == 403
    assert client.post("/p/nope/renew").status_code == 404


def test_explore_lists_public_pastes_newest_first(client):
    first = create(client, content="one", is_public=True)
    create(client, content="hidden")
    create(client, content="burn", is_public=True, max_views=3)
    second = create(client, content="two", is_public=True)

    body = client.get("/explore").json()
    assert body["total"] == 2
    tokens = [p["token"] for p in body["pastes"]]
    assert set(tokens) == {first["token"], second["token"]}

    html = client.get("/explore", headers={"accept": "text/html"})
    assert "2 public pastes" in html.text


def test_api_explore_pages_one_at_a_time(client):
    create(client, content="only", is_public=True)
    res = client.get("/api/explore", params={"offset": 0})
    assert res.status_code == 200
    body = res.json()
    assert body["content"] == "only"
    assert body["index"] == 0
    assert body["total"] == 1
    assert client.get("/api/explore", params={"offset": 1}).status_code == 404


def test_row_capacity_applies_on_create(tmp_path):
    settings = Settings.from_env(
        db_path=str(tmp_path / "cap.db"),
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'cap.db'}",
        disable_rate_limit=True,
        max_pastes=2,
    )
    with TestClient(create_app(settings)) as client:
        tokens = [create(client, content=str(i))["token"] for i in range(4)]
        body = client.get("/").json()
        assert body["total_pastes"] == 4
        assert body["faded"] == 2
        assert client.get(f"/p/{tokens[-1]}").status_code == 200


def test_rate_limit(tmp_path):
    settings = Settings.from_env(
        db_path=str(tmp_path / "rl.db"),
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'rl.db'}",
        disable_rate_limit=False,
        create_per_min=2,
    )
    with TestClient(create_app(settings)) as client:
        create(client)
        create(client)
        assert client.post("/paste", json={"content": "x"}).status_code == 429


def rate_limited_settings(tmp_path, **overrides):
    return Settings.from_env(
        db_path=str(tmp_path / "rl.db"),
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'rl.db'}",
        disable_rate_limit=False,
        create_per_min=2,
        **overrides,
    )


def test_rate_limit_ignores_spoofed_forwarding_headers(tmp_path):
    with TestClient(create_app(rate_limited_settings(tmp_path))) as client:
        for i in range(2):
            res = client.post("/paste", json={"content": "x"}, headers={"X-Real-IP": f"203.0.113.{i}"})
            assert res.status_code == 201
        res = client.post("/paste", json={"content": "x"}, headers={"X-Real-IP": "203.0.113.99"})
        assert res.status_code == 429


def test_rate_limit_per_forwarded_client_behind_proxy(tmp_path):
    settings = rate_limited_settings(tmp_path, trust_proxy_headers=True)
    with TestClient(create_app(settings)) as client:
        for _ in range(2):
            assert client.post("/paste", json={"content": "x"}, headers={"X-Real-IP": "203.0.113.1"}).status_code == 201
        assert client.post("/paste", json={"content": "x"}, headers={"X-Real-IP": "203.0.113.1"}).status_code == 429
        assert client.post("/paste", json={"content": "x"}, headers={"X-Real-IP": "203.0.113.2"}).status_code == 201


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "db_status": "ok"}


def test_store_failure_is_a_503(client):
    store = client.app.state.store
    client.portal.call(store.database.execute, "DROP TABLE pastes")
    res = client.get("/p/anything")
    assert res.status_code == 503
    assert client.get("/health").status_code == 200


def test_created_expiry_matches_stored_row(client):
    created = create(client, expires_in=3600)
    body = client.get(created["path"]).json()
    assert created["expires_at"] == body["expires_at"]
    assert body["expires_at"] - body["created_at"] == 3600


def test_put_is_not_a_create_route(client):
    assert client.put("/paste", json={"content": "x"}).status_code == 405
