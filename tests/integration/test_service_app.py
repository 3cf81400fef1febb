from __future__ import annotations

from fastapi.testclient import TestClient

from fake_forum import FakeForum
from forumflow.service.app import create_app
from forumflow.settings import Settings


def _app_client(forum: FakeForum) -> TestClient:
    s = Settings(app_env="development", api_base_url="http://forum.test", dev_fallback_enabled=False)
    return TestClient(create_app(s, transport=forum.transport()))


def test_login_then_quick_merge_via_cookie(forum: FakeForum) -> None:
    client = _app_client(forum)

    bad = client.post("/login", json={"e_mail": "owner@example.com", "pass": "nope"})
    assert bad.status_code == 400
    assert bad.json()["message"] == "Sign in failed: Email or password incorrect."

    r = client.post("/login", json={"e_mail": "owner@example.com", "pass": "secret"})
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert "access_token" not in r.json()["data"]
    assert client.cookies.get("answer_token") == "tok-owner"

    merged = client.post("/topics/t1/merge", json={"post_id": "p1", "modal": "wiki-history"})
    body = merged.json()
    assert body["ok"] is True
    assert body["message"] == "Reply p1 merged."
    assert body["modal"] == "pending-jobs"
    assert body["redirect_url"].startswith("/topics/t1?notice=Reply+p1+merged.")

    view = client.get("/topics/t1", params={"merge_job_id": body["merge_job_id"]}).json()
    assert view["archived_reply_count"] == 1
    assert view["can_quick_merge"] is True
    assert view["viewer_id"] == "u-owner"
    assert view["merge_job"]["job"]["status"] == "applied"
    assert view["topic"]["current_wiki_revision_id"] == view["wiki"]["id"]


def test_bearer_header_and_author_proposal(forum: FakeForum) -> None:
    client = _app_client(forum)
    r = client.post(
        "/topics/t1/merge",
        json={"post_id": "p1"},
        headers={"Authorization": "Bearer tok-author"},
    )
    body = r.json()
    assert body["message"] == "Reply p1 prepared for merge proposal."
    assert "modal=author-merge" in body["redirect_url"]
    assert forum.apply_calls == 0

    view = client.get("/topics/t1", headers={"Authorization": "Bearer tok-author"}).json()
    assert view["pending_job_ids"] == [body["merge_job_id"]]
    assert view["can_quick_merge"] is False


def test_anonymous_actions_ask_to_sign_in(forum: FakeForum) -> None:
    client = _app_client(forum)
    assert client.post("/topics/t1/votes", json={"value": -1}).json()["message"] == "Vote failed: please sign in first."
    assert client.post("/topics/t1/merge", json={"post_id": "p1"}).json()["error"] == (
        "Merge failed: please sign in first."
    )
    assert forum.write_calls == 0


def test_write_actions_round_trip(forum: FakeForum) -> None:
    client = _app_client(forum)
    auth = {"Authorization": "Bearer tok-owner"}

    job = client.post("/topics/t1/merge-jobs", json={"post_ids": "p1 p2", "summary": "batch"}, headers=auth).json()
    assert job["message"] == f"Merge job {job['merge_job_id']} created."
    applied = client.post(
        f"/topics/t1/merge-jobs/{job['merge_job_id']}/apply",
        json={"title": "T", "document": "D", "contribution_weight": "2"},
        headers=auth,
    ).json()
    assert applied["ok"] is True
    assert forum.contributors["t1"] == {"u-author": 2, "u-stranger": 2}

    assert client.post("/posts/p1/votes", json={"topic_id": "t1", "value": 1}, headers=auth).json()["ok"] is True
    assert client.post("/posts/p1/votes", json={"value": 1}, headers=auth).status_code == 400
    assert client.post("/topics/t1/solution", json={"post_id": "p2"}, headers=auth).json()["ok"] is True
    wiki = client.post("/topics/t1/wiki/revisions", json={"title": "T2", "document": "D2"}, headers=auth).json()
    assert wiki["message"] == "New wiki revision published."
    reply = client.post("/topics/t1/posts", json={"original_text": "thanks"}, headers=auth).json()
    assert reply["data"]["post_id"] in forum.posts

    topic = client.post("/topics", json={"parent_id": "c1", "title": "Another"}, headers=auth).json()
    assert topic["redirect_url"] == f"/topics/{topic['data']['topic_id']}"
    link = client.post(
        "/topics/t1/links", json={"target_topic_id": topic["data"]["topic_id"]}, headers=auth
    ).json()
    assert link["ok"] is True
    assert client.post("/categories", json={"slug": "x", "name": "X"}, headers=auth).json()["ok"] is True
    assert client.post("/boards", json={"slug": "y", "name": "Y"}, headers=auth).json()["ok"] is True


def test_missing_topic_and_health(forum: FakeForum) -> None:
    client = _app_client(forum)
    assert client.get("/healthz").json()["ok"] is True
    assert client.get("/topics/nope").status_code == 404


def test_logout_clears_cookie(forum: FakeForum) -> None:
    client = _app_client(forum)
    client.post("/login", json={"e_mail": "mod@example.com", "pass": "secret"})
    assert client.cookies.get("answer_token") == "tok-mod"
    client.post("/logout")
    assert client.cookies.get("answer_token") is None


def test_topic_view_from_misrouted_frontend_is_a_502(forum: FakeForum) -> None:
    forum.html_hosts.add("forum.test")
    s = Settings(app_env="production", api_base_url="http://forum.test")
    client = TestClient(create_app(s, transport=forum.transport()))
    r = client.get("/topics/t1")
    assert r.status_code == 502
    assert r.json()["detail"] == "unexpected response from service."
