from __future__ import annotations

import asyncio

import httpx
import pytest

from fake_forum import FakeForum, as_user, fail
from forumflow.api.client import ForumApiClient
from forumflow.errors import ApiError
from forumflow.settings import Settings
from forumflow.workflow.topic_view import load_topic_view


def test_anonymous_view_skips_user_and_jobs(forum: FakeForum, client: ForumApiClient) -> None:
    view = asyncio.run(load_topic_view(client, "t1"))
    assert view.topic is not None and view.topic.title == "How to configure"
    assert view.wiki is not None
    assert [p.id for p in view.posts.list] == ["p1", "p2"]
    assert view.current_user is None
    assert view.merge_jobs.list == []
    assert view.solved_post_id == ""
    assert not view.can_quick_merge
    assert not any("/user/info" in r.url.path or r.url.path.endswith("/merge-jobs") for r in forum.requests)


def test_signed_in_view_derives_flags(forum: FakeForum, client: ForumApiClient) -> None:
    owner = as_user("tok-owner")
    forum.add_post("p3", "t1", archived=True)
    forum.topics["t1"]["solved_post_id"] = "p2"
    job = asyncio.run(client.create_merge_job("t1", post_ids=["p1"], credentials=owner))

    view = asyncio.run(load_topic_view(client, "t1", owner, active_merge_job_id=job.id))
    assert view.viewer_id == "u-owner"
    assert view.can_quick_merge
    assert view.archived_reply_count == 1
    assert view.solved_post_id == "p2"
    assert [j.id for j in view.pending_jobs] == [job.id]
    assert view.merge_job is not None and view.merge_job.post_ids == ["p1"]
    assert view.merge_job_error == ""


def test_unknown_active_job_is_reported_not_raised(client: ForumApiClient) -> None:
    view = asyncio.run(load_topic_view(client, "t1", as_user("tok-owner"), active_merge_job_id="999"))
    assert view.merge_job is None
    assert view.merge_job_error == "Merge job 999 not found for this topic."


def test_best_effort_group_tolerates_failures(forum: FakeForum) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/merge-jobs") or request.url.path.endswith("/user/info"):
            return fail(500, "boom")
        return forum.handle(request)

    client = ForumApiClient.from_settings(
        Settings(app_env="production", api_base_url="http://forum.test"), transport=httpx.MockTransport(handler)
    )
    view = asyncio.run(load_topic_view(client, "t1", as_user("tok-mod")))
    assert view.topic is not None
    assert view.current_user is None
    assert view.merge_jobs.total == 0


def test_required_group_failure_aborts(forum: FakeForum, client: ForumApiClient) -> None:
    forum.down_hosts.add("forum.test")
    with pytest.raises(ApiError) as ei:
        asyncio.run(load_topic_view(client, "t1"))
    assert ei.value.status == 503
