from __future__ import annotations

import os

import pytest

from fake_forum import FakeForum
from forumflow.api.client import ForumApiClient
from forumflow.settings import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Keep tests deterministic and isolated from developer machine env.
    """
    for k in list(os.environ.keys()):
        if k.startswith("FORUMFLOW_"):
            monkeypatch.delenv(k, raising=False)


@pytest.fixture
def forum() -> FakeForum:
    f = FakeForum()
    f.add_topic("t1", owner="u-owner", title="How to configure", wiki_document="Current canonical answer")
    f.add_post("p1", "t1", author="u-author", text="Set the flag to true")
    f.add_post("p2", "t1", author="u-stranger", text="+1")
    return f


@pytest.fixture
def prod_settings() -> Settings:
    return Settings(app_env="production", api_base_url="http://forum.test")


@pytest.fixture
def client(forum: FakeForum, prod_settings: Settings) -> ForumApiClient:
    return ForumApiClient.from_settings(prod_settings, transport=forum.transport())
