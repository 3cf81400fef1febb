from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from forumflow.api.auth import Credentials
from forumflow.api.client import ForumApiClient
from forumflow.errors import ApiError
from forumflow.inputs import normalize_id_token
from forumflow.models import (
    Contributor,
    CurrentUser,
    DocGraph,
    MergeJob,
    MergeJobDetail,
    Page,
    Post,
    Topic,
    WikiRevision,
    is_empty_id,
)
from forumflow.workflow.merge import can_quick_merge

logger = logging.getLogger("forumflow")


class TopicView(BaseModel):
    topic_id: str
    topic: Optional[Topic] = None
    wiki: Optional[WikiRevision] = None
    revisions: List[WikiRevision] = Field(default_factory=list)
    contributors: List[Contributor] = Field(default_factory=list)
    graph: DocGraph = Field(default_factory=DocGraph)
    posts: Page[Post] = Field(default_factory=Page[Post])
    current_user: Optional[CurrentUser] = None
    merge_jobs: Page[MergeJob] = Field(default_factory=Page[MergeJob])
    active_merge_job_id: str = ""
    merge_job: Optional[MergeJobDetail] = None
    merge_job_error: str = ""

    @property
    def solved_post_id(self) -> str:
        if self.topic is None or is_empty_id(self.topic.solved_post_id):
            return ""
        return self.topic.solved_post_id

    @property
    def archived_reply_count(self) -> int:
        return sum(1 for p in self.posts.list if p.is_archived)

    @property
    def can_quick_merge(self) -> bool:
        return can_quick_merge(self.current_user, self.topic)

    @property
    def pending_jobs(self) -> List[MergeJob]:
        return [j for j in self.merge_jobs.list if j.is_pending]

    @property
    def viewer_id(self) -> str:
        return self.current_user.id if self.current_user else ""


async def load_topic_view(
    client: ForumApiClient,
    topic_id: str,
    credentials: Optional[Credentials] = None,
    active_merge_job_id: Optional[str] = "",
) -> TopicView:
    """
    Everything the topic page needs, in three rounds:

    1) topic, wiki, revisions, contributors, doc graph and posts; any failure aborts.
    2) signed in only: current user and merge jobs, each allowed to fail on its own.
    3) the merge job named by active_merge_job_id, if any; failure is reported on
       the view rather than raised.
    """
    tid = str(topic_id).strip()
    topic, wiki, revisions, contributors, graph, posts = await asyncio.gather(
        client.get_topic(tid, credentials),
        client.get_topic_wiki(tid, credentials),
        client.list_topic_wiki_revisions(tid, credentials),
        client.list_topic_contributors(tid, credentials),
        client.get_doc_graph(tid, credentials),
        client.list_topic_posts(tid, credentials),
    )
    view = TopicView(
        topic_id=tid,
        topic=topic,
        wiki=wiki,
        revisions=revisions,
        contributors=contributors,
        graph=graph,
        posts=posts,
    )

    updates = {}
    if credentials is not None and credentials.is_present:
        user_res, jobs_res = await asyncio.gather(
            client.get_current_user(credentials),
            client.list_topic_merge_jobs(tid, credentials),
            return_exceptions=True,
        )
        if isinstance(user_res, ApiError):
            logger.info("topic %s: current user unavailable: %r", tid, user_res)
        elif isinstance(user_res, BaseException):
            raise user_res
        else:
            updates["current_user"] = user_res
        if isinstance(jobs_res, ApiError):
            logger.info("topic %s: merge jobs unavailable: %r", tid, jobs_res)
        elif isinstance(jobs_res, BaseException):
            raise jobs_res
        else:
            updates["merge_jobs"] = jobs_res

    job_id = normalize_id_token(active_merge_job_id)
    if job_id:
        updates["active_merge_job_id"] = job_id
        try:
            detail = await client.get_merge_job(tid, job_id, credentials)
        except ApiError as e:
            updates["merge_job_error"] = e.message or "Unknown merge job error."
        else:
            if detail is None:
                updates["merge_job_error"] = f"Merge job {job_id} not found for this topic."
            else:
                updates["merge_job"] = detail

    return view.model_copy(update=updates) if updates else view
