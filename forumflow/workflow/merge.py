from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional

from forumflow.api.auth import Credentials
from forumflow.api.client import ForumApiClient
from forumflow.errors import (
    ApiError,
    AuthRequiredError,
    InputValidationError,
    OrphanMergeJobError,
    PermissionDeniedError,
)
from forumflow.inputs import normalize_id_token
from forumflow.models import (
    CurrentUser,
    MergeJob,
    MergeOutcome,
    MergeOutcomeKind,
    Post,
    Topic,
    WikiRevision,
)

logger = logging.getLogger("forumflow")


class Stage(str, Enum):
    gather = "gather"
    short_circuit = "short_circuit"
    decide = "decide"
    commit = "commit"
    propose = "propose"
    done = "done"


def can_quick_merge(user: Optional[CurrentUser], topic: Optional[Topic]) -> bool:
    """Moderators/admins and the topic owner may fold replies straight into the wiki."""
    if user is None or topic is None or not user.is_authenticated:
        return False
    return user.is_admin_moderator or (bool(topic.user_id) and user.id == topic.user_id)


def quick_merge_title(topic: Topic, wiki: Optional[WikiRevision]) -> str:
    if wiki is not None and wiki.title.strip():
        return wiki.title.strip()
    if topic.title.strip():
        return topic.title.strip()
    return f"Topic {topic.id}"


def quick_merge_document(post: Post, wiki: Optional[WikiRevision]) -> str:
    for candidate in (wiki.document if wiki is not None else "", post.parsed_text, post.original_text):
        if (candidate or "").strip():
            return candidate.strip()
    return f"Merged from reply {post.id}"


@dataclass
class _MergeRun:
    topic_id: str
    post_id: str
    credentials: Credentials
    topic: Optional[Topic] = None
    wiki: Optional[WikiRevision] = None
    post: Optional[Post] = None
    user: Optional[CurrentUser] = None
    kind: Optional[MergeOutcomeKind] = None
    job: Optional[MergeJob] = None
    revision: Optional[WikiRevision] = None
    notice: str = ""
    stages: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MergeWorkflow:
    """
    Fold one discussion reply into the topic's canonical wiki.

    merge_reply walks GATHER -> SHORT_CIRCUIT -> DECIDE -> COMMIT | PROPOSE -> DONE.
    Each stage returns the next one. The two commit writes (create job, apply job)
    are not atomic: if apply fails the job is left pending and surfaced via
    OrphanMergeJobError so the caller can retry the apply.
    """

    client: ForumApiClient

    # -------- primitives --------

    async def create_merge_job(
        self,
        topic_id: str,
        post_ids: Iterable[Any] | str,
        summary: str = "",
        credentials: Optional[Credentials] = None,
    ) -> MergeJob:
        return await self.client.create_merge_job(
            topic_id, post_ids=post_ids, summary=summary, credentials=credentials
        )

    async def apply_merge_job(
        self,
        topic_id: str,
        job_id: str,
        title: str,
        document: str,
        summary: str = "",
        contribution_weight: Any = 1,
        credentials: Optional[Credentials] = None,
    ) -> WikiRevision:
        return await self.client.apply_merge_job(
            topic_id,
            job_id,
            title=title,
            document=document,
            summary=summary,
            contribution_weight=contribution_weight,
            credentials=credentials,
        )

    # -------- state machine --------

    async def merge_reply(self, topic_id: str, post_id: Any, credentials: Optional[Credentials]) -> MergeOutcome:
        if credentials is None or not credentials.is_present:
            raise AuthRequiredError("please sign in first.")
        pid = normalize_id_token(post_id)
        if not pid:
            raise InputValidationError("missing reply id.")

        run = _MergeRun(topic_id=str(topic_id).strip(), post_id=pid, credentials=credentials)
        stage: Stage = Stage.gather
        while stage is not Stage.done:
            run.stages.append(stage.value)
            stage = await self._step(stage, run)
        run.stages.append(Stage.done.value)

        if run.kind is None:
            raise RuntimeError(f"merge of reply {run.post_id} finished without an outcome")
        return MergeOutcome(
            kind=run.kind,
            topic_id=run.topic_id,
            post_id=run.post_id,
            notice=run.notice,
            job=run.job,
            revision=run.revision,
            stages=run.stages,
        )

    async def _step(self, stage: Stage, run: _MergeRun) -> Stage:
        if stage is Stage.gather:
            return await self._gather(run)
        if stage is Stage.short_circuit:
            return self._short_circuit(run)
        if stage is Stage.decide:
            return self._decide(run)
        if stage is Stage.commit:
            return await self._commit(run)
        if stage is Stage.propose:
            return await self._propose(run)
        raise ValueError(f"unknown merge stage: {stage}")

    async def _gather(self, run: _MergeRun) -> Stage:
        c = self.client
        topic, wiki, posts, user = await asyncio.gather(
            c.get_topic(run.topic_id, run.credentials),
            c.get_topic_wiki(run.topic_id, run.credentials),
            c.list_topic_posts(run.topic_id, run.credentials),
            c.get_current_user(run.credentials),
            return_exceptions=True,
        )
        # All four are required; the topic's own failure is reported first.
        if isinstance(topic, BaseException):
            raise topic
        if topic is None:
            raise ApiError("topic not found.", 404)
        for res in (wiki, posts, user):
            if isinstance(res, BaseException):
                raise res
        if user is None:
            raise AuthRequiredError("login required.")
        post = next((p for p in posts.list if p.id == run.post_id), None)
        if post is None:
            raise ApiError("reply not found.", 404)
        run.topic, run.wiki, run.post, run.user = topic, wiki, post, user
        return Stage.short_circuit

    def _short_circuit(self, run: _MergeRun) -> Stage:
        if run.post.is_archived:
            run.kind = MergeOutcomeKind.already_merged
            run.notice = f"Reply {run.post_id} is already merged."
            return Stage.done
        return Stage.decide

    def _decide(self, run: _MergeRun) -> Stage:
        if can_quick_merge(run.user, run.topic):
            return Stage.commit
        if run.post.user_id and run.user.id == run.post.user_id:
            return Stage.propose
        raise PermissionDeniedError("only moderators/topic wiki editors can quick-merge.")

    async def _commit(self, run: _MergeRun) -> Stage:
        job = await self.create_merge_job(
            run.topic_id, [run.post_id], f"Quick merge reply {run.post_id}", run.credentials
        )
        run.job = job
        try:
            run.revision = await self.apply_merge_job(
                run.topic_id,
                job.id,
                quick_merge_title(run.topic, run.wiki),
                quick_merge_document(run.post, run.wiki),
                f"Quick merged reply {run.post_id}",
                1,
                run.credentials,
            )
        except ApiError as e:
            logger.warning(
                "merge job %s for topic %s left pending: apply failed (%s %s)",
                job.id,
                run.topic_id,
                e.status,
                e.message,
            )
            raise OrphanMergeJobError(job.id, e) from e
        run.kind = MergeOutcomeKind.merged
        run.notice = f"Reply {run.post_id} merged."
        return Stage.done

    async def _propose(self, run: _MergeRun) -> Stage:
        run.job = await self.create_merge_job(
            run.topic_id, [run.post_id], f"Merge proposal for reply {run.post_id}", run.credentials
        )
        run.kind = MergeOutcomeKind.proposed
        run.notice = f"Reply {run.post_id} prepared for merge proposal."
        return Stage.done
