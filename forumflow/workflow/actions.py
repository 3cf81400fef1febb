from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple
from urllib.parse import quote, urlencode

from forumflow.api.auth import Credentials
from forumflow.api.client import ForumApiClient
from forumflow.errors import (
    ApiError,
    AuthRequiredError,
    InputValidationError,
    OrphanMergeJobError,
    PermissionDeniedError,
    UnexpectedPayloadError,
)
from forumflow.inputs import normalize_id_token, parse_id_list, trim_message
from forumflow.models import ActionResult, MergeOutcomeKind
from forumflow.workflow.merge import MergeWorkflow

logger = logging.getLogger("forumflow")

MODALS = ("wiki-history", "publish-wiki", "pending-jobs", "author-merge")
REDIRECT_MESSAGE_LIMIT = 160

# Raised locally before (or instead of) a service call; their message is already user-facing.
_LOCAL_ERRORS = (InputValidationError, AuthRequiredError, PermissionDeniedError)


def normalize_modal(raw: Optional[str]) -> str:
    v = (raw or "").strip()
    return v if v in MODALS else ""


def topic_redirect_url(
    topic_id: str,
    *,
    notice: str = "",
    error: str = "",
    merge_job_id: str = "",
    modal: str = "",
    merge_post_id: str = "",
) -> str:
    qp: List[Tuple[str, str]] = []
    if notice:
        qp.append(("notice", notice[:REDIRECT_MESSAGE_LIMIT]))
    if error:
        qp.append(("error", error[:REDIRECT_MESSAGE_LIMIT]))
    if merge_job_id:
        qp.append(("merge_job_id", merge_job_id))
    if modal:
        qp.append(("modal", modal))
    if merge_post_id:
        qp.append(("merge_post_id", merge_post_id))
    path = "/topics/" + quote(str(topic_id).strip(), safe="")
    if not qp:
        return path
    return f"{path}?{urlencode(qp)}"


@dataclass(frozen=True)
class PageState:
    """What the topic page currently shows; failed actions redirect back to it."""

    merge_job_id: str = ""
    modal: str = ""
    merge_post_id: str = ""

    @classmethod
    def from_query(
        cls,
        merge_job_id: Optional[str] = None,
        modal: Optional[str] = None,
        merge_post_id: Optional[str] = None,
    ) -> "PageState":
        return cls(
            merge_job_id=normalize_id_token(merge_job_id),
            modal=normalize_modal(modal),
            merge_post_id=normalize_id_token(merge_post_id),
        )


DEFAULT_STATE = PageState()


def _signed_in(credentials: Optional[Credentials]) -> bool:
    return credentials is not None and credentials.is_present


def _reason(err: ApiError, *, auth_hint: Optional[str] = None) -> str:
    if auth_hint and not isinstance(err, _LOCAL_ERRORS) and err.status in (401, 403):
        return auth_hint
    return err.message or "unknown error."


@dataclass(frozen=True)
class ForumActions:
    """
    User-facing entry points. Each one runs a single operation and returns an
    ActionResult carrying one message plus the topic-page redirect to show it on.
    ApiError is handled here and nowhere above; the raw error goes to the log.
    """

    client: ForumApiClient
    workflow: MergeWorkflow

    @classmethod
    def from_client(cls, client: ForumApiClient) -> "ForumActions":
        return cls(client=client, workflow=MergeWorkflow(client))

    def _ok(self, topic_id: str, notice: str, **redirect: str) -> ActionResult:
        return ActionResult(
            ok=True,
            notice=trim_message(notice),
            redirect_url=topic_redirect_url(topic_id, notice=notice, **redirect),
            merge_job_id=redirect.get("merge_job_id", ""),
            modal=redirect.get("modal", ""),
        )

    def _fail(self, topic_id: str, error: str, **redirect: str) -> ActionResult:
        return ActionResult(
            ok=False,
            error=trim_message(error),
            redirect_url=topic_redirect_url(topic_id, error=error, **redirect),
            merge_job_id=redirect.get("merge_job_id", ""),
            modal=redirect.get("modal", ""),
        )

    @staticmethod
    def _log_failure(action: str, topic_id: str, err: ApiError) -> None:
        logger.warning("%s failed for topic %s: %r", action, topic_id, err)

    # -------- merge --------

    async def merge_reply(
        self,
        topic_id: str,
        post_id: Any,
        credentials: Optional[Credentials],
        state: PageState = DEFAULT_STATE,
    ) -> ActionResult:
        back = {"merge_job_id": state.merge_job_id, "modal": state.modal}
        if not _signed_in(credentials):
            return self._fail(topic_id, "Merge failed: please sign in first.", **back)
        pid = normalize_id_token(post_id)
        if not pid:
            return self._fail(topic_id, "Merge failed: missing reply id.", **back)

        try:
            outcome = await self.workflow.merge_reply(topic_id, pid, credentials)
        except OrphanMergeJobError as e:
            self._log_failure("merge_reply", topic_id, e)
            reason = _reason(e, auth_hint="moderator or topic wiki editor permission required.")
            return self._fail(topic_id, f"Merge failed: {reason}", merge_job_id=e.job_id, modal=state.modal)
        except ApiError as e:
            self._log_failure("merge_reply", topic_id, e)
            reason = _reason(e, auth_hint="moderator or topic wiki editor permission required.")
            return self._fail(topic_id, f"Merge failed: {reason}", **back)

        if outcome.kind is MergeOutcomeKind.already_merged:
            return self._ok(topic_id, outcome.notice, **back)
        if outcome.kind is MergeOutcomeKind.proposed:
            return self._ok(
                topic_id,
                outcome.notice,
                merge_job_id=outcome.job_id or state.merge_job_id,
                modal="author-merge",
                merge_post_id=pid,
            )
        return self._ok(
            topic_id,
            outcome.notice,
            merge_job_id=outcome.job_id or state.merge_job_id,
            modal="pending-jobs",
        )

    async def create_merge_job(
        self,
        topic_id: str,
        post_ids: Iterable[Any] | str | None,
        summary: str,
        credentials: Optional[Credentials],
        *,
        next_modal: str = "",
        state: PageState = DEFAULT_STATE,
    ) -> ActionResult:
        back = {"merge_job_id": state.merge_job_id, "modal": state.modal, "merge_post_id": state.merge_post_id}
        if not _signed_in(credentials):
            return self._fail(topic_id, "Create merge job failed: please sign in first.", merge_job_id=state.merge_job_id)
        ids = parse_id_list(post_ids)
        if not ids:
            return self._fail(topic_id, "Create merge job failed: add at least one reply id.", **back)
        try:
            job = await self.workflow.create_merge_job(topic_id, ids, summary, credentials)
        except ApiError as e:
            self._log_failure("create_merge_job", topic_id, e)
            return self._fail(topic_id, f"Create merge job failed: {_reason(e)}", **back)
        return self._ok(
            topic_id,
            f"Merge job {job.id} created.",
            merge_job_id=job.id,
            modal=normalize_modal(next_modal) or "pending-jobs",
        )

    async def apply_merge_job(
        self,
        topic_id: str,
        job_id: Any,
        *,
        title: str,
        document: str,
        summary: str = "",
        contribution_weight: Any = 1,
        credentials: Optional[Credentials],
        state: PageState = DEFAULT_STATE,
    ) -> ActionResult:
        if not _signed_in(credentials):
            return self._fail(
                topic_id,
                "Apply merge job failed: please sign in first.",
                merge_job_id=state.merge_job_id,
                modal="pending-jobs",
            )
        jid = normalize_id_token(job_id)
        if not jid:
            return self._fail(
                topic_id,
                "Apply merge job failed: missing merge job id.",
                merge_job_id=state.merge_job_id,
                modal="pending-jobs",
            )
        if not (title or "").strip() or not (document or "").strip():
            return self._fail(
                topic_id,
                "Apply merge job failed: title and document are required.",
                merge_job_id=jid,
                modal="pending-jobs",
            )
        try:
            await self.workflow.apply_merge_job(
                topic_id, jid, title, document, summary, contribution_weight, credentials
            )
        except ApiError as e:
            self._log_failure("apply_merge_job", topic_id, e)
            return self._fail(
                topic_id, f"Apply merge job failed: {_reason(e)}", merge_job_id=jid, modal="pending-jobs"
            )
        return self._ok(
            topic_id,
            f"Merge job {jid} applied and replies archived.",
            merge_job_id=jid,
            modal="pending-jobs",
        )

    # -------- votes / solution / wiki --------

    async def vote_topic(
        self, topic_id: str, value: Any, credentials: Optional[Credentials], state: PageState = DEFAULT_STATE
    ) -> ActionResult:
        back = {"merge_job_id": state.merge_job_id}
        if not _signed_in(credentials):
            return self._fail(topic_id, "Vote failed: please sign in first.", **back)
        try:
            await self.client.vote_topic(topic_id, value=value, credentials=credentials)
        except ApiError as e:
            self._log_failure("vote_topic", topic_id, e)
            return self._fail(topic_id, f"Vote failed: {_reason(e)}", **back)
        return self._ok(topic_id, "Topic vote updated.", **back)

    async def vote_post(
        self,
        topic_id: str,
        post_id: Any,
        value: Any,
        credentials: Optional[Credentials],
        state: PageState = DEFAULT_STATE,
    ) -> ActionResult:
        back = {"merge_job_id": state.merge_job_id}
        pid = normalize_id_token(post_id)
        if not pid:
            return self._fail(topic_id, "Vote failed: missing reply id.", **back)
        if not _signed_in(credentials):
            return self._fail(topic_id, "Vote failed: please sign in first.", **back)
        try:
            await self.client.vote_post(pid, value=value, credentials=credentials)
        except ApiError as e:
            self._log_failure("vote_post", topic_id, e)
            return self._fail(topic_id, f"Vote failed: {_reason(e)}", **back)
        return self._ok(topic_id, "Reply vote updated.", **back)

    async def mark_solution(
        self, topic_id: str, post_id: Any, credentials: Optional[Credentials], state: PageState = DEFAULT_STATE
    ) -> ActionResult:
        back = {"merge_job_id": state.merge_job_id}
        pid = normalize_id_token(post_id)
        if not pid:
            return self._fail(topic_id, "Mark solved failed: missing reply id.", **back)
        if not _signed_in(credentials):
            return self._fail(topic_id, "Mark solved failed: please sign in first.", **back)
        try:
            await self.client.set_topic_solution(topic_id, post_id=pid, credentials=credentials)
        except ApiError as e:
            self._log_failure("mark_solution", topic_id, e)
            return self._fail(topic_id, f"Mark solved failed: {_reason(e)}", **back)
        return self._ok(topic_id, "Solved state updated.", **back)

    async def publish_wiki_revision(
        self,
        topic_id: str,
        *,
        title: str,
        document: str,
        summary: str = "",
        source_post_ids: Iterable[Any] | str | None = None,
        credentials: Optional[Credentials],
        state: PageState = DEFAULT_STATE,
    ) -> ActionResult:
        back = {"merge_job_id": state.merge_job_id, "modal": state.modal}
        if not _signed_in(credentials):
            return self._fail(topic_id, "Publish revision failed: please sign in first.", **back)
        if not (title or "").strip() or not (document or "").strip():
            return self._fail(topic_id, "Publish revision failed: title and document are required.", **back)
        try:
            await self.client.create_topic_wiki_revision(
                topic_id,
                title=title,
                document=document,
                summary=summary,
                source_post_ids=source_post_ids,
                credentials=credentials,
            )
        except ApiError as e:
            self._log_failure("publish_wiki_revision", topic_id, e)
            return self._fail(topic_id, f"Publish revision failed: {_reason(e)}", **back)
        return self._ok(topic_id, "New wiki revision published.", merge_job_id=state.merge_job_id)

    # -------- replies / topics / catalog --------

    async def create_topic_post(
        self, topic_id: str, original_text: str, credentials: Optional[Credentials]
    ) -> ActionResult:
        if not (original_text or "").strip():
            return self._fail(topic_id, "Reply content is required.")
        if not _signed_in(credentials):
            return self._fail(topic_id, f"Post reply failed: login required. Open /login?from=/topics/{topic_id}")
        try:
            post = await self.client.create_topic_post(topic_id, original_text=original_text, credentials=credentials)
        except ApiError as e:
            self._log_failure("create_topic_post", topic_id, e)
            return self._fail(topic_id, f"Post reply failed: {_reason(e, auth_hint='login required in Answer.')}")
        result = self._ok(topic_id, "Reply submitted.")
        return result.model_copy(update={"data": {"post_id": post.id}})

    async def create_topic(
        self,
        parent_id: str,
        *,
        title: str,
        topic_kind: str = "discussion",
        is_wiki_enabled: bool = False,
        parent_field: str = "category_id",
        credentials: Optional[Credentials],
    ) -> ActionResult:
        if parent_field not in ("board_id", "category_id"):
            return ActionResult(ok=False, error=f"Create topic failed: unsupported parent field {parent_field!r}.")
        if not (title or "").strip():
            return ActionResult(ok=False, error="Topic title is required.")
        if not _signed_in(credentials):
            return ActionResult(ok=False, error="Create topic failed: login required.")
        try:
            topic = await self.client.create_topic(
                parent_id=parent_id,
                title=title,
                topic_kind=topic_kind,
                is_wiki_enabled=is_wiki_enabled,
                parent_field=parent_field,
                credentials=credentials,
            )
        except ApiError as e:
            self._log_failure("create_topic", parent_id, e)
            if not isinstance(e, (UnexpectedPayloadError,) + _LOCAL_ERRORS) and (
                e.status == 404 or "object not found" in e.message.lower()
            ):
                parent = "category" if parent_field == "category_id" else "board"
                return ActionResult(
                    ok=False,
                    error=f"Create topic failed: {parent} not found. Create a {parent} on the home page first.",
                )
            return ActionResult(ok=False, error=f"Create topic failed: {_reason(e, auth_hint='login required in Answer.')}")
        if not topic.id:
            return ActionResult(ok=False, error="Create topic failed: invalid backend response (missing topic id).")
        return ActionResult(
            ok=True,
            notice="Topic created.",
            redirect_url=topic_redirect_url(topic.id),
            data={"topic_id": topic.id},
        )

    async def create_category(
        self, *, slug: str, name: str, description: str = "", credentials: Optional[Credentials]
    ) -> ActionResult:
        return await self._create_catalog_entry("category", slug, name, description, credentials)

    async def create_board(
        self, *, slug: str, name: str, description: str = "", credentials: Optional[Credentials]
    ) -> ActionResult:
        return await self._create_catalog_entry("board", slug, name, description, credentials)

    async def _create_catalog_entry(
        self, kind: str, slug: str, name: str, description: str, credentials: Optional[Credentials]
    ) -> ActionResult:
        label = kind.capitalize()
        if not _signed_in(credentials):
            return ActionResult(ok=False, error=f"Create {kind} failed: login required.")
        create = self.client.create_category if kind == "category" else self.client.create_board
        try:
            entry = await create(slug=slug, name=name, description=description, credentials=credentials)
        except ApiError as e:
            self._log_failure(f"create_{kind}", "-", e)
            return ActionResult(ok=False, error=f"Create {kind} failed: {_reason(e, auth_hint='login required in Answer.')}")
        if not entry.id:
            return ActionResult(ok=False, error=f"Create {kind} failed: invalid backend response (missing {kind} id).")
        return ActionResult(
            ok=True,
            notice=f"{label} {entry.name or entry.slug} created.",
            redirect_url=f"/{'categories' if kind == 'category' else 'boards'}/{quote(entry.id, safe='')}",
            data={f"{kind}_id": entry.id},
        )

    async def link_topics(
        self,
        topic_id: str,
        target_topic_id: Any,
        credentials: Optional[Credentials],
        *,
        link_type: str = "related",
        state: PageState = DEFAULT_STATE,
    ) -> ActionResult:
        back = {"merge_job_id": state.merge_job_id}
        if not _signed_in(credentials):
            return self._fail(topic_id, "Link topics failed: please sign in first.", **back)
        target = normalize_id_token(target_topic_id)
        if not target:
            return self._fail(topic_id, "Link topics failed: missing target topic id.", **back)
        try:
            await self.client.create_doc_link(
                source_topic_id=topic_id,
                target_topic_id=target,
                link_type=link_type,
                credentials=credentials,
            )
        except ApiError as e:
            self._log_failure("link_topics", topic_id, e)
            return self._fail(topic_id, f"Link topics failed: {_reason(e)}", **back)
        return self._ok(topic_id, f"Topic {target} linked.", **back)

    async def login(self, email: str, password: str) -> ActionResult:
        if not (email or "").strip() or not password:
            return ActionResult(ok=False, error="Email and password are required.")
        try:
            result = await self.client.login_by_email(email=email, password=password)
        except ApiError as e:
            logger.warning("login failed: %r", e)
            return ActionResult(ok=False, error=f"Sign in failed: {_reason(e)}")
        return ActionResult(ok=True, notice="Signed in.", data={"access_token": result.access_token})
