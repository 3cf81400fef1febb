from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote, urlencode

import httpx

from forumflow.api.auth import ANONYMOUS, Credentials, build_auth_headers
from forumflow.api.endpoints import EndpointResolver
from forumflow.api.executor import NO_FALLBACK, RequestExecutor
from forumflow.api.fallback import DevFallbackPolicy
from forumflow.api import normalize as norm
from forumflow.errors import ApiError, InputValidationError, UnexpectedPayloadError
from forumflow.inputs import coerce_vote_value, coerce_weight, parse_id_list
from forumflow.models import (
    Board,
    Category,
    Contributor,
    CurrentUser,
    DocGraph,
    DocLink,
    LoginResult,
    MergeJob,
    MergeJobDetail,
    Page,
    Post,
    Topic,
    TopicKind,
    WikiRevision,
)
from forumflow.settings import Settings

_EMPTY_PAGE: Dict[str, Any] = {"list": [], "total": 0}
_EMPTY_GRAPH: Dict[str, Any] = {"nodes": [], "edges": []}


def _seg(value: str) -> str:
    return quote(str(value).strip(), safe="")


def _required(value: Optional[str], message: str) -> str:
    v = (value or "").strip()
    if not v:
        raise InputValidationError(message)
    return v


@dataclass(frozen=True)
class ForumApiClient:
    """
    Typed access to the forum/wiki service.

    Reads (GET) may fail over across endpoint candidates and, outside production,
    fall back to an empty default. Writes (POST) hit exactly one endpoint and
    validate their input locally before any network call.
    """

    resolver: EndpointResolver
    executor: RequestExecutor

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> "ForumApiClient":
        return cls(
            resolver=EndpointResolver.from_settings(settings),
            executor=RequestExecutor(
                timeout_s=settings.api_timeout_s,
                fallback_policy=DevFallbackPolicy.from_settings(settings),
                transport=transport,
            ),
        )

    # -------- plumbing --------

    def _api(self, path: str) -> str:
        return f"/{self.resolver.public_prefix.strip('/')}{path}"

    def _legacy(self, path: str) -> str:
        return f"/{self.resolver.legacy_prefix.strip('/')}{path}"

    async def _get(self, path: str, credentials: Optional[Credentials], *, fallback: Any = NO_FALLBACK) -> Any:
        candidates = self.resolver.resolve(path, allow_prefix_fallback=True)
        return await self.executor.execute(
            candidates,
            "GET",
            build_auth_headers(credentials or ANONYMOUS),
            fallback=fallback,
        )

    async def _post(self, path: str, payload: Dict[str, Any], credentials: Optional[Credentials]) -> Any:
        candidates = self.resolver.resolve(path, allow_prefix_fallback=False)
        return await self.executor.execute(
            candidates,
            "POST",
            build_auth_headers(credentials or ANONYMOUS, {"Content-Type": "application/json"}),
            payload,
        )

    async def _get_or_none(self, path: str, credentials: Optional[Credentials]) -> Any:
        # A 404 that survived prefix failover means the object does not exist.
        try:
            return await self._get(path, credentials, fallback=None)
        except ApiError as e:
            if e.status == 404:
                return None
            raise

    # -------- reads --------

    async def list_categories(self, credentials: Optional[Credentials] = None) -> List[Category]:
        data = await self._get(self._api("/categories"), credentials, fallback=[])
        return norm.normalize_categories(data)

    async def list_category_topics(self, category_id: str, credentials: Optional[Credentials] = None) -> Page[Topic]:
        data = await self._get(self._api(f"/categories/{_seg(category_id)}/topics"), credentials, fallback=_EMPTY_PAGE)
        return norm.normalize_topic_page(data)

    async def list_boards(self, credentials: Optional[Credentials] = None) -> List[Board]:
        data = await self._get(self._api("/boards"), credentials, fallback=[])
        return norm.normalize_boards(data)

    async def list_board_topics(self, board_id: str, credentials: Optional[Credentials] = None) -> Page[Topic]:
        data = await self._get(self._api(f"/boards/{_seg(board_id)}/topics"), credentials, fallback=_EMPTY_PAGE)
        return norm.normalize_topic_page(data)

    async def get_topic(self, topic_id: str, credentials: Optional[Credentials] = None) -> Optional[Topic]:
        data = await self._get_or_none(self._api(f"/topics/{_seg(topic_id)}"), credentials)
        return norm.normalize_topic(data)

    async def list_topic_posts(self, topic_id: str, credentials: Optional[Credentials] = None) -> Page[Post]:
        data = await self._get(self._api(f"/topics/{_seg(topic_id)}/posts"), credentials, fallback=_EMPTY_PAGE)
        return norm.normalize_post_page(data)

    async def get_topic_wiki(self, topic_id: str, credentials: Optional[Credentials] = None) -> Optional[WikiRevision]:
        data = await self._get_or_none(self._api(f"/topics/{_seg(topic_id)}/wiki"), credentials)
        return norm.normalize_wiki_revision(data)

    async def list_topic_wiki_revisions(
        self, topic_id: str, credentials: Optional[Credentials] = None
    ) -> List[WikiRevision]:
        data = await self._get(self._api(f"/topics/{_seg(topic_id)}/wiki/revisions"), credentials, fallback=[])
        return norm.normalize_wiki_revisions(data)

    async def list_topic_merge_jobs(self, topic_id: str, credentials: Optional[Credentials] = None) -> Page[MergeJob]:
        data = await self._get(self._api(f"/topics/{_seg(topic_id)}/merge-jobs"), credentials, fallback=_EMPTY_PAGE)
        return norm.normalize_merge_job_page(data)

    async def get_merge_job(
        self, topic_id: str, job_id: str, credentials: Optional[Credentials] = None
    ) -> Optional[MergeJobDetail]:
        path = self._api(f"/topics/{_seg(topic_id)}/merge-jobs/{_seg(job_id)}")
        data = await self._get_or_none(path, credentials)
        return norm.normalize_merge_job_detail(data)

    async def list_topic_contributors(
        self, topic_id: str, credentials: Optional[Credentials] = None
    ) -> List[Contributor]:
        data = await self._get(self._api(f"/topics/{_seg(topic_id)}/contributors"), credentials, fallback=[])
        return norm.normalize_contributors(data)

    async def get_doc_graph(
        self, root_topic_id: str, credentials: Optional[Credentials] = None, *, depth: int | None = None
    ) -> DocGraph:
        params: Dict[str, Any] = {"root_topic_id": str(root_topic_id).strip()}
        if depth:
            params["depth"] = int(depth)
        data = await self._get(self._api(f"/docs/graph?{urlencode(params)}"), credentials, fallback=_EMPTY_GRAPH)
        return norm.normalize_doc_graph(data)

    async def get_current_user(self, credentials: Optional[Credentials] = None) -> Optional[CurrentUser]:
        if credentials is None or not credentials.is_present:
            return None
        try:
            data = await self._get(self._legacy("/user/info"), credentials, fallback=None)
        except ApiError as e:
            if e.status in (401, 403):
                return None
            raise
        return norm.normalize_current_user(data)

    # -------- writes --------

    async def create_category(
        self, *, slug: str, name: str, description: str = "", credentials: Optional[Credentials] = None
    ) -> Category:
        payload = {
            "slug": _required(slug, "slug is required."),
            "name": _required(name, "name is required."),
            "description": (description or "").strip(),
        }
        data = await self._post(self._api("/categories"), payload, credentials)
        return norm.normalize_category(data) or Category()

    async def create_board(
        self, *, slug: str, name: str, description: str = "", credentials: Optional[Credentials] = None
    ) -> Board:
        payload = {
            "slug": _required(slug, "slug is required."),
            "name": _required(name, "name is required."),
            "description": (description or "").strip(),
        }
        data = await self._post(self._api("/boards"), payload, credentials)
        return norm.normalize_board(data) or Board()

    async def create_topic(
        self,
        *,
        parent_id: str,
        title: str,
        topic_kind: str = TopicKind.discussion.value,
        is_wiki_enabled: bool = False,
        parent_field: str = "board_id",
        credentials: Optional[Credentials] = None,
    ) -> Topic:
        if parent_field not in ("board_id", "category_id"):
            raise ValueError(f"unsupported parent field: {parent_field}")
        kind = TopicKind.knowledge.value if topic_kind == TopicKind.knowledge.value else TopicKind.discussion.value
        payload = {
            parent_field: _required(parent_id, f"{parent_field} is required."),
            "title": _required(title, "Topic title is required."),
            "topic_kind": kind,
            "is_wiki_enabled": bool(is_wiki_enabled),
        }
        data = await self._post(self._api("/topics"), payload, credentials)
        return norm.normalize_topic(data) or Topic()

    async def create_topic_post(
        self, topic_id: str, *, original_text: str, credentials: Optional[Credentials] = None
    ) -> Post:
        payload = {"original_text": _required(original_text, "Reply content is required.")}
        data = await self._post(self._api(f"/topics/{_seg(topic_id)}/posts"), payload, credentials)
        return norm.normalize_post(data) or Post()

    async def create_merge_job(
        self,
        topic_id: str,
        *,
        post_ids: Iterable[Any],
        summary: str = "",
        credentials: Optional[Credentials] = None,
    ) -> MergeJob:
        ids = parse_id_list(post_ids)
        if not ids:
            raise InputValidationError("add at least one reply id.")
        payload = {"post_ids": ids, "summary": (summary or "").strip()}
        data = await self._post(self._api(f"/topics/{_seg(topic_id)}/merge-jobs"), payload, credentials)
        job = norm.normalize_merge_job(data)
        if job is None or not job.id:
            raise UnexpectedPayloadError("invalid backend response (missing merge job id).", 200)
        return job

    async def apply_merge_job(
        self,
        topic_id: str,
        job_id: str,
        *,
        title: str,
        document: str,
        summary: str = "",
        contribution_weight: Any = 1,
        credentials: Optional[Credentials] = None,
    ) -> WikiRevision:
        jid = _required(job_id, "missing merge job id.")
        t = (title or "").strip()
        d = (document or "").strip()
        if not t or not d:
            raise InputValidationError("title and document are required.")
        payload = {
            "title": t,
            "document": d,
            "summary": (summary or "").strip(),
            "contribution_weight": coerce_weight(contribution_weight),
        }
        path = self._api(f"/topics/{_seg(topic_id)}/merge-jobs/{_seg(jid)}/apply")
        data = await self._post(path, payload, credentials)
        return norm.normalize_wiki_revision(data) or WikiRevision()

    async def vote_topic(self, topic_id: str, *, value: Any, credentials: Optional[Credentials] = None) -> None:
        payload = {"value": coerce_vote_value(value)}
        await self._post(self._api(f"/topics/{_seg(topic_id)}/votes"), payload, credentials)

    async def vote_post(self, post_id: str, *, value: Any, credentials: Optional[Credentials] = None) -> None:
        pid = _required(post_id, "missing reply id.")
        payload = {"value": coerce_vote_value(value)}
        await self._post(self._api(f"/posts/{_seg(pid)}/votes"), payload, credentials)

    async def set_topic_solution(
        self, topic_id: str, *, post_id: str, credentials: Optional[Credentials] = None
    ) -> None:
        # Topic membership of the post is checked by the service, not here.
        payload = {"post_id": _required(post_id, "missing reply id.")}
        await self._post(self._api(f"/topics/{_seg(topic_id)}/solution"), payload, credentials)

    async def create_topic_wiki_revision(
        self,
        topic_id: str,
        *,
        title: str,
        document: str,
        summary: str = "",
        source_post_ids: Iterable[Any] | str | None = None,
        credentials: Optional[Credentials] = None,
    ) -> WikiRevision:
        t = (title or "").strip()
        d = (document or "").strip()
        if not t or not d:
            raise InputValidationError("title and document are required.")
        payload = {
            "title": t,
            "document": d,
            "summary": (summary or "").strip(),
            "source_post_ids": parse_id_list(source_post_ids),
        }
        data = await self._post(self._api(f"/topics/{_seg(topic_id)}/wiki/revisions"), payload, credentials)
        return norm.normalize_wiki_revision(data) or WikiRevision()

    async def create_doc_link(
        self,
        *,
        source_topic_id: str,
        target_topic_id: str,
        link_type: str = "related",
        credentials: Optional[Credentials] = None,
    ) -> DocLink:
        payload = {
            "source_topic_id": _required(source_topic_id, "source topic id is required."),
            "target_topic_id": _required(target_topic_id, "target topic id is required."),
            "link_type": (link_type or "related").strip(),
        }
        data = await self._post(self._api("/docs/links"), payload, credentials)
        return norm.normalize_doc_link(data) or DocLink()

    async def login_by_email(self, *, email: str, password: str) -> LoginResult:
        e = (email or "").strip()
        if not e or not password:
            raise InputValidationError("Email and password are required.")
        data = await self._post(self._legacy("/user/login/email"), {"e_mail": e, "pass": password}, None)
        result = norm.normalize_login(data)
        if not result.access_token:
            raise UnexpectedPayloadError("token missing from backend response.", 200)
        return result
