from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from forumflow.api.auth import Credentials
from forumflow.api.client import ForumApiClient
from forumflow.errors import ApiError
from forumflow.models import ActionResult
from forumflow.settings import Settings
from forumflow.workflow.actions import ForumActions, PageState
from forumflow.workflow.topic_view import load_topic_view

logger = logging.getLogger("forumflow")

IdList = Union[str, List[Union[str, int]]]


class PageForm(BaseModel):
    # Current topic page state; failed actions redirect back to it.
    merge_job_id: str = ""
    modal: str = ""
    merge_post_id: str = ""

    def page_state(self) -> PageState:
        return PageState.from_query(self.merge_job_id, self.modal, self.merge_post_id)


class MergeReplyForm(PageForm):
    post_id: Union[str, int] = ""


class CreateMergeJobForm(PageForm):
    post_ids: IdList = ""
    summary: str = ""
    next_modal: str = ""


class ApplyMergeJobForm(PageForm):
    title: str = ""
    document: str = ""
    summary: str = ""
    contribution_weight: Any = 1


class VoteForm(PageForm):
    value: Any = 1


class PostVoteForm(VoteForm):
    topic_id: str = ""


class SolutionForm(PageForm):
    post_id: Union[str, int] = ""


class WikiRevisionForm(PageForm):
    title: str = ""
    document: str = ""
    summary: str = ""
    source_post_ids: IdList = ""


class ReplyForm(BaseModel):
    original_text: str = ""


class LinkForm(PageForm):
    target_topic_id: Union[str, int] = ""
    link_type: str = "related"


class TopicForm(BaseModel):
    parent_id: str = ""
    parent_field: str = "category_id"
    title: str = ""
    topic_kind: str = "discussion"
    is_wiki_enabled: bool = False


class CatalogForm(BaseModel):
    slug: str = ""
    name: str = ""
    description: str = ""


class LoginForm(BaseModel):
    e_mail: str = ""
    password: str = Field(default="", alias="pass")


def request_credentials(request: Request, settings: Settings) -> Credentials:
    """Bearer token from the Authorization header, else from the token cookie."""
    token = ""
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        token = auth[len("bearer ") :].strip()
    if not token:
        token = (request.cookies.get(settings.token_cookie_name) or "").strip()
    return Credentials(token=token or None)


def _result(result: ActionResult) -> Dict[str, Any]:
    body = result.model_dump()
    body["message"] = result.message
    return body


def create_app(settings: Settings | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """
    App factory used by uvicorn and tests.

    transport overrides the outbound httpx transport (tests pass an httpx.MockTransport).
    """
    s = settings or Settings()
    logging.getLogger("forumflow").setLevel(s.log_level.upper())

    app = FastAPI(title="forumflow", version="0.1.0")
    app.state.settings = s
    app.state.client = ForumApiClient.from_settings(s, transport=transport)
    app.state.actions = ForumActions.from_client(app.state.client)

    def creds(request: Request) -> Credentials:
        return request_credentials(request, s)

    def actions() -> ForumActions:
        return app.state.actions

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True, "env": s.app_env, "api_base_url": s.api_base_url}

    @app.get("/topics/{topic_id}")
    async def topic_view(topic_id: str, request: Request, merge_job_id: str = "") -> Dict[str, Any]:
        try:
            view = await load_topic_view(app.state.client, topic_id, creds(request), merge_job_id)
        except ApiError as e:
            logger.warning("topic %s view failed: %r", topic_id, e)
            # A 200 HTML page from a misrouted frontend is still a failure.
            status = e.status if e.status >= 400 else 502
            raise HTTPException(status_code=status, detail=e.message) from e
        if view.topic is None:
            raise HTTPException(status_code=404, detail="topic not found")
        body = view.model_dump()
        body.update(
            solved_post_id=view.solved_post_id,
            archived_reply_count=view.archived_reply_count,
            can_quick_merge=view.can_quick_merge,
            pending_job_ids=[j.id for j in view.pending_jobs],
            viewer_id=view.viewer_id,
        )
        return body

    @app.post("/login")
    async def login(form: LoginForm) -> JSONResponse:
        result = await actions().login(form.e_mail, form.password)
        resp = JSONResponse(_result(result.model_copy(update={"data": {}})), status_code=200 if result.ok else 400)
        if result.ok:
            resp.set_cookie(
                s.token_cookie_name,
                result.data["access_token"],
                max_age=s.token_cookie_max_age_s,
                httponly=True,
                samesite="lax",
                secure=s.is_production,
                path="/",
            )
        return resp

    @app.post("/logout")
    def logout() -> JSONResponse:
        resp = JSONResponse({"ok": True})
        resp.delete_cookie(s.token_cookie_name, path="/")
        return resp

    @app.post("/topics/{topic_id}/merge")
    async def merge_reply(topic_id: str, form: MergeReplyForm, request: Request) -> Dict[str, Any]:
        return _result(await actions().merge_reply(topic_id, form.post_id, creds(request), form.page_state()))

    @app.post("/topics/{topic_id}/merge-jobs")
    async def create_merge_job(topic_id: str, form: CreateMergeJobForm, request: Request) -> Dict[str, Any]:
        result = await actions().create_merge_job(
            topic_id,
            form.post_ids,
            form.summary,
            creds(request),
            next_modal=form.next_modal,
            state=form.page_state(),
        )
        return _result(result)

    @app.post("/topics/{topic_id}/merge-jobs/{job_id}/apply")
    async def apply_merge_job(topic_id: str, job_id: str, form: ApplyMergeJobForm, request: Request) -> Dict[str, Any]:
        result = await actions().apply_merge_job(
            topic_id,
            job_id,
            title=form.title,
            document=form.document,
            summary=form.summary,
            contribution_weight=form.contribution_weight,
            credentials=creds(request),
            state=form.page_state(),
        )
        return _result(result)

    @app.post("/topics/{topic_id}/votes")
    async def vote_topic(topic_id: str, form: VoteForm, request: Request) -> Dict[str, Any]:
        return _result(await actions().vote_topic(topic_id, form.value, creds(request), form.page_state()))

    @app.post("/posts/{post_id}/votes")
    async def vote_post(post_id: str, form: PostVoteForm, request: Request) -> Dict[str, Any]:
        if not form.topic_id.strip():
            raise HTTPException(status_code=400, detail="topic_id is required")
        result = await actions().vote_post(form.topic_id.strip(), post_id, form.value, creds(request), form.page_state())
        return _result(result)

    @app.post("/topics/{topic_id}/solution")
    async def mark_solution(topic_id: str, form: SolutionForm, request: Request) -> Dict[str, Any]:
        return _result(await actions().mark_solution(topic_id, form.post_id, creds(request), form.page_state()))

    @app.post("/topics/{topic_id}/wiki/revisions")
    async def publish_wiki_revision(topic_id: str, form: WikiRevisionForm, request: Request) -> Dict[str, Any]:
        result = await actions().publish_wiki_revision(
            topic_id,
            title=form.title,
            document=form.document,
            summary=form.summary,
            source_post_ids=form.source_post_ids,
            credentials=creds(request),
            state=form.page_state(),
        )
        return _result(result)

    @app.post("/topics/{topic_id}/posts")
    async def create_topic_post(topic_id: str, form: ReplyForm, request: Request) -> Dict[str, Any]:
        return _result(await actions().create_topic_post(topic_id, form.original_text, creds(request)))

    @app.post("/topics/{topic_id}/links")
    async def link_topics(topic_id: str, form: LinkForm, request: Request) -> Dict[str, Any]:
        result = await actions().link_topics(
            topic_id,
            form.target_topic_id,
            creds(request),
            link_type=form.link_type,
            state=form.page_state(),
        )
        return _result(result)

    @app.post("/topics")
    async def create_topic(form: TopicForm, request: Request) -> Dict[str, Any]:
        result = await actions().create_topic(
            form.parent_id,
            title=form.title,
            topic_kind=form.topic_kind,
            is_wiki_enabled=form.is_wiki_enabled,
            parent_field=form.parent_field,
            credentials=creds(request),
        )
        return _result(result)

    @app.post("/categories")
    async def create_category(form: CatalogForm, request: Request) -> Dict[str, Any]:
        result = await actions().create_category(
            slug=form.slug, name=form.name, description=form.description, credentials=creds(request)
        )
        return _result(result)

    @app.post("/boards")
    async def create_board(form: CatalogForm, request: Request) -> Dict[str, Any]:
        result = await actions().create_board(
            slug=form.slug, name=form.name, description=form.description, credentials=creds(request)
        )
        return _result(result)

    return app


app = create_app()
