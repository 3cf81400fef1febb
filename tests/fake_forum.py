from __future__ import annotations

import itertools
import json
import re
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx

from forumflow.api.auth import Credentials

PUBLIC = "/api/v1"
LEGACY = "/answer/api/v1"


def as_user(token: str) -> Credentials:
    return Credentials(token=token)


def ok(data: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"code": 200, "reason": "base.success", "msg": "Success.", "data": data})


def fail(status: int, msg: str, reason: str = "base.error") -> httpx.Response:
    return httpx.Response(status, json={"code": status, "reason": reason, "msg": msg, "data": None})


class FakeForum:
    """
    In-memory forum/wiki service behind an httpx.MockTransport.

    Knobs:
      - down_hosts: hosts answering 503 to everything
      - html_hosts: hosts answering 200 text/html (a misrouted frontend)
      - served_prefix: the only route prefix that is mounted ("/api/v1" by default)
      - fail_apply: apply-merge-job answers 500
    """

    def __init__(self) -> None:
        self._ids = itertools.count(100)
        self.users: Dict[str, Dict[str, Any]] = {
            "tok-mod": {"id": "u-mod", "username": "mod", "display_name": "Moderator", "role_id": 3},
            "tok-owner": {"id": "u-owner", "username": "owner", "display_name": "Owner", "role_id": 1},
            "tok-author": {"id": "u-author", "username": "author", "display_name": "Author", "role_id": 1},
            "tok-stranger": {"id": "u-stranger", "username": "stranger", "display_name": "Stranger", "role_id": 1},
        }
        self.categories: Dict[str, Dict[str, Any]] = {
            "c1": {"id": "c1", "slug": "general", "name": "General", "description": "", "status": 1},
        }
        self.boards: Dict[str, Dict[str, Any]] = {}
        self.topics: Dict[str, Dict[str, Any]] = {}
        self.posts: Dict[str, Dict[str, Any]] = {}
        self.revisions: Dict[str, Dict[str, Any]] = {}
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.job_refs: Dict[str, List[Dict[str, Any]]] = {}
        self.contributors: Dict[str, Dict[str, int]] = {}
        self.votes: List[Tuple[str, str, int]] = []
        self.links: List[Dict[str, Any]] = []

        self.down_hosts: Set[str] = set()
        self.html_hosts: Set[str] = set()
        self.served_prefix = PUBLIC
        self.fail_apply = False

        self.requests: List[httpx.Request] = []
        self.bodies: List[Tuple[str, str, Any]] = []

    # -------- seeding --------

    def next_id(self) -> str:
        return str(next(self._ids))

    def add_topic(
        self,
        topic_id: str = "t1",
        *,
        owner: str = "u-owner",
        title: str = "How to configure",
        wiki_document: Optional[str] = None,
    ) -> Dict[str, Any]:
        topic = {
            "id": topic_id,
            "board_id": "c1",
            "user_id": owner,
            "title": title,
            "topic_kind": "knowledge",
            "is_wiki_enabled": True,
            "current_wiki_revision_id": "0",
            "solved_post_id": "0",
            "status": "available",
            "post_count": 0,
            "vote_count": 0,
        }
        self.topics[topic_id] = topic
        if wiki_document is not None:
            rev_id = self.next_id()
            self.revisions[rev_id] = {
                "id": rev_id,
                "topic_id": topic_id,
                "editor_id": owner,
                "title": title,
                "document": wiki_document,
                "summary": "initial",
                "parent_revision_id": "0",
            }
            topic["current_wiki_revision_id"] = rev_id
        return topic

    def add_post(
        self, post_id: str, topic_id: str = "t1", *, author: str = "u-author", text: str = "a useful reply", archived: bool = False
    ) -> Dict[str, Any]:
        post = {
            "id": post_id,
            "topic_id": topic_id,
            "user_id": author,
            "original_text": text,
            "parsed_text": f"<p>{text}</p>",
            "merge_state": "archived" if archived else "normal",
            "vote_count": 0,
            "status": 1,
        }
        self.posts[post_id] = post
        self.topics[topic_id]["post_count"] += 1
        return post

    # -------- introspection --------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, method: str, pattern: str) -> List[httpx.Request]:
        rx = re.compile(pattern)
        return [r for r in self.requests if r.method == method and rx.search(r.url.path)]

    @property
    def create_job_calls(self) -> int:
        return len(self.calls("POST", r"/merge-jobs$"))

    @property
    def apply_calls(self) -> int:
        return len(self.calls("POST", r"/merge-jobs/[^/]+/apply$"))

    @property
    def write_calls(self) -> int:
        return sum(1 for r in self.requests if r.method == "POST")

    # -------- dispatch --------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.down_hosts:
            return fail(503, "service unavailable")
        if host in self.html_hosts:
            return httpx.Response(200, text="<html>not the api</html>", headers={"content-type": "text/html"})

        path = request.url.path
        user = self._user(request)
        body = json.loads(request.content.decode("utf-8")) if request.content else None
        if request.method == "POST":
            self.bodies.append((request.method, path, body))

        if path.startswith(LEGACY + "/user/"):
            return self._user_routes(request.method, path[len(LEGACY) :], user, body)
        if not path.startswith(self.served_prefix + "/"):
            return httpx.Response(404, text="404 page not found", headers={"content-type": "text/plain"})
        route = path[len(self.served_prefix) :]
        if request.method == "GET":
            return self._get(route, request)
        if request.method == "POST":
            if user is None:
                return fail(401, "unauthorized", "base.unauthorized_error")
            return self._post(route, user, body or {})
        return fail(405, "method not allowed")

    def _user(self, request: httpx.Request) -> Optional[Dict[str, Any]]:
        auth = request.headers.get("authorization", "")
        token = auth[len("Bearer ") :] if auth.startswith("Bearer ") else ""
        return self.users.get(token)

    def _user_routes(self, method: str, route: str, user: Optional[Dict[str, Any]], body: Any) -> httpx.Response:
        if method == "GET" and route == "/user/info":
            if user is None:
                return fail(401, "unauthorized", "base.unauthorized_error")
            return ok(user)
        if method == "POST" and route == "/user/login/email":
            for token, u in self.users.items():
                if body and body.get("e_mail") == f"{u['username']}@example.com" and body.get("pass") == "secret":
                    return ok({"access_token": token, "id": u["id"], "username": u["username"]})
            return fail(400, "Email or password incorrect.", "error.object.email_or_password_incorrect")
        return fail(404, "not found")

    def _get(self, route: str, request: httpx.Request) -> httpx.Response:
        if route == "/categories":
            return ok(list(self.categories.values()))
        if route == "/boards":
            return ok(list(self.boards.values()))
        if route == "/docs/graph":
            root = request.url.params.get("root_topic_id", "")
            edges = [l for l in self.links if root in (l["source_topic_id"], l["target_topic_id"])]
            nodes = sorted({root} | {l["target_topic_id"] for l in edges} | {l["source_topic_id"] for l in edges})
            return ok({"nodes": nodes, "edges": edges})

        m = re.fullmatch(r"/(categories|boards)/([^/]+)/topics", route)
        if m:
            rows = [t for t in self.topics.values() if t["board_id"] == m.group(2)]
            return ok({"list": rows, "total": len(rows)})

        m = re.fullmatch(r"/topics/([^/]+)(/.*)?", route)
        if not m:
            return fail(404, "not found")
        tid, rest = m.group(1), m.group(2) or ""
        topic = self.topics.get(tid)
        if topic is None:
            return fail(404, "object not found", "error.object.not_found")
        if rest == "":
            return ok(topic)
        if rest == "/posts":
            rows = [p for p in self.posts.values() if p["topic_id"] == tid]
            return ok({"list": rows, "total": len(rows)})
        if rest == "/wiki":
            head = self.revisions.get(topic["current_wiki_revision_id"])
            return ok(head) if head else fail(404, "wiki not found", "error.object.not_found")
        if rest == "/wiki/revisions":
            return ok([r for r in self.revisions.values() if r["topic_id"] == tid])
        if rest == "/contributors":
            return ok([{"user_id": u, "weight": w} for u, w in self.contributors.get(tid, {}).items()])
        if rest == "/merge-jobs":
            rows = [j for j in self.jobs.values() if j["topic_id"] == tid]
            return ok({"list": rows, "total": len(rows)})
        m = re.fullmatch(r"/merge-jobs/([^/]+)", rest)
        if m:
            job = self.jobs.get(m.group(1))
            if job is None or job["topic_id"] != tid:
                return fail(404, "merge job not found", "error.object.not_found")
            return ok({"job": job, "post_refs": self.job_refs.get(job["id"], [])})
        return fail(404, "not found")

    def _can_edit_wiki(self, user: Dict[str, Any], topic: Dict[str, Any]) -> bool:
        return user["role_id"] in (2, 3) or user["id"] == topic["user_id"]

    def _post(self, route: str, user: Dict[str, Any], body: Dict[str, Any]) -> httpx.Response:
        if route in ("/categories", "/boards"):
            store = self.categories if route == "/categories" else self.boards
            entry_id = self.next_id()
            store[entry_id] = {"id": entry_id, "creator_id": user["id"], "status": 1, **body}
            return ok(store[entry_id])
        if route == "/topics":
            parent = body.get("category_id") or body.get("board_id")
            if parent not in self.categories and parent not in self.boards:
                return fail(404, "object not found", "error.object.not_found")
            topic = self.add_topic(self.next_id(), owner=user["id"], title=body["title"])
            topic.update(board_id=parent, topic_kind=body["topic_kind"], is_wiki_enabled=body["is_wiki_enabled"])
            return ok(topic)
        if route == "/docs/links":
            link = {"id": self.next_id(), **body}
            self.links.append(link)
            return ok(link)
        m = re.fullmatch(r"/posts/([^/]+)/votes", route)
        if m:
            if m.group(1) not in self.posts:
                return fail(404, "object not found", "error.object.not_found")
            self.votes.append(("post", m.group(1), body["value"]))
            return ok({})

        m = re.fullmatch(r"/topics/([^/]+)(/.*)", route)
        if not m or m.group(1) not in self.topics:
            return fail(404, "object not found", "error.object.not_found")
        tid, rest = m.group(1), m.group(2)
        topic = self.topics[tid]

        if rest == "/posts":
            post = self.add_post(self.next_id(), tid, author=user["id"], text=body["original_text"])
            return ok(post)
        if rest == "/votes":
            self.votes.append(("topic", tid, body["value"]))
            return ok({})
        if rest == "/solution":
            topic["solved_post_id"] = body["post_id"]
            return ok(topic)
        if rest == "/wiki/revisions":
            if not self._can_edit_wiki(user, topic):
                return fail(403, "permission denied", "error.forbidden")
            rev = self._new_revision(topic, user, body)
            return ok(rev)
        if rest == "/merge-jobs":
            job_id = self.next_id()
            job = {
                "id": job_id,
                "topic_id": tid,
                "creator_id": user["id"],
                "reviewer_id": "0",
                "status": "pending",
                "summary": body.get("summary", ""),
                "applied_revision_id": "0",
            }
            self.jobs[job_id] = job
            self.job_refs[job_id] = [
                {"id": self.next_id(), "merge_job_id": job_id, "post_id": pid} for pid in body["post_ids"]
            ]
            return ok(job)
        m = re.fullmatch(r"/merge-jobs/([^/]+)/apply", rest)
        if m:
            job = self.jobs.get(m.group(1))
            if job is None or job["topic_id"] != tid:
                return fail(404, "merge job not found", "error.object.not_found")
            if not self._can_edit_wiki(user, topic):
                return fail(403, "permission denied", "error.forbidden")
            if self.fail_apply:
                return fail(500, "database is locked")
            rev = self._new_revision(topic, user, body)
            job.update(status="applied", reviewer_id=user["id"], applied_revision_id=rev["id"])
            for ref in self.job_refs[job["id"]]:
                post = self.posts.get(ref["post_id"])
                if post is not None:
                    post.update(merge_state="archived", archived_at="2026-01-01T00:00:00Z")
                    weights = self.contributors.setdefault(tid, {})
                    weights[post["user_id"]] = weights.get(post["user_id"], 0) + body["contribution_weight"]
            return ok(rev)
        return fail(404, "not found")

    def _new_revision(self, topic: Dict[str, Any], user: Dict[str, Any], body: Dict[str, Any]) -> Dict[str, Any]:
        rev_id = self.next_id()
        rev = {
            "id": rev_id,
            "topic_id": topic["id"],
            "editor_id": user["id"],
            "title": body["title"],
            "document": body["document"],
            "summary": body.get("summary", ""),
            "parent_revision_id": topic["current_wiki_revision_id"],
        }
        self.revisions[rev_id] = rev
        topic["current_wiki_revision_id"] = rev_id
        return rev
