from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

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
    MergeJobPostRef,
    Page,
    Post,
    Record,
    Topic,
    WikiRevision,
)

R = TypeVar("R", bound=Record)

_TRUE_STRINGS = ("true", "1")
_FALSE_STRINGS = ("false", "0")


def _variants(snake: str, *aliases: str) -> Tuple[str, ...]:
    """
    snake_case, camelCase and PascalCase spellings of a field, followed by any
    historical aliases. Order matters: the first present key wins.
    """
    parts = snake.split("_")
    camel = parts[0] + "".join(p[:1].upper() + p[1:] for p in parts[1:])
    pascal = "".join(p[:1].upper() + p[1:] for p in parts)
    # Go structs serialise ids as ID (TopicID, UserID).
    pascal_id = pascal[:-2] + "ID" if pascal.endswith("Id") else pascal
    out: List[str] = []
    for k in (snake, camel, pascal, pascal_id, *aliases):
        if k not in out:
            out.append(k)
    return tuple(out)


def _first_present(raw: Dict[str, Any], keys: Sequence[str]) -> Any:
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return None


def to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    return ""


def to_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(math.floor(value)) if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            f = float(value.strip())
        except ValueError:
            return 0
        return int(math.floor(f)) if math.isfinite(f) else 0
    return 0


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE_STRINGS:
            return True
        if v in _FALSE_STRINGS:
            return False
    return False


def _opt_str(value: Any) -> Optional[str]:
    s = to_str(value)
    return s or None


# field -> (accepted spellings, converter)
FieldTable = Dict[str, Tuple[Tuple[str, ...], Callable[[Any], Any]]]

ENVELOPE_FIELDS: FieldTable = {
    "code": (_variants("code"), to_int),
    "reason": (_variants("reason"), to_str),
    "msg": (_variants("msg", "message", "Message"), to_str),
}

CATEGORY_FIELDS: FieldTable = {
    "id": (_variants("id", "category_id", "categoryId", "board_id", "boardId"), to_str),
    "slug": (_variants("slug", "slug_name", "slugName"), to_str),
    "name": (_variants("name", "title"), to_str),
    "description": (_variants("description", "desc"), to_str),
    "creator_id": (_variants("creator_id", "user_id", "userId"), to_str),
    "status": (_variants("status"), to_int),
    "created_at": (_variants("created_at", "create_time", "createTime"), to_str),
}

TOPIC_FIELDS: FieldTable = {
    "id": (_variants("id", "topic_id", "topicId"), to_str),
    "board_id": (_variants("board_id", "category_id", "categoryId", "CategoryID"), to_str),
    "user_id": (_variants("user_id", "owner_id", "ownerId", "author_id", "authorId"), to_str),
    "title": (_variants("title"), to_str),
    "topic_kind": (_variants("topic_kind", "kind"), to_str),
    "is_wiki_enabled": (_variants("is_wiki_enabled", "wiki_enabled", "wikiEnabled"), to_bool),
    "current_wiki_revision_id": (_variants("current_wiki_revision_id", "wiki_revision_id"), to_str),
    "solved_post_id": (_variants("solved_post_id", "solution_post_id"), to_str),
    "status": (_variants("status"), to_str),
    "post_count": (_variants("post_count", "reply_count", "replyCount"), to_int),
    "vote_count": (_variants("vote_count"), to_int),
    "last_post_id": (_variants("last_post_id"), to_str),
    "created_at": (_variants("created_at", "create_time", "createTime"), to_str),
}

POST_FIELDS: FieldTable = {
    "id": (_variants("id", "post_id", "postId"), to_str),
    "topic_id": (_variants("topic_id"), to_str),
    "user_id": (_variants("user_id", "author_id", "authorId"), to_str),
    "original_text": (_variants("original_text", "original", "Original", "content"), to_str),
    "parsed_text": (_variants("parsed_text", "parsed", "Parsed", "html"), to_str),
    "merge_state": (_variants("merge_state"), to_str),
    "archived_at": (_variants("archived_at"), _opt_str),
    "vote_count": (_variants("vote_count"), to_int),
    "status": (_variants("status"), to_int),
    "created_at": (_variants("created_at", "create_time", "createTime"), to_str),
}

WIKI_REVISION_FIELDS: FieldTable = {
    "id": (_variants("id", "revision_id", "revisionId"), to_str),
    "topic_id": (_variants("topic_id"), to_str),
    "editor_id": (_variants("editor_id", "user_id", "userId"), to_str),
    "title": (_variants("title"), to_str),
    "document": (_variants("document", "content", "body"), to_str),
    "summary": (_variants("summary"), to_str),
    "parent_revision_id": (_variants("parent_revision_id", "parent_id", "parentId"), to_str),
    "created_at": (_variants("created_at", "create_time", "createTime"), to_str),
}

MERGE_JOB_FIELDS: FieldTable = {
    "id": (_variants("id", "merge_job_id", "mergeJobId", "job_id", "jobId"), to_str),
    "topic_id": (_variants("topic_id"), to_str),
    "creator_id": (_variants("creator_id", "user_id", "userId"), to_str),
    "reviewer_id": (_variants("reviewer_id"), to_str),
    "status": (_variants("status", "state"), to_str),
    "summary": (_variants("summary"), to_str),
    "applied_revision_id": (_variants("applied_revision_id"), to_str),
    "applied_at": (_variants("applied_at"), _opt_str),
    "created_at": (_variants("created_at", "create_time", "createTime"), to_str),
}

MERGE_JOB_POST_REF_FIELDS: FieldTable = {
    "id": (_variants("id"), to_str),
    "merge_job_id": (_variants("merge_job_id", "job_id", "jobId"), to_str),
    "post_id": (_variants("post_id"), to_str),
    "created_at": (_variants("created_at", "create_time", "createTime"), to_str),
}

CONTRIBUTOR_FIELDS: FieldTable = {
    "user_id": (_variants("user_id", "id"), to_str),
    "weight": (_variants("weight", "total_weight", "totalWeight", "contribution_weight"), to_int),
}

DOC_LINK_FIELDS: FieldTable = {
    "id": (_variants("id"), to_str),
    "source_topic_id": (_variants("source_topic_id", "source", "from"), to_str),
    "target_topic_id": (_variants("target_topic_id", "target", "to"), to_str),
    "link_type": (_variants("link_type", "type"), to_str),
}

CURRENT_USER_FIELDS: FieldTable = {
    "id": (_variants("id", "user_id", "userId"), to_str),
    "username": (_variants("username", "user_name", "userName"), to_str),
    "display_name": (_variants("display_name", "displayName"), to_str),
    "role_id": (_variants("role_id", "role"), to_int),
}

LOGIN_FIELDS: FieldTable = {
    "access_token": (_variants("access_token", "token", "visit_token"), to_str),
    "user_id": (_variants("user_id", "id"), to_str),
    "username": (_variants("username", "user_name"), to_str),
}


def pick_fields(raw: Any, table: FieldTable) -> Dict[str, Any]:
    src = raw if isinstance(raw, dict) else {}
    out: Dict[str, Any] = {}
    for field, (keys, convert) in table.items():
        out[field] = convert(_first_present(src, keys))
    return out


def _record(cls: Type[R], table: FieldTable, raw: Any) -> R:
    values = pick_fields(raw, table)
    # Drop empty strings so model defaults (e.g. merge_state="active") apply.
    return cls(**{k: v for k, v in values.items() if v != "" and v is not None})


def _optional_record(cls: Type[R], table: FieldTable, raw: Any) -> Optional[R]:
    if not isinstance(raw, dict) or not raw:
        return None
    return _record(cls, table, raw)


def _rows(raw: Any) -> Tuple[List[Any], Optional[int]]:
    """
    Listing payloads come either as a bare array or as {list, total}.
    """
    if isinstance(raw, list):
        return raw, None
    if isinstance(raw, dict):
        rows = _first_present(raw, ("list", "List", "items", "Items", "rows"))
        total = _first_present(raw, ("total", "Total", "count", "Count"))
        if isinstance(rows, list):
            return rows, (to_int(total) if total is not None else None)
    return [], None


def _list_of(cls: Type[R], table: FieldTable, raw: Any) -> List[R]:
    rows, _ = _rows(raw)
    return [_record(cls, table, r) for r in rows if isinstance(r, dict)]


def _page_of(cls: Type[R], table: FieldTable, raw: Any) -> Page[R]:
    rows, total = _rows(raw)
    items = [_record(cls, table, r) for r in rows if isinstance(r, dict)]
    return Page[cls](list=items, total=total if total is not None else len(items))  # type: ignore[valid-type]


def normalize_envelope(raw: Any) -> Tuple[int, str, str, Any]:
    src = raw if isinstance(raw, dict) else {}
    head = pick_fields(src, ENVELOPE_FIELDS)
    data = _first_present(src, ("data", "Data"))
    return head["code"], head["reason"], head["msg"], data


def normalize_category(raw: Any) -> Optional[Category]:
    return _optional_record(Category, CATEGORY_FIELDS, raw)


def normalize_categories(raw: Any) -> List[Category]:
    return _list_of(Category, CATEGORY_FIELDS, raw)


def normalize_board(raw: Any) -> Optional[Board]:
    return _optional_record(Board, CATEGORY_FIELDS, raw)


def normalize_boards(raw: Any) -> List[Board]:
    return _list_of(Board, CATEGORY_FIELDS, raw)


def normalize_topic(raw: Any) -> Optional[Topic]:
    return _optional_record(Topic, TOPIC_FIELDS, raw)


def normalize_topic_page(raw: Any) -> Page[Topic]:
    return _page_of(Topic, TOPIC_FIELDS, raw)


def normalize_post(raw: Any) -> Optional[Post]:
    return _optional_record(Post, POST_FIELDS, raw)


def normalize_post_page(raw: Any) -> Page[Post]:
    return _page_of(Post, POST_FIELDS, raw)


def normalize_wiki_revision(raw: Any) -> Optional[WikiRevision]:
    return _optional_record(WikiRevision, WIKI_REVISION_FIELDS, raw)


def normalize_wiki_revisions(raw: Any) -> List[WikiRevision]:
    return _list_of(WikiRevision, WIKI_REVISION_FIELDS, raw)


def normalize_merge_job(raw: Any) -> Optional[MergeJob]:
    return _optional_record(MergeJob, MERGE_JOB_FIELDS, raw)


def normalize_merge_job_page(raw: Any) -> Page[MergeJob]:
    return _page_of(MergeJob, MERGE_JOB_FIELDS, raw)


def normalize_merge_job_detail(raw: Any) -> Optional[MergeJobDetail]:
    if not isinstance(raw, dict) or not raw:
        return None
    job_raw = _first_present(raw, ("job", "Job", "merge_job", "mergeJob", "MergeJob"))
    job = normalize_merge_job(job_raw)
    if job is None:
        return None
    refs_raw = _first_present(raw, _variants("post_refs", "refs", "Refs"))
    refs = _list_of(MergeJobPostRef, MERGE_JOB_POST_REF_FIELDS, refs_raw)
    return MergeJobDetail(job=job, post_refs=refs)


def normalize_contributors(raw: Any) -> List[Contributor]:
    return _list_of(Contributor, CONTRIBUTOR_FIELDS, raw)


def normalize_doc_link(raw: Any) -> Optional[DocLink]:
    return _optional_record(DocLink, DOC_LINK_FIELDS, raw)


def normalize_doc_graph(raw: Any) -> DocGraph:
    src = raw if isinstance(raw, dict) else {}
    nodes_raw = _first_present(src, ("nodes", "Nodes"))
    nodes = [to_str(n) for n in nodes_raw if to_str(n)] if isinstance(nodes_raw, list) else []
    edges = _list_of(DocLink, DOC_LINK_FIELDS, _first_present(src, ("edges", "Edges", "links")))
    return DocGraph(nodes=nodes, edges=edges)


def normalize_current_user(raw: Any) -> Optional[CurrentUser]:
    user = _optional_record(CurrentUser, CURRENT_USER_FIELDS, raw)
    if user is None or not user.is_authenticated:
        return None
    return user


def normalize_login(raw: Any) -> LoginResult:
    return LoginResult(**pick_fields(raw, LOGIN_FIELDS))
