from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

# Upstream writes "0" into unset BIGINT id columns.
EMPTY_IDS = ("", "0")

# Answer role ids: 1 user, 2 admin, 3 moderator.
ADMIN_MODERATOR_ROLE_IDS = frozenset({2, 3})


def is_empty_id(value: Optional[str]) -> bool:
    return (value or "").strip() in EMPTY_IDS


class TopicKind(str, Enum):
    discussion = "discussion"
    knowledge = "knowledge"


class MergeState(str, Enum):
    active = "active"
    archived = "archived"


class MergeJobStatus(str, Enum):
    pending = "pending"
    applied = "applied"


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class Category(Record):
    id: str = ""
    slug: str = ""
    name: str = ""
    description: str = ""
    creator_id: str = ""
    status: int = 0
    created_at: str = ""


class Board(Category):
    pass


class Topic(Record):
    id: str = ""
    board_id: str = ""
    user_id: str = ""
    title: str = ""
    topic_kind: str = TopicKind.discussion.value
    is_wiki_enabled: bool = False
    current_wiki_revision_id: str = ""
    solved_post_id: str = ""
    status: str = ""
    post_count: int = 0
    vote_count: int = 0
    last_post_id: str = ""
    created_at: str = ""

    @property
    def has_solution(self) -> bool:
        return not is_empty_id(self.solved_post_id)

    @property
    def has_wiki(self) -> bool:
        return not is_empty_id(self.current_wiki_revision_id)


class Post(Record):
    id: str = ""
    topic_id: str = ""
    user_id: str = ""
    original_text: str = ""
    parsed_text: str = ""
    merge_state: str = MergeState.active.value
    archived_at: Optional[str] = None
    vote_count: int = 0
    status: int = 0
    created_at: str = ""

    @property
    def is_archived(self) -> bool:
        return self.merge_state.strip().lower() == MergeState.archived.value

    @property
    def is_mergeable(self) -> bool:
        # Archived replies cannot be voted on, solved, or merged again.
        return not self.is_archived


class WikiRevision(Record):
    id: str = ""
    topic_id: str = ""
    editor_id: str = ""
    title: str = ""
    document: str = ""
    summary: str = ""
    parent_revision_id: str = ""
    created_at: str = ""

    @property
    def is_root(self) -> bool:
        return is_empty_id(self.parent_revision_id)


class MergeJob(Record):
    id: str = ""
    topic_id: str = ""
    creator_id: str = ""
    reviewer_id: str = ""
    status: str = MergeJobStatus.pending.value
    summary: str = ""
    applied_revision_id: str = ""
    applied_at: Optional[str] = None
    created_at: str = ""

    @property
    def is_applied(self) -> bool:
        # Closed set {pending, applied}: anything unrecognised is pending-like.
        return self.status == MergeJobStatus.applied.value

    @property
    def is_pending(self) -> bool:
        return self.status == MergeJobStatus.pending.value


class MergeJobPostRef(Record):
    id: str = ""
    merge_job_id: str = ""
    post_id: str = ""
    created_at: str = ""


class MergeJobDetail(Record):
    job: MergeJob
    post_refs: List[MergeJobPostRef] = Field(default_factory=list)

    @property
    def post_ids(self) -> List[str]:
        return [r.post_id for r in self.post_refs]


class Contributor(Record):
    user_id: str = ""
    weight: int = 0


class DocLink(Record):
    id: str = ""
    source_topic_id: str = ""
    target_topic_id: str = ""
    link_type: str = "related"


class DocGraph(Record):
    nodes: List[str] = Field(default_factory=list)
    edges: List[DocLink] = Field(default_factory=list)


class CurrentUser(Record):
    id: str = ""
    username: str = ""
    display_name: str = ""
    role_id: int = 0

    @property
    def is_admin_moderator(self) -> bool:
        return self.role_id in ADMIN_MODERATOR_ROLE_IDS

    @property
    def is_authenticated(self) -> bool:
        return bool(self.id.strip())


class LoginResult(Record):
    access_token: str = ""
    user_id: str = ""
    username: str = ""


class Page(Record, Generic[T]):
    list: List[T] = Field(default_factory=list)
    total: int = 0


class MergeOutcomeKind(str, Enum):
    merged = "merged"
    proposed = "proposed"
    already_merged = "already_merged"


class MergeOutcome(BaseModel):
    kind: MergeOutcomeKind
    topic_id: str
    post_id: str
    notice: str
    job: Optional[MergeJob] = None
    revision: Optional[WikiRevision] = None
    stages: List[str] = Field(default_factory=list)

    @property
    def job_id(self) -> str:
        return self.job.id if self.job else ""


class ActionResult(BaseModel):
    """
    Outcome of a user-facing action: exactly one of notice/error is set and is safe
    to show to the end user.
    """

    ok: bool
    notice: str = ""
    error: str = ""
    redirect_url: str = ""
    merge_job_id: str = ""
    modal: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def message(self) -> str:
        return self.notice if self.ok else self.error
