from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass(frozen=True)
class Credentials:
    """
    Caller-supplied credentials for one request. Nothing in forumflow stores these;
    every operation that needs them takes them as an argument.
    """

    token: Optional[str] = None
    cookie_header: Optional[str] = None

    @property
    def is_present(self) -> bool:
        return bool((self.token or "").strip() or (self.cookie_header or "").strip())


ANONYMOUS = Credentials()


def build_auth_headers(
    credentials: Optional[Credentials],
    base_headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    headers: Dict[str, str] = dict(base_headers or {})
    if credentials is None:
        return headers
    token = (credentials.token or "").strip()
    if token:
        headers["Authorization"] = f"Bearer {token}"
    cookie = (credentials.cookie_header or "").strip()
    if cookie:
        headers["Cookie"] = cookie
    return headers
