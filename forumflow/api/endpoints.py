from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from forumflow.settings import Settings


@dataclass(frozen=True)
class EndpointCandidate:
    base_url: str
    path: str

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path}"


def _normalize_base(base_url: str) -> str:
    return (base_url or "").strip().rstrip("/")


def _normalize_prefix(prefix: str) -> str:
    p = "/" + (prefix or "").strip().strip("/")
    return p if p != "/" else ""


@dataclass(frozen=True)
class EndpointResolver:
    """
    Build the ordered list of (base URL, path) pairs to try for one logical call.

    The configured base and the given path always come first. Reads may also be
    tried on the sibling route prefix (public /api/v1 vs the wrapped service's
    /answer/api/v1) and, outside production with probing enabled, on known local
    base URLs. Writes get exactly one candidate so a mutation can never land on
    two different logical endpoints.
    """

    base_url: str
    public_prefix: str = "/api/v1"
    legacy_prefix: str = "/answer/api/v1"
    probe_base_urls: Tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> "EndpointResolver":
        probe: Tuple[str, ...] = ()
        if settings.dev_endpoint_probing and not settings.is_production:
            probe = tuple(settings.dev_base_urls)
        return cls(
            base_url=settings.api_base_url,
            public_prefix=settings.public_prefix,
            legacy_prefix=settings.legacy_prefix,
            probe_base_urls=probe,
        )

    def base_candidates(self) -> List[str]:
        out: List[str] = []
        for b in (self.base_url, *self.probe_base_urls):
            nb = _normalize_base(b)
            if nb and nb not in out:
                out.append(nb)
        return out

    def path_candidates(self, path: str, *, allow_prefix_fallback: bool) -> List[str]:
        p = path if path.startswith("/") else f"/{path}"
        out = [p]
        if not allow_prefix_fallback:
            return out
        sibling = self._sibling_path(p)
        if sibling and sibling not in out:
            out.append(sibling)
        return out

    def _sibling_path(self, path: str) -> str | None:
        public = _normalize_prefix(self.public_prefix)
        legacy = _normalize_prefix(self.legacy_prefix)
        pairs: Sequence[Tuple[str, str]] = ((public, legacy), (legacy, public))
        for src, dst in pairs:
            if not src:
                continue
            if path == src or path.startswith(src + "/") or path.startswith(src + "?"):
                return dst + path[len(src) :]
        return None

    def resolve(self, path: str, *, allow_prefix_fallback: bool) -> List[EndpointCandidate]:
        if not allow_prefix_fallback:
            # Mutations: configured base + given path only, regardless of probing.
            base = _normalize_base(self.base_url)
            p = path if path.startswith("/") else f"/{path}"
            return [EndpointCandidate(base_url=base, path=p)]

        paths = self.path_candidates(path, allow_prefix_fallback=True)
        seen: set[str] = set()
        out: List[EndpointCandidate] = []
        for base in self.base_candidates():
            for p in paths:
                c = EndpointCandidate(base_url=base, path=p)
                if c.url in seen:
                    continue
                seen.add(c.url)
                out.append(c)
        return out
