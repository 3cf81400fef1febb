from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from forumflow.api.endpoints import EndpointCandidate
from forumflow.settings import Settings

logger = logging.getLogger("forumflow")


@dataclass(frozen=True)
class DevFallbackPolicy:
    """
    Outside production, a read that exhausted every endpoint candidate returns the
    caller's empty default instead of raising, so a half-configured dev stack still
    renders. Never active in production.
    """

    enabled: bool = True
    production: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "DevFallbackPolicy":
        return cls(enabled=settings.dev_fallback_enabled, production=settings.is_production)

    @property
    def active(self) -> bool:
        return self.enabled and not self.production

    def record(self, *, path: str, attempted: Sequence[EndpointCandidate], err: BaseException) -> None:
        chain = " -> ".join(c.url for c in attempted) or "(none)"
        logger.warning(
            "[forumflow] API unavailable, fallback enabled for %s (%s); tried: %s",
            path,
            _reason(err),
            chain,
        )


def _reason(err: BaseException) -> str:
    msg = getattr(err, "detail", None) or getattr(err, "message", None) or str(err)
    return msg or type(err).__name__
