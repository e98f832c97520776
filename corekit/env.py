"""Description of the running application's build and deployment."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AppEnv:
    """Environment name, CI and git details, and the start time of the application."""

    env_name: str = ""
    ci_pipeline_id: str = ""
    git_tag: str = ""
    git_branch: str = ""
    git_commit: str = ""
    git_commit_short: str = ""
    started_at: datetime = field(default_factory=_now)

    def as_fields(self) -> dict[str, Any]:
        """Return the version details as log fields."""
        return {
            "env_name": self.env_name,
            "git_branch": self.git_branch,
            "git_commit": self.git_commit,
            "git_commit_short": self.git_commit_short,
            "git_tag": self.git_tag,
            "ci_pipeline_id": self.ci_pipeline_id,
        }