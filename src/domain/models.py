from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from src.domain.versioning import derive_plugin_name, strip_version_prefix

class SelectionRule(BaseModel):
    """
    One line of the rules file.

    Either an exact repository (``repo`` is set) or a whole organization,
    optionally narrowed by include/exclude substrings on the repository name.
    """
    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1, description="User or organization login")
    repo: Optional[str] = Field(None, description="Exact repository name, if the rule names one")
    include: Optional[str] = Field(None, description="Substring a repository name must contain")
    exclude: Optional[str] = Field(None, description="Substring a repository name must not contain")
    line_number: int = Field(0, ge=0, description="Line in the rules file, for diagnostics")

    @property
    def is_explicit(self) -> bool:
        return self.repo is not None


class RepositoryTarget(BaseModel):
    """A concrete owner/repo pair to process."""
    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class PluginEntry(BaseModel):
    """One pinned release, as written to the generated artifact."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Key in the generated mapping")
    owner: str
    repo: str
    version: str
    sha256: str = Field(..., description="Nix base-32 SHA-256 of the unpacked archive")

    @classmethod
    def from_release(cls, target: RepositoryTarget, tag: str, sha256: str) -> "PluginEntry":
        return cls(
            name=derive_plugin_name(target.repo),
            owner=target.owner,
            repo=target.repo,
            version=strip_version_prefix(tag),
            sha256=sha256,
        )


class QuotaState(BaseModel):
    """Remaining GitHub API calls and when the budget resets."""
    model_config = ConfigDict(frozen=True)

    remaining: int = Field(..., ge=0)
    limit: Optional[int] = Field(None, ge=0)
    reset_at: datetime

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0
