import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_ARCHIVE_URL = "https://github.com/{owner}/{repo}/archive/{tag}.tar.gz"


class PinnerSettings(BaseModel):
    """Runtime configuration, assembled from the environment and command line."""

    rules_file: Path = Field(Path("plugins.txt"), description="Selection rules, one per line")
    output_file: Path = Field(Path("data.nix"), description="Generated artifact to rewrite")
    github_auth: Optional[str] = Field(None, description="Credentials in user:token form")
    max_attempts: int = Field(30, ge=1)
    retry_delay: float = Field(5.0, ge=0, description="Seconds between attempts")
    page_size: int = Field(100, ge=1, le=100)
    request_timeout: float = Field(120.0, gt=0)
    api_url: str = DEFAULT_API_URL
    archive_url: str = DEFAULT_ARCHIVE_URL
    skip_untagged: bool = Field(False, description="Skip repositories without tags instead of failing")

    @classmethod
    def from_env(cls, **overrides) -> "PinnerSettings":
        # Load environment variables from .env file
        load_dotenv()

        values = {"github_auth": os.getenv("GITHUB_AUTH") or None}
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
