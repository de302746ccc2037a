class PinnerException(Exception):
    """Base exception for all pinner-related errors."""
    pass

class TransientNetworkError(PinnerException):
    """Raised when a request fails in a way that is worth retrying."""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Request to {url} failed: {reason}")

class QuotaExhaustedException(PinnerException):
    """Raised when the GitHub REST API call quota is used up."""
    def __init__(self, reset_at: str, message: str = "GitHub API rate limit exceeded."):
        self.reset_at = reset_at
        super().__init__(
            f"{message} Resets at: {reset_at}. "
            "Wait until then, or set GITHUB_AUTH=user:token for a higher quota."
        )

class RetryCeilingExceededException(PinnerException):
    """Raised when a request keeps failing after every allowed attempt."""
    def __init__(self, url: str, attempts: int):
        self.url = url
        self.attempts = attempts
        super().__init__(f"Failed to fetch {url} after {attempts} attempts.")

class NoReleaseFoundException(PinnerException):
    """Raised when a repository has no usable release tag."""
    def __init__(self, owner: str, repo: str):
        self.owner = owner
        self.repo = repo
        super().__init__(f"No release tag found for {owner}/{repo}.")

class RuleParseException(PinnerException):
    """Raised when a line of the rules file cannot be understood."""
    def __init__(self, line_number: int, line: str, reason: str):
        self.line_number = line_number
        self.line = line
        super().__init__(f"Line {line_number}: {reason}: {line!r}")

class DuplicatePluginNameException(PinnerException):
    """Raised when two repositories map to the same plugin name."""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Plugin name '{name}' is produced by more than one repository.")

class ArchiveException(PinnerException):
    """Raised when a downloaded release archive cannot be unpacked."""
    pass
