"""Errors raised by the wiki generation layer."""

from kwiki.generation.models import WikiStatus


class ConflictError(Exception):
    """Raised when an equivalent generation job is still running.

    Attributes:
        existing_wiki_id: Id of the job already in progress.
        status: Status of that job when the new request was rejected.
    """

    def __init__(self, existing_wiki_id: str, status: WikiStatus):
        super().__init__(
            f"Wiki generation already in progress for {existing_wiki_id} (status: {status.value})"
        )
        self.existing_wiki_id = existing_wiki_id
        self.status = status
