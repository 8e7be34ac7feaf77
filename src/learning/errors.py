"""Error taxonomy for the learning engine.

Every error here is recoverable from the caller's point of view: the
dictation/refinement flow is never aborted by the learning engine.
"""


class LearningError(Exception):
    """Base learning engine error."""


class EmptyInputError(LearningError, ValueError):
    """Both diff inputs were empty."""


class AlreadyDecidedError(LearningError):
    """An A/B test already has a recorded choice."""

    def __init__(self, test_id: str):
        super().__init__(f"A/B test already decided: {test_id}")
        self.test_id = test_id


class SyncConflictUnresolvable(LearningError):
    """Remote and local state can't be merged (schema version mismatch)."""

    def __init__(self, local_version: int, remote_version: int | None):
        super().__init__(
            f"Remote schema version {remote_version} does not match local {local_version}"
        )
        self.local_version = local_version
        self.remote_version = remote_version


class StoreCorruptionError(LearningError):
    """Local persistence could not be read."""


class NetworkUnavailableError(LearningError):
    """Remote store unreachable; the mutation stays queued."""


class InvalidSnapshotError(LearningError, ValueError):
    """Backup snapshot failed validation or has an unsupported schema version."""


class PatternNotFoundError(LearningError, KeyError):
    """No pattern with the given id."""

    def __init__(self, pattern_id: str):
        super().__init__(pattern_id)
        self.pattern_id = pattern_id

    def __str__(self) -> str:
        return f"Pattern not found: {self.pattern_id}"


class RemoteRejectedError(LearningError):
    """The remote answered but refused the request (4xx)."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"Remote rejected request ({status_code}): {detail}".rstrip(": "))
        self.status_code = status_code
