class ProTrackError(Exception):
    pass


# ---------- validation ----------
class DuplicateIdError(ProTrackError):
    """A display id collides (case-insensitively) with another task."""

    def __init__(self, display_id: str):
        super().__init__(f"Task ID '{display_id}' already exists")
        self.display_id = display_id


class InvalidValueError(ProTrackError):
    pass


class ImportFormatError(ProTrackError):
    pass


class SyncConfigError(ProTrackError):
    pass


# ---------- replication ----------
class CloudError(ProTrackError):
    pass


# ---------- external services ----------
class CredentialMissingError(ProTrackError):
    pass


class AIServiceError(ProTrackError):
    pass
