"""
Guitar Harmony - Error taxonomy

Stores raise these; the HTTP layer in ``guitar_harmony.main`` is the only
place that turns them into status codes.
"""


class HarmonyError(Exception):
    """Base class for application errors."""

    status_code = 500


class ValidationError(HarmonyError):
    """Input rejected before anything was written (bad type, bad enum value, ...)."""

    status_code = 400


class AuthenticationError(HarmonyError):
    """Wrong or missing password."""

    status_code = 401


class NotFoundError(HarmonyError):
    """A song, guitar or file (or the bytes behind it) does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found")


class FileTooLargeError(HarmonyError):
    status_code = 413


class StorageError(HarmonyError):
    """Blob storage could not be reached or refused an operation."""

    status_code = 500
