class SyncError(Exception):
    """Base class for reconciliation failures."""


class PatternCompileError(SyncError, ValueError):
    """A tag pattern could not be compiled."""


class RegistryFetchError(SyncError):
    """Listing tags for a repository failed."""

    def __init__(self, repository: str, message: str):
        super().__init__(f"Failed to list tags for {repository}: {message}")
        self.repository = repository


class UpdateError(SyncError):
    """The orchestrator did not apply a service update."""

    def __init__(self, service_id: str, image: str, message: str):
        super().__init__(f"Failed to update service {service_id} to {image}: {message}")
        self.service_id = service_id
        self.image = image


class UpdateConflictError(UpdateError):
    """The service changed since it was inspected (stale version index)."""


class UpdateTransportError(UpdateError):
    """The update call did not reach the orchestrator or failed in transit."""
