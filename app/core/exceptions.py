"""
Platform-wide exception hierarchy.

Services raise these; the application factory registers one handler per
type so every blueprint gets the same HTTP status and JSON body.

Usage:
    from app.core.exceptions import ChainConflictError, NotFoundError

    raise NotFoundError(resource="ItemDetail", resource_id=42)
    raise ChainConflictError(item_detail_id=42, record_id=7)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "ItemDetail").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ChainConflictError(Exception):
    """Raised when the action pointer of an approval chain moved underneath us.

    The decision path clears ``is_action`` with a compare-and-set update; zero
    affected rows means another writer already advanced the chain. The whole
    transition is rolled back.

    Maps to HTTP 409.
    """

    def __init__(self, item_detail_id: int, record_id: int | None = None) -> None:
        self.item_detail_id = item_detail_id
        self.record_id = record_id
        msg = f"Approval chain of item {item_detail_id} changed concurrently"
        if record_id is not None:
            msg += f" (record {record_id})"
        super().__init__(msg)
