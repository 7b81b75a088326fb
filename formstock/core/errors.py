"""
FormStock Service — Domain error taxonomy

Every error raised by the response lifecycle carries the HTTP status the
routers translate it into.
"""


class FormStockError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def detail(self):
        return self.message


class ValidationError(FormStockError):
    """Bad input shape, empty id set, or business rule violation."""
    status_code = 400


class NotFoundError(FormStockError):
    """Form or item does not exist, or is not visible to the caller."""
    status_code = 404


class EligibilityError(FormStockError):
    """A selected item no longer qualifies (inactive, out of stock, price floor)."""
    status_code = 409

    def __init__(self, message: str, item_id: str | None = None):
        super().__init__(message)
        self.item_id = item_id


class PersistenceError(FormStockError):
    """The underlying store rejected a read or write."""
    status_code = 500


class PartialFailure(FormStockError):
    """
    A multi-item operation where some units succeeded and some did not.
    ``failed_item_ids`` lists the units the caller must retry.
    """
    status_code = 500

    def __init__(self, message: str, failed_item_ids: list[str], completed: dict | None = None):
        super().__init__(message)
        self.failed_item_ids = list(failed_item_ids)
        self.completed = dict(completed or {})

    @property
    def detail(self):
        return {"message": self.message, "failed_item_ids": self.failed_item_ids}
