from common.exceptions import DomainError, ResourceNotFound


class TransferNotFound(ResourceNotFound):
    resource = "transfer"


class TransferValidationFailed(DomainError):
    """All-or-nothing rejection: ``errors`` lists every failing item."""

    code = "transfer_validation_failed"
    default_message = "One or more transfer items failed validation."

    def __init__(self, item_errors, message=None):
        super().__init__(message, errors=list(item_errors))
        self.item_errors = self.errors
