from common.exceptions import DomainError, ResourceNotFound


class ProductNotFound(ResourceNotFound):
    resource = "product"


class BranchNotFound(ResourceNotFound):
    resource = "branch"


class AlertNotFound(ResourceNotFound):
    resource = "alert"


class InsufficientStock(DomainError):
    code = "insufficient_stock"
    default_message = "Insufficient stock."

    def __init__(self, *, product_id, branch_id, available, requested, message=None):
        super().__init__(
            message or f"Insufficient stock at origin branch. Available: {available}, requested: {requested}.",
            errors={
                "product_id": str(product_id),
                "branch_id": str(branch_id),
                "available": available,
                "requested": requested,
            },
        )
        self.available = available
        self.requested = requested


class MissingBranchName(DomainError):
    code = "missing_branch_name"
    default_message = "A destination branch name is required when the branch has no stock entry yet."

    def __init__(self, branch_id, message=None):
        super().__init__(message, errors={"branch_id": str(branch_id)})
        self.branch_id = branch_id
