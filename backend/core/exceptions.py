"""Custom exceptions for the workflow automation engine.

Only engine-fatal conditions and caller mistakes are raised as exceptions.
Failures inside a node are reported as FAILED execution results instead.
"""


class WorkflowEngineError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, code: str = "engine_error"):
        """Initialize exception with message and machine-readable code.

        Args:
            message: Exception message
            code: Short error code for callers and logs
        """
        self.message = message
        self.code = code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found", code: str = "not_found"):
        super().__init__(message, code)


class WorkflowNotFoundError(NotFoundError):
    """Workflow (or the requested version of it) does not exist."""

    def __init__(self, workflow_id: str, version: int = None):
        suffix = f" (version {version})" if version is not None else ""
        super().__init__(f"Workflow not found: {workflow_id}{suffix}", "workflow_not_found")
        self.workflow_id = workflow_id
        self.version = version


class ExecutionNotFoundError(NotFoundError):
    """No persisted execution record for the given id."""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}", "execution_not_found")
        self.execution_id = execution_id


class NodeNotFoundError(NotFoundError):
    """Graph references a node id that is not defined."""

    def __init__(self, node_id: str, workflow_id: str = None):
        where = f" in workflow {workflow_id}" if workflow_id else ""
        super().__init__(f"Node not found: {node_id}{where}", "node_not_found")
        self.node_id = node_id


class ApprovalNotFoundError(NotFoundError):
    """Approval request id is unknown."""

    def __init__(self, approval_id: str):
        super().__init__(f"Approval request not found: {approval_id}", "approval_not_found")
        self.approval_id = approval_id


class PersistenceError(WorkflowEngineError):
    """Execution state could not be loaded or saved."""

    def __init__(self, message: str = "Persistence unavailable"):
        super().__init__(message, "persistence_error")


class InvalidExecutionStateError(WorkflowEngineError):
    """Operation not allowed for the execution's current status."""

    def __init__(self, message: str):
        super().__init__(message, "invalid_execution_state")


class WorkflowValidationError(WorkflowEngineError):
    """Workflow graph failed validation and cannot be activated."""

    def __init__(self, report, message: str = "Workflow validation failed"):
        """Initialize with the ValidationResult that blocked the operation."""
        self.report = report
        details = "; ".join(f"{e.node_id}: {e.message}" for e in report.errors)
        super().__init__(f"{message}: {details}" if details else message, "validation_failed")


class ApprovalPermissionError(WorkflowEngineError):
    """Responder is not one of the request's required approvers."""

    def __init__(self, approver_id: str, approval_id: str):
        super().__init__(
            f"User {approver_id} is not an approver for request {approval_id}",
            "approval_forbidden",
        )


class InvalidApprovalStateError(WorkflowEngineError):
    """Approval request is already resolved."""

    def __init__(self, approval_id: str, status: str):
        super().__init__(
            f"Approval request {approval_id} is already {status}",
            "approval_closed",
        )


class FormulaError(WorkflowEngineError):
    """Formula could not be evaluated."""

    def __init__(self, message: str):
        super().__init__(message, "formula_error")
