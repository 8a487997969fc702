class WorkflowError(Exception):
    pass


class RequestNotFoundError(WorkflowError):
    pass


class RequestTerminalError(WorkflowError):
    pass


class InvalidTransitionError(WorkflowError):
    pass


class ForbiddenActionError(WorkflowError):
    pass


class VersionConflictError(WorkflowError):
    pass


class WorkflowValidationError(WorkflowError):
    pass
