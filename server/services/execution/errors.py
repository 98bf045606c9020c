"""Exceptions raised inside the workflow engine.

Handlers raise these; the node executor converts them into FAILED action log
entries so a single bad branch never takes down the rest of a run.
"""


class WorkflowEngineError(Exception):
    """Base class for engine errors."""


class WorkflowNotFoundError(WorkflowEngineError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class NodeNotFoundError(WorkflowEngineError):
    def __init__(self, node_id: str, workflow_id: str):
        super().__init__(f"Node {node_id} not found in workflow {workflow_id}")
        self.node_id = node_id
        self.workflow_id = workflow_id


class LeadNotFoundError(WorkflowEngineError):
    def __init__(self, lead_id: str):
        super().__init__(f"Lead not found: {lead_id}")
        self.lead_id = lead_id


class EmailNotFoundError(WorkflowEngineError):
    def __init__(self, email_id: str):
        super().__init__(f"Email not found: {email_id}")
        self.email_id = email_id


class ActionConfigError(WorkflowEngineError):
    """An action node is missing configuration it cannot run without."""


class CollaboratorError(WorkflowEngineError):
    """An external service (email sender, AI generator, analyzer) failed."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class StateConflictError(WorkflowEngineError):
    """Execution state could not be written after repeated concurrent conflicts."""
