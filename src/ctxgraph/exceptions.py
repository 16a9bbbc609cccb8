"""Custom exceptions for ctxgraph."""


class CtxGraphError(Exception):
    """Base exception for all ctxgraph errors."""


class ConfigError(CtxGraphError):
    """Configuration-related errors."""


class ValidationError(CtxGraphError):
    """Invalid input at a caller boundary (depth, token budget, lens, ...)."""


class GraphError(CtxGraphError):
    """Knowledge graph errors."""


class NodeNotFoundError(GraphError):
    """Raised when a node id does not exist in the node store."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class BackendUnavailableError(GraphError):
    """Raised when the node store cannot be reached at all."""


class PartialFailure(CtxGraphError):
    """A per-seed or per-node sub-operation failed during assembly."""

    def __init__(self, phase: str, node_id: str, reason: str):
        self.phase = phase
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"{phase} failed for {node_id}: {reason}")
