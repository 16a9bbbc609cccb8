"""ctxgraph - budgeted context assembly from a knowledge graph of linked nodes."""

__version__ = "0.1.0"
