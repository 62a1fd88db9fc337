"""Exceptions raised by the modeling workflow.

Schema and degenerate-data errors abort a run. Invalid hyperparameters are
caught by the tuner and recorded per candidate.
"""


class WorkflowError(ValueError):
    """Base class for all workflow failures."""


class SchemaError(WorkflowError):
    """A column expected by a step or a fitted recipe is missing."""


class DegenerateDataError(WorkflowError):
    """The data cannot support the requested fit (empty, constant, single class)."""


class InvalidHyperparameterError(WorkflowError):
    """A hyperparameter value lies outside the algorithm's valid domain."""


class UnfinalizedWorkflowError(WorkflowError):
    """A workflow with tunable placeholders was passed to fit."""
