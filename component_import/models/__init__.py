"""Domain models for the component import engine.

Rows, candidates, validation report, instances/milestones and run results.
"""

from .candidate import ConsolidatedCandidate, IdentityKey, ImportCandidate, ImportKind
from .config_models import DatabaseConfig, EngineConfig, ImportOptions
from .error_record import ErrorRecord
from .instance import (
    ComponentInstance,
    InstanceUpdate,
    MilestoneDefinition,
    MilestoneRecord,
    MilestoneTemplate,
    WorkflowType,
)
from .processing_result import ChunkOutcome, ImportOutcome, ImportResult, ImportSummary, InstanceFailure
from .row_data import RawRow
from .validation import InvalidRow, IssueCategory, ValidationIssue, ValidationReport, ValidationStage

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "EngineConfig",
    "ImportOptions",
    # Row / candidate models
    "RawRow",
    "ImportKind",
    "IdentityKey",
    "ImportCandidate",
    "ConsolidatedCandidate",
    # Validation
    "IssueCategory",
    "ValidationStage",
    "ValidationIssue",
    "InvalidRow",
    "ValidationReport",
    # Instances
    "WorkflowType",
    "MilestoneDefinition",
    "MilestoneTemplate",
    "MilestoneRecord",
    "ComponentInstance",
    "InstanceUpdate",
    # Results
    "ChunkOutcome",
    "InstanceFailure",
    "ImportOutcome",
    "ImportSummary",
    "ImportResult",
    "ErrorRecord",
]
