"""Playbook models, loader and executor for Response Warden.

This package provides:
- YAML playbook parsing and validation
- Trigger matching of events to active playbooks
- Step execution with timeouts, retries, conditions and rollback
- Execution state and its persistence interface
"""

from rw_soar.playbook.conditions import ConditionEvaluator
from rw_soar.playbook.execution import (
    AuditEntry,
    Checkpoint,
    ExecutionRecord,
    ExecutionStatus,
    StepState,
    StepStatus,
)
from rw_soar.playbook.executor import PlaybookExecutor
from rw_soar.playbook.loader import PlaybookLoader, ValidationResult
from rw_soar.playbook.models import ErrorPolicy, PlaybookDefinition, Step
from rw_soar.playbook.source import InMemoryPlaybookSource, PlaybookSource, YamlDirectorySource
from rw_soar.playbook.store import ExecutionStore, InMemoryExecutionStore
from rw_soar.playbook.templating import TemplateResolver
from rw_soar.playbook.trigger import TriggerMatcher

__all__ = [
    # Models
    "PlaybookDefinition",
    "Step",
    "ErrorPolicy",
    # Loader
    "PlaybookLoader",
    "ValidationResult",
    # Sources
    "PlaybookSource",
    "InMemoryPlaybookSource",
    "YamlDirectorySource",
    # Matching and execution
    "TriggerMatcher",
    "PlaybookExecutor",
    "TemplateResolver",
    "ConditionEvaluator",
    # Execution state
    "ExecutionRecord",
    "ExecutionStatus",
    "StepState",
    "StepStatus",
    "Checkpoint",
    "AuditEntry",
    "ExecutionStore",
    "InMemoryExecutionStore",
]
