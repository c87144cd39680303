"""Record lifecycle flows."""

from cipherledger.workflow.detail import RecordDetailSession
from cipherledger.workflow.orchestrator import (
    RecordLifecycleOrchestrator,
    parse_contract_value,
)

__all__ = ["RecordDetailSession", "RecordLifecycleOrchestrator", "parse_contract_value"]
