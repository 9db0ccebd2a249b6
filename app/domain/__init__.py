"""
app/domain package marker.
"""

from app.domain.dictionary import (
    DictionaryDraft,
    DictionaryOutcome,
    DictionaryRecord,
    InstanceRecord,
    VariableDraft,
    VariableRecord,
)
from app.domain.remote import RemoteHandle

__all__ = [
    "DictionaryDraft",
    "DictionaryOutcome",
    "DictionaryRecord",
    "InstanceRecord",
    "RemoteHandle",
    "VariableDraft",
    "VariableRecord",
]
