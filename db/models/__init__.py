"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.dictionary import DictionaryStatus, MetadataDictionary, MetadataType, ProcessingMethod
from db.models.dictionary_variable import DictionaryVariable, VariableStatus
from db.models.remote_instance import RemoteInstance

__all__ = [
    "DictionaryStatus",
    "DictionaryVariable",
    "MetadataDictionary",
    "MetadataType",
    "ProcessingMethod",
    "RemoteInstance",
    "VariableStatus",
]
