"""
app/repositories package marker.
"""

from app.repositories.dictionary_store import DictionaryStore, SQLAlchemyDictionaryStore

__all__ = [
    "DictionaryStore",
    "SQLAlchemyDictionaryStore",
]
