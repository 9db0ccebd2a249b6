"""
Repository layer exports.
"""

from db.repositories.dictionary_repository import DictionaryRepository

__all__ = ["DictionaryRepository"]
