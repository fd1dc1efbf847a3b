"""Core exceptions for livecount"""

from typing import Optional


class LivecountError(Exception):
    """Base exception for the counting engine"""
    pass


class ConfigurationError(LivecountError):
    """Raised when a counter definition is invalid or a counter name is unknown"""
    pass


class PredicateError(LivecountError):
    """Raised when a predicate or extractor fails while being evaluated"""

    def __init__(self, message: str, counter: Optional[str] = None, hook: Optional[str] = None):
        super().__init__(message)
        self.counter = counter
        self.hook = hook


class StorageError(LivecountError):
    """Raised when a key-value backend primitive fails"""

    def __init__(self, message: str, operation: Optional[str] = None, key: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.key = key
