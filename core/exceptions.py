"""Custom exceptions for the session core"""


class SessionCoreError(Exception):
    """Base exception for all custom exceptions"""
    pass


class StorageUnavailable(SessionCoreError):
    """Raised when the local key-value store cannot be reached"""
    pass


class PersistenceError(SessionCoreError):
    """Raised when the remote conversation store rejects or fails a write"""
    pass


class ConversationNotFound(PersistenceError):
    """Raised when a conversation record does not exist"""
    pass


class ConversationOwnershipError(PersistenceError):
    """Raised when a record is accessed by an identity that does not own it"""
    pass
