"""
Failure kinds raised by the membership layer.

Expected races (node already there, node already gone) are not errors and
never show up here; see Outcome in registry.py.
"""

from typing import Optional


class MembershipError(Exception):
    """Base class for membership failures."""


class CoordinationError(MembershipError):
    """
    ZooKeeper session or protocol failure.

    Wraps connection loss, session expiry, timeouts and any other kazoo error
    that is not one of the handled races. Not retried at this layer.
    """

    def __init__(self, operation: str, path: Optional[str], cause: BaseException):
        self.operation = operation
        self.path = path
        self.cause = cause
        super().__init__(f"{operation} {path or ''} failed: {type(cause).__name__}: {cause}")

    @property
    def kind(self) -> str:
        return type(self.cause).__name__


class AddressResolutionError(MembershipError):
    """The local host name could not be resolved to an advertisable address."""
