"""
Error taxonomy shared by the engine, the transports and the HTTP layer.

Duplicate alert suppression is deliberately absent here: it is a successful
outcome reported through the return value of ``AlertStore.raise_alert``.
"""

from __future__ import annotations


class IotDashError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(IotDashError):
    """
    A write was rejected because the resulting state would be inconsistent.

    Raised synchronously; the store keeps its previous value.
    """


class NotFoundError(IotDashError):
    """An operation referenced a device or alert that does not exist."""


class TransportError(IotDashError):
    """An inbound payload could not be decoded into a domain message."""
