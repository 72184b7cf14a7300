"""
Identity Reconciliation - Errors

Every failure the engine surfaces is an IdentityError. The transport
layer maps the subclasses to status codes.
"""


class IdentityError(Exception):
    """Base failure of the reconciliation engine."""


class InvalidFragmentError(IdentityError):
    """Neither an email nor a phone number is present after normalization."""


class ConsistencyError(IdentityError):
    """
    A mutation that must touch exactly one row touched zero or several,
    or an invalid id reached a locking or mutation call.

    Always fatal to the current transaction and never retried.
    """


class TransientStoreError(IdentityError):
    """
    Connection loss, timeout or deadlock reported by the database.

    The transaction has been rolled back; the caller may retry.
    """
