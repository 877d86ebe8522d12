from __future__ import annotations


class IPListError(Exception):
    """Base class for errors raised by the access decision engine."""


class IPListConsistencyError(IPListError):
    """Rule data carries a value the engine cannot interpret.

    Raised instead of guessing a default. Callers decide whether to fail safe
    (deny) or fail loud (500-class response).
    """

    def __init__(self, message: str, *, list_id: object = None, value: object = None) -> None:
        super().__init__(message)
        self.list_id = list_id
        self.value = value


class InvalidPolicyError(IPListConsistencyError):
    pass


class InvalidDenyMethodError(IPListConsistencyError):
    pass


class DenialContractError(IPListError):
    """A denial descriptor was requested for a decision that did not deny."""


__all__ = [
    "IPListError",
    "IPListConsistencyError",
    "InvalidPolicyError",
    "InvalidDenyMethodError",
    "DenialContractError",
]
