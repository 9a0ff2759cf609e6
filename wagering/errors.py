"""Typed failures raised by the wagering core.

Every failure is detected before any mutation is applied. The ``code`` of
each class is the stable identifier surfaced to API callers.
"""


class WageringError(Exception):
    code = "WAGERING_ERROR"


class InvalidAmountError(WageringError):
    code = "INVALID_AMOUNT"


class InsufficientFundsError(WageringError):
    code = "INSUFFICIENT_FUNDS"


class InvalidStakeError(WageringError):
    code = "INVALID_STAKE"


class InvalidOutcomeError(WageringError):
    code = "INVALID_OUTCOME"


class EventNotOpenError(WageringError):
    code = "EVENT_NOT_OPEN"


class EventFullError(WageringError):
    code = "EVENT_FULL"


class DuplicateEntryError(WageringError):
    code = "DUPLICATE_ENTRY"


class DuplicateUsernameError(WageringError):
    code = "DUPLICATE_USERNAME"


class OfferNotOpenError(WageringError):
    code = "OFFER_NOT_OPEN"


class SelfMatchError(WageringError):
    code = "SELF_MATCH"


class BelowMinimumMatchError(WageringError):
    code = "BELOW_MINIMUM_MATCH"


class NotAuthorizedError(WageringError):
    code = "NOT_AUTHORIZED"


class InvalidTransitionError(WageringError):
    code = "INVALID_TRANSITION"


class AlreadySettledError(WageringError):
    code = "ALREADY_SETTLED"


class NotFoundError(WageringError):
    code = "NOT_FOUND"
