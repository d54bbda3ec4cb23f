"""
Typed errors raised by the negotiation and booking engines.

Every error carries a stable ``code`` (returned to API clients) and the HTTP
status the web layer should answer with. Only ``ConcurrentModification`` is
meant to be retried by callers (re-read the aggregate, then re-apply).
"""


class MarketplaceError(Exception):
    """Base class for all domain errors."""

    code = 'marketplace_error'
    status_code = 400
    default_detail = 'The requested operation is not allowed.'

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def as_dict(self):
        return {'detail': self.detail, 'code': self.code}


class InvalidState(MarketplaceError):
    code = 'invalid_state'
    status_code = 409
    default_detail = 'This operation is not allowed in the current state.'


class NotYourTurn(MarketplaceError):
    code = 'not_your_turn'
    status_code = 403
    default_detail = 'It is not your turn to respond to this proposal.'


class RoundLimitExceeded(MarketplaceError):
    code = 'round_limit_exceeded'
    status_code = 400
    default_detail = 'The maximum number of counter-offers has been reached.'


class SlotUnavailable(MarketplaceError):
    code = 'slot_unavailable'
    status_code = 409
    default_detail = 'The requested time window is not available.'


class AlreadyResolved(MarketplaceError):
    code = 'already_resolved'
    status_code = 409
    default_detail = 'This item has already been resolved.'


class ConcurrentModification(MarketplaceError):
    code = 'concurrent_modification'
    status_code = 409
    default_detail = 'This item was modified by someone else. Reload and try again.'


class InvalidPrice(MarketplaceError):
    code = 'invalid_price'
    status_code = 400
    default_detail = 'Price must be a positive amount.'


class InvalidWindow(MarketplaceError):
    code = 'invalid_window'
    status_code = 400
    default_detail = 'The start date must not be after the end date.'


class NotAuthorized(MarketplaceError):
    code = 'not_authorized'
    status_code = 403
    default_detail = 'You do not have permission to perform this action.'
