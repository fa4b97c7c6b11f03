class GigfleetError(Exception):
    pass


class IntelligenceError(GigfleetError):
    """External model call failed or returned something unusable. Safe to retry."""

    retryable = True

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class OfferValidationError(GigfleetError):
    """Offer is missing a required numeric field; raised before any external call."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__("Please fill in " + ", ".join(self.missing) + ".")


class LocationUnavailable(GigfleetError):
    """Location source absent or permission denied."""


class NotLoaded(GigfleetError):
    pass


class UnknownEntity(GigfleetError):
    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")
