class FarmcallError(Exception):
    """Base class for domain errors raised by the core."""


class MalformedRecordError(FarmcallError):
    """An inbound event or contact is missing a field the core requires."""


class UnknownContactError(FarmcallError):
    pass


class UnknownEventError(FarmcallError):
    pass


class InvalidOutcomeError(FarmcallError):
    pass


class DuplicateEventError(FarmcallError):
    """An edit would collide with another event's (address, type, event_date)."""
