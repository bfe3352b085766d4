"""Read-side errors."""


class ProjectionError(Exception):
    """
    An event cannot be applied as delivered (malformed or inconsistent).

    The consumer parks the message for later replay instead of retrying it
    forever or dropping it.
    """

    def __init__(self, message: str, event_id: str | None = None, event_type: str | None = None):
        self.event_id = event_id
        self.event_type = event_type
        super().__init__(message)
