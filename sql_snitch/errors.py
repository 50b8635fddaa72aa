class SnitchError(Exception):
    """Base class for every error raised by sql_snitch."""


class ValidationError(SnitchError):
    # Bad arguments. Raised before any connection is opened.
    pass


class TargetError(SnitchError):
    """A single server failed. The batch reports it and moves on."""

    def __init__(self, target, message):
        super().__init__(f"{target}: {message}")
        self.target = target
        self.message = message
