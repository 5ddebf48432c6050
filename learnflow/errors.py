"""Exception taxonomy shared by the store, AI glue and sync clients."""


class LearnFlowError(Exception):
    pass


class ConfigurationMissing(LearnFlowError):
    """Credentials or provider settings are absent."""


class RemoteAPIError(LearnFlowError):
    """A third-party provider answered with a failure status or error code."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(LearnFlowError):
    """A provider response could not be read as structured data."""


class ValidationError(LearnFlowError):
    """User input rejected: blank or duplicate title, answer too short, unknown reference."""
