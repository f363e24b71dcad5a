"""Error taxonomy shared by every function handler.

Handlers raise these and never build error responses themselves; the
exception handler in ``meetlines.main`` turns them into ``{error, success}``
JSON bodies with the status code carried by the exception class.
"""


class FunctionError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(FunctionError):
    """Missing or invalid Authorization header / token."""


class AuthorizationError(FunctionError):
    """Caller is authenticated but lacks the role or does not own the row."""


class NotFoundError(FunctionError):
    """An expected row is absent."""


class MissingFieldError(FunctionError):
    """A required request field was not supplied."""


class ConfigurationError(FunctionError):
    """A credential for an upstream service is not configured."""


class UpstreamError(FunctionError):
    """The payments or AI API call failed."""


class RateLimitedError(UpstreamError):
    status_code = 429


class QuotaExhaustedError(UpstreamError):
    status_code = 402
