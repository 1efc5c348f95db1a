"""
Error taxonomy for language-model and embedding service calls.

ServiceError and its subclasses are infrastructure failures and propagate to the
caller. ModelOutputParseError and its subclasses describe untrusted model text that
could not be parsed; the component that raised them always recovers with a fallback.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Embedding, completion or knowledge-store call failed."""

    code = "SERVICE_ERROR"


class ServiceUnavailable(ServiceError):
    """Service unreachable, returned a non-success status, or retries were exhausted."""

    code = "SERVICE_UNAVAILABLE"


class ServiceTimeout(ServiceError):
    """A call (or a whole execution) ran past its deadline."""

    code = "SERVICE_TIMEOUT"


class ModelOutputParseError(ValueError):
    """Model output was not the JSON shape we asked for."""


class AnalysisParseError(ModelOutputParseError):
    pass


class ExpansionParseError(ModelOutputParseError):
    pass


class RelevanceParseError(ModelOutputParseError):
    pass


class ValidationParseError(ModelOutputParseError):
    pass


class RerankingFailure(ModelOutputParseError):
    pass
