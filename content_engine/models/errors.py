from __future__ import annotations


class ContentEngineError(Exception):
    """Base class for every error raised by the content pipeline."""


class ParseError(ContentEngineError):
    """Malformed structured output from the AI service or a feed body."""


class ExternalServiceError(ContentEngineError):
    """Network, HTTP or auth failure on a third-party call."""


class ConfigurationError(ContentEngineError):
    """Missing credentials or settings. Never retried."""


class NotFoundError(ContentEngineError):
    def __init__(self, kind: str, key: object) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class InvalidStateError(ContentEngineError):
    """A record is not in a status that allows the requested operation."""


class PipelineLockedError(ContentEngineError):
    pass


class PipelineCancelled(ContentEngineError):
    pass


class PipelineStageError(ContentEngineError):
    """A full or resumed run failed; the message names the stage, the cause is chained."""

    def __init__(self, stage: str, cause: BaseException, run_id: int | None = None) -> None:
        super().__init__(f"{stage}: {cause}")
        self.stage = stage
        self.run_id = run_id
