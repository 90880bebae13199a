import asyncio
import logging
import time
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field

from app.settings import settings, worst_case_analysis_seconds
from domain.errors import AnalysisError, ProfileEngineError, is_transient
from domain.services.usage_tracker import UsageTracker
from infra.llm.client import validate_llm_response

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class AnalysisRequest(BaseModel):
    operation: str
    model: str
    messages: List[Dict[str, str]]
    response_format: Optional[Dict] = Field(default_factory=lambda: {"type": "json_object"})
    entity_id: Optional[str] = None


class AnalysisInvoker:
    """One external analysis call with a per-attempt timeout, bounded retries and schema validation.

    Attempts that time out or hit a transient transport failure are retried
    with linearly increasing backoff. A schema violation ends the call at once,
    as does a transport failure that is not transient. Every attempt is
    reported to the usage tracker.
    """

    def __init__(self, client, usage_tracker: Optional[UsageTracker] = None, *,
                 timeout_seconds: Optional[float] = None, max_retries: Optional[int] = None,
                 backoff_seconds: Optional[float] = None, sleep=asyncio.sleep, clock=time.monotonic):
        self.client = client
        self.usage_tracker = usage_tracker
        self.timeout_seconds = settings.ANALYSIS_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.max_retries = settings.ANALYSIS_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = settings.ANALYSIS_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self._sleep = sleep
        self._clock = clock

    @property
    def worst_case_seconds(self) -> float:
        return worst_case_analysis_seconds(self.timeout_seconds, self.max_retries, self.backoff_seconds)

    async def invoke(self, request: AnalysisRequest, schema: Type[T]) -> T:
        attempts = self.max_retries + 1
        last_error: Optional[AnalysisError] = None
        for attempt in range(attempts):
            started = self._clock()
            try:
                completion = await asyncio.wait_for(
                    self.client.complete(request.messages, request.model, request.response_format),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                last_error = AnalysisError(
                    AnalysisError.TIMEOUT,
                    f"Analysis call timed out after {self.timeout_seconds}s",
                    last_error=exc,
                )
            except (ProfileEngineError, OSError) as exc:
                last_error = AnalysisError(AnalysisError.TRANSPORT, str(exc), last_error=exc)
                if not is_transient(exc):
                    self._record(request, None, False, started, attempt, str(exc))
                    logger.error(f"[{request.operation}] non-retriable transport failure: {exc}")
                    raise last_error from exc
            except Exception as exc:
                self._record(request, None, False, started, attempt, str(exc))
                logger.error(f"[{request.operation}] unexpected client failure: {exc!r}")
                raise AnalysisError(AnalysisError.TRANSPORT, str(exc) or type(exc).__name__,
                                    last_error=exc) from exc
            else:
                try:
                    result = validate_llm_response(completion.content, schema)
                except ValueError as exc:
                    self._record(request, completion.usage, False, started, attempt, str(exc))
                    logger.error(f"[{request.operation}] schema violation on attempt {attempt + 1}: {exc}")
                    raise AnalysisError(AnalysisError.SCHEMA, str(exc), last_error=exc) from exc
                self._record(request, completion.usage, True, started, attempt)
                if attempt:
                    logger.info(f"[{request.operation}] succeeded on attempt {attempt + 1}")
                return result

            self._record(request, None, False, started, attempt, last_error.message)
            logger.warning(
                f"[{request.operation}] attempt {attempt + 1}/{attempts} failed "
                f"({last_error.kind}): {last_error.message}"
            )
            if attempt < attempts - 1:
                await self._sleep(self.backoff_seconds * (attempt + 1))

        logger.error(f"[{request.operation}] giving up after {attempts} attempts")
        raise AnalysisError(
            AnalysisError.EXHAUSTED,
            f"Analysis failed after {attempts} attempts: {last_error.message if last_error else 'unknown'}",
            last_error=last_error,
        )

    def _record(self, request: AnalysisRequest, usage, success: bool, started: float,
                attempt: int, error_message: Optional[str] = None) -> None:
        if self.usage_tracker is None:
            return
        latency_ms = int((self._clock() - started) * 1000)
        try:
            self.usage_tracker.record(
                request.operation, request.model, usage, success, latency_ms, attempt,
                entity_id=request.entity_id, error_message=error_message,
            )
        except Exception:
            logger.exception(f"[{request.operation}] usage tracking failed")
