"""Concurrent snapshot capture over the session pool."""

import asyncio
import logging
from dataclasses import dataclass

from sheet_broadcast.domain.capture import CaptureRequest, CaptureResult, CaptureState
from sheet_broadcast.domain.errors import SessionUnavailable
from sheet_broadcast.services.render import (
    RenderEngine,
    RenderPage,
    close_quietly,
    load_within,
)
from sheet_broadcast.services.session_pool import SessionPool

_logger = logging.getLogger(__name__)


@dataclass
class CaptureAttempt:
    """Tracks one attempt through PENDING -> ... -> SUCCEEDED/FAILED."""

    request: CaptureRequest
    state: CaptureState = CaptureState.PENDING

    def advance(self, state: CaptureState) -> None:
        _logger.debug(
            "Capture %s: %s -> %s",
            self.request.correlation_id,
            self.state.value,
            state.value,
        )
        self.state = state

    def succeed(self, image: bytes) -> CaptureResult:
        self.advance(CaptureState.SUCCEEDED)
        return CaptureResult.ok(self.request.correlation_id, image)

    def fail(self, exc: Exception) -> CaptureResult:
        failed_in = self.state
        self.advance(CaptureState.FAILED)
        error = _describe(exc)
        _logger.warning(
            "Capture %s failed while %s: %s",
            self.request.correlation_id,
            failed_in.value,
            error,
        )
        return CaptureResult.failed(self.request.correlation_id, error)


@dataclass
class CaptureOrchestrator:
    """Runs capture requests in bounded concurrent chunks."""

    pool: SessionPool
    engine: RenderEngine
    max_parallel: int = 5
    retry_base_delay: float = 2.0
    load_timeout: float = 30.0
    close_timeout: float = 5.0

    async def capture_all(
        self, requests: list[CaptureRequest], max_parallel: int | None = None
    ) -> list[CaptureResult]:
        """Capture every request, returning one result per request in order.

        Requests run in consecutive chunks of ``max_parallel``; a chunk starts
        only when the previous one has fully finished. Failures never abort
        other requests.
        """
        limit = max_parallel if max_parallel is not None else self.max_parallel
        if limit < 1:
            raise ValueError("max_parallel must be at least 1")

        results: list[CaptureResult] = []
        for start in range(0, len(requests), limit):
            chunk = requests[start : start + limit]
            _logger.info(
                "Capturing chunk %s-%s of %s",
                start + 1,
                start + len(chunk),
                len(requests),
            )
            results.extend(
                await asyncio.gather(*(self._capture_pooled(req) for req in chunk))
            )

        succeeded = sum(1 for result in results if result.success)
        _logger.info(
            "Batch capture finished: %s succeeded, %s failed",
            succeeded,
            len(results) - succeeded,
        )
        return results

    async def capture_with_retry(
        self, request: CaptureRequest, max_retries: int = 3
    ) -> CaptureResult:
        """Capture on a fresh page, retrying every failure with linear backoff."""
        last_error = "No capture attempts were made"
        for attempt_number in range(1, max_retries + 1):
            _logger.info(
                "Capture attempt %s/%s for %s",
                attempt_number,
                max_retries,
                request.url,
            )
            attempt = CaptureAttempt(request)
            try:
                image = await self._capture_fresh(attempt)
            except Exception as exc:
                last_error = attempt.fail(exc).error or last_error
            else:
                return attempt.succeed(image)

            if attempt_number < max_retries:
                await asyncio.sleep(self.retry_base_delay * attempt_number)

        _logger.error(
            "Capture of %s failed after %s attempts: %s",
            request.url,
            max_retries,
            last_error,
        )
        return CaptureResult.failed(request.correlation_id, last_error)

    async def _capture_pooled(self, request: CaptureRequest) -> CaptureResult:
        attempt = CaptureAttempt(request)
        try:
            attempt.advance(CaptureState.LOADING)
            async with self.pool.borrow(request.url, request.viewport) as session:
                image = await self._settle_and_snapshot(session.page, attempt)
        except Exception as exc:
            return attempt.fail(exc)
        return attempt.succeed(image)

    async def _capture_fresh(self, attempt: CaptureAttempt) -> bytes:
        request = attempt.request
        if not self.engine.is_running:
            raise SessionUnavailable("Rendering engine is not running")
        attempt.advance(CaptureState.LOADING)
        page = await self.engine.new_page()
        try:
            await page.set_viewport(request.viewport)
            await load_within(
                page.load(request.url, self.load_timeout),
                self.load_timeout,
                request.url,
            )
            return await self._settle_and_snapshot(page, attempt)
        finally:
            await close_quietly(page, self.close_timeout, request.url)

    async def _settle_and_snapshot(
        self, page: RenderPage, attempt: CaptureAttempt
    ) -> bytes:
        request = attempt.request
        attempt.advance(CaptureState.SETTLING)
        await asyncio.sleep(request.settle_seconds)
        attempt.advance(CaptureState.CAPTURING)
        return await page.screenshot(selector=request.selector, clip=request.clip)


def _describe(exc: Exception) -> str:
    message = str(exc)
    return message if message else type(exc).__name__
