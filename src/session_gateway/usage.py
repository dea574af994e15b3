"""Per-request usage reporting with a publish-once guarantee."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from pydantic import BaseModel, Field

from session_gateway.auth import Auth
from session_gateway.types import UsageDetail


class UsageRecord(BaseModel):
    """One usage or failure observation for a request."""

    provider: str
    model: str
    request_id: str
    auth_id: str | None = None
    detail: UsageDetail | None = None
    failed: bool = False
    status_code: int | None = None
    error: str | None = None
    timestamp: float = Field(default_factory=time.time)


class UsageSink(Protocol):
    """Externally owned accumulator for usage records."""

    def publish(self, record: UsageRecord) -> None: ...

    def record_failure(self, record: UsageRecord) -> None: ...


class LoggingUsageSink:
    """Default sink: writes records to the log and keeps nothing."""

    _logger = logging.getLogger(__name__)

    def publish(self, record: UsageRecord) -> None:
        detail = record.detail or UsageDetail()
        self._logger.info(
            "usage provider=%s model=%s request=%s input=%s output=%s total=%s",
            record.provider,
            record.model,
            record.request_id,
            detail.input_tokens,
            detail.output_tokens,
            detail.total_tokens,
        )

    def record_failure(self, record: UsageRecord) -> None:
        self._logger.warning(
            "request failed provider=%s model=%s request=%s status=%s error=%s",
            record.provider,
            record.model,
            record.request_id,
            record.status_code,
            record.error,
        )


class InMemoryUsageSink:
    """Collects records in lists; handy for tests and local tooling."""

    def __init__(self) -> None:
        self.records: list[UsageRecord] = []
        self.failures: list[UsageRecord] = []

    def publish(self, record: UsageRecord) -> None:
        self.records.append(record)

    def record_failure(self, record: UsageRecord) -> None:
        self.failures.append(record)


class UsageReporter:
    """Binds a sink to one request and publishes its usage at most once."""

    def __init__(
        self,
        sink: UsageSink,
        provider: str,
        model: str,
        auth: Auth | None = None,
        request_id: str | None = None,
    ) -> None:
        self._sink = sink
        self.provider = provider
        self.model = model
        self.auth_id = auth.id if auth is not None and auth.id else None
        self.request_id = request_id or uuid.uuid4().hex
        self._published = False

    @property
    def published(self) -> bool:
        return self._published

    def publish(self, detail: UsageDetail | None) -> bool:
        """Forward ``detail`` to the sink; returns False when nothing was sent."""
        if self._published or detail is None or detail.is_empty():
            return False
        self._published = True
        self._sink.publish(self._record(detail=detail))
        return True

    def track_failure(self, exc: BaseException | None) -> None:
        if exc is None:
            return
        self._sink.record_failure(
            self._record(
                failed=True,
                status_code=getattr(exc, "status_code", None),
                error=str(exc) or type(exc).__name__,
            )
        )

    @contextmanager
    def tracking_failures(self) -> Iterator[UsageReporter]:
        """Record any exception leaving the block as a failure, then re-raise it."""
        try:
            yield self
        except Exception as exc:
            self.track_failure(exc)
            raise

    def _record(self, **fields: object) -> UsageRecord:
        return UsageRecord(
            provider=self.provider,
            model=self.model,
            request_id=self.request_id,
            auth_id=self.auth_id,
            **fields,
        )
