"""
Negotiation observer client.

WHAT: Follows a negotiation over HTTP from any point in its life (start, mid-run, after completion)
WHY: Observers disconnect and come back; they must resume from an authoritative snapshot, not a replay
HOW: Status query -> decision or full-state snapshot -> SSE stream folded into a NegotiationStateMachine,
     with bounded reconnects on transport failures
"""

import asyncio
import json
from typing import AsyncIterator

import httpx

from ..core.config import settings
from ..models.api_schemas import NegotiationSummary
from ..models.domain import FinalDecision, NegotiationState
from ..models.events import parse_event
from ..utils.logger import get_logger
from .negotiation_state import NegotiationStateMachine

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
TERMINAL_EVENTS = frozenset({"decision", "error"})


class NegotiationMissingError(Exception):
    """The server has no negotiation for the requested id or quotation."""
    pass


class StreamEndedError(Exception):
    """The event stream closed before the negotiation reached a terminal state."""
    pass


async def iter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[dict]:
    """
    Decode server-sent events into JSON objects.

    Multi-line ``data:`` fields are joined; comments, ``event:``/``id:`` fields
    and undecodable payloads are skipped.
    """
    data_lines: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data_lines:
                raw = "\n".join(data_lines)
                data_lines = []
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping undecodable SSE payload: {raw[:80]!r}")
                    continue
                if isinstance(payload, dict):
                    yield payload
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip(" "))

    if data_lines:
        try:
            payload = json.loads("\n".join(data_lines))
        except json.JSONDecodeError:
            return
        if isinstance(payload, dict):
            yield payload


class NegotiationObserver:
    """
    Client-side follower of one negotiation.

    Exactly one of negotiation_id / quotation_id identifies the negotiation.
    Subscribe to ``machine`` for state updates; every notification carries a
    complete state.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        negotiation_id: str | None = None,
        quotation_id: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        timeout: float | None = None
    ):
        """
        Initialize observer.

        Args:
            base_url: Server root, e.g. http://localhost:8000 (ignored when client is given)
            negotiation_id: Negotiation to follow
            quotation_id: Follow the latest negotiation of this quotation instead
            client: Pre-built httpx client (caller keeps ownership)
            max_retries: Reconnect attempts before giving up
            retry_delay: Seconds between reconnect attempts
            timeout: HTTP timeout in seconds, also bounds silence on the stream
        """
        if not negotiation_id and not quotation_id:
            raise ValueError("negotiation_id or quotation_id is required")

        self.negotiation_id = negotiation_id
        self.quotation_id = quotation_id
        self.max_retries = settings.OBSERVER_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.OBSERVER_RETRY_DELAY if retry_delay is None else retry_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url or "http://localhost:8000",
            timeout=timeout or settings.OBSERVER_TIMEOUT,
        )
        self.machine = NegotiationStateMachine(NegotiationState(negotiation_id=negotiation_id))
        self._aborted = False
        self._task: asyncio.Task | None = None
        self._abort_event = asyncio.Event()

    @property
    def state(self) -> NegotiationState:
        return self.machine.state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Run the follow loop in a background task."""
        self._aborted = False
        self._abort_event.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    def abort(self) -> None:
        """Stop following; no state notification is delivered afterwards."""
        self._aborted = True
        self._abort_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info(f"Observer aborted for {self.negotiation_id or self.quotation_id}")

    async def retry(self) -> NegotiationState:
        """Manual retry after a terminal error: restart from the snapshot step."""
        self._aborted = False
        self._abort_event.clear()
        self.machine.update(status="connecting", error_message=None, retry_count=0)
        return await self.run()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # ------------------------------------------------------------------
    # Follow loop
    # ------------------------------------------------------------------

    async def run(self) -> NegotiationState:
        """
        Follow the negotiation until it completes, fails, retries run out, or abort() is called.

        An abort interrupts whatever request or stream read is in flight.

        Returns:
            Final state
        """
        if self._aborted:
            return self.state

        follow = asyncio.ensure_future(self._follow_loop())
        aborted = asyncio.ensure_future(self._abort_event.wait())
        try:
            await asyncio.wait({follow, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
            if not follow.done():
                follow.cancel()
                await asyncio.gather(follow, return_exceptions=True)

        if follow.cancelled():
            return self.state
        return follow.result()

    async def _follow_loop(self) -> NegotiationState:
        attempt = 0
        while not self._aborted:
            try:
                summary = await self._fetch_summary()
                self.negotiation_id = summary.negotiation_id

                if summary.status == "completed":
                    decision = await self._fetch_decision(summary.negotiation_id)
                    self._update(status="complete", decision=decision, error_message=None, retry_count=attempt)
                    return self.state

                snapshot = await self._fetch_state(summary.negotiation_id)
                self._replace(snapshot.model_copy(update={"retry_count": attempt}))
                if summary.status == "failed" or snapshot.status in ("complete", "error"):
                    if snapshot.status != "error" and summary.status == "failed":
                        self._update(status="error", error_message=snapshot.error_message or "Negotiation failed")
                    return self.state

                await self._follow_stream(summary.negotiation_id)
                return self.state

            except NegotiationMissingError as e:
                logger.warning(f"Observer cannot resume: {e}")
                self._update(status="error", error_message=str(e))
                return self.state

            except (httpx.HTTPError, StreamEndedError) as e:
                if self._aborted:
                    break
                if isinstance(e, StreamEndedError) and self.state.status == "generating_decision":
                    # Server closed after negotiation_complete; the decision is one query away
                    logger.info("Stream closed while the decision is pending, re-checking status")
                    continue
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(f"Observer giving up after {self.max_retries} retries: {e}")
                    self._update(
                        status="error",
                        error_message=f"Connection lost: {e}",
                        retry_count=self.max_retries,
                    )
                    return self.state
                logger.warning(f"Observer connection problem ({e}), retry {attempt}/{self.max_retries}")
                self._update(retry_count=attempt)
                await asyncio.sleep(self.retry_delay)

        return self.state

    async def _follow_stream(self, negotiation_id: str) -> None:
        """Fold streamed events until a terminal one arrives."""
        async with self.client.stream("GET", f"{API_PREFIX}/negotiations/{negotiation_id}/stream") as response:
            if response.status_code == 404:
                raise NegotiationMissingError(f"Negotiation not found: {negotiation_id}")
            response.raise_for_status()

            async for payload in iter_sse_payloads(response.aiter_lines()):
                if self._aborted:
                    return
                event = parse_event(payload)
                if event is None:
                    continue
                self.machine.apply(event)
                if event.type in TERMINAL_EVENTS:
                    return

        raise StreamEndedError("Event stream closed before the negotiation finished")

    # ------------------------------------------------------------------
    # Snapshot queries
    # ------------------------------------------------------------------

    async def _get(self, path: str) -> dict:
        response = await self.client.get(f"{API_PREFIX}{path}")
        if response.status_code == 404:
            try:
                detail = response.json().get("message")
            except ValueError:
                detail = None
            raise NegotiationMissingError(detail or f"Not found: {path}")
        response.raise_for_status()
        return response.json()

    async def _fetch_summary(self) -> NegotiationSummary:
        if self.negotiation_id:
            data = await self._get(f"/negotiations/{self.negotiation_id}/status")
        else:
            data = await self._get(f"/negotiations/by-quotation/{self.quotation_id}")
        return NegotiationSummary.model_validate(data)

    async def _fetch_state(self, negotiation_id: str) -> NegotiationState:
        return NegotiationState.model_validate(await self._get(f"/negotiations/{negotiation_id}"))

    async def _fetch_decision(self, negotiation_id: str) -> FinalDecision:
        return FinalDecision.model_validate(await self._get(f"/negotiations/{negotiation_id}/decision"))

    # ------------------------------------------------------------------
    # Notification guards
    # ------------------------------------------------------------------

    def _replace(self, state: NegotiationState) -> None:
        if not self._aborted:
            self.machine.replace(state)

    def _update(self, **changes) -> None:
        if not self._aborted:
            self.machine.update(**changes)
