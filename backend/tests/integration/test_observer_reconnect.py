"""
Integration tests for the observer client.

WHAT: Resume from snapshot, live stream folding, bounded reconnects, terminal errors
WHY: Observers join at any time and must survive dropped connections
HOW: respx-mocked status/state/decision/stream endpoints with SSE bodies
"""

import asyncio
import json

import httpx
import pytest
import respx

from procurement.models.api_schemas import NegotiationSummary
from procurement.models.domain import (
    FinalDecision,
    FinalRecommendation,
    NegotiationRound,
    NegotiationState,
    Offer,
    SupplierNegotiationState,
)
from procurement.services.observer import NegotiationObserver, iter_sse_payloads

BASE = "http://negotiator.test"
API = "/api/v1/negotiations"


def summary(status, negotiation_id="neg-1"):
    return NegotiationSummary(
        negotiation_id=negotiation_id, quotation_id="quo-1", status=status, mode="balanced"
    ).to_wire()


def decision():
    return FinalDecision(
        recommendation=FinalRecommendation(primary_supplier_id="sup-mid", primary_supplier_name="MidWeave"),
        summary="Award the order to MidWeave (balanced priorities).",
    ).to_wire()


def snapshot(status="negotiating", error_message=None):
    return NegotiationState(
        negotiation_id="neg-1",
        status=status,
        error_message=error_message,
        suppliers=[SupplierNegotiationState(supplier_id="sup-mid", supplier_name="MidWeave", status="negotiating")],
    ).to_wire()


def sse(*payloads):
    body = ": keep-alive\n\n"
    for payload in payloads:
        body += f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n"
    return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})


MESSAGE = {
    "type": "message",
    "supplierId": "sup-mid",
    "role": "supplier_agent",
    "content": "We can do $10,000.",
    "roundNumber": 2,
}
DECISION_EVENT = {"type": "decision", "decision": decision()}


async def lines(*items):
    for item in items:
        yield item


@pytest.mark.unit
@pytest.mark.state_machine
class TestSSEParsing:
    """Server-sent event decoding."""

    @pytest.mark.asyncio
    async def test_data_fields_comments_and_garbage(self):
        payloads = [p async for p in iter_sse_payloads(lines(
            ": ping", "",
            "event: message", 'data: {"type": "heartbeat"}', "",
            'data: {"type":', 'data: "connected"}', "",
            "data: not json", "",
            "data: [1, 2]", "",
            'data: {"type": "decision"}',
        ))]
        assert payloads == [{"type": "heartbeat"}, {"type": "connected"}, {"type": "decision"}]

    def test_requires_an_identifier(self):
        with pytest.raises(ValueError):
            NegotiationObserver(BASE)


@pytest.mark.integration
@pytest.mark.state_machine
class TestResume:
    """Joining at different points of a negotiation's life."""

    @pytest.mark.asyncio
    async def test_completed_negotiation_needs_no_stream(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            router.get(f"{API}/neg-1/status").respond(json=summary("completed"))
            router.get(f"{API}/neg-1/decision").respond(json=decision())
            stream = router.get(f"{API}/neg-1/stream")

            async with httpx.AsyncClient(base_url=BASE) as client:
                observer = NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0)
                state = await observer.run()

        assert state.status == "complete"
        assert state.decision.recommendation.primary_supplier_id == "sup-mid"
        assert not stream.called

    @pytest.mark.asyncio
    async def test_mid_run_snapshot_then_stream(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            router.get(f"{API}/neg-1/status").respond(json=summary("negotiating"))
            router.get(f"{API}/neg-1").respond(json=snapshot())
            router.get(f"{API}/neg-1/stream").mock(return_value=sse(MESSAGE, DECISION_EVENT))

            async with httpx.AsyncClient(base_url=BASE) as client:
                observer = NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0)
                statuses = []
                observer.machine.subscribe(lambda s: statuses.append(s.status))
                state = await observer.run()

        assert state.status == "complete"
        assert state.get_supplier("sup-mid").messages[0].content == "We can do $10,000."
        assert statuses[0] == "negotiating"
        assert statuses[-1] == "complete"

    @pytest.mark.asyncio
    async def test_follow_by_quotation(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            router.get(f"{API}/by-quotation/quo-1").respond(json=summary("completed", negotiation_id="neg-7"))
            router.get(f"{API}/neg-7/decision").respond(json=decision())

            async with httpx.AsyncClient(base_url=BASE) as client:
                observer = NegotiationObserver(quotation_id="quo-1", client=client, retry_delay=0)
                state = await observer.run()

        assert observer.negotiation_id == "neg-7"
        assert state.status == "complete"

    @pytest.mark.asyncio
    async def test_failed_negotiation_reports_error(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            router.get(f"{API}/neg-1/status").respond(json=summary("failed"))
            router.get(f"{API}/neg-1").respond(json=snapshot("error", "Every supplier failed to respond"))

            async with httpx.AsyncClient(base_url=BASE) as client:
                state = await NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0).run()

        assert state.status == "error"
        assert state.error_message == "Every supplier failed to respond"


@pytest.mark.integration
@pytest.mark.state_machine
class TestReconnect:
    """Transport failures and their limits."""

    @pytest.mark.asyncio
    async def test_premature_close_resumes_from_snapshot(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            status = router.get(f"{API}/neg-1/status").respond(json=summary("negotiating"))
            state_route = router.get(f"{API}/neg-1").respond(json=snapshot())
            router.get(f"{API}/neg-1/stream").mock(side_effect=[sse(MESSAGE), sse(DECISION_EVENT)])

            async with httpx.AsyncClient(base_url=BASE) as client:
                state = await NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0).run()

        assert status.call_count == 2
        assert state_route.call_count == 2
        assert state.status == "complete"
        assert state.retry_count == 1
        # The snapshot replaced the partially streamed state; no duplicated message
        assert state.get_supplier("sup-mid").messages == []

    @pytest.mark.asyncio
    async def test_close_while_deciding_is_not_a_retry(self):
        pending = [{"type": "negotiation_complete", "negotiationId": "neg-1"}, {"type": "generating_decision"}]
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            router.get(f"{API}/neg-1/status").mock(side_effect=[
                httpx.Response(200, json=summary("negotiating")),
                httpx.Response(200, json=summary("completed")),
            ])
            router.get(f"{API}/neg-1").respond(json=snapshot())
            router.get(f"{API}/neg-1/stream").mock(return_value=sse(*pending))
            router.get(f"{API}/neg-1/decision").respond(json=decision())

            async with httpx.AsyncClient(base_url=BASE) as client:
                state = await NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0).run()

        assert state.status == "complete"
        assert state.retry_count == 0

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            status = router.get(f"{API}/missing/status").respond(
                404, json={"error": "NEGOTIATION_NOT_FOUND", "message": "Negotiation not found: missing"}
            )

            async with httpx.AsyncClient(base_url=BASE) as client:
                state = await NegotiationObserver(negotiation_id="missing", client=client, retry_delay=0).run()

        assert status.call_count == 1
        assert state.status == "error"
        assert state.error_message == "Negotiation not found: missing"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            status = router.get(f"{API}/neg-1/status").mock(side_effect=httpx.ConnectError("refused"))

            async with httpx.AsyncClient(base_url=BASE) as client:
                observer = NegotiationObserver(negotiation_id="neg-1", client=client, max_retries=2, retry_delay=0)
                state = await observer.run()

        assert status.call_count == 3
        assert state.status == "error"
        assert state.error_message.startswith("Connection lost")
        assert state.retry_count == 2

    @pytest.mark.asyncio
    async def test_manual_retry_after_giving_up(self):
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            router.get(f"{API}/neg-1/status").mock(side_effect=[
                httpx.ConnectError("refused"),
                httpx.Response(200, json=summary("completed")),
            ])
            router.get(f"{API}/neg-1/decision").respond(json=decision())

            async with httpx.AsyncClient(base_url=BASE) as client:
                observer = NegotiationObserver(negotiation_id="neg-1", client=client, max_retries=0, retry_delay=0)
                assert (await observer.run()).status == "error"
                state = await observer.retry()

        assert state.status == "complete"
        assert state.error_message is None

    @pytest.mark.asyncio
    async def test_abort_suppresses_notifications(self):
        async with httpx.AsyncClient(base_url=BASE) as client:
            observer = NegotiationObserver(negotiation_id="neg-1", client=client)
            seen = []
            observer.machine.subscribe(seen.append)
            observer.abort()
            state = await observer.run()

        assert seen == []
        assert state.status == "connecting"


def offer(total):
    return Offer(total_cost=total, lead_time_days=30, payment_terms="Net-30")


def snapshot_with_rounds(count):
    rounds = [
        NegotiationRound(round_number=n, supplier_id="sup-mid", offer=offer(10_000 - 200 * n))
        for n in range(1, count + 1)
    ]
    supplier = SupplierNegotiationState(
        supplier_id="sup-mid",
        supplier_name="MidWeave",
        status="negotiating",
        current_round=count,
        rounds=rounds,
    )
    return NegotiationState(negotiation_id="neg-1", status="negotiating", suppliers=[supplier]).to_wire()


@pytest.mark.integration
@pytest.mark.state_machine
class TestResumeContinuesRounds:
    """Events streamed after a snapshot extend it instead of replaying it."""

    @pytest.mark.asyncio
    async def test_third_round_appends_to_two_persisted_rounds(self):
        streamed = [
            {"type": "round_start", "supplierId": "sup-mid", "roundNumber": 3},
            {**MESSAGE, "roundNumber": 3, "content": "Final answer: $9,300."},
            {"type": "offer_extracted", "supplierId": "sup-mid", "roundNumber": 3, "offer": offer(9_300).to_wire()},
            DECISION_EVENT,
        ]
        with respx.mock(base_url=BASE, assert_all_called=False) as router:
            router.get(f"{API}/neg-1/status").respond(json=summary("negotiating"))
            router.get(f"{API}/neg-1").respond(json=snapshot_with_rounds(2))
            router.get(f"{API}/neg-1/stream").mock(return_value=sse(*streamed))

            async with httpx.AsyncClient(base_url=BASE) as client:
                state = await NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0).run()

        supplier = state.get_supplier("sup-mid")
        assert [r.round_number for r in supplier.rounds] == [1, 2, 3]
        assert [r.offer.total_cost for r in supplier.rounds] == [9_800, 9_600, 9_300]
        assert supplier.rounds[2].messages[0].content == "Final answer: $9,300."
        assert state.status == "complete"


def stalled_transport(*, stall_on, first_events=()):
    """MockTransport whose ``stall_on`` endpoint never finishes answering."""

    async def stalled_body():
        for payload in first_events:
            yield f"data: {json.dumps(payload)}\n\n".encode()
        await asyncio.Event().wait()

    async def handler(request):
        path = request.url.path
        if path.endswith(stall_on) and stall_on != "/stream":
            await asyncio.Event().wait()
        if path.endswith("/status"):
            return httpx.Response(200, json=summary("negotiating"))
        if path.endswith("/stream"):
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=stalled_body())
        return httpx.Response(200, json=snapshot())

    return httpx.MockTransport(handler)


@pytest.mark.integration
@pytest.mark.state_machine
class TestAbortInFlight:
    """abort() interrupts requests and stream reads already in progress."""

    @pytest.mark.asyncio
    async def test_abort_while_stream_is_silent(self):
        transport = stalled_transport(stall_on="/stream", first_events=[{"type": "connected"}, MESSAGE])
        async with httpx.AsyncClient(base_url=BASE, transport=transport) as client:
            observer = NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0)
            received = asyncio.Event()
            notifications = []

            def on_state(state):
                notifications.append(state.status)
                supplier = state.get_supplier("sup-mid")
                if supplier is not None and supplier.messages:
                    received.set()

            observer.machine.subscribe(on_state)
            task = asyncio.create_task(observer.retry())
            await asyncio.wait_for(received.wait(), timeout=2)
            seen_before_abort = len(notifications)

            observer.abort()
            state = await asyncio.wait_for(task, timeout=2)

        assert state.get_supplier("sup-mid").messages[0].content == "We can do $10,000."
        assert len(notifications) == seen_before_abort

    @pytest.mark.asyncio
    async def test_abort_while_snapshot_fetch_is_blocked(self):
        transport = stalled_transport(stall_on="/status")
        async with httpx.AsyncClient(base_url=BASE, transport=transport) as client:
            observer = NegotiationObserver(negotiation_id="neg-1", client=client, retry_delay=0)
            task = asyncio.create_task(observer.run())
            await asyncio.sleep(0.05)
            assert not task.done()

            observer.abort()
            state = await asyncio.wait_for(task, timeout=2)

        assert state.status == "connecting"
