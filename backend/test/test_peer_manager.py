"""ConnectionRegistry 협상 상태 머신 테스트."""
import asyncio

from aiortc import RTCIceCandidate

from proctor.errors import TransportError
from proctor.signaling.messages import NetworkCandidate, SessionAnswer, SessionOffer
from proctor.webrtc.peer_manager import ConnectionRegistry
from proctor.webrtc.state import NegotiationPhase, NegotiationRole

from conftest import FakePeerConnection, FakeRelay, FakeTrack, make_candidate, wait_until

OFFER = {"sdp": "offer-1", "type": "offer"}


# ------------------------------------------------------------------
# create_or_get
# ------------------------------------------------------------------

async def test_concurrent_create_or_get_yields_single_entry(registry):
    async def grab():
        await asyncio.sleep(0)
        return registry.create_or_get("UNI001")

    entries = await asyncio.gather(*(grab() for _ in range(10)))

    assert all(entry is entries[0] for entry in entries)
    assert len(registry) == 1
    assert len(FakePeerConnection.instances) == 1


async def test_concurrent_candidates_for_new_identity_share_one_session(registry):
    await asyncio.gather(*(
        registry.handle_candidate("UNI001", make_candidate(50000 + i)) for i in range(5)
    ))

    entry = registry.get("UNI001")
    assert len(FakePeerConnection.instances) == 1
    assert [c.candidate.split()[5] for c in entry.pending_candidates] == [
        str(50000 + i) for i in range(5)
    ]


# ------------------------------------------------------------------
# offer / answer (answerer)
# ------------------------------------------------------------------

async def test_offer_produces_answer(registry, outbox):
    applied = await registry.handle_offer("UNI001", OFFER, registration_id="20231234")

    entry = registry.get("UNI001")
    assert applied is True
    assert entry.phase is NegotiationPhase.HAVE_LOCAL_ANSWER
    assert entry.registration_id == "20231234"

    answers = outbox.of_type(SessionAnswer)
    assert len(answers) == 1
    assert answers[0].to == "UNI001"
    assert answers[0].sender == "teacher-01"
    assert answers[0].answer.type == "answer"
    assert answers[0].answer.sdp == "answer-to:offer-1"


async def test_candidates_during_answer_buffered_then_applied_in_order(registry, outbox):
    entry = registry.create_or_get("UNI001")
    entry.pc.gate_local = asyncio.Event()

    task = asyncio.create_task(registry.handle_offer("UNI001", OFFER, registration_id="20231234"))
    await wait_until(lambda: entry.phase is NegotiationPhase.HAVE_REMOTE_OFFER)

    for port in (50001, 50002, 50003):
        assert await registry.handle_candidate("UNI001", make_candidate(port)) is False

    assert len(entry.pending_candidates) == 3
    assert entry.pc.applied_candidates == []

    entry.pc.gate_local.set()
    assert await task is True

    assert entry.pc.applied_candidates == [50001, 50002, 50003]
    assert not entry.pending_candidates
    assert entry.phase is NegotiationPhase.HAVE_LOCAL_ANSWER
    assert len(outbox.of_type(SessionAnswer)) == 1

    await entry.pc.set_state("connected")
    assert entry.phase is NegotiationPhase.CONNECTED


async def test_candidates_before_offer_applied_once_in_receipt_order(registry):
    for port in (40001, 40002, 40003, 40004):
        await registry.handle_candidate("UNI001", make_candidate(port))

    await registry.handle_offer("UNI001", OFFER)

    entry = registry.get("UNI001")
    assert entry.pc.applied_candidates == [40001, 40002, 40003, 40004]
    assert not entry.pending_candidates


async def test_candidate_after_remote_description_applied_immediately(registry):
    await registry.handle_offer("UNI001", OFFER)

    applied = await registry.handle_candidate("UNI001", make_candidate(50010))

    assert applied is True
    assert registry.get("UNI001").pc.applied_candidates == [50010]


async def test_failing_candidate_skipped_without_aborting_drain(registry):
    await registry.handle_candidate("UNI001", make_candidate(50001))
    await registry.handle_candidate("UNI001", {"candidate": "candidate:garbage", "sdpMid": "0"})
    await registry.handle_candidate("UNI001", make_candidate(50003))

    await registry.handle_offer("UNI001", OFFER)

    assert registry.get("UNI001").pc.applied_candidates == [50001, 50003]


async def test_malformed_candidate_payload_ignored(registry):
    assert await registry.handle_candidate("UNI001", {"sdpMid": "0"}) is False
    assert "UNI001" not in registry


async def test_end_of_candidates_is_skipped(registry):
    await registry.handle_offer("UNI001", OFFER)

    assert await registry.handle_candidate("UNI001", {"candidate": "", "sdpMid": "0"}) is False
    assert registry.get("UNI001").pc.applied_candidates == []


async def test_duplicate_offer_keeps_state_and_resends_answer(registry, outbox):
    await registry.handle_offer("UNI001", OFFER)
    entry = registry.get("UNI001")

    assert await registry.handle_offer("UNI001", OFFER) is False

    assert entry.phase is NegotiationPhase.HAVE_LOCAL_ANSWER
    answers = outbox.of_type(SessionAnswer)
    assert len(answers) == 2
    assert answers[0].answer.sdp == answers[1].answer.sdp


async def test_late_different_offer_is_ignored(registry, outbox):
    await registry.handle_offer("UNI001", OFFER)
    await registry.get("UNI001").pc.set_state("connected")

    assert await registry.handle_offer("UNI001", {"sdp": "offer-2", "type": "offer"}) is False

    entry = registry.get("UNI001")
    assert entry.phase is NegotiationPhase.CONNECTED
    assert entry.pc.remoteDescription.sdp == "offer-1"
    assert len(outbox.of_type(SessionAnswer)) == 1


async def test_malformed_offer_leaves_registry_untouched(registry, outbox):
    assert await registry.handle_offer("UNI001", {"sdp": "offer-1"}) is False
    assert await registry.handle_offer("UNI001", {"sdp": "x", "type": "answer"}) is False

    assert "UNI001" not in registry
    assert outbox.messages == []


async def test_rejected_offer_keeps_entry_new(registry, outbox):
    assert await registry.handle_offer("UNI001", {"sdp": "bad-sdp", "type": "offer"}) is False

    assert registry.get("UNI001").phase is NegotiationPhase.NEW
    assert outbox.messages == []


async def test_identities_negotiate_independently(registry):
    slow = registry.create_or_get("UNI001")
    slow.pc.gate_local = asyncio.Event()

    slow_task = asyncio.create_task(registry.handle_offer("UNI001", OFFER))
    await wait_until(lambda: slow.phase is NegotiationPhase.HAVE_REMOTE_OFFER)

    assert await registry.handle_offer("UNI002", {"sdp": "offer-2", "type": "offer"}) is True
    assert registry.get("UNI002").phase is NegotiationPhase.HAVE_LOCAL_ANSWER
    assert slow.phase is NegotiationPhase.HAVE_REMOTE_OFFER

    slow.pc.gate_local.set()
    assert await slow_task is True


async def test_send_failure_does_not_break_negotiation():
    async def broken_send(message):
        raise TransportError("relay down")

    registry = ConnectionRegistry(
        "teacher-01", send=broken_send, peer_factory=FakePeerConnection, relay=FakeRelay()
    )

    assert await registry.handle_offer("UNI001", OFFER) is True
    assert registry.get("UNI001").phase is NegotiationPhase.HAVE_LOCAL_ANSWER


# ------------------------------------------------------------------
# offerer
# ------------------------------------------------------------------

async def test_offerer_flow(offerer, outbox):
    track = FakeTrack()
    assert await offerer.create_offer("teacher-01", track=track) is True

    entry = offerer.get("teacher-01")
    assert entry.role is NegotiationRole.OFFERER
    assert entry.phase is NegotiationPhase.HAVE_LOCAL_OFFER
    assert entry.pc.tracks == [track]

    offers = outbox.of_type(SessionOffer)
    assert len(offers) == 1
    assert offers[0].sender == "UNI001"
    assert offers[0].to == "teacher-01"
    assert offers[0].registration_id == "20231234"

    await offerer.handle_candidate("teacher-01", make_candidate(50001))
    assert entry.pending_candidates

    assert await offerer.handle_answer("teacher-01", {"sdp": "answer-1", "type": "answer"}) is True
    assert entry.phase is NegotiationPhase.HAVE_REMOTE_ANSWER
    assert entry.pc.applied_candidates == [50001]

    await entry.pc.set_state("connected")
    assert entry.phase is NegotiationPhase.CONNECTED


async def test_duplicate_answer_when_connected_is_ignored(offerer):
    await offerer.create_offer("teacher-01")
    await offerer.handle_answer("teacher-01", {"sdp": "answer-1", "type": "answer"})
    entry = offerer.get("teacher-01")
    await entry.pc.set_state("connected")

    result = await offerer.handle_answer("teacher-01", {"sdp": "answer-1", "type": "answer"})

    assert result is False
    assert entry.phase is NegotiationPhase.CONNECTED


async def test_answer_without_entry_is_ignored(offerer):
    assert await offerer.handle_answer("teacher-01", {"sdp": "answer-1", "type": "answer"}) is False
    assert "teacher-01" not in offerer


async def test_resend_offer_only_while_waiting_for_answer(offerer, outbox):
    assert await offerer.resend_offer("teacher-01") is False

    await offerer.create_offer("teacher-01")
    assert await offerer.resend_offer("teacher-01") is True

    offers = outbox.of_type(SessionOffer)
    assert len(offers) == 2
    assert offers[0].offer.sdp == offers[1].offer.sdp

    await offerer.handle_answer("teacher-01", {"sdp": "answer-1", "type": "answer"})
    assert await offerer.resend_offer("teacher-01") is False


# ------------------------------------------------------------------
# peer events
# ------------------------------------------------------------------

async def test_local_candidate_is_sent_to_counterpart(registry, outbox):
    entry = registry.create_or_get("UNI001")
    candidate = RTCIceCandidate(
        component=1,
        foundation="1",
        ip="10.0.0.1",
        port=5000,
        priority=2130706431,
        protocol="udp",
        type="host",
        sdpMid="0",
        sdpMLineIndex=0,
    )

    await entry.pc.emit("icecandidate", candidate)
    await entry.pc.emit("icecandidate", None)

    sent = outbox.of_type(NetworkCandidate)
    assert len(sent) == 1
    assert sent[0].sender == "teacher-01"
    assert sent[0].to == "UNI001"
    assert sent[0].candidate.candidate.startswith("candidate:")
    assert "10.0.0.1 5000" in sent[0].candidate.candidate
    assert sent[0].candidate.sdp_mid == "0"


async def test_video_track_attaches_stream(registry):
    attached = []

    async def on_stream(entry):
        attached.append(entry.identity)

    registry.on_stream_callback = on_stream
    entry = registry.create_or_get("UNI001")

    await entry.pc.emit("track", FakeTrack("audio"))
    assert entry.stream is None

    video = FakeTrack("video")
    await entry.pc.emit("track", video)
    assert entry.stream is video
    assert attached == ["UNI001"]
    assert registry.streams() == [entry]


async def test_failed_connection_closes_entry(registry):
    await registry.handle_offer("UNI001", OFFER)
    entry = registry.get("UNI001")

    await entry.pc.set_state("failed")

    assert entry.closed
    assert "UNI001" not in registry
    assert entry.pc.close_count == 1


# ------------------------------------------------------------------
# close
# ------------------------------------------------------------------

async def test_close_is_idempotent(registry):
    await registry.handle_offer("UNI001", OFFER)
    entry = registry.get("UNI001")

    assert await registry.close("UNI001") is True
    assert await registry.close("UNI001") is False

    assert entry.pc.close_count == 1
    assert entry.phase is NegotiationPhase.CLOSED
    assert "UNI001" not in registry


async def test_candidate_after_close_opens_fresh_entry_for_renegotiation(registry, outbox):
    await registry.handle_offer("UNI001", OFFER)
    old = registry.get("UNI001")
    await registry.close("UNI001")

    await registry.handle_candidate("UNI001", make_candidate(50001))

    fresh = registry.get("UNI001")
    assert fresh is not old
    assert fresh.phase is NegotiationPhase.NEW
    assert old.pc.close_count == 1

    # 재접속한 참가자의 새 offer가 버퍼된 candidate와 함께 적용됨
    assert await registry.handle_offer("UNI001", {"sdp": "offer-2", "type": "offer"}) is True
    assert fresh.pc.applied_candidates == [50001]
    assert len(outbox.of_type(SessionAnswer)) == 2


async def test_close_during_negotiation_stops_answer(registry, outbox):
    entry = registry.create_or_get("UNI001")
    entry.pc.gate_local = asyncio.Event()
    task = asyncio.create_task(registry.handle_offer("UNI001", OFFER))
    await wait_until(lambda: entry.phase is NegotiationPhase.HAVE_REMOTE_OFFER)

    await registry.close("UNI001")
    entry.pc.gate_local.set()

    assert await task is False
    assert entry.phase is NegotiationPhase.CLOSED
    assert outbox.of_type(SessionAnswer) == []


async def test_close_all(registry):
    await registry.handle_offer("UNI001", OFFER)
    await registry.handle_offer("UNI002", {"sdp": "offer-2", "type": "offer"})
    pcs = [entry.pc for entry in registry.entries()]

    closed = await registry.close_all(wait=True)

    assert sorted(closed) == ["UNI001", "UNI002"]
    assert len(registry) == 0
    assert [pc.close_count for pc in pcs] == [1, 1]
    assert await registry.close_all(wait=True) == []


async def test_snapshot(registry):
    await registry.handle_candidate("UNI001", make_candidate(50001))

    assert registry.snapshot() == [{
        "identity": "UNI001",
        "registration_id": None,
        "phase": "new",
        "has_stream": False,
        "pending_candidates": 1,
    }]
