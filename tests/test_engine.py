"""Tests for the agent decision engine priorities and tick contract."""

from datetime import timedelta

import pytest

from conftest import (
    NOW,
    FakeGateway,
    RecordingDispatch,
    make_conversation,
    make_player,
    make_snapshot,
)
from townsquare.engine import (
    DecisionEngine,
    continue_conversations,
    greet_new_arrivals,
    is_walking,
    random_position,
    run_agent,
    wander,
)
from townsquare.errors import ProviderError
from townsquare.schemas import (
    ConversationMemoryData,
    Position,
    SaySomethingAction,
    TravelAction,
    WalkingMotion,
)

TARGET = Position(x=7, y=3)


def make_engine(**kwargs) -> DecisionEngine:
    return DecisionEngine(position_picker=lambda: TARGET, clock=lambda: NOW, **kwargs)


@pytest.mark.asyncio
async def test_idle_agent_with_nothing_around_travels_then_continues(gateway, memory_store):
    snapshot = make_snapshot(make_player("alice"))
    dispatch = RecordingDispatch()

    chosen = await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert dispatch.types == ["travel", "continue"]
    assert dispatch.actions[0] == TravelAction(position=TARGET)
    assert chosen == TravelAction(position=TARGET)
    assert gateway.call_count == 0


@pytest.mark.asyncio
async def test_own_last_message_does_not_speak_and_travels(gateway, memory_store):
    alice = make_player("alice")
    bob = make_player("bob")
    authors = ["bob", "alice"] * 5 + ["alice"]
    snapshot = make_snapshot(
        alice, nearby=[bob], conversations=[make_conversation("c1", authors)]
    )
    dispatch = RecordingDispatch()

    await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert dispatch.types == ["travel", "continue"]
    assert gateway.call_count == 0


@pytest.mark.asyncio
async def test_over_long_conversation_tries_travel_first(gateway, memory_store):
    alice = make_player("alice")
    bob = make_player("bob")
    long_talk = make_conversation("c1", ["bob"] * 10)
    snapshot = make_snapshot(alice, nearby=[bob], conversations=[long_talk])
    dispatch = RecordingDispatch()

    await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert dispatch.types == ["travel", "continue"]


@pytest.mark.asyncio
async def test_rejected_travel_moves_on_to_next_conversation(gateway, memory_store):
    alice = make_player("alice")
    bob = make_player("bob")
    long_talk = make_conversation("c1", ["bob"] * 10)
    short_talk = make_conversation("c2", ["bob"])
    snapshot = make_snapshot(alice, nearby=[bob], conversations=[long_talk, short_talk])
    dispatch = RecordingDispatch(accept=lambda action: action.type != "travel")

    chosen = await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert dispatch.types == ["travel", "saySomething", "continue"]
    said = dispatch.actions[1]
    assert isinstance(said, SaySomethingAction)
    assert said.conversation_id == "c2"
    assert chosen == said
    # Never spoke in the over-long conversation
    assert not any(
        isinstance(a, SaySomethingAction) and a.conversation_id == "c1" for a in dispatch.actions
    )


@pytest.mark.asyncio
async def test_walking_agent_stops_before_speaking(gateway, memory_store):
    alice = make_player("alice", walking=True)
    bob = make_player("bob")
    carol = make_player("carol")
    snapshot = make_snapshot(
        alice, nearby=[bob, carol], conversations=[make_conversation("c1", ["alice", "bob"])]
    )
    dispatch = RecordingDispatch()

    await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert dispatch.types == ["stop", "saySomething", "continue"]
    said = dispatch.actions[1]
    assert said.audience == ["bob", "carol"]
    assert said.content == "Interesting point"


@pytest.mark.asyncio
async def test_accepted_reply_stores_conversation_summary(gateway, memory_store):
    alice = make_player("alice")
    bob = make_player("bob")
    conversation = make_conversation("c1", ["bob", "alice", "bob"])
    snapshot = make_snapshot(alice, nearby=[bob], conversations=[conversation])
    dispatch = RecordingDispatch()

    await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert len(gateway.completions) == 1
    prompt = gateway.completions[0]
    assert [m.content for m in prompt[:-1]] == [m.content for m in conversation.messages]
    assert all(m.role == "user" for m in prompt)
    assert prompt[-1].content == "Can you summarize the above conversation?"

    assert gateway.embed_calls == [["We talked about the weather."]]
    stored = await memory_store.persistence.get_memories("alice")
    assert len(stored) == 1
    assert stored[0].description == "We talked about the weather."
    assert stored[0].data == ConversationMemoryData(conversation_id="c1")
    assert stored[0].created_at == NOW


@pytest.mark.asyncio
async def test_rejected_reply_tries_next_conversation_without_summary(gateway, memory_store):
    alice = make_player("alice")
    bob = make_player("bob")
    snapshot = make_snapshot(
        alice,
        nearby=[bob],
        conversations=[
            make_conversation("c1", ["bob"]),
            make_conversation("c2", ["bob", "alice"]),
            make_conversation("c3", ["alice", "bob"]),
        ],
    )
    dispatch = RecordingDispatch(
        accept=lambda action: not (
            isinstance(action, SaySomethingAction) and action.conversation_id == "c1"
        )
    )

    chosen = await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert dispatch.types == ["saySomething", "saySomething", "continue"]
    assert [a.conversation_id for a in dispatch.actions[:2]] == ["c1", "c3"]
    assert chosen.conversation_id == "c3"
    assert len(gateway.completions) == 1


@pytest.mark.asyncio
async def test_greets_new_arrivals_after_recalling_memories(gateway, memory_store):
    alice = make_player("alice", walking=True)
    bob = make_player("bob", "Bob")
    dave = make_player("dave", "Dave")
    snapshot = make_snapshot(alice, nearby=[bob, dave], new=["bob", "dave"])
    dispatch = RecordingDispatch()
    engine = make_engine()

    ctx = engine.build_context(snapshot, memory_store, gateway)
    candidates = [c async for c in greet_new_arrivals(ctx)]
    assert len(candidates) == 1
    assert gateway.call_count == 0  # recall happens only when the candidate is tried

    await run_agent(snapshot, memory_store, gateway, dispatch, engine=engine)

    assert dispatch.types == ["stop", "startConversation", "continue"]
    assert dispatch.actions[1].audience == ["bob", "dave"]
    assert dispatch.actions[1].content == "Hello"
    assert gateway.embed_calls == [["What do you think about Bob?"]]


@pytest.mark.asyncio
async def test_rejected_greeting_falls_through_to_idle_when_walking(gateway, memory_store):
    alice = make_player("alice", walking=True)
    bob = make_player("bob")
    snapshot = make_snapshot(alice, nearby=[bob], new=["bob"])
    dispatch = RecordingDispatch(accept=lambda action: action.type != "startConversation")

    chosen = await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    # Walking agents do not wander, so nothing is accepted this tick
    assert chosen is None
    assert dispatch.types == ["stop", "startConversation", "continue"]


@pytest.mark.asyncio
async def test_everything_rejected_still_ends_with_single_continue(gateway, memory_store):
    alice = make_player("alice")
    bob = make_player("bob")
    snapshot = make_snapshot(
        alice,
        nearby=[bob],
        new=["bob"],
        conversations=[make_conversation("c1", ["bob"] * 12), make_conversation("c2", ["bob"])],
    )
    dispatch = RecordingDispatch(accept=lambda action: action.type == "continue")

    chosen = await run_agent(snapshot, memory_store, gateway, dispatch, engine=make_engine())

    assert chosen is None
    assert dispatch.types == ["travel", "saySomething", "startConversation", "travel", "continue"]
    assert dispatch.types.count("continue") == 1


@pytest.mark.asyncio
async def test_decide_never_dispatches_continue(gateway, memory_store):
    dispatch = RecordingDispatch()
    snapshot = make_snapshot(make_player("alice"))

    await make_engine().decide(snapshot, memory_store, gateway, dispatch)

    assert "continue" not in dispatch.types


@pytest.mark.asyncio
async def test_provider_error_aborts_tick_before_continue(memory_store):
    failing = FakeGateway(fail_with=ProviderError("boom", status=500))
    memory_store.gateway = failing
    alice = make_player("alice")
    bob = make_player("bob")
    snapshot = make_snapshot(alice, nearby=[bob], conversations=[make_conversation("c1", ["bob"])])
    dispatch = RecordingDispatch()

    with pytest.raises(ProviderError):
        await run_agent(snapshot, memory_store, failing, dispatch, engine=make_engine())

    assert dispatch.types == ["saySomething"]


@pytest.mark.asyncio
async def test_producers_are_ordered_data(gateway, memory_store):
    snapshot = make_snapshot(
        make_player("alice"),
        nearby=[make_player("bob")],
        new=["bob"],
    )
    dispatch = RecordingDispatch()
    engine = make_engine(producers=(wander, greet_new_arrivals))

    await engine.run_tick(snapshot, memory_store, gateway, dispatch)

    assert dispatch.types == ["travel", "continue"]


@pytest.mark.asyncio
async def test_walking_agent_in_long_conversation_yields_nothing(gateway, memory_store):
    alice = make_player("alice", walking=True)
    ctx = make_engine().build_context(
        make_snapshot(alice, conversations=[make_conversation("c1", ["bob"] * 10)]),
        memory_store,
        gateway,
    )

    assert [c async for c in continue_conversations(ctx)] == []
    assert [c async for c in wander(ctx)] == []


def test_finished_walk_counts_as_idle():
    player = make_player("alice", walking=True)
    assert is_walking(player, NOW)

    arrived = player.model_copy(
        update={
            "motion": WalkingMotion(
                target=Position(x=5, y=5), target_end_ts=NOW - timedelta(seconds=1)
            )
        }
    )
    assert not is_walking(arrived, NOW)


def test_random_position_stays_in_bounds():
    for _ in range(50):
        position = random_position(4, 3)
        assert 0 <= position.x < 4
        assert 0 <= position.y < 3


@pytest.mark.asyncio
async def test_explicit_zero_length_limit_treats_every_conversation_as_over_long(
    gateway, memory_store
):
    alice = make_player("alice")
    snapshot = make_snapshot(
        alice, nearby=[make_player("bob")], conversations=[make_conversation("c1", ["bob"])]
    )
    dispatch = RecordingDispatch()

    await run_agent(
        snapshot, memory_store, gateway, dispatch, engine=make_engine(conversation_length_limit=0)
    )

    assert dispatch.types == ["travel", "continue"]
    assert gateway.call_count == 0
