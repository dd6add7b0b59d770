import asyncio

from conftest import FakeConversationStore
from app.modules.chatsession.services.client_session import ClientSession
from app.modules.chatsession.services.conversation import Role
from app.modules.chatsession.services.identity import Identity, IdentityKind, SignedIn, SignedOut
from app.modules.chatsession.services.local_store import MemoryKeyValueStore
from app.modules.chatsession.services.message_search import Direction, PanelState
from app.modules.chatsession.services.notices import (
    MIGRATION_FAILED,
    SAVE_FAILED,
    SAVED,
    TRIAL_LIMIT_REACHED,
)
from app.modules.chatsession.services.trial_quota import used_count_key

USER = Identity.authenticated("user-42", display_name="Ada")


async def _chat(session, *contents):
    for i, text in enumerate(contents):
        await session.add_message(Role.USER if i % 2 == 0 else Role.ASSISTANT, text)


async def test_only_first_turn_of_a_conversation_is_counted(session):
    assert await session.start_turn()
    await _chat(session, "Can my landlord keep the deposit?", "It depends on the lease.")
    assert await session.start_turn()
    assert await session.remaining_trial_turns() == 2

    await session.new_conversation()
    assert await session.start_turn()
    assert await session.remaining_trial_turns() == 1


async def test_exhausted_trial_blocks_new_conversations_with_notice(session):
    for _ in range(3):
        await session.new_conversation()
        assert await session.start_turn()

    await session.new_conversation()
    assert await session.start_turn() is False

    notice = session.notices.drain()[-1]
    assert notice.code == TRIAL_LIMIT_REACHED
    assert notice.message == "Trial limit reached. Please sign up to continue."
    assert len(session.conversation) == 0


async def test_anonymous_conversation_is_never_persisted(session, remote_store):
    assert await session.start_turn()
    await _chat(session, "hello", "hi there")
    assert remote_store.create_calls == []
    assert session.conversation.remote_id is None


async def test_sign_in_migrates_anonymous_conversation_once(session, remote_store):
    anon = await session.current_identity()
    assert await session.start_turn()
    await _chat(session, "What is a writ of habeas corpus?", "A court order to produce a detained person.")

    identity = await session.handle_auth_event(SignedIn(USER))

    assert identity == USER
    assert session.conversation.remote_id == "chat-1"
    assert session.conversation.owner_id == USER.id
    assert remote_store.records["chat-1"].owner_id == USER.id
    assert len(remote_store.records["chat-1"].messages) == 2
    assert anon.id != USER.id

    await session.add_message(Role.USER, "How long does it take?")
    assert len(remote_store.create_calls) == 1
    assert remote_store.update_calls[-1][0] == "chat-1"
    assert len(remote_store.records["chat-1"].messages) == 3
    assert [n.code for n in session.notices.drain()] == [SAVED]


async def test_sign_in_with_empty_conversation_creates_nothing(session, remote_store):
    await session.handle_auth_event(SignedIn(USER))
    assert session.conversation.owner_id == USER.id
    assert remote_store.create_calls == []

    await session.add_message(Role.USER, "first authenticated message")
    assert session.conversation.remote_id == "chat-1"


async def test_failed_migration_leaves_conversation_in_memory(session, remote_store):
    anon = await session.current_identity()
    await _chat(session, "hello", "hi")
    remote_store.fail_creates = 1

    await session.handle_auth_event(SignedIn(USER))

    assert [n.code for n in session.notices.drain()] == [SAVE_FAILED, MIGRATION_FAILED]
    assert session.conversation.owner_id == anon.id
    assert session.conversation.remote_id is None

    # orphaned conversation is not persisted by later turns
    await session.add_message(Role.USER, "still there?")
    assert len(remote_store.create_calls) == 1

    await session.new_conversation()
    await session.add_message(Role.USER, "a fresh start")
    assert session.conversation.remote_id == "chat-1"


async def test_exhausted_trial_lifted_by_sign_in():
    store = MemoryKeyValueStore()
    remote = FakeConversationStore()
    session = await ClientSession.open(store, remote)
    assert session.identity.trial_limit == 10

    anon = await session.current_identity()
    await store.set(used_count_key(anon.id), "10")
    assert await session.start_turn() is False

    await session.handle_auth_event(SignedIn(USER))

    assert await session.start_turn() is True
    assert await session.remaining_trial_turns() is None


async def test_sign_out_resets_conversation_and_search(session, remote_store):
    await session.handle_auth_event(SignedIn(USER))
    assert await session.start_turn()
    await _chat(session, "lease renewal terms", "The lease renews yearly.")
    session.search_messages("lease")
    assert session.search.state is PanelState.QUERIED

    identity = await session.handle_auth_event(SignedOut())

    assert identity.kind is IdentityKind.ANONYMOUS
    assert session.conversation.owner_id == identity.id
    assert session.conversation.remote_id is None
    assert len(session.conversation) == 0
    assert session.search.state is PanelState.CLOSED
    assert session.search.result.matched_indices == []
    assert await session.remaining_trial_turns() == 3
    # the stored record is untouched
    assert len(remote_store.records["chat-1"].messages) == 2


async def test_switching_accounts_starts_a_new_conversation(session, remote_store):
    await session.handle_auth_event(SignedIn(USER))
    await _chat(session, "hello")
    first_key = session.conversation.local_key

    await session.handle_auth_event(SignedIn(Identity.authenticated("user-7")))

    assert session.conversation.local_key != first_key
    assert session.conversation.owner_id == "user-7"
    assert len(session.conversation) == 0


async def test_clear_session_forgets_trial_usage(session):
    old = await session.current_identity()
    assert await session.start_turn()
    await _chat(session, "hello")

    fresh = await session.clear_session()

    assert fresh.id != old.id
    assert await session.remaining_trial_turns() == 3
    assert len(session.conversation) == 0


async def test_load_conversation_resumes_stored_record(session, remote_store):
    await session.handle_auth_event(SignedIn(USER))
    await _chat(session, "Draft an NDA", "Here is a mutual NDA.")
    await session.new_conversation()

    assert await session.load_conversation("chat-1") is True
    assert session.conversation.remote_id == "chat-1"
    assert [m.content for m in session.conversation.messages] == ["Draft an NDA", "Here is a mutual NDA."]
    assert session.search_messages("nda") == [0, 1]
    # resumed conversations are already admitted
    assert await session.start_turn()

    await session.add_message(Role.USER, "Make it one-way")
    assert len(remote_store.create_calls) == 1
    assert len(remote_store.records["chat-1"].messages) == 3


async def test_load_missing_or_foreign_conversation_fails_with_notice(session, remote_store):
    assert await session.load_conversation("chat-1") is False

    await session.handle_auth_event(SignedIn(USER))
    assert await session.load_conversation("chat-404") is False
    assert session.notices.drain()[-1].code == "not_found"

    other = await ClientSession.open(MemoryKeyValueStore(), remote_store)
    await other.handle_auth_event(SignedIn(Identity.authenticated("user-7")))
    await other.add_message(Role.USER, "private matter")
    assert await session.load_conversation("chat-1") is False


async def test_new_messages_refresh_active_search(session):
    await _chat(session, "tenancy question", "what about the deposit")
    session.open_search()
    assert session.search_messages("deposit") == [1]

    await session.add_message(Role.USER, "deposit was withheld")

    assert session.search.result.matched_indices == [1, 2]
    assert session.navigate_search(Direction.NEXT) == 1
    session.close_search()
    assert session.search.state is PanelState.CLOSED


async def test_system_errors_join_the_message_list(session):
    await session.add_system_error("Something went wrong")
    assert session.conversation.messages[-1].role is Role.SYSTEM


async def test_concurrent_first_turns_count_once(session):
    results = await asyncio.gather(*(session.start_turn() for _ in range(5)))
    assert results == [True] * 5
    assert await session.remaining_trial_turns() == 2
