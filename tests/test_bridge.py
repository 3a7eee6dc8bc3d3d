"""
Tests for the relay bridge: chat events and operator operations.
"""

import asyncio

import pytest

from codexrelay.bridge import RelayBridge, create_chat_platform
from codexrelay.chat.base import ChatMessage, ChatPlatformError, ChatThread
from codexrelay.chat.simulator import SimulatedChatPlatform
from codexrelay.config import Settings
from codexrelay.exceptions import RelayOperationError
from codexrelay.sync.coordinator import ASSISTANT_PREFIX, USER_PREFIX
from codexrelay.sync.message_sync import TurnOutcome


def make_platform(config):
    return SimulatedChatPlatform()


@pytest.fixture
def bridge(store, chat, runtime, settings):
    return RelayBridge(store, chat, runtime, settings)


@pytest.fixture
def synced(bridge, make_session, project_dir, records):
    """Two sessions in project_dir, synced into one channel."""
    first = make_session("s1", str(project_dir), timestamp="2026-01-15T10:30:00.000Z")
    first.append(
        records.user("add a test"),
        records.reasoning("looking around"),
        records.assistant("Done"),
    )
    make_session("s2", str(project_dir), timestamp="2026-01-16T09:00:00.000Z")
    summary = asyncio.run(bridge.sync_projects())
    return summary


class TestLifecycle:
    def test_start_marks_existing_sessions_seen(self, bridge, make_session, project_dir):
        log = make_session("s1", str(project_dir))

        async def scenario():
            await bridge.start()
            cursor = bridge.watcher.cursor_for(log.path)
            running = bridge.watcher.is_running
            await bridge.stop()
            return cursor, running

        cursor, running = asyncio.run(scenario())

        assert cursor.offset == log.path.stat().st_size
        assert running
        assert not bridge.watcher.is_running


class TestChatEvents:
    """Tests for on_thread_created and on_message."""

    @pytest.fixture
    def project(self, bridge, project_dir):
        return asyncio.run(bridge.setup_project(str(project_dir)))

    def test_thread_created_in_project_channel(self, bridge, chat, store, project):
        async def scenario():
            chat_thread = await chat.create_thread(project.channel_id, "manual")
            first = await bridge.on_thread_created(chat_thread)
            second = await bridge.on_thread_created(chat_thread)
            return chat_thread, first, second

        chat_thread, first, second = asyncio.run(scenario())

        assert first.id == second.id
        assert first.project_id == project.id
        notices = chat.messages_in(chat_thread.id)
        assert len(notices) == 1
        assert notices[0].startswith("✅ **Codex Thread Ready**")

    def test_thread_outside_project_channel_ignored(self, bridge, store):
        result = asyncio.run(
            bridge.on_thread_created(ChatThread(id="T9", channel_id="C-other", name="x"))
        )

        assert result is None
        assert store.get_thread_by_chat_thread("T9") is None

    def test_message_auto_registers_thread(self, bridge, chat, store, runtime, project):
        runtime.script = [
            {"type": "item.completed", "item": {"type": "agent_message", "text": "hi"}}
        ]

        async def scenario():
            chat_thread = await chat.create_thread(project.channel_id, "idea")
            message = ChatMessage(
                id="U1",
                channel_id=project.channel_id,
                author_id="dev",
                text="hello",
                thread_id=chat_thread.id,
                thread_name="idea",
            )
            return chat_thread, await bridge.on_message(message)

        chat_thread, outcome = asyncio.run(scenario())

        assert outcome == TurnOutcome.COMPLETED
        assert store.get_thread_by_chat_thread(chat_thread.id).thread_name == "idea"
        assert chat.messages_in(chat_thread.id) == ["hi"]

    def test_bot_and_channel_messages_ignored(self, bridge, runtime, project):
        bot = ChatMessage(
            id="B1",
            channel_id=project.channel_id,
            author_id="bot",
            text="echo",
            thread_id="T1",
            is_bot=True,
        )
        top_level = ChatMessage(
            id="U1", channel_id=project.channel_id, author_id="dev", text="hello"
        )
        elsewhere = ChatMessage(
            id="U2", channel_id="C-other", author_id="dev", text="hello", thread_id="T2"
        )

        async def scenario():
            return [await bridge.on_message(m) for m in (bot, top_level, elsewhere)]

        assert asyncio.run(scenario()) == [TurnOutcome.IGNORED] * 3
        assert runtime.opened == []


class TestSetupProject:
    """Tests for setup_project."""

    def test_creates_channel(self, bridge, chat, project_dir):
        project = asyncio.run(bridge.setup_project(str(project_dir), model="gpt-5"))

        assert project.project_name == "my-project"
        assert project.model == "gpt-5"
        welcome = chat.messages_in(project.channel_id)[0]
        assert "**Project: my-project**" in welcome
        assert "gpt-5" in welcome

    def test_custom_name(self, bridge, chat, project_dir):
        project = asyncio.run(bridge.setup_project(str(project_dir), name="Backend API"))

        assert project.project_name == "Backend API"
        assert chat.channels[project.channel_id].name == "backend-api"

    def test_missing_path_rejected(self, bridge, tmp_path):
        with pytest.raises(RelayOperationError, match="does not exist"):
            asyncio.run(bridge.setup_project(str(tmp_path / "nope")))

    def test_duplicate_rejected(self, bridge, project_dir):
        asyncio.run(bridge.setup_project(str(project_dir)))

        with pytest.raises(RelayOperationError, match="already registered"):
            asyncio.run(bridge.setup_project(f"{project_dir}/"))


class TestSyncProjects:
    """Tests for sync_projects."""

    def test_creates_channel_and_threads(self, synced, chat, store):
        assert synced.created == 1
        assert synced.threads_created == 2
        assert len(chat.channels) == 1
        names = sorted(t.name for t in chat.threads.values())
        assert names == ["2026-01-15 10:30", "2026-01-16 09:00"]
        assert store.get_thread_by_session("s1") is not None

    def test_missing_project_directory_skipped(self, bridge, make_session, tmp_path, chat):
        make_session("gone", str(tmp_path / "deleted"))

        summary = asyncio.run(bridge.sync_projects())

        assert summary.created == 0
        assert summary.skipped == 1
        assert chat.channels == {}

    def test_second_sync_skips_registered(self, synced, bridge, chat):
        summary = asyncio.run(bridge.sync_projects())

        assert summary.created == 0
        assert summary.skipped == 1
        assert len(chat.threads) == 2


class TestReplaySession:
    """Tests for replay_session."""

    def test_replays_user_and_assistant_messages(self, synced, bridge, chat, store):
        thread = store.get_thread_by_session("s1")

        result = asyncio.run(bridge.replay_session(thread.chat_thread_id))

        assert result.sent == 2
        assert result.user_count == 1
        assert result.assistant_count == 1
        assert chat.messages_in(thread.chat_thread_id)[1:] == [
            f"{USER_PREFIX}\nadd a test",
            f"{ASSISTANT_PREFIX}\nDone",
            "✅ Synced **2** messages from Codex session.",
        ]

    def test_explicit_session_id(self, synced, bridge, store):
        thread = store.get_thread_by_session("s2")

        result = asyncio.run(bridge.replay_session(thread.chat_thread_id, session_id="s1"))

        assert result.session_id == "s1"

    def test_unknown_session_lists_available(self, synced, bridge, store):
        thread = store.get_thread_by_session("s1")

        with pytest.raises(RelayOperationError, match="Available sessions") as exc_info:
            asyncio.run(bridge.replay_session(thread.chat_thread_id, session_id="nope"))

        assert "s2" in str(exc_info.value)

    def test_unlinked_thread_rejected(self, bridge):
        with pytest.raises(RelayOperationError, match="not linked"):
            asyncio.run(bridge.replay_session("T-unknown"))

    def test_pauses_between_batches(self, store, chat, runtime, make_session, project_dir, records, monkeypatch):
        config = Settings(
            codex_home=str(project_dir.parent.parent / "codex"),
            replay_batch_size=2,
            replay_batch_delay=0.5,
        )
        bridge = RelayBridge(store, chat, runtime, config)
        log = make_session("s1", str(project_dir))
        log.append(*(records.user(f"m{i}") for i in range(5)))
        asyncio.run(bridge.sync_projects())
        thread = store.get_thread_by_session("s1")
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("codexrelay.bridge.asyncio.sleep", fake_sleep)

        asyncio.run(bridge.replay_session(thread.chat_thread_id))

        assert [d for d in delays if d] == [0.5, 0.5]


class TestRemoveProject:
    """Tests for remove_project."""

    def test_removes_channel_and_rows(self, synced, bridge, chat, store):
        project = store.list_projects()[0]

        removed = asyncio.run(bridge.remove_project("MY-PROJECT"))

        assert removed.id == project.id
        assert project.channel_id not in chat.channels
        assert store.list_projects() == []
        assert store.get_thread_by_session("s1") is None

    def test_channel_already_gone(self, synced, bridge, chat, store):
        chat.remove_channel(store.list_projects()[0].channel_id)

        asyncio.run(bridge.remove_project("my-project"))

        assert store.list_projects() == []

    def test_unknown_project(self, bridge):
        with pytest.raises(RelayOperationError, match="not found"):
            asyncio.run(bridge.remove_project("nope"))


def test_status(synced, bridge):
    status = bridge.status()

    assert status.projects == 1
    assert status.active_threads == 2
    assert status.watcher_running is False


class TestCreateChatPlatform:
    def test_simulator(self, settings):
        assert isinstance(create_chat_platform(settings), SimulatedChatPlatform)

    def test_factory_path(self):
        config = Settings(chat_platform=f"{__name__}:make_platform")

        assert isinstance(create_chat_platform(config), SimulatedChatPlatform)

    def test_invalid_platform(self):
        with pytest.raises(RelayOperationError):
            create_chat_platform(Settings(chat_platform="discord"))


class TestInboundEvents:
    """User activity on the chat platform reaches the bridge."""

    @pytest.fixture
    def project(self, bridge, project_dir):
        return asyncio.run(bridge.setup_project(str(project_dir)))

    def test_bridge_attaches_to_platform(self, bridge, chat):
        assert chat.handler is bridge

    def test_opened_thread_is_registered(self, bridge, chat, store, project):
        chat_thread = asyncio.run(chat.open_thread(project.channel_id, "refactor"))

        thread = store.get_thread_by_chat_thread(chat_thread.id)
        assert thread.project_id == project.id
        assert chat.messages_in(chat_thread.id)[0].startswith("✅ **Codex Thread Ready**")

    def test_posted_message_runs_a_turn(self, bridge, chat, runtime, project):
        runtime.script = [
            {"type": "item.completed", "item": {"type": "agent_message", "text": "on it"}}
        ]

        async def scenario():
            chat_thread = await chat.open_thread(project.channel_id, "refactor")
            return chat_thread, await chat.post_message(chat_thread.id, "split the module")

        chat_thread, outcome = asyncio.run(scenario())

        assert outcome == TurnOutcome.COMPLETED
        assert chat.messages_in(chat_thread.id)[-1] == "on it"
        assert runtime.opened

    def test_post_to_unknown_thread(self, bridge, chat):
        with pytest.raises(ChatPlatformError, match="Unknown thread"):
            asyncio.run(chat.post_message("T-missing", "hello"))
