"""
Tests for the mapping store and its repositories.
"""

import pytest

from codexrelay.db.repositories import (
    MessageRepository,
    ProjectRepository,
    ThreadRepository,
)
from codexrelay.exceptions import StoreError
from codexrelay.models.db import MessageDirection, ThreadStatus
from codexrelay.utils.paths import canonicalize_project_path


class TestProjects:
    """Tests for project mappings."""

    def test_create_project(self, store, project_dir):
        project = store.create_project("C1", str(project_dir), "my-project", model="gpt-5")

        assert project.id is not None
        assert project.channel_id == "C1"
        assert project.project_path == canonicalize_project_path(project_dir)
        assert project.model == "gpt-5"

    def test_create_is_idempotent_per_path(self, store, project_dir):
        """A second writer gets the first writer's row (and channel)."""
        first = store.create_project("C1", str(project_dir), "my-project")
        second = store.create_project("C2", f"{project_dir}/", "my-project")

        assert second.id == first.id
        assert second.channel_id == "C1"
        assert len(store.list_projects()) == 1

    def test_channel_conflict_raises(self, store, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        store.create_project("C1", str(tmp_path / "a"), "a")

        with pytest.raises(StoreError):
            store.create_project("C1", str(tmp_path / "b"), "b")

    def test_lookups(self, store, project_dir):
        project = store.create_project("C1", str(project_dir), "my-project")

        assert store.get_project_by_id(project.id).channel_id == "C1"
        assert store.get_project_by_path(f"{project_dir}/.").id == project.id
        assert store.get_project_by_channel("C1").id == project.id
        assert store.get_project_by_name("my-project").id == project.id
        assert store.get_project_by_channel("nope") is None

    def test_name_lookup_ignores_case(self, store, project_dir):
        project = store.create_project("C1", str(project_dir), "Backend API")

        assert store.get_project_by_name("backend api").id == project.id
        assert store.get_project_by_name("BACKEND API").id == project.id
        assert store.get_project_by_name("backend") is None

    def test_find_project_rewrites_legacy_path(self, store, database, project_dir):
        legacy = f"{project_dir}/"
        with database.session() as session:
            ProjectRepository(session).get_or_create(
                channel_id="C1", project_path=legacy, project_name="my-project"
            )

        assert store.get_project_by_path(str(project_dir)) is None

        found = store.find_project_by_path(str(project_dir))

        assert found is not None
        assert found.project_path == canonicalize_project_path(project_dir)
        assert store.get_project_by_path(str(project_dir)).id == found.id

    def test_delete_project_cascades(self, store, project_dir):
        project = store.create_project("C1", str(project_dir), "my-project")
        thread = store.create_thread("T1", project.id, "thread", agent_session_id="s1")
        store.add_message(thread.id, MessageDirection.AGENT_TO_CHAT, "hi")

        assert store.delete_project(project.id) is True

        assert store.get_thread_by_id(thread.id) is None
        assert store.get_thread_by_session("s1") is None
        assert store.recent_messages(thread.id) == []
        assert store.delete_project(project.id) is False


class TestThreads:
    """Tests for thread mappings."""

    @pytest.fixture
    def project(self, store, project_dir):
        return store.create_project("C1", str(project_dir), "my-project")

    def test_create_thread_keyed_by_session(self, store, project):
        first = store.create_thread("T1", project.id, "one", agent_session_id="s1")
        second = store.create_thread("T2", project.id, "two", agent_session_id="s1")

        assert second.id == first.id
        assert second.chat_thread_id == "T1"
        assert store.get_thread_by_chat_thread("T2") is None

    def test_create_thread_keyed_by_chat_thread(self, store, project):
        first = store.create_thread("T1", project.id, "one")
        second = store.create_thread("T1", project.id, "again")

        assert second.id == first.id
        assert second.thread_name == "one"
        assert second.status == ThreadStatus.ACTIVE.value

    def test_session_linked_onto_existing_chat_thread(self, store, project):
        store.create_thread("T1", project.id, "interactive")

        linked = store.create_thread("T1", project.id, "interactive", agent_session_id="s1")

        assert linked.agent_session_id == "s1"
        assert store.get_thread_by_session("s1").chat_thread_id == "T1"

    def test_update_agent_session_id_and_status(self, store, project):
        thread = store.create_thread("T1", project.id, "one")

        store.update_agent_session_id(thread.id, "s9")
        updated = store.update_status(thread.id, ThreadStatus.COMPLETED)

        assert updated.agent_session_id == "s9"
        assert updated.status == "completed"
        assert store.update_status(9999, ThreadStatus.ERROR) is None

    def test_list_and_delete(self, store, project):
        a = store.create_thread("T1", project.id, "one")
        store.create_thread("T2", project.id, "two")

        assert {t.chat_thread_id for t in store.list_threads(project.id)} == {"T1", "T2"}

        store.delete_thread(a.id)

        assert [t.chat_thread_id for t in store.list_threads(project.id)] == ["T2"]


class TestMessages:
    def test_recent_messages_oldest_first(self, store, project_dir):
        project = store.create_project("C1", str(project_dir), "my-project")
        thread = store.create_thread("T1", project.id, "one")
        for i in range(5):
            store.add_message(
                thread.id, MessageDirection.USER_TO_AGENT, f"m{i}", chat_message_id=f"M{i}"
            )

        recent = store.recent_messages(thread.id, limit=3)

        assert [m.content for m in recent] == ["m2", "m3", "m4"]
        assert recent[0].direction == "user_to_agent"

    def test_count_by_thread(self, database, store, project_dir):
        project = store.create_project("C1", str(project_dir), "my-project")
        thread = store.create_thread("T1", project.id, "one")
        store.add_message(thread.id, MessageDirection.AGENT_TO_CHAT, "a")
        store.add_message(thread.id, MessageDirection.AGENT_TO_CHAT, "b")

        with database.session() as session:
            assert MessageRepository(session).count_by_thread(thread.id) == 2
            assert ThreadRepository(session).count() == 1
