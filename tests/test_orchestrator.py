"""End-to-end tests for the send protocol and its failure paths."""

from __future__ import annotations

import asyncio
from pathlib import Path
import tempfile
import unittest

from august_chat.attachments import AttachmentProcessor, FileUpload
from august_chat.backends import MemoryBackend
from august_chat.exceptions import GatewayError, PersistenceError
from august_chat.identity import LocalIdentity
from august_chat.models import PersistedMessage
from august_chat.orchestrator import (
    BUSY_NOTICE,
    DELETE_FAILED_NOTICE,
    EMPTY_REPLY_NOTICE,
    EMPTY_SEND_NOTICE,
    REPLY_DISCARDED_NOTICE,
    REPLY_SAVE_FAILED_NOTICE,
    SAVE_FAILED_NOTICE,
    SEND_FAILED_NOTICE,
    SIGNED_OUT_NOTICE,
    ChatOrchestrator,
    SendStatus,
)
from august_chat.preferences import PreferencesStore
from august_chat.render import ProgressiveRenderer
from august_chat.state import SessionState
from august_chat.store import ConversationStore


async def _no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


class FakeGateway:
    """Scripted completion client that records each call."""

    def __init__(self, reply: str = "Hi there") -> None:
        self.reply = reply
        self.error: GatewayError | None = None
        self.calls: list[dict] = []
        self.gate: asyncio.Event | None = None

    async def complete(self, access_token, messages, model, enable_web=False):  # type: ignore[no-untyped-def]
        self.calls.append(
            {
                "access_token": access_token,
                "messages": list(messages),
                "model": model,
                "enable_web": enable_web,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class ScriptedBackend(MemoryBackend):
    """Memory backend that can reject inserts by role or deletes."""

    def __init__(self) -> None:
        super().__init__()
        self.reject_roles: set[str] = set()
        self.reject_deletes = False

    async def insert_message(self, owner, conversation_id, role, content, attachments=()):  # type: ignore[no-untyped-def]
        if role in self.reject_roles:
            raise PersistenceError(f"{role} insert rejected")
        return await super().insert_message(owner, conversation_id, role, content, attachments)

    async def delete_conversation(self, owner: str, conversation_id: str) -> None:
        if self.reject_deletes:
            raise PersistenceError("delete rejected")
        await super().delete_conversation(owner, conversation_id)


class ChatOrchestratorTests(unittest.IsolatedAsyncioTestCase):
    """Validate the send protocol against in-memory collaborators."""

    async def asyncSetUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.backend = ScriptedBackend()
        self.gateway = FakeGateway()
        self.identity = LocalIdentity(user_id="user-1")
        self.preferences = PreferencesStore(
            Path(self._temp_dir.name) / "preferences.json", default_model="x/model"
        )
        self.orchestrator = ChatOrchestrator(
            store=ConversationStore(self.backend),
            gateway=self.gateway,
            identity=self.identity,
            preferences=self.preferences,
            processor=AttachmentProcessor(ocr_enabled=False),
            renderer=ProgressiveRenderer(sleep=_no_sleep),
        )
        self.notices: list[str] = []
        self.orchestrator.on_notice(self.notices.append)
        await self.orchestrator.start()

    async def asyncTearDown(self) -> None:
        self.orchestrator.close()
        self._temp_dir.cleanup()

    @property
    def store(self) -> ConversationStore:
        return self.orchestrator.store

    async def test_plain_send_persists_both_messages(self) -> None:
        outcome = await self.orchestrator.send("Hello")

        self.assertIs(outcome.status, SendStatus.SENT)
        self.assertEqual(outcome.reply, "Hi there")
        self.assertEqual(
            [(e.role, e.content) for e in self.store.messages],
            [("user", "Hello"), ("assistant", "Hi there")],
        )
        self.assertTrue(all(isinstance(e, PersistedMessage) for e in self.store.messages))
        self.assertEqual(self.store.conversations[0].title, "Hello")
        call = self.gateway.calls[0]
        self.assertEqual(call["messages"], [{"role": "user", "content": "Hello"}])
        self.assertEqual(call["model"], "x/model")
        self.assertFalse(call["enable_web"])
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

        cid = self.store.active_conversation_id
        assert cid is not None
        stored = await self.backend.list_messages("user-1", cid)
        self.assertEqual([m.content for m in stored], ["Hello", "Hi there"])

    async def test_attachment_only_send(self) -> None:
        await self.orchestrator.attach([FileUpload.from_bytes("note.txt", b"abc", "text/plain")])
        outcome = await self.orchestrator.send("")

        self.assertIs(outcome.status, SendStatus.SENT)
        user_entry = self.store.messages[0]
        self.assertEqual(user_entry.content, "Attached files: note.txt")
        self.assertEqual([a.name for a in user_entry.attachments], ["note.txt"])
        request_text = self.gateway.calls[0]["messages"][-1]["content"][0]["text"]
        self.assertIn("--- File: note.txt ---\nabc", request_text)
        self.assertEqual(self.orchestrator.attachments, [])

    async def test_second_turn_carries_history(self) -> None:
        await self.orchestrator.send("Hello")
        self.gateway.reply = "Still here"
        await self.orchestrator.send("Are you there?")
        messages = self.gateway.calls[1]["messages"]
        self.assertEqual(
            [m["content"] for m in messages], ["Hello", "Hi there", "Are you there?"]
        )
        self.assertEqual(len(self.store.conversations), 1)

    async def test_empty_send_is_rejected(self) -> None:
        outcome = await self.orchestrator.send("   ")
        self.assertIs(outcome.status, SendStatus.REJECTED)
        self.assertEqual(self.notices, [EMPTY_SEND_NOTICE])
        self.assertEqual(self.gateway.calls, [])

    async def test_send_while_busy_is_ignored(self) -> None:
        self.gateway.gate = asyncio.Event()
        first = asyncio.create_task(self.orchestrator.send("one"))
        while not self.gateway.calls:
            await asyncio.sleep(0)
        second = await self.orchestrator.send("two")
        self.gateway.gate.set()
        await first

        self.assertIs(second.status, SendStatus.IGNORED)
        self.assertEqual(second.restored_text, "two")
        self.assertEqual(len(self.gateway.calls), 1)

    async def test_signed_out_send_is_rejected(self) -> None:
        await self.orchestrator.sign_out()
        outcome = await self.orchestrator.send("Hello")
        self.assertIs(outcome.status, SendStatus.REJECTED)
        self.assertIn(SIGNED_OUT_NOTICE, outcome.notices)
        self.assertEqual(outcome.restored_text, "Hello")
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

    async def test_gateway_failure_keeps_user_message(self) -> None:
        self.gateway.error = GatewayError("OpenRouter error", detail="upstream")
        outcome = await self.orchestrator.send("Hello")

        self.assertIs(outcome.status, SendStatus.FAILED)
        self.assertEqual(outcome.notices, [SEND_FAILED_NOTICE])
        self.assertEqual([e.role for e in self.store.messages], ["user"])
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

    async def test_user_save_failure_restores_draft(self) -> None:
        await self.orchestrator.attach([FileUpload.from_bytes("a.txt", b"a", "text/plain")])
        self.backend.reject_roles.add("user")
        outcome = await self.orchestrator.send("Keep me")

        self.assertIs(outcome.status, SendStatus.RESTORED)
        self.assertEqual(outcome.restored_text, "Keep me")
        self.assertEqual(outcome.notices, [SAVE_FAILED_NOTICE])
        self.assertEqual([a.meta.name for a in self.orchestrator.attachments], ["a.txt"])
        self.assertEqual(self.store.messages, [])
        self.assertEqual(self.gateway.calls, [])

    async def test_reply_save_failure_keeps_rendered_reply(self) -> None:
        self.backend.reject_roles.add("assistant")
        outcome = await self.orchestrator.send("Hello")

        self.assertIs(outcome.status, SendStatus.SENT)
        self.assertEqual(outcome.notices, [REPLY_SAVE_FAILED_NOTICE])
        self.assertEqual(self.store.messages[-1].content, "Hi there")
        self.assertNotIsInstance(self.store.messages[-1], PersistedMessage)

    async def test_empty_reply_adds_no_assistant_message(self) -> None:
        self.gateway.reply = ""
        outcome = await self.orchestrator.send("Hello")
        self.assertEqual(outcome.notices, [EMPTY_REPLY_NOTICE])
        self.assertEqual([e.role for e in self.store.messages], ["user"])

    async def test_web_toggle_and_model_are_forwarded(self) -> None:
        self.orchestrator.toggle_web()
        self.assertTrue(self.orchestrator.select_model("y/model"))
        await self.orchestrator.send("Search")
        call = self.gateway.calls[0]
        self.assertTrue(call["enable_web"])
        self.assertEqual(call["model"], "y/model")

    async def test_attach_respects_batch_limit(self) -> None:
        files = [FileUpload.from_bytes(f"f{i}.txt", b"x", "text/plain") for i in range(7)]
        notices = await self.orchestrator.attach(files)
        self.assertEqual(len(self.orchestrator.attachments), 5)
        self.assertEqual(len(notices), 1)
        self.assertEqual(self.notices, notices)

    async def test_detach_removes_one_attachment(self) -> None:
        await self.orchestrator.attach(
            [
                FileUpload.from_bytes("a.txt", b"a", "text/plain"),
                FileUpload.from_bytes("b.txt", b"b", "text/plain"),
            ]
        )
        target = self.orchestrator.attachments[0].meta.id
        self.assertTrue(self.orchestrator.detach(target))
        self.assertEqual([a.meta.name for a in self.orchestrator.attachments], ["b.txt"])
        self.assertFalse(self.orchestrator.detach(target))

    async def test_delete_flow(self) -> None:
        await self.orchestrator.send("Hello")
        cid = self.store.active_conversation_id
        assert cid is not None

        self.assertTrue(await self.orchestrator.request_delete(cid))
        self.assertEqual(self.orchestrator.state.state, SessionState.CONFIRMING_DELETE)
        self.assertIs((await self.orchestrator.send("blocked")).status, SendStatus.IGNORED)

        self.assertTrue(await self.orchestrator.confirm_delete())
        self.assertEqual(self.store.conversations, [])
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

    async def test_cancelled_delete_keeps_conversation(self) -> None:
        await self.orchestrator.send("Hello")
        cid = self.store.active_conversation_id
        assert cid is not None
        await self.orchestrator.request_delete(cid)
        await self.orchestrator.cancel_delete()
        self.assertFalse(await self.orchestrator.confirm_delete())
        self.assertEqual(len(self.store.conversations), 1)
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

    async def test_failed_delete_reports_notice(self) -> None:
        await self.orchestrator.send("Hello")
        cid = self.store.active_conversation_id
        assert cid is not None
        self.backend.reject_deletes = True
        await self.orchestrator.request_delete(cid)
        self.assertFalse(await self.orchestrator.confirm_delete())
        self.assertIn(DELETE_FAILED_NOTICE, self.notices)
        self.assertEqual(len(self.store.conversations), 1)
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

    async def test_new_conversation_starts_fresh(self) -> None:
        await self.orchestrator.send("Hello")
        self.assertTrue(self.orchestrator.new_conversation())
        self.assertIsNone(self.store.active_conversation_id)
        await self.orchestrator.send("Another")
        self.assertEqual(len(self.store.conversations), 2)

    async def test_sign_out_clears_state(self) -> None:
        await self.orchestrator.attach([FileUpload.from_bytes("a.txt", b"a", "text/plain")])
        await self.orchestrator.send("Hello")
        await self.orchestrator.sign_out()
        self.assertEqual(self.store.conversations, [])
        self.assertEqual(self.store.messages, [])
        self.assertEqual(self.orchestrator.attachments, [])

        await self.orchestrator.sign_in("", "")
        self.assertEqual(len(self.store.conversations), 1)


    async def test_sign_out_is_refused_while_a_reply_is_pending(self) -> None:
        self.gateway.gate = asyncio.Event()
        pending = asyncio.create_task(self.orchestrator.send("Hello"))
        while not self.gateway.calls:
            await asyncio.sleep(0)

        self.assertFalse(await self.orchestrator.sign_out())
        self.assertIn(BUSY_NOTICE, self.notices)
        self.gateway.gate.set()
        outcome = await pending

        self.assertIs(outcome.status, SendStatus.SENT)
        self.assertIsNotNone(await self.identity.current_session())
        self.assertEqual(
            [(e.role, e.content) for e in self.store.messages],
            [("user", "Hello"), ("assistant", "Hi there")],
        )
        self.assertTrue(await self.orchestrator.sign_out())

    async def test_session_ending_during_the_request_discards_the_reply(self) -> None:
        self.gateway.gate = asyncio.Event()
        pending = asyncio.create_task(self.orchestrator.send("Hello"))
        while not self.gateway.calls:
            await asyncio.sleep(0)

        await self.identity.sign_out()
        self.gateway.gate.set()
        outcome = await pending

        self.assertIs(outcome.status, SendStatus.FAILED)
        self.assertEqual(outcome.reply, "Hi there")
        self.assertIn(REPLY_DISCARDED_NOTICE, outcome.notices)
        self.assertEqual(self.store.messages, [])
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

    async def test_session_ending_during_the_reveal_discards_the_reply(self) -> None:
        async def sign_out_on_first_step(_seconds: float) -> None:
            if await self.identity.current_session() is not None:
                await self.identity.sign_out()

        self.orchestrator.renderer = ProgressiveRenderer(sleep=sign_out_on_first_step)
        outcome = await self.orchestrator.send("Hello")

        self.assertIs(outcome.status, SendStatus.FAILED)
        self.assertIn(REPLY_DISCARDED_NOTICE, outcome.notices)
        self.assertEqual(self.store.messages, [])
        self.assertEqual(self.orchestrator.state.state, SessionState.IDLE)

        await self.orchestrator.sign_in("", "")
        conversations = await self.backend.list_conversations("user-1")
        messages = await self.backend.list_messages("user-1", conversations[0].id)
        self.assertEqual([m.role for m in messages], ["user"])


if __name__ == "__main__":
    unittest.main()
