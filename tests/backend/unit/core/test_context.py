"""Tests for prompt assembly."""

from __future__ import annotations

import base64

from pathlib import Path

import pytest

from core.context import build_agent_context, build_conversation_messages, resolve_image_data_url
from core.memory import MemoryStore
from models.chat_models import Attachment, ChatMessage, EndpointConfig, ImageURLPart, TextPart


async def _fake_resolver(attachment: Attachment) -> str:
    return f"resolved:{attachment.uri}"


class TestResolveImageDataUrl:
    """Tests for resolve_image_data_url."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("uri", ["data:image/png;base64,AAA", "https://cdn.example.com/a.png"])
    async def test_passthrough(self, uri: str) -> None:
        """Test data and http(s) URIs are returned unchanged."""
        assert await resolve_image_data_url(Attachment(uri=uri)) == uri

    @pytest.mark.asyncio
    async def test_local_file_inlined(self, tmp_path: Path) -> None:
        """Test local files become base64 data URIs with their mime type."""
        image = tmp_path / "pic.jpg"
        image.write_bytes(b"\xff\xd8jpeg")

        url = await resolve_image_data_url(Attachment(uri=f"file://{image}", mime_type="image/jpeg"))

        assert url == "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8jpeg").decode()

    @pytest.mark.asyncio
    async def test_default_mime_type(self, tmp_path: Path) -> None:
        """Test a missing mime type falls back to PNG."""
        image = tmp_path / "pic"
        image.write_bytes(b"x")

        url = await resolve_image_data_url(Attachment(uri=str(image)))

        assert url.startswith("data:image/png;base64,")


class TestBuildConversationMessages:
    """Tests for build_conversation_messages."""

    @pytest.mark.asyncio
    async def test_drops_system_and_empty_turns(self) -> None:
        """Test system messages and blank turns are skipped."""
        messages = [
            ChatMessage(role="system", content="hidden"),
            ChatMessage(role="user", content="Hi"),
            ChatMessage(role="assistant", content="   "),
            ChatMessage(role="assistant", content="Hello"),
        ]

        result = await build_conversation_messages(messages, _fake_resolver)

        assert [(m.role, m.content) for m in result] == [("user", "Hi"), ("assistant", "Hello")]

    @pytest.mark.asyncio
    async def test_user_images_become_multimodal(self) -> None:
        """Test user attachments produce text and image parts; files are skipped."""
        message = ChatMessage(
            role="user",
            content="What is this?",
            attachments=[Attachment(uri="img-1"), Attachment(type="file", uri="doc.pdf")],
        )

        result = await build_conversation_messages([message], _fake_resolver)

        parts = result[0].content
        assert isinstance(parts, list)
        assert isinstance(parts[0], TextPart)
        assert parts[0].text == "What is this?"
        assert isinstance(parts[1], ImageURLPart)
        assert parts[1].image_url.url == "resolved:img-1"
        assert len(parts) == 2

    @pytest.mark.asyncio
    async def test_image_only_message_has_no_text_part(self) -> None:
        """Test an attachment-only message is kept without an empty text part."""
        message = ChatMessage(role="user", content="", attachments=[Attachment(uri="img-1")])

        result = await build_conversation_messages([message], _fake_resolver)

        parts = result[0].content
        assert isinstance(parts, list)
        assert [p.type for p in parts] == ["image_url"]


class TestBuildAgentContext:
    """Tests for build_agent_context."""

    @pytest.mark.asyncio
    async def test_system_and_chat_prompt_joined(self, endpoint: EndpointConfig) -> None:
        """Test the explicit system prompt and chat prompt form one system message."""
        result = await build_agent_context(
            [ChatMessage(role="user", content="Hi")],
            endpoint,
            system_prompt="Be brief.",
            chat_prompt="  Answer in French. ",
        )

        assert result[0].role == "system"
        assert result[0].content == "Be brief.\n\nAnswer in French."
        assert result[1].content == "Hi"

    @pytest.mark.asyncio
    async def test_endpoint_prompt_is_fallback(self) -> None:
        """Test the endpoint's system prompt is used when none is given."""
        endpoint = EndpointConfig(provider_id="openai", model="gpt-4o", system_prompt="From endpoint")

        result = await build_agent_context([ChatMessage(role="user", content="Hi")], endpoint)

        assert result[0].content == "From endpoint"

    @pytest.mark.asyncio
    async def test_no_prompt_no_system_message(self, endpoint: EndpointConfig) -> None:
        """Test no system message is added without prompts."""
        result = await build_agent_context([ChatMessage(role="user", content="Hi")], endpoint, system_prompt="  ")

        assert [m.role for m in result] == ["user"]

    @pytest.mark.asyncio
    async def test_memory_injected_after_system_prompt(
        self, endpoint: EndpointConfig, memory_store: MemoryStore
    ) -> None:
        """Test relevant memories are listed in their own system message."""
        await memory_store.add_memory("user", "Name is Ada", 0.9)
        await memory_store.add_memory("fact", "Trivia", 0.1)

        result = await build_agent_context(
            [ChatMessage(role="user", content="Hi")],
            endpoint,
            system_prompt="Be brief.",
            memory_store=memory_store,
        )

        assert [m.role for m in result] == ["system", "system", "user"]
        assert result[1].content == "Relevant memory:\n- (user) Name is Ada"

    @pytest.mark.asyncio
    async def test_empty_memory_adds_nothing(self, endpoint: EndpointConfig, memory_store: MemoryStore) -> None:
        """Test no memory message is added when nothing qualifies."""
        result = await build_agent_context(
            [ChatMessage(role="user", content="Hi")], endpoint, memory_store=memory_store
        )

        assert [m.role for m in result] == ["user"]
