from __future__ import annotations

import json
from dataclasses import dataclass, field

from deepdive.errors import GenerationError
from deepdive.llm_client import TextGenerator
from deepdive.models.research import ResearchSession
from deepdive.services.prompt_store import render_prompt
from deepdive.tools.text_utils import clip, extract_json_object

CONVERSATION_CHAR_LIMIT = 12000


@dataclass(slots=True)
class SessionMetadata:
    title: str
    summary: str
    key_topics: list[str] = field(default_factory=list)


class MetadataGenerator:
    """One-shot title/summary/key-topic extraction for a finished session."""

    def __init__(self, generator: TextGenerator):
        self.generator = generator

    async def generate(self, session: ResearchSession) -> SessionMetadata:
        conversation = session.conversation_text(CONVERSATION_CHAR_LIMIT)
        if not conversation.strip():
            raise GenerationError("metadata: session has no conversation")

        raw = await self.generator.generate(
            render_prompt("metadata.user", conversation=conversation),
            temperature=0.2,
            max_tokens=512,
            system=render_prompt("metadata.system"),
            caller="session_metadata",
        )
        try:
            payload = extract_json_object(raw)
        except json.JSONDecodeError as exc:
            raise GenerationError(f"metadata: unparseable output: {exc}") from exc

        title = clip(str(payload.get("title") or ""), 120)
        summary = str(payload.get("summary") or "").strip()
        topics = payload.get("keyTopics", payload.get("key_topics", [])) or []
        if isinstance(topics, str):
            topics = [t for t in topics.split(",")]
        key_topics = [str(t).strip() for t in topics if str(t).strip()][:8]
        if not title and not summary:
            raise GenerationError("metadata: empty title and summary")
        return SessionMetadata(title=title, summary=summary, key_topics=key_topics)
