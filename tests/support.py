"""
Shared fakes for the test modules: a throwaway SQLite database, a scripted
chat model, a canned page extractor and a recording sleep.
"""

import asyncio
import json
import os
import tempfile
from contextlib import contextmanager
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional, Union

from llmstxt_pipeline.errors import ExtractionError
from llmstxt_pipeline.extractor import ExtractedPage, normalize_text
from llmstxt_pipeline.storage.database import create_db_engine, create_session_factory, init_schema


@contextmanager
def temp_database():
    """Yield a session factory bound to a fresh SQLite file."""
    with tempfile.TemporaryDirectory() as tmp:
        engine = create_db_engine(f"sqlite:///{os.path.join(tmp, 'test.db')}")
        init_schema(engine)
        try:
            yield create_session_factory(engine)
        finally:
            engine.dispose()


Reply = Union[str, Exception, Callable[[str], str]]


class FakeChatModel:
    """
    Chat model double with an ``ainvoke`` like langchain's.

    Each call consumes the next scripted reply: a string is returned as the
    message content, an exception is raised, and a callable receives the
    human prompt and returns the content. Once the script runs out, the
    ``default`` callable answers.
    """

    def __init__(self, replies: Optional[List[Reply]] = None, default: Optional[Callable[[str], str]] = None):
        self.replies = list(replies or [])
        self.default = default or summaries_for_prompt
        self.prompts: List[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def ainvoke(self, messages):
        prompt = messages[-1]["content"]
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        content = reply(prompt) if callable(reply) else reply
        return SimpleNamespace(content=content)


def summaries_for_prompt(prompt: str) -> str:
    """Answer a batch or description prompt with well-formed JSON."""
    if '{"description": "..."}' in prompt:
        return json.dumps({"description": "Guides and API reference for the example product."})
    count = prompt.count("\nURL: ")
    return json.dumps([{"summary": f"Summary of page {i}."} for i in range(1, count + 1)])


class HangingChatModel:
    """Never answers; used to exercise call timeouts."""

    def __init__(self):
        self.calls = 0

    async def ainvoke(self, messages):
        self.calls += 1
        await asyncio.Event().wait()


class FakeExtractor:
    """Serves canned pages; URLs listed in ``failing`` raise ExtractionError."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, failing: Optional[Dict[str, str]] = None):
        self.pages = pages or {}
        self.failing = failing or {}
        self.requested: List[str] = []

    async def extract(self, url: str) -> ExtractedPage:
        self.requested.append(url)
        if url in self.failing:
            raise ExtractionError(url, self.failing[url])
        text = self.pages.get(url, f"Content of {url}")
        return ExtractedPage(title=f"Title for {url.rsplit('/', 1)[-1]}", text=normalize_text(text))


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
