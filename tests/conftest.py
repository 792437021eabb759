"""Shared fixtures for the mediorg test suite."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Union

import pytest

from mediorg.backends import AnalysisRequest, BackendResponse
from mediorg.library import JsonMediaLibrary

Reply = Union[str, BackendResponse, Exception, Callable[[AnalysisRequest], str]]


class ScriptedBackend:
    """Backend double that replays canned replies and records every request."""

    name = "scripted"
    label = "Scripted"

    def __init__(self, replies: List[Reply], *, configured: bool = True) -> None:
        self.replies = list(replies)
        self.configured = configured
        self.probes = 0
        self.requests: List[AnalysisRequest] = []
        self.before_reply: Optional[Callable[[AnalysisRequest], None]] = None

    def is_configured(self) -> bool:
        self.probes += 1
        return self.configured

    def test(self) -> Optional[str]:
        return None

    def analyze(self, request: AnalysisRequest) -> BackendResponse:
        self.requests.append(request)
        if self.before_reply is not None:
            self.before_reply(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, BackendResponse):
            return reply
        if callable(reply):
            return BackendResponse.ok(reply(request))
        return BackendResponse.ok(reply)

    def available_models(self) -> Dict[str, str]:
        return {}


@pytest.fixture
def scripted_backend() -> Callable[..., ScriptedBackend]:
    """Return a factory building :class:`ScriptedBackend` instances."""

    def factory(*replies: Reply, configured: bool = True) -> ScriptedBackend:
        return ScriptedBackend(list(replies) or ['{"action": "skip"}'], configured=configured)

    return factory


@pytest.fixture
def library() -> JsonMediaLibrary:
    """Return an in-memory library seeded with a small folder tree.

    Folders: 1 Events, 2 Events/Outdoor, 3 Products, 4 Documents.
    """
    lib = JsonMediaLibrary()
    events = lib.create_folder("Events")
    lib.create_folder("Outdoor", parent_id=events.id)
    lib.create_folder("Products")
    lib.create_folder("Documents")
    return lib
