# src/ffxi_ai/core/ports.py

"""
Ports (interfaces) used by the command layer.

Commands depend on Protocols instead of concrete clients, so tests can swap in fakes.
"""

from __future__ import annotations

from typing import Protocol


class AsyncPromptClient(Protocol):
    """Prompt client whose calls must be awaited inside a dispatcher task."""

    async def generate(self, prompt: str, model: str) -> str: ...
    async def list_models(self) -> list[str]: ...


class PromptClient(Protocol):
    """Blocking prompt client (OpenAI-compatible endpoint)."""

    def complete(self, prompt: str, model: str) -> str: ...
    def list_models(self) -> list[str]: ...
