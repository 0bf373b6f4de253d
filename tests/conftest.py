"""Shared fixtures: a valid spec and scripted stand-ins for the collaborators."""

from __future__ import annotations

from typing import Any

import pytest
import yaml

from evospec.errors import GitError
from evospec.project.templates import generate_template
from evospec.validator.models import ValidationResult


class ScriptedAdapter:
    """Model adapter replaying canned responses; exceptions are raised."""

    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def chat(self, system: str, user: str) -> str:
        self.prompts.append(user)
        item = self.responses[min(len(self.prompts), len(self.responses)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item


class ScriptedValidator:
    """Validator returning a fixed sequence of results."""

    def __init__(self, results: list[ValidationResult]) -> None:
        self.results = list(results)
        self.calls: list[dict[str, Any]] = []

    def validate(self, text, *, phases=(), strict=False) -> ValidationResult:
        self.calls.append({"text": text, "phases": list(phases), "strict": strict})
        return self.results[min(len(self.calls), len(self.results)) - 1]


class FakeVCS:
    """In-memory VCS adapter; stages named in ``fail`` raise ``GitError``."""

    def __init__(self, *, available: bool = True, repo: bool = True, fail: set[str] | None = None) -> None:
        self.available = available
        self.repo = repo
        self.fail = fail or set()
        self.calls: list[tuple] = []

    def _maybe_fail(self, stage: str) -> None:
        if stage in self.fail:
            raise GitError(f"{stage} exploded")

    def is_available(self) -> bool:
        return self.available

    def is_repo(self) -> bool:
        return self.repo

    def init(self) -> None:
        self.calls.append(("init",))
        self._maybe_fail("init")
        self.repo = True

    def add(self, path) -> None:
        self.calls.append(("add", str(path)))
        self._maybe_fail("add")

    def commit(self, message: str) -> str:
        self.calls.append(("commit", message))
        self._maybe_fail("commit")
        return "0123456789abcdef"

    def tag(self, name: str, message: str) -> None:
        self.calls.append(("tag", name, message))
        self._maybe_fail("tag")

    def stages(self) -> list[str]:
        return [c[0] for c in self.calls]


def fenced(text: str) -> str:
    return f"Here is the specification:\n\n```yaml\n{text}```\n"


@pytest.fixture
def valid_spec() -> str:
    return generate_template("Shop")


@pytest.fixture
def valid_doc(valid_spec) -> dict[str, Any]:
    return yaml.safe_load(valid_spec)
