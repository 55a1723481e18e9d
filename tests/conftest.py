from __future__ import annotations

import os.path
import subprocess
from pathlib import Path
from typing import Iterable, Iterator

import pytest

from mergeflow.core import Confirmation
from mergeflow.gitutils import set_git_verbose

HERE = os.path.dirname(__file__)
VERBOSE = os.environ.get("VERBOSE", "false").lower() in ("true", "1")

# commands which do not change the repository
READ_ONLY = {"rev-parse", "branch", "show-ref", "remote", "ls-remote", "status", "diff"}


class FakeRepo:
    """
    Stands in for subprocess.run, emulating the git commands used by mergeflow
    against an in-memory repository.
    """

    def __init__(
        self,
        root: str | Path,
        current: str = "feature-x",
        local: Iterable[str] = ("develop",),
        remote: Iterable[str] = ("develop",),
    ):
        self.root = str(root)
        self.current = current
        self.local = set(local) | {current}
        self.remote_branches = set(remote)
        self.remotes = ["origin"]
        self.reachable = True
        self.dirty: list[str] = []
        self.conflicts: list[str] = []
        self.failures: dict[tuple[str, ...], tuple[int, str]] = {}
        # every git command that reached subprocess.run, without the leading "git"
        self.executed: list[tuple[str, ...]] = []

    def fail(self, *prefix: str, code: int = 1, output: str = "error") -> None:
        """
        Make any command starting with `prefix` fail.
        """
        self.failures[prefix] = (code, output)

    def mutations(self) -> list[tuple[str, ...]]:
        return [args for args in self.executed if args[0] not in READ_ONLY]

    def __call__(self, cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess:
        assert cmd[0] == "git"
        args = tuple(cmd[1:])
        self.executed.append(args)
        for prefix, (code, output) in self.failures.items():
            if args[: len(prefix)] == prefix:
                return subprocess.CompletedProcess(cmd, code, stdout=output)
        code, output = self._handle(args)
        return subprocess.CompletedProcess(cmd, code, stdout=output)

    def _handle(self, args: tuple[str, ...]) -> tuple[int, str]:
        name = args[0]
        if args == ("rev-parse", "--show-toplevel"):
            return 0, self.root + "\n"
        if args == ("branch", "--show-current"):
            return 0, self.current + "\n"
        if name == "show-ref":
            ref = args[-1]
            if ref.startswith("refs/heads/") and ref[11:] in self.local:
                return 0, f"1234abcd {ref}\n"
            return 1, ""
        if args == ("remote",):
            return 0, "".join(f"{r}\n" for r in self.remotes)
        if name == "ls-remote":
            if not self.reachable:
                return 128, "fatal: Could not read from remote repository.\n"
            if args[-1].startswith("refs/heads/"):
                ref = args[-1]
                if ref[11:] in self.remote_branches:
                    return 0, f"1234abcd\t{ref}\n"
                return 2, ""
            return 0, "".join(
                f"1234abcd\trefs/heads/{b}\n" for b in sorted(self.remote_branches)
            )
        if name == "status":
            return 0, "".join(f" M {path}\n" for path in self.dirty)
        if name == "diff":
            return 0, "".join(f"{path}\n" for path in self.conflicts)
        if name == "add":
            return 0, ""
        if name == "commit":
            self.dirty = []
            return 0, f"[{self.current} 1234abc] {args[-1]}\n"
        if name == "fetch":
            return 0, ""
        if name == "checkout":
            if args[1] == "-b":
                branch = args[2]
                if branch in self.local:
                    return 128, f"fatal: a branch named '{branch}' already exists\n"
            else:
                branch = args[1]
                if branch not in self.local:
                    return 1, f"error: pathspec '{branch}' did not match\n"
            self.local.add(branch)
            self.current = branch
            return 0, f"Switched to branch '{branch}'\n"
        if name == "pull":
            if args[-1] not in self.remote_branches:
                return 1, f"fatal: couldn't find remote ref {args[-1]}\n"
            return 0, "Already up to date.\n"
        if name == "merge":
            return 0, "Merge made by the 'ort' strategy.\n"
        if name == "push":
            self.remote_branches.add(args[-1])
            return 0, ""
        raise AssertionError(f"unexpected git command: {args}")


class ScriptedConfirmation(Confirmation):
    """
    Answers with a fixed list of responses, recording the prompts.
    """

    def __init__(self, *answers: bool):
        self.answers = list(answers)
        self.prompts: list[str] = []

    def ask(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answers.pop(0)


@pytest.fixture(autouse=True)
def git_verbose() -> Iterator[None]:
    set_git_verbose(VERBOSE)
    yield
    set_git_verbose(False)


@pytest.fixture
def repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeRepo:
    fake = FakeRepo(tmp_path)
    monkeypatch.setattr("mergeflow.gitutils.subprocess.run", fake)
    return fake
