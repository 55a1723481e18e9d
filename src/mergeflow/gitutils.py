from __future__ import absolute_import, print_function, annotations

import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import overload

import click
from typing_extensions import Literal

_verbose: bool = False


def set_git_verbose(enabled: bool = True) -> None:
    global _verbose
    _verbose = enabled


def join(remote: str | None, branch: str) -> str:
    """
    Construct a full branch path with remote prefix if specified.

    Args:
        remote: The remote repository name
        branch: The branch name.

    Returns:
        str: The full path to the branch, prefixed by the remote name if specified.
    """
    if remote:
        return f"{remote}/{branch}"
    else:
        return branch


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandError(subprocess.CalledProcessError):
    """
    A git command exited with a non-zero status.

    `output` holds the merged stdout and stderr of the command.
    """

    def __str__(self) -> str:
        cmd = shlex.join(self.cmd) if isinstance(self.cmd, list) else str(self.cmd)
        text = f"'{cmd}' failed with exit code {self.returncode}"
        if self.output and self.output.strip():
            text += f":\n{self.output.rstrip()}"
        return text


class NoBranchError(RuntimeError):
    """HEAD is detached, or the current branch name could not be determined"""


@overload
def git(
    *args: str,
    quiet: bool = False,
    check: bool = True,
    simulate: bool = False,
    cwd: str | Path | None = None,
    capture: Literal[True],
) -> str:
    pass


@overload
def git(
    *args: str,
    quiet: bool = False,
    check: bool = True,
    simulate: bool = False,
    cwd: str | Path | None = None,
) -> CommandResult:
    pass


def git(
    *args: str,
    quiet: bool = False,
    capture: bool = False,
    check: bool = True,
    simulate: bool = False,
    cwd: str | Path | None = None,
) -> CommandResult | str:
    """
    Execute a git command with the specified arguments.

    stdout and stderr are merged into a single stream, which is always captured
    so that it can be attached to errors.

    Args:
        *args: Command line arguments for git.
        quiet: Do not echo the command output once it completes.
        capture: Return the stripped output instead of a CommandResult. Implies quiet.
        check: Raise CommandError if the command exits non-zero.
        simulate: Do not run the command. Report what would have run and return
            a successful, empty result.
        cwd: Directory to run the command in.

    Returns:
        A CommandResult, if capture is False, else the output of the process.

    Raises:
        CommandError: If the git command fails and check is True, or if git
            could not be executed at all.
    """
    cmd = ["git"] + [str(arg).strip() for arg in args]
    if simulate:
        click.secho(f"[dry-run] {shlex.join(cmd)}", fg="yellow")
        return "" if capture else CommandResult(0, "")

    if _verbose:
        click.echo(f"+ {shlex.join(cmd)}", err=True)
    try:
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            check=False,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as err:
        raise CommandError(127, cmd, output=str(err)) from err

    output = proc.stdout or ""
    if not (quiet or capture) and output.strip():
        click.echo(output.rstrip())
    if check and proc.returncode != 0:
        raise CommandError(proc.returncode, cmd, output=output)
    if capture:
        return output.strip()
    return CommandResult(proc.returncode, output)


def current_branch() -> str:
    """
    Get the current git branch name.

    Returns:
        The name of the current branch.

    Raises:
        NoBranchError: If HEAD is detached
        CommandError: If git could not be queried, e.g. outside a repository
    """
    branch = git("branch", "--show-current", capture=True)
    if not branch:
        raise NoBranchError("HEAD is detached or has no branch name")
    return branch


def branch_exists(branch: str) -> bool:
    """
    Return whether the given branch exists locally.

    Args:
        branch: branch name
    """
    result = git(
        "show-ref",
        "--verify",
        "--quiet",
        f"refs/heads/{branch}",
        quiet=True,
        check=False,
    )
    return result.ok


def remote_branch_exists(remote: str, branch: str) -> bool:
    """
    Return whether the given branch exists on the remote.

    The remote is queried by full ref path: a short name such as `fix` would
    also match `refs/heads/user/fix`.

    Args:
        remote: The remote repository name
        branch: branch name

    Raises:
        CommandError: If the remote could not be queried
    """
    ref = f"refs/heads/{branch}"
    args = ("ls-remote", "--exit-code", "--heads", remote, ref)
    result = git(*args, quiet=True, check=False)
    if result.exit_code == 2:
        # --exit-code: no matching refs
        return False
    if not result.ok:
        raise CommandError(result.exit_code, ["git", *args], output=result.output)
    for line in result.output.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1] == ref:
            return True
    return False


def get_remotes() -> list[str]:
    """
    Return the names of the configured remotes.
    """
    return git("remote", capture=True).split()


def ping_remote(remote: str) -> None:
    """
    Make a lightweight query against the remote.

    Raises:
        CommandError: If the remote could not be reached
    """
    git("ls-remote", "--heads", remote, quiet=True)


def get_status() -> list[str]:
    """
    Return the porcelain status lines for modified and untracked files.
    """
    result = git("status", "--porcelain", quiet=True)
    return [line for line in result.output.splitlines() if line.strip()]


def get_conflicted_files() -> list[str]:
    """
    Return the files left unmerged by a failed merge.
    """
    output = git("diff", "--name-only", "--diff-filter=U", capture=True, check=False)
    return output.splitlines()
