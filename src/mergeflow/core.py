from __future__ import absolute_import, print_function, annotations

import sys
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import click

from .config import WorkflowConfig, get_repo_root, load_config
from .errors import (
    ErrorKind,
    FatalMergeConflict,
    FatalOperationFailure,
    NotARepository,
    PreconditionError,
    RecoverableFailure,
    ValidationError,
    WorkflowError,
)
from .gitutils import (
    CommandError,
    NoBranchError,
    git,
    join,
    branch_exists,
    remote_branch_exists,
    current_branch,
    get_conflicted_files,
    get_remotes,
    get_status,
    ping_remote,
)

TOOL_NAME = "mergeflow"
ENVVAR_PREFIX = TOOL_NAME.upper()

STAGING_MERGE_MESSAGE = "Merge branch '{source}' into {staging}"
TARGET_MERGE_MESSAGE = "Merge branch '{staging}' into {target}"


class State(str, Enum):
    """Steps of the workflow in the order that they run, then the terminal states"""

    init = "init"
    validate_context = "validate-context"
    verify_remote = "verify-remote"
    ensure_clean = "ensure-clean"
    resolve_staging = "resolve-staging"
    merge_to_staging = "merge-to-staging"
    push_staging = "push-staging"
    checkout_target = "checkout-target"
    pull_target = "pull-target"
    merge_to_target = "merge-to-target"
    push_target = "push-target"
    done = "done"
    abort = "abort"


class BranchSource(str, Enum):
    """Where a branch was found when it was resolved"""

    local = "local"
    remote = "remote"
    new = "new"


@dataclass(frozen=True)
class WorkflowRequest:
    commit_message: str | None = None
    staging_branch: str | None = None
    target_branch: str | None = None
    remote: str | None = None
    dry_run: bool = False


@dataclass
class RunContext:
    original_branch: str
    staging_branch: str
    target_branch: str
    remote: str
    dry_run: bool = False
    # the branch the workflow has checked out, simulated or not
    head: str = ""
    target_created: bool = False

    def __post_init__(self) -> None:
        if not self.head:
            self.head = self.original_branch


@dataclass
class WorkflowResult:
    state: State = State.init
    context: RunContext | None = None
    error: WorkflowError | None = None
    failed_state: State | None = None
    skipped_push: bool = False
    cleanup_error: CommandError | None = None
    completed: list[State] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is State.done


def resolve_context(
    request: WorkflowRequest, config: WorkflowConfig, original_branch: str
) -> RunContext:
    """
    Combine the request, the config and the current branch into the branch names
    used for the run.

    Values in the request take precedence over the config, which has already
    fallen back to the defaults for anything it does not set.
    """
    staging_branch = request.staging_branch or (
        original_branch + config.staging_suffix
    )
    return RunContext(
        original_branch=original_branch,
        staging_branch=staging_branch,
        target_branch=request.target_branch or config.target_branch,
        remote=request.remote or config.remote,
        dry_run=request.dry_run,
    )


def echo_step(message: str) -> None:
    click.secho(message, fg="cyan", bold=True)


class Confirmation:
    """
    Ask the operator a yes/no question.
    """

    @abstractmethod
    def ask(self, prompt: str) -> bool:
        """
        Returns:
            True if the operator answered yes
        """


class ConsoleConfirmation(Confirmation):
    """
    Prompt on the terminal.

    When stdin is not interactive there is nobody to answer, so the answer is no.
    """

    def __init__(self, interactive: bool | None = None):
        if interactive is None:
            interactive = sys.stdin.isatty()
        self.interactive = interactive

    def ask(self, prompt: str) -> bool:
        if not self.interactive:
            click.echo(f"{prompt} [y/N]: N (not an interactive terminal)", err=True)
            return False
        return click.confirm(prompt, default=False)


class MergeWorkflow:
    """
    Merge the current branch into its staging branch, then merge the staging
    branch into the target branch, pushing each of them to the remote.

    Each step returns an error, or None to continue to the next step. Once the
    branch-changing steps have begun, the original branch is checked out again
    whatever the outcome.

    Only one workflow may run against a repository at a time.
    """

    # steps which do not change branches, and so need no cleanup
    PREFLIGHT = (
        State.init,
        State.validate_context,
        State.verify_remote,
        State.ensure_clean,
    )
    PROMOTION = (
        State.resolve_staging,
        State.merge_to_staging,
        State.push_staging,
        State.checkout_target,
        State.pull_target,
        State.merge_to_target,
        State.push_target,
    )

    def __init__(
        self,
        request: WorkflowRequest,
        confirmation: Confirmation,
        config: WorkflowConfig | None = None,
        verbose: bool = False,
    ):
        self.request = request
        self.confirmation = confirmation
        self.config = config
        self.verbose = verbose or (config is not None and config.verbose)
        self.context: RunContext | None = None
        self.result = WorkflowResult()
        self._handlers: dict[State, Callable[[], WorkflowError | None]] = {
            State.init: self._init,
            State.validate_context: self._validate_context,
            State.verify_remote: self._verify_remote,
            State.ensure_clean: self._ensure_clean,
            State.resolve_staging: self._resolve_staging,
            State.merge_to_staging: self._merge_to_staging,
            State.push_staging: self._push_staging,
            State.checkout_target: self._checkout_target,
            State.pull_target: self._pull_target,
            State.merge_to_target: self._merge_to_target,
            State.push_target: self._push_target,
        }

    @property
    def ctx(self) -> RunContext:
        assert self.context is not None, "workflow has not been initialized"
        return self.context

    def run(self) -> WorkflowResult:
        """
        Run every step until one fails.

        Returns:
            The outcome of the run. `error` is set if the run was aborted.
        """
        for state in self.PREFLIGHT:
            if not self._advance(state):
                return self.result

        try:
            for state in self.PROMOTION:
                if not self._advance(state):
                    break
            else:
                self.result.state = State.done
        finally:
            self._cleanup()
        return self.result

    # reported when a git command fails in a step that does not handle it itself
    FAILURE_KINDS = {
        State.init: ErrorKind.not_in_workflow_state,
        State.validate_context: ErrorKind.not_in_workflow_state,
        State.verify_remote: ErrorKind.remote_unreachable,
        State.ensure_clean: ErrorKind.uncommitted_changes,
        State.resolve_staging: ErrorKind.checkout_failed,
        State.merge_to_staging: ErrorKind.staging_conflict,
        State.push_staging: ErrorKind.push_staging_failed,
        State.checkout_target: ErrorKind.checkout_failed,
        State.pull_target: ErrorKind.pull_failed,
        State.merge_to_target: ErrorKind.target_conflict,
        State.push_target: ErrorKind.push_failed,
    }

    def _advance(self, state: State) -> bool:
        self.result.state = state
        error: WorkflowError | None
        try:
            error = self._handlers[state]()
        except CommandError as err:
            error = FatalOperationFailure(
                self.FAILURE_KINDS[state],
                f"Step '{state.value}' failed",
                output=str(err),
            )
        if error is not None:
            self.result.state = State.abort
            self.result.failed_state = state
            self.result.error = error
            return False
        self.result.completed.append(state)
        return True

    def _init(self) -> WorkflowError | None:
        config = self.config
        if config is None:
            try:
                root = get_repo_root()
            except NotARepository as err:
                return err
            config = load_config(root, verbose=self.verbose)
            if config is None:
                config = WorkflowConfig(verbose=self.verbose)

        try:
            original_branch = current_branch()
        except (NoBranchError, CommandError) as err:
            return ValidationError(
                ErrorKind.not_in_workflow_state,
                "Could not determine the current branch. "
                "Check out the branch to be merged and try again.",
                output=str(err),
            )

        self.context = resolve_context(self.request, config, original_branch)
        self.result.context = self.context
        if self.verbose:
            ctx = self.context
            click.echo(
                f"branch = {ctx.original_branch}, staging = {ctx.staging_branch}, "
                f"target = {ctx.target_branch}, remote = {ctx.remote}",
                err=True,
            )
        return None

    def _validate_context(self) -> WorkflowError | None:
        ctx = self.ctx
        if ctx.original_branch == ctx.target_branch:
            return ValidationError(
                ErrorKind.invalid_target,
                f"The current branch '{ctx.original_branch}' is the target branch. "
                "Check out a feature branch first.",
            )
        if ctx.original_branch == ctx.staging_branch:
            return ValidationError(
                ErrorKind.invalid_staging,
                f"The current branch '{ctx.original_branch}' is the staging branch. "
                "Check out a feature branch first.",
            )
        if ctx.staging_branch == ctx.target_branch:
            return ValidationError(
                ErrorKind.invalid_staging,
                f"The staging branch cannot be the target branch '{ctx.target_branch}'",
            )
        return None

    def _verify_remote(self) -> WorkflowError | None:
        remote = self.ctx.remote
        try:
            remotes = get_remotes()
        except CommandError as err:
            return PreconditionError(
                ErrorKind.remote_unreachable,
                "Could not list remotes",
                output=err.output,
            )
        if remote not in remotes:
            return PreconditionError(
                ErrorKind.remote_unreachable,
                f"Remote '{remote}' is not configured. "
                f"Known remotes: {', '.join(remotes) or '(none)'}",
            )
        try:
            ping_remote(remote)
        except CommandError as err:
            return PreconditionError(
                ErrorKind.remote_unreachable,
                f"Could not reach remote '{remote}'",
                output=err.output,
            )
        return None

    def _ensure_clean(self) -> WorkflowError | None:
        ctx = self.ctx
        try:
            changes = get_status()
        except CommandError as err:
            return PreconditionError(
                ErrorKind.uncommitted_changes,
                "Could not read the status of the working tree",
                output=err.output,
            )
        if not changes:
            return None

        message = self.request.commit_message
        if not message:
            return PreconditionError(
                ErrorKind.uncommitted_changes,
                "There are uncommitted changes. "
                "Commit or stash them, or pass --commit-message to commit them.",
                output="\n".join(changes),
            )

        echo_step(f"Committing {len(changes)} changed file(s) to {ctx.original_branch}")
        try:
            git("add", "--all", simulate=ctx.dry_run)
            git("commit", "-m", message, simulate=ctx.dry_run)
        except CommandError as err:
            return FatalOperationFailure(
                ErrorKind.commit_failed, "Failed to commit changes", output=err.output
            )
        return None

    def _locate(self, branch: str, optimistic: bool) -> BranchSource:
        """
        Find where a branch exists. A local branch takes precedence over a
        remote one of the same name.

        Args:
            optimistic: treat a failed query of the remote as the branch not existing
                there, instead of raising.
        """
        if branch_exists(branch):
            return BranchSource.local
        remote = self.ctx.remote
        try:
            found = remote_branch_exists(remote, branch)
        except CommandError as err:
            if not optimistic:
                raise
            # FIXME: this cannot tell an unreachable remote from a missing branch,
            #  so a connectivity problem here leads to creating the branch locally.
            click.echo(
                f"Warning: could not look up {join(remote, branch)}, "
                f"assuming it does not exist\n{err.output.rstrip()}",
                err=True,
            )
            return BranchSource.new
        return BranchSource.remote if found else BranchSource.new

    def _checkout(self, branch: str, source: BranchSource) -> None:
        ctx = self.ctx
        if source is BranchSource.local:
            git("checkout", branch, simulate=ctx.dry_run)
        elif source is BranchSource.remote:
            git(
                "fetch",
                ctx.remote,
                f"refs/heads/{branch}:refs/remotes/{ctx.remote}/{branch}",
                simulate=ctx.dry_run,
            )
            git(
                "checkout",
                "-b",
                branch,
                "--track",
                join(ctx.remote, branch),
                simulate=ctx.dry_run,
            )
        else:
            git("checkout", "-b", branch, simulate=ctx.dry_run)
        ctx.head = branch

    def _merge(
        self, source: str, into: str, message: str, kind: ErrorKind
    ) -> WorkflowError | None:
        """
        Merge `source` into the checked out branch, always creating a merge commit.

        A failed merge is aborted so that the original branch can be checked out
        again. It is not retried.
        """
        ctx = self.ctx
        echo_step(f"Merging {source} into {into}")
        result = git(
            "merge",
            "--no-ff",
            source,
            "-m",
            message,
            check=False,
            simulate=ctx.dry_run,
        )
        if result.ok:
            return None

        output = result.output
        conflicts = get_conflicted_files()
        if conflicts:
            output = output.rstrip() + "\nConflicts:\n" + "\n".join(
                f"  {path}" for path in conflicts
            )
        git("merge", "--abort", quiet=True, check=False)
        return FatalMergeConflict(
            kind,
            f"Merging {source} into {into} failed. "
            "Resolve the conflicts by hand, then run again.",
            output=output,
        )

    def _resolve_staging(self) -> WorkflowError | None:
        ctx = self.ctx
        staging = ctx.staging_branch
        source = self._locate(staging, optimistic=True)
        if source is BranchSource.local:
            echo_step(f"Checking out staging branch {staging}")
        elif source is BranchSource.remote:
            echo_step(f"Checking out staging branch {staging} from {ctx.remote}")
        else:
            echo_step(f"Creating staging branch {staging}")

        try:
            self._checkout(staging, source)
        except CommandError as err:
            return FatalOperationFailure(
                ErrorKind.checkout_failed,
                f"Could not check out staging branch '{staging}'",
                output=err.output,
            )
        return None

    def _merge_to_staging(self) -> WorkflowError | None:
        ctx = self.ctx
        # a new staging branch has nothing to pull
        pulled = git(
            "pull",
            ctx.remote,
            ctx.staging_branch,
            quiet=True,
            check=False,
            simulate=ctx.dry_run,
        )
        if not pulled.ok:
            click.echo(
                f"Nothing pulled for {ctx.staging_branch} from {ctx.remote}", err=True
            )
            if self.verbose:
                click.echo(pulled.output.rstrip(), err=True)

        message = STAGING_MERGE_MESSAGE.format(
            source=ctx.original_branch, staging=ctx.staging_branch
        )
        return self._merge(
            ctx.original_branch,
            ctx.staging_branch,
            message,
            ErrorKind.staging_conflict,
        )

    def _push_staging(self) -> WorkflowError | None:
        ctx = self.ctx
        echo_step(f"Pushing {ctx.staging_branch} to {ctx.remote}")
        try:
            git(
                "push",
                "--set-upstream",
                ctx.remote,
                ctx.staging_branch,
                simulate=ctx.dry_run,
            )
        except CommandError as err:
            click.echo(err.output.rstrip(), err=True)
            if self.confirmation.ask(
                f"Pushing {ctx.staging_branch} to {ctx.remote} failed. "
                "Skip the push and continue?"
            ):
                click.secho(
                    f"Skipped pushing {ctx.staging_branch}; it is merged locally only",
                    fg="yellow",
                    err=True,
                )
                self.result.skipped_push = True
                return None
            return RecoverableFailure(
                ErrorKind.push_staging_failed,
                f"Failed to push {ctx.staging_branch} to {ctx.remote}",
                output=err.output,
            )
        return None

    def _checkout_target(self) -> WorkflowError | None:
        ctx = self.ctx
        target = ctx.target_branch
        try:
            source = self._locate(target, optimistic=False)
            if source is BranchSource.new:
                echo_step(f"Creating target branch {target}")
                ctx.target_created = True
            else:
                echo_step(f"Checking out target branch {target}")
            self._checkout(target, source)
        except CommandError as err:
            return FatalOperationFailure(
                ErrorKind.checkout_failed,
                f"Could not check out target branch '{target}'",
                output=err.output,
            )
        return None

    def _pull_target(self) -> WorkflowError | None:
        ctx = self.ctx
        if ctx.target_created:
            return None
        echo_step(f"Pulling {ctx.target_branch} from {ctx.remote}")
        try:
            git("pull", ctx.remote, ctx.target_branch, simulate=ctx.dry_run)
        except CommandError as err:
            return FatalOperationFailure(
                ErrorKind.pull_failed,
                f"Failed to pull {ctx.target_branch} from {ctx.remote}",
                output=err.output,
            )
        return None

    def _merge_to_target(self) -> WorkflowError | None:
        ctx = self.ctx
        message = TARGET_MERGE_MESSAGE.format(
            staging=ctx.staging_branch, target=ctx.target_branch
        )
        return self._merge(
            ctx.staging_branch,
            ctx.target_branch,
            message,
            ErrorKind.target_conflict,
        )

    def _push_target(self) -> WorkflowError | None:
        ctx = self.ctx
        echo_step(f"Pushing {ctx.target_branch} to {ctx.remote}")
        args = ["push"]
        if ctx.target_created:
            args.append("--set-upstream")
        args.extend([ctx.remote, ctx.target_branch])
        try:
            git(*args, simulate=ctx.dry_run)
        except CommandError as err:
            return FatalOperationFailure(
                ErrorKind.push_failed,
                f"Failed to push {ctx.target_branch} to {ctx.remote}",
                output=err.output,
            )
        return None

    def _cleanup(self) -> None:
        """
        Check out the original branch, if the workflow left another one checked out.

        A failure here is reported, but does not change the outcome of the run.
        """
        ctx = self.context
        if ctx is None:
            return

        head: str | None
        if ctx.dry_run:
            head = ctx.head
        else:
            try:
                head = current_branch()
            except (NoBranchError, CommandError) as err:
                click.echo(f"Warning: {err}", err=True)
                head = None

        if head == ctx.original_branch:
            return

        echo_step(f"Returning to {ctx.original_branch}")
        try:
            git("checkout", ctx.original_branch, simulate=ctx.dry_run)
        except CommandError as err:
            self.result.cleanup_error = err
            click.secho(
                f"Could not check out {ctx.original_branch}, "
                f"still on {head or 'a detached HEAD'}:\n{err.output.rstrip()}",
                fg="red",
                err=True,
            )
        else:
            ctx.head = ctx.original_branch


def run_workflow(
    request: WorkflowRequest,
    confirmation: Confirmation | None = None,
    config: WorkflowConfig | None = None,
    verbose: bool = False,
) -> WorkflowResult:
    """
    Run the merge workflow from the current branch.

    Args:
        request: options for this run, which take precedence over the config
        confirmation: asked whether to continue when pushing the staging branch fails
        config: if not provided, it is loaded from the repository

    Returns:
        The outcome of the run
    """
    if confirmation is None:
        confirmation = ConsoleConfirmation()
    return MergeWorkflow(request, confirmation, config=config, verbose=verbose).run()
