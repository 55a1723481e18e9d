from __future__ import absolute_import, print_function, annotations

import textwrap
from enum import Enum

import click


class ErrorKind(str, Enum):
    """The condition that ended a workflow run"""

    not_a_repository = "NotARepository"
    not_in_workflow_state = "NotInWorkflowState"
    invalid_target = "InvalidTarget"
    invalid_staging = "InvalidStaging"
    remote_unreachable = "RemoteUnreachable"
    uncommitted_changes = "UncommittedChanges"
    commit_failed = "CommitFailed"
    checkout_failed = "CheckoutFailed"
    staging_conflict = "StagingConflict"
    push_staging_failed = "PushStagingFailed"
    pull_failed = "PullFailed"
    target_conflict = "TargetConflict"
    push_failed = "PushFailed"
    write_error = "WriteError"


class WorkflowError(click.ClickException):
    """
    Base class for errors that end a workflow run.

    Raising one from a click command prints the message, along with the output of
    the git command that failed, and exits with a non-zero status.
    """

    def __init__(self, kind: ErrorKind, message: str, output: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.output = output

    def format_message(self) -> str:
        text = f"{self.kind.value}: {self.message}"
        if self.output and self.output.strip():
            text += "\n" + textwrap.indent(self.output.rstrip(), "    ")
        return text


class ValidationError(WorkflowError):
    """The branch state is invalid. Raised before anything has changed."""


class PreconditionError(WorkflowError):
    """The repository or remote is not ready. Raised before any branch changes."""


class RecoverableFailure(WorkflowError):
    """A failure the operator chose not to skip"""


class FatalMergeConflict(WorkflowError):
    """A merge failed. The conflict must be resolved by hand."""


class FatalOperationFailure(WorkflowError):
    """A checkout, pull, commit or push failed"""


class NotARepository(ValidationError):
    def __init__(self, output: str | None = None):
        super().__init__(
            ErrorKind.not_a_repository,
            "Not inside a git repository",
            output=output,
        )


class ConfigWriteError(WorkflowError):
    def __init__(self, path: str, output: str | None = None):
        super().__init__(
            ErrorKind.write_error,
            f"Could not write config file: {path}",
            output=output,
        )
