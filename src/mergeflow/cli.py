from __future__ import absolute_import, print_function, annotations

import click

from .config import (
    DEFAULT_REMOTE,
    DEFAULT_STAGING_SUFFIX,
    DEFAULT_TARGET_BRANCH,
    WorkflowConfig,
    config_path,
    get_repo_root,
    load_config,
    save_config,
)
from .core import (
    ENVVAR_PREFIX,
    ConsoleConfirmation,
    WorkflowRequest,
    run_workflow,
)
from .gitutils import set_git_verbose

VERBOSE: bool = False
CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def set_verbose(enabled: bool) -> bool:
    """
    Set the global verbosity.
    """
    global VERBOSE
    VERBOSE = enabled
    set_git_verbose(enabled)
    return enabled


def _non_empty(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> str | None:
    # None means the option was not given
    if value is not None and not value.strip():
        raise click.BadParameter("must not be empty")
    return value


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--verbose", "-v", is_flag=True, default=False)
def cli(verbose: bool) -> None:
    set_verbose(verbose)


@cli.command()
@click.option(
    "--commit-message",
    "-m",
    metavar="MESSAGE",
    help="Commit any uncommitted changes with this message before merging. "
    "Without it, uncommitted changes abort the run.",
)
@click.option(
    "--staging-branch",
    metavar="BRANCH",
    callback=_non_empty,
    help="The staging branch to merge into. "
    "Defaults to the current branch name plus the configured suffix.",
)
@click.option(
    "--target-branch",
    metavar="BRANCH",
    callback=_non_empty,
    help="The branch that the staging branch is merged into. "
    f"Defaults to the configured target branch, or '{DEFAULT_TARGET_BRANCH}'.",
)
@click.option(
    "--remote",
    metavar="REMOTE",
    callback=_non_empty,
    help=f"The remote to pull from and push to. "
    f"Defaults to the configured remote, or '{DEFAULT_REMOTE}'.",
)
@click.option(
    "--dry-run",
    "--what-if",
    "dry_run",
    is_flag=True,
    default=False,
    help="Print the git commands that would change the repository instead of "
    "running them.",
)
def run(
    commit_message: str | None,
    staging_branch: str | None,
    target_branch: str | None,
    remote: str | None,
    dry_run: bool,
) -> None:
    """
    Merge the current branch into its staging branch, then merge the staging
    branch into the target branch, pushing both.

    The current branch is checked out again when the run ends, whether it
    succeeded or not. Do not run this twice at once in the same repository.
    """
    request = WorkflowRequest(
        commit_message=commit_message,
        staging_branch=staging_branch,
        target_branch=target_branch,
        remote=remote,
        dry_run=dry_run,
    )
    result = run_workflow(request, ConsoleConfirmation(), verbose=VERBOSE)
    if result.error is not None:
        raise result.error

    ctx = result.context
    assert ctx is not None
    click.secho(
        f"Merged {ctx.original_branch} into {ctx.staging_branch} and "
        f"{ctx.target_branch}" + (" (dry_run=True)" if dry_run else ""),
        fg="green",
    )
    if result.skipped_push:
        click.secho(
            f"{ctx.staging_branch} was not pushed to {ctx.remote}",
            fg="yellow",
            err=True,
        )


@cli.command("init-config")
@click.option(
    "--target-branch",
    default=DEFAULT_TARGET_BRANCH,
    show_default=True,
    metavar="BRANCH",
    callback=_non_empty,
    help="The branch that staging branches are merged into.",
)
@click.option(
    "--staging-suffix",
    default=DEFAULT_STAGING_SUFFIX,
    show_default=True,
    metavar="SUFFIX",
    callback=_non_empty,
    help="Appended to the current branch name to name its staging branch.",
)
@click.option(
    "--remote",
    default=DEFAULT_REMOTE,
    show_default=True,
    metavar="REMOTE",
    callback=_non_empty,
    help="The remote to pull from and push to.",
)
def init_config(target_branch: str, staging_suffix: str, remote: str) -> None:
    """
    Write the config file at the root of the current repository.
    """
    config = WorkflowConfig(
        target_branch=target_branch, staging_suffix=staging_suffix, remote=remote
    )
    path = save_config(get_repo_root(), config)
    click.secho(f"Wrote {path}", fg="green")


@cli.command("show-config")
def show_config() -> None:
    """
    Print the configuration used in the current repository.
    """
    root = get_repo_root()
    config = load_config(root, verbose=VERBOSE)
    if config is None:
        click.echo(f"No config at {config_path(root)}, using defaults", err=True)
        config = WorkflowConfig()

    for key, value in config.to_json().items():
        click.echo(f"{key} = {value}")


def main() -> None:
    import shutil

    return cli(
        auto_envvar_prefix=ENVVAR_PREFIX,
        max_content_width=shutil.get_terminal_size().columns,
    )
