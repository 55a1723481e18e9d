"""
Per-repository settings, stored as JSON at the root of the working tree.
"""

from __future__ import absolute_import, print_function, annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import click

from .errors import ConfigWriteError, NotARepository
from .gitutils import CommandError, git

CONFIG_FILENAME = ".git-merge-workflow.json"

DEFAULT_TARGET_BRANCH = "develop"
DEFAULT_STAGING_SUFFIX = "-staging"
DEFAULT_REMOTE = "origin"

# attribute name to key in the json document
FIELDS = {
    "target_branch": "TargetBranch",
    "staging_suffix": "StagingSuffix",
    "remote": "Remote",
}


@dataclass(frozen=True)
class WorkflowConfig:
    target_branch: str = DEFAULT_TARGET_BRANCH
    staging_suffix: str = DEFAULT_STAGING_SUFFIX
    remote: str = DEFAULT_REMOTE
    # not persisted
    verbose: bool = False

    def to_json(self) -> dict[str, str]:
        return {key: getattr(self, attr) for attr, key in FIELDS.items()}


def get_repo_root(cwd: str | Path | None = None) -> Path:
    """
    Return the root of the working tree, as reported by git.

    Raises:
        NotARepository: If git does not recognize the directory as a repository.
    """
    try:
        root = git("rev-parse", "--show-toplevel", capture=True, cwd=cwd)
    except CommandError as err:
        raise NotARepository(err.output) from err
    if not root:
        raise NotARepository()
    return Path(root)


def config_path(repo_root: str | Path) -> Path:
    return Path(repo_root, CONFIG_FILENAME)


def load_config(repo_root: str | Path, verbose: bool = False) -> WorkflowConfig | None:
    """
    Load the workflow configuration for the repository.

    A missing key, or an empty value, falls back to the default for that key.

    Returns:
        A configuration object, or None if the file is absent or could not be read.
    """
    path = config_path(repo_root)
    if not os.path.isfile(path):
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as err:
        click.echo(f"Warning: ignoring unreadable config file {path}: {err}", err=True)
        return None

    if not isinstance(data, dict):
        click.echo(f"Warning: ignoring config file {path}: not a JSON object", err=True)
        return None

    def get(attr: str, default: str) -> str:
        key = FIELDS[attr]
        value = data.get(key)
        if value is None or value == "":
            return default
        if not isinstance(value, str):
            click.echo(
                f"Warning: {key} in {path} must be a string, using the default",
                err=True,
            )
            return default
        return value

    if verbose:
        click.echo(f"Loaded config from {path}", err=True)
    return WorkflowConfig(
        target_branch=get("target_branch", DEFAULT_TARGET_BRANCH),
        staging_suffix=get("staging_suffix", DEFAULT_STAGING_SUFFIX),
        remote=get("remote", DEFAULT_REMOTE),
        verbose=verbose,
    )


def save_config(repo_root: str | Path, config: WorkflowConfig) -> Path:
    """
    Write the configuration into the repository, replacing any existing file.

    Returns:
        The path of the written file.

    Raises:
        ConfigWriteError: If the file could not be written.
    """
    path = config_path(repo_root)
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config.to_json(), f, indent=4)
            f.write("\n")
    except OSError as err:
        raise ConfigWriteError(str(path), output=str(err)) from err
    return path
