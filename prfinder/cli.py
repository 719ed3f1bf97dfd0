"""
prfinder CLI - Fetch GitHub pull requests into a local store.

Commands:
    init      - Create the data directory, config and database
    migrate   - Apply pending schema migrations
    greet     - Say hello
    sync      - Fetch PRs created in a date range (optionally save them)
    diff      - Print the unified diff of a PR
    image     - Download an image with GitHub authentication
    repos     - Manage registered repositories
    members   - Manage known members
    token     - Manage the stored GitHub token
    prs       - Browse stored PRs by member and month
    serve     - Run the HTTP API
"""

from __future__ import annotations

import json
import logging
import re
import sys
from dataclasses import asdict
from pathlib import Path

import click
from dotenv import load_dotenv

load_dotenv()
load_dotenv(Path.cwd() / ".env")

from . import __version__
from .commands import (
    describe_error,
    fetch_github_image,
    fetch_pr_diff,
    greet,
    lookup_member,
    sync_pull_requests,
    validate_token,
)
from .config import CONFIG_FILENAME, ConfigError, PrfinderConfig, ensure_data_dir
from .filtering import day_bounds
from .github import GitHubAPIError, GitHubClient, HttpStatusError
from .migrations import MigrationError
from .persist import save_sync_result
from .store import GITHUB_TOKEN_KEY, Store, StoreError, parse_full_name, resolve_token


SAMPLE_CONFIG = """\
# prfinder configuration

github:
  api_base: https://api.github.com
  user_agent: github-pr-finder
  # timeout: 30          # seconds; unset = no timeout

database:
  filename: github_pr_finder.db

sync:
  max_diff_changes: 2000 # PRs with more added+deleted lines are saved without a diff

server:
  host: 127.0.0.1
  port: 8421
"""

DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _load_config() -> PrfinderConfig:
    try:
        return PrfinderConfig.load()
    except ConfigError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


def _open_store(config: PrfinderConfig) -> Store:
    """Open (and migrate) the store. A failed migration is fatal."""
    try:
        return Store(config.db_path)
    except MigrationError as e:
        click.echo(f"❌ Database migration failed: {e}", err=True)
        sys.exit(1)


def _require_token(store: Store, token: str | None) -> str:
    resolved = resolve_token(store, token)
    if not resolved:
        click.echo(
            "❌ No GitHub token. Pass --token, set GITHUB_TOKEN, or run `prfinder token set`.",
            err=True,
        )
        sys.exit(1)
    return resolved


def _split_repo(full_name: str) -> tuple[str, str]:
    try:
        return parse_full_name(full_name)
    except StoreError as e:
        raise click.BadParameter(str(e)) from e


def _range_bounds(start: str, end: str) -> tuple[str, str]:
    """Expand bare YYYY-MM-DD bounds to whole days; leave timestamps alone."""
    day_start, day_end = day_bounds(start, end)
    return (
        day_start if DATE_ONLY.match(start) else start,
        day_end if DATE_ONLY.match(end) else end,
    )


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
def main(verbose: bool):
    """prfinder - Fetch GitHub pull requests into a local store."""
    if verbose:
        from .web.server import setup_logging
        setup_logging(console_level="DEBUG")
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Create the data directory, sample config and database."""
    config = _load_config()
    data_dir = ensure_data_dir(config.data_dir)
    click.echo(f"Initializing prfinder in: {data_dir}")

    config_path = data_dir / CONFIG_FILENAME
    if not config_path.exists() or force:
        config_path.write_text(SAMPLE_CONFIG)
        click.echo(f"  Created: {config_path}")
    else:
        click.echo(f"  Skipped: {config_path} (already exists)")

    store = _open_store(config)
    click.echo(f"  Database: {store.db_path} (schema v{store.schema_version()})")


@main.command()
def migrate():
    """Apply pending schema migrations."""
    config = _load_config()
    ensure_data_dir(config.data_dir)
    store = _open_store(config)
    click.echo(f"Database {store.db_path} is at schema v{store.schema_version()}")


@main.command(name="greet")
@click.argument("name")
def greet_command(name: str):
    """Say hello."""
    click.echo(greet(name))


@main.command()
@click.argument("repository")
@click.option("--start", "start_date", required=True, help="Start (YYYY-MM-DD or ISO timestamp), inclusive")
@click.option("--end", "end_date", required=True, help="End (YYYY-MM-DD or ISO timestamp), inclusive")
@click.option("--token", default=None, help="GitHub token (default: $GITHUB_TOKEN or stored token)")
@click.option("--save", is_flag=True, help="Save the PRs (and small diffs) to the local store")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sync(repository: str, start_date: str, end_date: str, token: str | None, save: bool, as_json: bool):
    """Fetch PRs of REPOSITORY (owner/repo) created between --start and --end.

    Only the first 100 PRs returned by GitHub are considered.

    Examples:

        prfinder sync octo/hello --start 2024-01-01 --end 2024-01-31
        prfinder sync octo/hello --start 2024-01-01 --end 2024-01-31 --save
    """
    owner, repo = _split_repo(repository)
    config = _load_config()
    ensure_data_dir(config.data_dir)
    store = _open_store(config)
    token = _require_token(store, token)
    client = GitHubClient(config.github)
    start, end = _range_bounds(start_date, end_date)

    if save and store.get_repository(owner, repo) is None:
        click.echo(
            f"❌ Repository {owner}/{repo} is not registered. Run `prfinder repos add {owner}/{repo}` first.",
            err=True,
        )
        sys.exit(1)

    try:
        result = sync_pull_requests(owner, repo, token, start, end, client=client)
    except GitHubAPIError as e:
        click.echo(f"❌ {describe_error('sync', e)}", err=True)
        sys.exit(1)

    if as_json and not save:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not as_json:
        click.echo(f"📦 {owner}/{repo}: {result.count} PRs created between {start} and {end}")
        for pr in result.prs:
            click.echo(f"  #{pr.number} [{pr.state}] {pr.title} ({pr.author}, {pr.created_at})")

    if save:
        def progress(current: int, total: int) -> None:
            if not as_json:
                click.echo(f"\r  Saving... {current}/{total}", nl=False)

        saved = save_sync_result(
            store, client, owner, repo, result, token,
            max_diff_changes=config.sync.max_diff_changes,
            progress_callback=progress,
        )
        if as_json:
            click.echo(json.dumps({**result.to_dict(), "saved": saved}, indent=2))
        else:
            if saved:
                click.echo()
            click.echo(f"✅ Saved {saved} PRs")


@main.command()
@click.argument("repository")
@click.argument("pr_number", type=click.IntRange(min=0))
@click.option("--token", default=None, help="GitHub token")
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), help="Write to file")
def diff(repository: str, pr_number: int, token: str | None, output: Path | None):
    """Print the unified diff of PR_NUMBER in REPOSITORY (owner/repo)."""
    owner, repo = _split_repo(repository)
    config = _load_config()
    store = _open_store(config)
    token = _require_token(store, token)

    try:
        text = fetch_pr_diff(owner, repo, pr_number, token, client=GitHubClient(config.github))
    except GitHubAPIError as e:
        click.echo(f"❌ {describe_error('diff', e)}", err=True)
        sys.exit(1)

    if output:
        output.write_text(text)
        click.echo(f"Wrote {output}")
    else:
        click.echo(text, nl=False)


@main.command()
@click.argument("url")
@click.option("-o", "--output", required=True, type=click.Path(dir_okay=False, path_type=Path), help="Destination file")
@click.option("--token", default=None, help="GitHub token")
def image(url: str, output: Path, token: str | None):
    """Download URL (e.g. an avatar) with GitHub authentication."""
    config = _load_config()
    store = _open_store(config)
    token = _require_token(store, token)

    try:
        data = fetch_github_image(url, token, client=GitHubClient(config.github))
    except GitHubAPIError as e:
        click.echo(f"❌ {describe_error('image', e)}", err=True)
        sys.exit(1)

    output.write_bytes(data)
    click.echo(f"Wrote {len(data)} bytes to {output}")


# =============================================================================
# Repositories
# =============================================================================

@main.group(name="repos")
def repos_group() -> None:
    """Manage registered repositories."""


@repos_group.command("add")
@click.argument("repository")
@click.option("--url", default=None, help="Repository URL (default: https://github.com/owner/repo)")
def repos_add(repository: str, url: str | None) -> None:
    """Register REPOSITORY (owner/repo)."""
    owner, name = _split_repo(repository)
    store = _open_store(_load_config())
    repo = store.add_repository(owner, name, url)
    click.echo(f"✓ {repo.full_name} (id {repo.id})")


@repos_group.command("list")
def repos_list() -> None:
    """List registered repositories."""
    store = _open_store(_load_config())
    repos = store.list_repositories()
    if not repos:
        click.echo("No repositories registered.")
        return
    for repo in repos:
        click.echo(f"  {repo.id:>4}  {repo.full_name:<40} {repo.url}")


@repos_group.command("remove")
@click.argument("repository_id", type=int)
def repos_remove(repository_id: int) -> None:
    """Remove a repository (and its stored PRs) by id."""
    store = _open_store(_load_config())
    if not store.delete_repository(repository_id):
        click.echo(f"Repository not found: {repository_id}", err=True)
        sys.exit(1)
    click.echo(f"Removed repository {repository_id}")


# =============================================================================
# Members
# =============================================================================

@main.group(name="members")
def members_group() -> None:
    """Manage known members (PR authors)."""


@members_group.command("add")
@click.argument("username")
@click.option("--display-name", default=None, help="Name to show instead of the login")
@click.option("--validate", is_flag=True, help="Check the login on GitHub and fill in the real name")
@click.option("--token", default=None, help="GitHub token for --validate")
def members_add(username: str, display_name: str | None, validate: bool, token: str | None) -> None:
    """Add a member by GitHub USERNAME."""
    config = _load_config()
    store = _open_store(config)

    if validate:
        token = _require_token(store, token)
        try:
            user = lookup_member(username, token, client=GitHubClient(config.github))
        except GitHubAPIError as e:
            click.echo(f"❌ {describe_error('user', e)}", err=True)
            sys.exit(1)
        if user is None:
            click.echo(f"❌ GitHub user does not exist: {username}", err=True)
            sys.exit(1)
        click.echo(f"✓ Valid GitHub user: {user.display_name}")
        display_name = display_name or user.name

    try:
        member = store.add_member(username, display_name)
    except StoreError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ {member.username} (id {member.id})")


@members_group.command("list")
def members_list() -> None:
    """List members."""
    store = _open_store(_load_config())
    members = store.list_members()
    if not members:
        click.echo("No members.")
        return
    for member in members:
        click.echo(f"  {member.id:>4}  {member.username:<30} {member.display_name or ''}")


@members_group.command("remove")
@click.argument("member_id", type=int)
def members_remove(member_id: int) -> None:
    """Remove a member by id."""
    store = _open_store(_load_config())
    if not store.delete_member(member_id):
        click.echo(f"Member not found: {member_id}", err=True)
        sys.exit(1)
    click.echo(f"Removed member {member_id}")


# =============================================================================
# Token
# =============================================================================

@main.group(name="token")
def token_group() -> None:
    """Manage the stored GitHub token."""


@token_group.command("set")
@click.argument("token")
def token_set(token: str) -> None:
    """Store a GitHub personal access token."""
    token = token.strip()
    if not token:
        raise click.BadParameter("token must not be empty")
    store = _open_store(_load_config())
    store.set_setting(GITHUB_TOKEN_KEY, token)
    click.echo("✓ Token saved")


@token_group.command("show")
def token_show() -> None:
    """Show whether a token is stored (masked)."""
    store = _open_store(_load_config())
    token = store.get_setting(GITHUB_TOKEN_KEY)
    if not token:
        click.echo("No token stored.")
        return
    click.echo(f"Token: {token[:4]}{'*' * max(len(token) - 4, 0)}")


@token_group.command("clear")
def token_clear() -> None:
    """Remove the stored token."""
    store = _open_store(_load_config())
    store.set_setting(GITHUB_TOKEN_KEY, "")
    click.echo("Token cleared")


@token_group.command("validate")
@click.option("--token", default=None, help="Token to check (default: $GITHUB_TOKEN or stored token)")
def token_validate(token: str | None) -> None:
    """Check a token against GitHub and show who it authenticates as."""
    config = _load_config()
    store = _open_store(config)
    token = _require_token(store, token)
    try:
        user = validate_token(token, client=GitHubClient(config.github))
    except HttpStatusError as e:
        if e.status_code == 401:
            click.echo("❌ Invalid token", err=True)
        else:
            click.echo(f"❌ {describe_error('token', e)}", err=True)
        sys.exit(1)
    except GitHubAPIError as e:
        click.echo(f"❌ {describe_error('token', e)}", err=True)
        sys.exit(1)
    click.echo(f"✓ Authenticated as {user.login} ({user.display_name})")


# =============================================================================
# Browsing
# =============================================================================

@main.command()
@click.argument("author")
@click.option("--month", default=None, help="Month to show (YYYY-MM)")
@click.option("--diff", "show_diff", is_flag=True, help="Include stored diffs")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def prs(author: str, month: str | None, show_diff: bool, as_json: bool) -> None:
    """Browse stored PRs by AUTHOR, newest first."""
    store = _open_store(_load_config())
    try:
        items = store.list_pull_requests(author=author, month=month)
    except StoreError as e:
        raise click.BadParameter(str(e), param_hint="--month") from e

    if as_json:
        rows = []
        for pr in items:
            row = asdict(pr)
            if not show_diff:
                row.pop("diff_content", None)
            rows.append(row)
        click.echo(json.dumps(rows, indent=2))
        return

    if not items:
        click.echo("No pull requests found.")
        return

    for pr in items:
        click.echo(f"#{pr.pr_number} [{pr.state}] {pr.title}")
        click.echo(f"    {pr.created_at} | {pr.html_url}")
        if show_diff and pr.diff_content:
            click.echo(pr.diff_content)


@main.command()
@click.option("--host", default=None, help="Bind host (default from config)")
@click.option("--port", default=None, type=int, help="Bind port (default from config)")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API for a UI."""
    from .web.server import run_server

    run_server(host=host, port=port)


if __name__ == "__main__":
    main()
