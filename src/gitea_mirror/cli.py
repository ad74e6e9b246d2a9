"""Command-line interface for gitea-mirror."""

import sys
import threading
from dataclasses import dataclass

import click
from dotenv import load_dotenv

from .config import ConfigLoader, MirrorConfig
from .exceptions import MirrorError
from .gitea_client import GiteaClient
from .github_client import GitHubClient
from .job_orchestrator import JobOrchestrator
from .logging_config import configure_logging
from .mirror_executor import MirrorExecutor
from .models import JobStatus, LogLevel, MirrorJob
from .scheduler import Scheduler
from .store import JsonFileStore, MirrorStore
from .synchronizer import Synchronizer

__version__ = "0.1.0"

LEVEL_COLORS = {
    LogLevel.INFO: "blue",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
}


# Helper functions for colored output
def echo_success(message, quiet=False):
    """Echo success message in green."""
    if not quiet:
        click.secho(f"✅ {message}", fg="green")


def echo_error(message):
    """Echo error message in red."""
    click.secho(f"❌ {message}", fg="red", err=True)


def echo_info(message, quiet=False):
    """Echo info message in blue."""
    if not quiet:
        click.secho(message, fg="blue")


def echo_warning(message, quiet=False):
    """Echo warning message in yellow."""
    if not quiet:
        click.secho(f"⚠️  {message}", fg="yellow")


def format_duration(seconds):
    """Format duration in human-readable format."""
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"


@dataclass
class Services:
    """Everything a command needs, wired for one configuration."""

    store: MirrorStore
    github_client: GitHubClient
    gitea_client: GiteaClient
    synchronizer: Synchronizer
    orchestrator: JobOrchestrator


def build_services(config: MirrorConfig, state_file: str) -> Services:
    """Wire clients, store and orchestration for a configuration."""
    store = JsonFileStore(state_file)
    github_client = GitHubClient.from_config(config)
    gitea_client = GiteaClient.from_config(config)
    executor = MirrorExecutor(github_client, gitea_client, store)
    return Services(
        store=store,
        github_client=github_client,
        gitea_client=gitea_client,
        synchronizer=Synchronizer(github_client, store),
        orchestrator=JobOrchestrator(executor, store, gitea_client),
    )


def load_config(ctx) -> MirrorConfig:
    """Load the configuration named by --config, exiting on error."""
    try:
        return ConfigLoader().load_from_file(ctx.obj["CONFIG"])
    except MirrorError as e:
        echo_error(f"Configuration error: {e}")
        sys.exit(1)


def get_services(ctx, config: MirrorConfig) -> Services:
    try:
        return build_services(config, ctx.obj["STATE_FILE"])
    except MirrorError as e:
        echo_error(f"Failed to initialize: {e}")
        sys.exit(1)


def print_job_log(job: MirrorJob) -> None:
    for entry in job.log:
        line = f"   [{entry.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] {entry.message}"
        click.secho(line, fg=LEVEL_COLORS.get(entry.level))
        if entry.details:
            click.echo(f"      {entry.details}")


def print_job_summary(job: MirrorJob) -> None:
    last = job.log[-1].message if job.log else ""
    click.echo(f"{job.id}  {job.status.value:<10} {job.created_at.strftime('%Y-%m-%d %H:%M:%S')}  {last}")


@click.group()
@click.version_option(version=__version__)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--log-level",
    envvar="GITEA_MIRROR_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Process log level (default: WARNING) or set GITEA_MIRROR_LOG_LEVEL env var",
)
@click.option("--json-logs", is_flag=True, help="Emit process logs as JSON lines")
@click.option(
    "--config",
    "config_path",
    envvar="GITEA_MIRROR_CONFIG",
    default="gitea-mirror.yaml",
    help="Configuration file (default: gitea-mirror.yaml) or set GITEA_MIRROR_CONFIG env var",
)
@click.option(
    "--state-file",
    envvar="GITEA_MIRROR_STATE_FILE",
    default=".gitea-mirror/state.json",
    help="State file for repositories and jobs or set GITEA_MIRROR_STATE_FILE env var",
)
@click.pass_context
def main(ctx, quiet, log_level, json_logs, config_path, state_file):
    """GitHub to Gitea mirroring tool.

    Discovers repositories on GitHub and mirrors them into Gitea as pull
    mirrors, optionally with their issues.
    """
    # Load environment variables from .env file if it exists
    load_dotenv()

    ctx.ensure_object(dict)
    ctx.obj["QUIET"] = quiet
    ctx.obj["CONFIG"] = config_path
    ctx.obj["STATE_FILE"] = state_file

    configure_logging(level=log_level, json_format=json_logs)


@main.command(name="test-connection")
@click.pass_context
def test_connection(ctx):
    """Check GitHub and Gitea credentials."""
    quiet = ctx.obj.get("QUIET", False)
    config = load_config(ctx)
    services = get_services(ctx, config)

    failed = False
    try:
        user = services.github_client.test_connection()
        echo_success(f"GitHub: authenticated as {user['login']}", quiet)
    except MirrorError as e:
        echo_error(f"GitHub: {e}")
        failed = True

    try:
        user = services.gitea_client.test_connection()
        echo_success(f"Gitea: authenticated as {user['login']} at {config.gitea.url}", quiet)
    except MirrorError as e:
        echo_error(f"Gitea: {e}")
        failed = True

    if failed:
        sys.exit(1)


@main.command()
@click.pass_context
def sync(ctx):
    """Refresh the repository inventory from GitHub (no mirroring)."""
    quiet = ctx.obj.get("QUIET", False)
    config = load_config(ctx)
    services = get_services(ctx, config)

    echo_info("🔍 Discovering repositories on GitHub...", quiet)
    try:
        result = services.synchronizer.sync(config)
    except MirrorError as e:
        echo_error(f"Sync failed: {e}")
        sys.exit(1)

    echo_success(result.message, quiet)


@main.command()
@click.pass_context
def repos(ctx):
    """List known repositories and their mirror status."""
    config = load_config(ctx)
    services = get_services(ctx, config)

    repositories = services.store.list_repositories(config.id)
    if not repositories:
        echo_warning("No repositories yet; run 'gitea-mirror sync' first")
        return

    for repo in repositories:
        line = f"{repo.id}  {repo.status.value:<10} {repo.full_name}"
        if repo.error_message:
            line += f"  ({repo.error_message})"
        click.echo(line)


@main.command()
@click.option(
    "--repo",
    "repository_ids",
    multiple=True,
    help="Repository id to mirror (repeatable; default: all repositories)",
)
@click.option("--wait", is_flag=True, help="Print the full job log when the job finishes")
@click.pass_context
def mirror(ctx, repository_ids, wait):
    """Start a mirror job.

    The job runs on a background worker; this command stays attached
    until it finishes.

    Examples:

        # Mirror everything discovered by the last sync
        gitea-mirror mirror

        # Mirror one repository and show the log
        gitea-mirror mirror --repo 3f2c... --wait
    """
    quiet = ctx.obj.get("QUIET", False)
    config = load_config(ctx)
    services = get_services(ctx, config)

    try:
        job = services.orchestrator.start_job(config, list(repository_ids) or None)
    except MirrorError as e:
        echo_error(f"Could not start mirror job: {e}")
        sys.exit(1)

    echo_info(f"🚀 Mirror job {job.id} started", quiet)
    try:
        job = services.orchestrator.wait(job.id)
    finally:
        services.orchestrator.shutdown()

    if wait and not quiet:
        print_job_log(job)

    duration = ""
    if job.started_at and job.completed_at:
        duration = f" ({format_duration((job.completed_at - job.started_at).total_seconds())})"
    final = job.log[-1].message if job.log else job.status.value
    if job.status == JobStatus.COMPLETED:
        echo_success(f"{final}{duration}", quiet)
    else:
        echo_error(f"Mirror job {job.status.value}: {final}")
        sys.exit(1)


@main.command()
@click.pass_context
def jobs(ctx):
    """List mirror jobs, oldest first."""
    config = load_config(ctx)
    services = get_services(ctx, config)

    all_jobs = services.store.list_jobs(config.id)
    if not all_jobs:
        echo_warning("No mirror jobs yet")
        return
    for job in all_jobs:
        print_job_summary(job)


@main.command()
@click.argument("job_id")
@click.pass_context
def job(ctx, job_id):
    """Show one job and its log."""
    config = load_config(ctx)
    services = get_services(ctx, config)

    try:
        found = services.store.get_job(job_id)
    except MirrorError as e:
        echo_error(str(e))
        sys.exit(1)

    print_job_summary(found)
    print_job_log(found)


@main.command()
@click.argument("job_id")
@click.pass_context
def cancel(ctx, job_id):
    """Cancel a pending or running job."""
    quiet = ctx.obj.get("QUIET", False)
    config = load_config(ctx)
    services = get_services(ctx, config)

    try:
        services.orchestrator.cancel_job(job_id)
    except MirrorError as e:
        echo_error(f"Cannot cancel job: {e}")
        sys.exit(1)

    echo_success(f"Mirror job {job_id} cancelled", quiet)


@main.command()
@click.option(
    "--poll-interval",
    envvar="GITEA_MIRROR_POLL_INTERVAL",
    default=30.0,
    type=float,
    help="Seconds between schedule checks (default: 30)",
)
@click.pass_context
def schedule(ctx, poll_interval):
    """Run sync and mirror jobs on the configured schedule until interrupted."""
    quiet = ctx.obj.get("QUIET", False)
    config = load_config(ctx)
    if not config.schedule.enabled:
        echo_error("Schedule is disabled in the configuration (schedule.enabled: false)")
        sys.exit(1)

    services = get_services(ctx, config)
    scheduler = Scheduler(services.synchronizer, services.orchestrator, services.store)
    stop_event = threading.Event()

    def reload_config():
        try:
            return ConfigLoader().load_from_file(ctx.obj["CONFIG"])
        except MirrorError as e:
            echo_warning(f"Keeping previous configuration: {e}", quiet)
            return config

    echo_info(f"⏰ Scheduler running every {config.schedule.interval}s (Ctrl+C to stop)", quiet)
    try:
        scheduler.run_forever(reload_config, poll_interval=poll_interval, stop_event=stop_event)
    except KeyboardInterrupt:
        stop_event.set()
        echo_warning("Interrupted, waiting for running jobs to finish", quiet)
    finally:
        services.orchestrator.shutdown()


@main.command()
def version():
    """Show version information."""
    click.echo(f"gitea-mirror version {__version__}")
    click.echo("Built with Python, PyGithub and requests")


if __name__ == "__main__":
    main()
