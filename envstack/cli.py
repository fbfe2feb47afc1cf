"""
Click CLI for envstack.
"""

import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace
from typing import Any, Dict, List, Optional

import click
from botocore.exceptions import BotoCoreError, ClientError

from . import rid
from .bootstrap import EnvironmentContext
from .config import load_settings
from .errors import EnvStackError, ProvisionError
from .events import list_journals, read_events
from .models import Environment
from .orchestrator import StackOrchestrator
from .reaper import ExpiryReaper

logger = logging.getLogger(__name__)


def _json_output(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(message: str) -> None:
    click.echo(message, err=True)
    sys.exit(1)


def _orchestrator(ctx: click.Context) -> StackOrchestrator:
    if "orchestrator" not in ctx.obj:
        context = EnvironmentContext.from_settings(ctx.obj["settings"])
        ctx.obj["orchestrator"] = StackOrchestrator(context)
    return ctx.obj["orchestrator"]


def _run(coro):
    """Run a workflow, turning known failures into exit status 1."""
    try:
        return asyncio.run(coro)
    except ProvisionError as e:
        completed = ", ".join(e.creq.completed) if e.creq else ""
        _fail(f"Failed at step '{e.step}': {e.cause}" + (f" (completed: {completed})" if completed else ""))
    except EnvStackError as e:
        _fail(f"Error: {e}")
    except (ClientError, BotoCoreError) as e:
        _fail(f"AWS error: {e}")


def _load_app(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"{path} is not valid JSON: {e}", param_hint="--app")


def _load_keys(paths: List[str]) -> List[str]:
    keys = []
    for path in paths:
        with open(path, "r") as f:
            keys.extend(line.strip() for line in f if line.strip())
    return keys


def _warnings(creq) -> List[Dict[str, str]]:
    return [{"step": w.step, "error": str(w.cause)} for w in creq.warnings]


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Config file (skips the search path)")
@click.option("--region", help="AWS region")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, config_path, region, verbose):
    """
    envstack - per-branch and per-pull-request environments on ECS.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    try:
        settings = load_settings(config_path)
    except ValueError as e:
        raise click.UsageError(f"Invalid configuration: {e}")
    if region:
        settings = replace(settings, region=region)
    ctx.obj["settings"] = settings


# -- projects -----------------------------------------------------------------

@main.group()
def project():
    """Manage project network scaffolds."""


@project.command("create")
@click.argument("project_id")
@click.pass_context
def project_create(ctx, project_id):
    """Create (or find) the project's subnet and ACL."""
    scaffold = _run(_orchestrator(ctx).create_project(project_id))
    _json_output(asdict(scaffold))


@project.command("destroy")
@click.argument("project_id")
@click.option("--force", is_flag=True, help="Destroy without confirmation")
@click.pass_context
def project_destroy(ctx, project_id, force):
    """Destroy the project's scaffold. Refused while environments exist."""
    if not force and not click.confirm(f"Destroy the network scaffold of project {project_id}?"):
        click.echo("Destroy cancelled")
        return
    destroyed = _run(_orchestrator(ctx).destroy_project(project_id))
    _json_output({"project_id": project_id, "destroyed": destroyed})


@project.command("list")
@click.pass_context
def project_list(ctx):
    """List projects that have a scaffold."""
    _json_output(_run(_orchestrator(ctx).list_projects()))


@project.command("describe")
@click.argument("project_id")
@click.pass_context
def project_describe(ctx, project_id):
    """List the live environments of a project."""
    summaries = _run(_orchestrator(ctx).describe_project(project_id))
    _json_output([s.to_dict() for s in summaries])


# -- deployments and pull requests ----------------------------------------------

def _environment_group(name: str, env_type: str, help_text: str):
    group = click.Group(name, help=help_text)
    revision_opts = [click.option("--sha", help="Revision being deployed")] if env_type == rid.DEPLOYMENT else []

    def with_revision(fn):
        for opt in revision_opts:
            fn = opt(fn)
        return fn

    @group.command("create")
    @click.argument("project_id")
    @click.argument("env_name")
    @click.option("--app", "app_path", type=click.Path(exists=True, dir_okay=False), required=True,
                  help="Application descriptor (JSON)")
    @click.option("--ssh-key", "ssh_key_paths", multiple=True, type=click.Path(exists=True, dir_okay=False),
                  help="Public key file to authorize on instances (repeatable)")
    @with_revision
    @click.pass_context
    def create(ctx, project_id, env_name, app_path, ssh_key_paths, sha=None):
        """Provision the environment and bind its domain."""
        domain = _run(_orchestrator(ctx).create(
            project_id, env_name, _load_app(app_path), sha, env_type, _load_keys(ssh_key_paths)))
        _json_output({"project_id": project_id, "name": env_name, "domain": domain})

    @group.command("update")
    @click.argument("project_id")
    @click.argument("env_name")
    @click.option("--app", "app_path", type=click.Path(exists=True, dir_okay=False), required=True,
                  help="Application descriptor (JSON)")
    @click.option("--ssh-key", "ssh_key_paths", multiple=True, type=click.Path(exists=True, dir_okay=False),
                  help="Public key file to authorize on instances (repeatable)")
    @with_revision
    @click.pass_context
    def update(ctx, project_id, env_name, app_path, ssh_key_paths, sha=None):
        """Replace the running generation, keeping load balancer and domain."""
        domain = _run(_orchestrator(ctx).update(
            project_id, env_name, _load_app(app_path), sha, env_type, _load_keys(ssh_key_paths)))
        _json_output({"project_id": project_id, "name": env_name, "domain": domain})

    @group.command("destroy")
    @click.argument("project_id")
    @click.argument("env_name")
    @click.option("--force", is_flag=True, help="Destroy without confirmation")
    @click.pass_context
    def destroy(ctx, project_id, env_name, force):
        """Tear the environment down."""
        if not force and not click.confirm(f"Destroy {env_type} {env_name} of project {project_id}?"):
            click.echo("Destroy cancelled")
            return
        creq = _run(_orchestrator(ctx).destroy(project_id, env_name, env_type))
        _json_output({
            "project_id": project_id,
            "name": env_name,
            "instances": creq.instance_ids,
            "warnings": _warnings(creq),
        })

    return group


main.add_command(_environment_group("deployment", rid.DEPLOYMENT, "Manage branch deployments."))
main.add_command(_environment_group("pr", rid.PULL_REQUEST, "Manage pull-request environments."))


# -- inspection -----------------------------------------------------------------

@main.command()
@click.argument("project_id")
@click.argument("env_name")
@click.option("--pr", "is_pr", is_flag=True, help="ENV_NAME is a pull request number")
@click.pass_context
def status(ctx, project_id, env_name, is_pr):
    """Show the live state of one environment."""
    env_type = rid.PULL_REQUEST if is_pr else rid.DEPLOYMENT
    try:
        env = Environment(project_id, env_name, env_type)
    except EnvStackError as e:
        _fail(f"Error: {e}")
    summary = _run(_orchestrator(ctx).describe(env))
    _json_output(summary.to_dict())


@main.command()
@click.argument("project_id", required=False)
@click.argument("env_name", required=False)
@click.option("--pr", "is_pr", is_flag=True, help="ENV_NAME is a pull request number")
@click.option("--last", type=int, default=0, help="Only the last N events")
@click.pass_context
def events(ctx, project_id, env_name, is_pr, last):
    """
    Show the lifecycle journal of an environment, or list journals.
    """
    home = ctx.obj["settings"].home
    if not env_name:
        _json_output(list_journals(home, project_id))
        return
    env_type = rid.PULL_REQUEST if is_pr else rid.DEPLOYMENT
    try:
        env = Environment(project_id, env_name, env_type)
    except EnvStackError as e:
        _fail(f"Error: {e}")
    found = read_events(home, env)
    for event in found[-last:] if last else found:
        print(json.dumps(event), flush=True)


@main.command()
@click.option("--project", "project_id", help="Only this project")
@click.option("--dry-run", is_flag=True, help="List expiring environments without destroying")
@click.option("--watch", is_flag=True, help="Keep sweeping")
@click.option("--interval", type=float, default=300.0, show_default=True, help="Seconds between sweeps")
@click.pass_context
def sweep(ctx, project_id, dry_run, watch, interval):
    """Destroy pull-request environments past their expiry."""
    reaper = ExpiryReaper(_orchestrator(ctx))
    if dry_run:
        pending = _run(reaper.pending(project_id=project_id))
        _json_output([
            {"project_id": env.project_id, "pr": env.name, "expires_at": expires_at.isoformat(),
             "expired": expired}
            for env, expires_at, expired in pending
        ])
        return
    if watch:
        try:
            total = _run(reaper.run(interval, project_id=project_id))
        except KeyboardInterrupt:
            click.echo("\nSweep stopped", err=True)
            return
        _json_output({"destroyed": total})
        return
    destroyed = _run(reaper.sweep(project_id=project_id))
    _json_output([{"project_id": env.project_id, "pr": env.name} for env in destroyed])


if __name__ == "__main__":
    main()
