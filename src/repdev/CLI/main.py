# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for RepDev.
"""
import os
import sys
import traceback

import click
from jinja2 import Template

from .. import __version__
from ..CONVERTERS.to_compose import ComposeConverter
from ..MANAGERS.service_orchestrator import EnvironmentOrchestrator
from ..MANAGERS.state_manager import StateManager
from ..MODELS.orchestration_config import OrchestrationOptions
from ..PARSERS.template_parser import DEFAULT_TEMPLATE, TemplateError, TemplateParser
from ..RUNNERS.hook_runner import HookExecutor
from ..RUNNERS.runtime_client import RuntimeClient, RuntimeOperationError, RuntimeUnavailableError
from ..UTILS.error_hints import GENERAL_SUGGESTIONS, match_hint
from ..UTILS.reporter import Reporter

SUMMARY_TEMPLATE = Template(
    "{{ '%-20s %-16s %s'|format('SERVICE', 'RESULT', 'DETAIL') }}\n"
    "{{ '-' * 60 }}\n"
    "{% for row in rows %}{{ '%-20s %-16s %s'|format(row[0], row[1], row[2]) }}\n{% endfor %}"
)

STATUS_TEMPLATE = Template(
    "{{ '%-24s %-16s %-28s %s'|format('CONTAINER', 'SERVICE', 'IMAGE', 'STATE') }}\n"
    "{{ '-' * 80 }}\n"
    "{% for c in containers %}"
    "{{ '%-24s %-16s %-28s %s'|format(c.name, c.service or '-', c.image, c.state) }}\n"
    "{% endfor %}"
)


def _reporter(ctx) -> Reporter:
    return ctx.obj["reporter"]


def _client(ctx):
    if ctx.obj.get("client") is None:
        ctx.obj["client"] = RuntimeClient()
    return ctx.obj["client"]


def _load_config(ctx):
    """
    Loads the template or exits with status 2.
    """
    path = ctx.obj["template"]
    try:
        return TemplateParser(reporter=_reporter(ctx)).parse(path)
    except TemplateError as e:
        report_error(str(e))
        ctx.exit(2)


def _orchestrator(ctx, config) -> EnvironmentOrchestrator:
    reporter = _reporter(ctx)
    return EnvironmentOrchestrator(
        _client(ctx),
        reporter=reporter,
        hooks=HookExecutor(reporter, cwd=config.base_dir),
    )


def report_error(message: str, hint: str = None):
    """
    Prints a fatal error with the matching troubleshooting suggestions.
    """
    click.echo(f"Error: {message}", err=True)
    if hint:
        click.echo(f"Hint: {hint}", err=True)
    known = match_hint(message)
    if known:
        click.echo(f"Identified issue: {known.name}", err=True)
        suggestions = known.suggestions
    else:
        suggestions = GENERAL_SUGGESTIONS
    for index, suggestion in enumerate(suggestions, 1):
        click.echo(f"   {index}. {suggestion}", err=True)


def _summary_rows(result):
    rows = []
    for outcome in result.outcomes:
        if outcome.failed:
            detail = f"{outcome.phase}: {outcome.reason}"
        elif outcome.attempts:
            detail = f"ready after {outcome.attempts} attempt(s), {outcome.elapsed_ms}ms"
        else:
            detail = outcome.container_name or outcome.reason
        rows.append((outcome.service, outcome.status.value, detail))
    for container in result.containers:
        rows.append((container.service or container.container, container.status.value, container.reason or container.container))
    return rows


def _finish(ctx, result, success_message: str):
    rows = _summary_rows(result)
    if rows:
        click.echo(SUMMARY_TEMPLATE.render(rows=rows))
    if not result.ok:
        report_error(result.error, result.hint)
        ctx.exit(1)
    if result.container_failures:
        click.echo(f"{len(result.container_failures)} container(s) could not be processed.", err=True)
    click.echo(success_message)


def _options(force=False, dry_run=False, no_wait=False, services=()) -> OrchestrationOptions:
    return OrchestrationOptions(force=force, dry_run=dry_run, no_wait=no_wait, services=frozenset(services))


@click.group()
@click.option('--template', '-t', envvar='REPDEV_TEMPLATE', default=DEFAULT_TEMPLATE, show_default=True,
              help='Template file path')
@click.option('--verbose', '-v', is_flag=True, help='Show image pull progress')
@click.version_option(__version__)
@click.pass_context
def cli(ctx, template, verbose):
    """
    RepDev - reproducible local development environments.

    Brings the services described in a template up and down on Docker.
    """
    ctx.ensure_object(dict)
    ctx.obj['template'] = template
    ctx.obj.setdefault('reporter', Reporter(verbose=verbose))
    ctx.obj.setdefault('client', None)


@cli.command()
@click.option('--force', is_flag=True, help='Recreate containers that are already running')
@click.option('--dry-run', is_flag=True, help='Show what would happen without touching Docker')
@click.option('--no-wait', is_flag=True, help='Do not wait for readiness checks')
@click.option('--service', '-s', 'services', multiple=True, help='Only act on this service (repeatable)')
@click.pass_context
def up(ctx, force, dry_run, no_wait, services):
    """Start services defined in the template."""
    config = _load_config(ctx)
    click.echo(f"Using template: {config.template_path}")
    result = _orchestrator(ctx, config).up(config, _options(force, dry_run, no_wait, services))
    StateManager(config.base_dir, _reporter(ctx)).record_up(config, result)
    _finish(ctx, result, "Environment is up and running." if not dry_run else "Dry run complete.")


@cli.command()
@click.option('--force', is_flag=True, help='Also remove containers that are still running')
@click.option('--dry-run', is_flag=True, help='Show what would happen without touching Docker')
@click.option('--service', '-s', 'services', multiple=True, help='Only act on this service (repeatable)')
@click.pass_context
def down(ctx, force, dry_run, services):
    """Stop and remove the template's containers."""
    config = _load_config(ctx)
    click.echo(f"Using template: {config.template_path}")
    result = _orchestrator(ctx, config).down(config, _options(force, dry_run, services=services))
    StateManager(config.base_dir, _reporter(ctx)).record_down(config, result)
    _finish(ctx, result, "Teardown complete." if not dry_run else "Dry run complete.")


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--all', 'all_services', is_flag=True, help='Restart every service')
@click.option('--dry-run', is_flag=True, help='Show what would happen without touching Docker')
@click.pass_context
def restart(ctx, services, all_services, dry_run):
    """Restart running service containers in place."""
    config = _load_config(ctx)
    if not services and not all_services:
        raise click.UsageError(
            "Specify a service name or --all. Available services: " + ", ".join(config.services)
        )
    selected = () if all_services else services
    result = _orchestrator(ctx, config).restart(config, _options(dry_run=dry_run, services=selected))
    _finish(ctx, result, "Restart complete.")


@cli.command()
@click.pass_context
def status(ctx):
    """List the containers this template owns."""
    config = _load_config(ctx)
    try:
        containers = _client(ctx).list_containers(label=config.run_label)
    except (RuntimeUnavailableError, RuntimeOperationError) as e:
        report_error(f"Docker daemon not reachable: {e}")
        ctx.exit(1)

    if containers:
        click.echo(STATUS_TEMPLATE.render(containers=containers))
    else:
        click.echo("No containers found for this template.")

    summary = StateManager(config.base_dir).summary()
    if summary["lastUp"] or summary["lastDown"]:
        click.echo(f"Last up: {summary['lastUp'] or '-'}  Last down: {summary['lastDown'] or '-'}")


@cli.command()
@click.pass_context
def validate(ctx):
    """Validate the template."""
    click.echo(f"Validating template: {ctx.obj['template']}")
    config = _load_config(ctx)
    click.echo(f"Template is valid: {len(config.services)} service(s).")


@cli.command()
@click.option('--out', '-o', default='docker-compose.yml', show_default=True, help='Output file')
@click.pass_context
def convert(ctx, out):
    """Export the template as a docker-compose file."""
    config = _load_config(ctx)
    path = ComposeConverter(config).convert(out)
    click.echo(f"Compose file written to {path}")


def main():
    """
    Main entry point for the CLI.
    """
    try:
        cli(obj={})
    except Exception as e:
        report_error(str(e))
        if os.environ.get("REPDEV_DEBUG"):
            traceback.print_exc()
        else:
            click.echo("Run with REPDEV_DEBUG=1 for the full stack trace.", err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
