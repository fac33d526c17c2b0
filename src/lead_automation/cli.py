"""
Lead Automation CLI
"""
import asyncio
import json
import logging
from datetime import timedelta
from pathlib import Path

import click

from .clock import ManualClock
from .config import EngineSettings
from .core.parser import WorkflowParser
from .exceptions import LeadAutomationError, WorkflowParseError, WorkflowValidationError
from .integrations import InMemoryMessagingChannel, InMemorySubjectDirectory, ScriptedTextGenerator
from .models.execution import ExecutionStatus
from .runtime import build_in_memory_runtime, create_database_runtime
from .storage import DatabaseManager


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@click.group()
@click.option('--log-level', default=None, help='Logging level (defaults to LOG_LEVEL)')
@click.pass_context
def cli(ctx, log_level):
    """Lead Automation CLI"""
    settings = EngineSettings.from_env()
    _configure_logging(log_level or settings.log_level)
    ctx.obj = settings


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
@click.pass_obj
def serve(settings, host, port, reload):
    """Start the API server"""
    import uvicorn

    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "lead_automation.api.app:app",
        host=host,
        port=port,
        reload=reload
    )


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--format', 'fmt', type=click.Choice(['json', 'yaml']), default=None,
              help='Print the normalized definition in this format')
def validate(workflow_file, fmt):
    """Validate a workflow definition file"""
    parser = WorkflowParser()
    try:
        workflow = parser.parse_file(Path(workflow_file))
    except WorkflowValidationError as e:
        click.echo(f"Invalid workflow: {workflow_file}", err=True)
        for error in e.errors:
            click.echo(f"  - {error}", err=True)
        raise SystemExit(1)
    except WorkflowParseError as e:
        click.echo(f"Could not parse {workflow_file}: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Workflow '{workflow.name}' is valid ({len(workflow.nodes)} nodes, {len(workflow.edges)} edges)")
    unreachable = workflow.unreachable_nodes()
    if unreachable:
        click.echo(f"Warning: unreachable nodes: {', '.join(sorted(unreachable))}")
    if fmt:
        click.echo(parser.serialize(workflow, fmt))


@cli.command('init-db')
@click.pass_obj
def init_db(settings):
    """Create database tables"""
    async def _init():
        db_manager = DatabaseManager(settings.database_url)
        try:
            await db_manager.initialize(create_tables=True)
        finally:
            await db_manager.close()

    asyncio.run(_init())
    click.echo(f"Database initialized: {settings.database_url}")


@cli.command()
@click.pass_obj
def tick(settings):
    """Resume due executions once"""
    async def _tick():
        runtime = await create_database_runtime(settings)
        try:
            return await runtime.scheduler.tick()
        finally:
            await runtime.close()

    result = asyncio.run(_tick())
    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command()
@click.option('--interval', default=60.0, type=float, help='Seconds between ticks')
@click.option('--max-ticks', default=None, type=int, help='Stop after this many ticks')
@click.pass_obj
def poll(settings, interval, max_ticks):
    """Resume due executions periodically"""
    async def _poll():
        runtime = await create_database_runtime(settings)
        try:
            await runtime.scheduler.run_forever(interval=interval, max_ticks=max_ticks)
        finally:
            await runtime.close()

    click.echo(f"Polling every {interval}s")
    try:
        asyncio.run(_poll())
    except KeyboardInterrupt:
        click.echo("Stopped")


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--subject', default='lead-1', help='Subject (lead) ID')
@click.option('--channel', default='channel-1', help='Subject channel ID')
@click.option('--reply-after', default=None, type=int,
              help='Minutes after start at which the subject replies')
@click.option('--generator-response', default=None,
              help='Text returned by the simulated text generator')
@click.option('--max-ticks', default=100, type=int, help='Give up after this many ticks')
@click.pass_obj
def simulate(settings, workflow_file, subject, channel, reply_after, generator_response, max_ticks):
    """Run a workflow in memory, fast-forwarding through waits"""
    clock = ManualClock()
    messaging = InMemoryMessagingChannel(clock=clock)
    subjects = InMemorySubjectDirectory()
    runtime = build_in_memory_runtime(
        settings,
        messaging=messaging,
        text_generator=ScriptedTextGenerator(generator_response),
        subjects=subjects,
        clock=clock
    )
    started_at = clock()

    async def _simulate():
        workflow = await runtime.engine.create_workflow(Path(workflow_file))
        execution = await runtime.dispatcher.test_run(workflow.id, subject, channel)

        ticks = 0
        while execution.status is ExecutionStatus.PENDING and ticks < max_ticks:
            clock.advance_to(execution.scheduled_for)
            if reply_after is not None and subject not in subjects.last_inbound:
                reply_at = started_at + timedelta(minutes=reply_after)
                if reply_at <= clock():
                    subjects.record_inbound(subject, channel, "(simulated reply)", at=reply_at)
                    click.echo(f"[{reply_at.isoformat()}] subject replied")
            await runtime.scheduler.tick()
            execution = await runtime.engine.get_execution(execution.id)
            ticks += 1

        return execution

    try:
        execution = asyncio.run(_simulate())
    except LeadAutomationError as e:
        click.echo(f"Simulation failed: {e}", err=True)
        raise SystemExit(1)

    for message in messaging.sent:
        click.echo(f"[{message.sent_at.isoformat()}] -> {message.channel_id}: {message.content}")
    for subject_id, reason in runtime.automation.disabled.items():
        click.echo(f"automation disabled for {subject_id}: {reason}")
    click.echo(f"Execution {execution.id} finished as {execution.status.value}")
    if execution.error_message:
        click.echo(f"Error: {execution.error_message}")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
