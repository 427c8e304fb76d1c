#!/usr/bin/env python3
"""
Lifecycle Control CLI - Command Line Interface for the Lifecycle Engine.

Provides commands for starting and operating onboarding and offboarding
workflows, activating scheduled workflows, viewing the audit trail and
running the API server.
"""

import logging
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from ..config import load_config
from ..errors import LifecycleError
from ..models import (
    IdentityProviderConfig,
    StartWorkflowOptions,
    TaskDefinition,
    TaskStatus,
    TaskType,
    WorkflowDetail,
    WorkflowFilter,
    WorkflowKind,
    WorkflowStatus,
)
from ..workflows.engine import WorkflowEngine

# Setup logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

STATUS_STYLES = {
    WorkflowStatus.PENDING.value: "yellow",
    WorkflowStatus.IN_PROGRESS.value: "blue",
    WorkflowStatus.COMPLETED.value: "green",
    WorkflowStatus.FAILED.value: "red",
    WorkflowStatus.CANCELLED.value: "dim",
    TaskStatus.SUCCESS.value: "green",
    TaskStatus.SKIPPED.value: "dim",
}

KIND_CHOICE = click.Choice(['onboarding', 'offboarding'], case_sensitive=False)


class LifecycleController:
    """Main controller for Lifecycle Engine operations."""

    def __init__(self, config_path: Optional[str] = None, mock_mode: Optional[bool] = None):
        """Initialize the controller from a configuration file."""
        self.config = load_config(config_path)
        if mock_mode is not None:
            self.config.mock_mode = mock_mode

        self.engine = WorkflowEngine.from_config(self.config)

        console.print(f"[green]Lifecycle Engine initialized (mock_mode={self.config.mock_mode})[/green]")


@click.group()
@click.option('--config', '-c', help='Path to configuration file (YAML or JSON)')
@click.option('--mock/--real', default=None, help='Use mock connectors or real API connections')
@click.pass_context
def cli(ctx, config, mock):
    """Lifecycle Engine Control CLI - Employee Onboarding and Offboarding"""
    ctx.ensure_object(dict)
    if 'controller' not in ctx.obj:
        ctx.obj['controller'] = LifecycleController(config, mock)


def _fail(ctx, error: LifecycleError):
    console.print(f"[red]Error: {error.message}[/red]")
    ctx.exit(1)


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


@cli.command()
@click.argument('employee_id')
@click.option('--kind', type=KIND_CHOICE, required=True)
@click.option('--immediate', is_flag=True, help='Start now regardless of --scheduled-for')
@click.option('--scheduled-for', type=click.DateTime(), help='When the workflow becomes active (UTC)')
@click.option('--reason', help='Reason for the workflow')
@click.option('--notes', help='Free-form notes')
@click.option('--by', 'initiated_by', help='User starting the workflow')
@click.option('--delete-account', is_flag=True, help='Delete the Google account (offboarding)')
@click.option('--transfer-to', help='Transfer Drive/Calendar data to this account (offboarding)')
@click.option('--transfer-scope', multiple=True, help='App to transfer (drive, calendar); repeatable')
@click.option('--alias-to', help='Route the work email to this account as an alias (offboarding)')
@click.option('--no-run', is_flag=True, help='Do not run automated tasks now')
@click.pass_context
def start(ctx, employee_id, kind, immediate, scheduled_for, reason, notes, initiated_by,
          delete_account, transfer_to, transfer_scope, alias_to, no_run):
    """Start an onboarding or offboarding workflow."""
    controller = ctx.obj['controller']

    options = StartWorkflowOptions(
        is_immediate=immediate,
        scheduled_for=scheduled_for,
        reason=reason,
        notes=notes,
        initiated_by=initiated_by,
        identity_provider=IdentityProviderConfig(
            delete_account=delete_account,
            transfer_to_email=transfer_to,
            transfer_scopes=list(transfer_scope),
            alias_to_email=alias_to,
        ),
    )

    try:
        detail = controller.engine.start(
            employee_id, WorkflowKind(kind.upper()), options, execute_automations=not no_run
        )
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[blue]Started {detail.workflow.kind.value} workflow for {employee_id}[/blue]")
    display_workflow(detail)


@cli.command('run-task')
@click.argument('task_id')
@click.option('--by', 'actor', help='User running the task')
@click.pass_context
def run_task(ctx, task_id, actor):
    """Run or retry an automated task."""
    controller = ctx.obj['controller']

    try:
        task = controller.engine.run_task(task_id, actor=actor)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    if task.status == TaskStatus.SUCCESS:
        console.print(f"[green]✓ {task.name}[/green]")
    else:
        console.print(f"[red]✗ {task.name}: {task.status_message}[/red]")


@cli.command('complete-task')
@click.argument('task_id')
@click.option('--notes', help='Completion notes')
@click.option('--by', 'actor', help='User completing the task')
@click.pass_context
def complete_task(ctx, task_id, notes, actor):
    """Mark a manual task as done."""
    controller = ctx.obj['controller']

    try:
        task = controller.engine.complete_manual_task(task_id, notes=notes, actor=actor)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]✓ {task.name} completed[/green]")


@cli.command('skip-task')
@click.argument('task_id')
@click.option('--reason', required=True, help='Why the task is skipped')
@click.option('--by', 'actor', help='User skipping the task')
@click.pass_context
def skip_task(ctx, task_id, reason, actor):
    """Skip a task with a reason."""
    controller = ctx.obj['controller']

    try:
        task = controller.engine.skip_task(task_id, reason, actor=actor)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[yellow]Skipped {task.name}: {task.status_message}[/yellow]")


@cli.command()
@click.argument('workflow_id')
@click.option('--by', 'actor', help='User cancelling the workflow')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def cancel(ctx, workflow_id, actor, yes):
    """Cancel a workflow."""
    controller = ctx.obj['controller']

    if not yes and not Confirm.ask(f"Cancel workflow {workflow_id}? This cannot be undone"):
        console.print("[yellow]Aborted[/yellow]")
        return

    try:
        workflow = controller.engine.cancel(workflow_id, actor=actor)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[yellow]Cancelled workflow {workflow.id} for {workflow.employee_id}[/yellow]")


@cli.command()
@click.argument('workflow_id')
@click.pass_context
def show(ctx, workflow_id):
    """Show a workflow with its tasks."""
    controller = ctx.obj['controller']

    try:
        detail = controller.engine.get_workflow(workflow_id)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    display_workflow(detail)


@cli.command('list')
@click.option('--kind', type=KIND_CHOICE)
@click.option('--status', type=click.Choice([s.value for s in WorkflowStatus], case_sensitive=False))
@click.option('--employee-id', help='Filter by employee')
@click.option('--page', default=1, help='Page number')
@click.option('--limit', default=20, help='Workflows per page')
@click.pass_context
def list_workflows(ctx, kind, status, employee_id, page, limit):
    """List workflows, newest first."""
    controller = ctx.obj['controller']

    workflow_filter = WorkflowFilter(
        kind=WorkflowKind(kind.upper()) if kind else None,
        status=WorkflowStatus(status.upper()) if status else None,
        employee_id=employee_id,
    )

    try:
        result = controller.engine.list_workflows(workflow_filter, page=page, limit=limit)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    if not result.items:
        console.print("[yellow]No workflows found[/yellow]")
        return

    table = Table(title=f"Workflows (page {result.page} of {result.pages}, {result.total} total)")
    table.add_column("Workflow ID", style="cyan")
    table.add_column("Employee ID", style="green")
    table.add_column("Kind", style="magenta")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Created", style="blue")

    for item in result.items:
        workflow = item.workflow
        table.add_row(
            workflow.id,
            workflow.employee_id,
            workflow.kind.value,
            _styled(workflow.status.value),
            f"{item.progress.percent}% ({item.progress.completed}/{item.progress.total})",
            str(item.failed_tasks),
            workflow.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@cli.command('run-due')
@click.pass_context
def run_due(ctx):
    """Activate scheduled workflows whose start time has been reached."""
    controller = ctx.obj['controller']

    activated = controller.engine.activate_due_workflows()
    if not activated:
        console.print("[yellow]No scheduled workflows are due[/yellow]")
        return

    for detail in activated:
        console.print(
            f"[green]Activated {detail.workflow.kind.value} workflow {detail.workflow.id} "
            f"for {detail.workflow.employee_id} ({detail.progress.percent}% complete)[/green]"
        )


@cli.command('audit-trail')
@click.option('--employee-id', help='Filter by employee')
@click.option('--workflow-id', help='Filter by workflow')
@click.option('--limit', default=50, help='Maximum number of records')
@click.pass_context
def audit_trail(ctx, employee_id, workflow_id, limit):
    """Show the audit trail."""
    controller = ctx.obj['controller']

    records = controller.engine.audit_logger.get_events(
        employee_id=employee_id, workflow_id=workflow_id, limit=limit
    )
    if not records:
        console.print("[yellow]No audit records found[/yellow]")
        return

    table = Table(title="Audit Trail")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("Employee ID", style="yellow")
    table.add_column("Workflow ID", style="magenta")
    table.add_column("Actor", style="blue")
    table.add_column("Success")
    table.add_column("Message")

    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.action.value,
            record.employee_id,
            record.workflow_id,
            record.actor or "",
            "✓" if record.success else "✗",
            record.message or "",
        )

    console.print(table)


@cli.group()
def templates():
    """Manage the task templates workflows are created from."""


def _policy(ctx):
    return ctx.obj['controller'].engine.catalog.policy


@templates.command('list')
@click.argument('kind', type=KIND_CHOICE)
@click.pass_context
def list_templates(ctx, kind):
    """List the task templates of a workflow kind."""
    workflow_kind = WorkflowKind(kind.upper())
    display_templates(workflow_kind, _policy(ctx).list_task_templates(workflow_kind))


@templates.command('add')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('name')
@click.option('--description', help='Longer task description')
@click.option('--app', 'app_id', help='Integrated app; makes the template an automated app task')
@click.pass_context
def add_template(ctx, kind, name, description, app_id):
    """Append a task template."""
    task_type = TaskType.AUTOMATED if app_id else TaskType.MANUAL

    try:
        template = _policy(ctx).add_task_template(
            WorkflowKind(kind.upper()), name, task_type=task_type, description=description, app_id=app_id
        )
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]Added template {template.id}: {template.name}[/green]")


@templates.command('update')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('template_id')
@click.option('--name', help='New task name')
@click.option('--description', help='New description; an empty string clears it')
@click.option('--app', 'app_id', help='Turn the template into an automated task for this app')
@click.option('--manual', is_flag=True, help='Turn the template into a manual task')
@click.pass_context
def update_template(ctx, kind, template_id, name, description, app_id, manual):
    """Change a task template."""
    task_type = None
    if manual:
        task_type = TaskType.MANUAL
    elif app_id:
        task_type = TaskType.AUTOMATED

    try:
        template = _policy(ctx).update_task_template(
            WorkflowKind(kind.upper()), template_id,
            name=name, description=description, task_type=task_type, app_id=app_id,
        )
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]Updated template {template.id}: {template.name}[/green]")


@templates.command('activate')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('template_id')
@click.pass_context
def activate_template(ctx, kind, template_id):
    """Create tasks from a template again."""
    try:
        template = _policy(ctx).activate_task_template(WorkflowKind(kind.upper()), template_id)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]Activated template {template.id}: {template.name}[/green]")


@templates.command('deactivate')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('template_id')
@click.pass_context
def deactivate_template(ctx, kind, template_id):
    """Stop creating tasks from a template."""
    try:
        template = _policy(ctx).deactivate_task_template(WorkflowKind(kind.upper()), template_id)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[yellow]Deactivated template {template.id}: {template.name}[/yellow]")


@templates.command('remove')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('template_id')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def remove_template(ctx, kind, template_id, yes):
    """Delete a task template."""
    if not yes and not Confirm.ask(f"Delete template {template_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        return

    try:
        _policy(ctx).remove_task_template(WorkflowKind(kind.upper()), template_id)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    console.print(f"[yellow]Removed template {template_id}[/yellow]")


@templates.command('move')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('template_id')
@click.argument('direction', type=click.Choice(['up', 'down'], case_sensitive=False))
@click.pass_context
def move_template(ctx, kind, template_id, direction):
    """Move a task template one position up or down."""
    workflow_kind = WorkflowKind(kind.upper())

    try:
        ordered = _policy(ctx).move_task_template(workflow_kind, template_id, direction)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    display_templates(workflow_kind, ordered)


@templates.command('reset')
@click.argument('kind', type=KIND_CHOICE)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def reset_templates(ctx, kind, yes):
    """Replace a workflow kind's templates with the built-in defaults."""
    workflow_kind = WorkflowKind(kind.upper())
    if not yes and not Confirm.ask(f"Reset all {workflow_kind.value} templates to the defaults?"):
        console.print("[yellow]Aborted[/yellow]")
        return

    try:
        restored = _policy(ctx).reset_task_templates(workflow_kind)
    except LifecycleError as e:
        _fail(ctx, e)
        return

    display_templates(workflow_kind, restored)


@cli.command()
@click.option('--port', default=8000, help='Port to run the API server on')
@click.option('--host', default='127.0.0.1', help='Host to bind the API server to')
@click.pass_context
def serve(ctx, port, host):
    """Start the Lifecycle Engine API server."""
    from ..api.server import configure_engine, start_server

    configure_engine(ctx.obj['controller'].engine)

    console.print(f"[green]Starting Lifecycle Engine API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        start_server(host=host, port=port, reload=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def display_workflow(detail: WorkflowDetail):
    """Display a workflow, its progress and its tasks."""
    workflow = detail.workflow

    summary = [
        f"[bold]{workflow.kind.value}[/bold] for [cyan]{workflow.employee_id}[/cyan]",
        f"Status: {_styled(workflow.status.value)}",
        f"Progress: {detail.progress.percent}% ({detail.progress.completed}/{detail.progress.total})",
    ]
    if workflow.scheduled_for:
        summary.append(f"Scheduled for: {workflow.scheduled_for.strftime('%Y-%m-%d %H:%M')}")
    if workflow.reason:
        summary.append(f"Reason: {workflow.reason}")
    console.print(Panel.fit("\n".join(summary), title=workflow.id))

    table = Table(title="Tasks")
    table.add_column("Task ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Type", style="magenta")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Message")

    for task in detail.tasks:
        table.add_row(
            task.id,
            task.name,
            task.type.value,
            _styled(task.status.value),
            str(task.attempts) if task.attempts else "",
            task.status_message or "",
        )

    console.print(table)


def display_templates(kind: WorkflowKind, items: List[TaskDefinition]):
    """Display task templates in the order tasks are created."""
    table = Table(title=f"{kind.value} Task Templates")
    table.add_column("#", justify="right")
    table.add_column("Template ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Type", style="magenta")
    table.add_column("App")
    table.add_column("Active")

    for position, template in enumerate(items, start=1):
        table.add_row(
            str(position),
            template.id or "",
            template.name,
            template.type.value,
            template.automation_params.get("app_name", ""),
            "yes" if template.is_active else "[dim]no[/dim]",
        )

    console.print(table)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
