#!/usr/bin/env python3
"""
GitHub OIDC Provider CLI
Provisions the AWS IAM OIDC provider and role for GitHub Actions using Pulumi
"""

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from github_oidc_provider import __version__, config_loader, resolver
from github_oidc_provider.pulumi_manager import PulumiStackManager

console = Console()

# Exit codes for CI/CD systems
class ExitCodes:
    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFIG_ERROR = 2
    VALIDATION_ERROR = 3
    AWS_ERROR = 4


def setup_logging(log_level: str, json_output: bool = False) -> logging.Logger:
    """Configure logging with optional JSON output for CI systems."""
    logger = logging.getLogger()
    logger.handlers.clear()

    if json_output:
        # Structured logging for CI/CD
        formatter = logging.Formatter(
            '{"timestamp":"%(asctime)s","level":"%(levelname)s","module":"%(name)s","message":"%(message)s"}'
        )
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
    else:
        handler = RichHandler(console=console, show_time=True, show_path=False)

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Suppress verbose library logs
    for noisy in ("pulumi", "urllib3", "botocore", "boto3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


def validate_config_file(ctx, param, value: str) -> Path:
    """Validate the options file exists."""
    path = Path(value)
    if not path.exists():
        raise click.BadParameter(f"Options file does not exist: {value}")
    if not path.is_file():
        raise click.BadParameter(f"Path is not a file: {value}")
    return path


def load_plan(config_path: Path, logger: logging.Logger) -> resolver.ResourcePlan:
    """Load options and resolve them, exiting with the matching code on failure."""
    try:
        options = config_loader.load_options(str(config_path))
    except config_loader.ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(ExitCodes.CONFIG_ERROR)

    try:
        return resolver.resolve(options)
    except config_loader.ConfigError as e:
        logger.error(f"Validation error: {e}")
        sys.exit(ExitCodes.VALIDATION_ERROR)


def print_plan(plan: resolver.ResourcePlan) -> None:
    table = Table(title="Resource Plan")
    table.add_column("Operation", style="cyan", no_wrap=True)
    table.add_column("Name", style="blue", no_wrap=True)
    table.add_column("Depends On", style="yellow", no_wrap=True)
    table.add_column("Details", style="green", overflow="fold")

    for op in plan.operations:
        attributes = op.to_dict()["attributes"]
        attributes.pop("assume_role_policy", None)
        details = ", ".join(f"{k}={v}" for k, v in attributes.items() if v not in (None, {}, []))
        table.add_row(op.kind, op.name, ", ".join(op.depends_on) or "-", details)

    console.print(table)
    print_outputs(plan.identity.to_dict())


def print_outputs(outputs: dict) -> None:
    table = Table()
    table.add_column("Output", style="cyan")
    table.add_column("Value", style="green")
    for key, value in outputs.items():
        table.add_row(key, str(value))
    console.print(table)


config_option = click.option(
    "--config",
    "config_path",
    required=True,
    callback=validate_config_file,
    envvar="OIDC_CONFIG_FILE",
    help="JSON file with provisioning options (env: OIDC_CONFIG_FILE)"
)

stack_name_option = click.option(
    "--stack-name",
    default="dev",
    envvar="PULUMI_STACK_NAME",
    help="Pulumi stack name (env: PULUMI_STACK_NAME)"
)


@click.group()
@click.version_option(version=__version__, prog_name="github-oidc-provider")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="INFO",
    envvar="OIDC_LOG_LEVEL",
    help="Set logging level (env: OIDC_LOG_LEVEL)"
)
@click.option(
    "--json-output",
    is_flag=True,
    envvar="OIDC_JSON_OUTPUT",
    help="Output structured JSON logs for CI/CD (env: OIDC_JSON_OUTPUT)"
)
@click.pass_context
def cli(ctx, log_level: str, json_output: bool):
    """GitHub OIDC Provider manager for AWS IAM and GitHub Actions."""
    ctx.ensure_object(dict)
    ctx.obj["logger"] = setup_logging(log_level, json_output)
    ctx.obj["json_output"] = json_output


@cli.command()
@config_option
@click.pass_context
def plan(ctx, config_path: Path):
    """Resolve the options into a resource plan and print it."""
    logger = ctx.obj["logger"]
    resource_plan = load_plan(config_path, logger)

    if ctx.obj["json_output"]:
        click.echo(json.dumps(resource_plan.to_dict(), indent=2))
    else:
        print_plan(resource_plan)
    sys.exit(ExitCodes.SUCCESS)


@cli.command()
@config_option
@click.pass_context
def validate(ctx, config_path: Path):
    """Validate the options without planning or deploying."""
    logger = ctx.obj["logger"]
    resource_plan = load_plan(config_path, logger)

    if ctx.obj["json_output"]:
        console.print(json.dumps({
            "status": "valid",
            "config": str(config_path),
            "operations": len(resource_plan.operations)
        }))
    else:
        console.print(f"✅ Options in {config_path} are valid "
                      f"({len(resource_plan.operations)} operation(s) planned)", style="green")
    sys.exit(ExitCodes.SUCCESS)


@cli.command()
@config_option
@stack_name_option
@click.option(
    "--aws-region",
    envvar="AWS_REGION",
    help="AWS region for resource creation (env: AWS_REGION)"
)
@click.option(
    "--aws-profile",
    envvar="AWS_PROFILE",
    help="AWS profile to use (env: AWS_PROFILE)"
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Preview changes without applying them"
)
@click.option(
    "--auto-approve",
    is_flag=True,
    envvar="OIDC_AUTO_APPROVE",
    help="Automatically approve deployment without confirmation (env: OIDC_AUTO_APPROVE)"
)
@click.pass_context
def deploy(ctx, config_path: Path, stack_name: str, aws_region: str | None,
           aws_profile: str | None, dry_run: bool, auto_approve: bool):
    """Deploy the OIDC provider and role described by the options file."""
    logger = ctx.obj["logger"]
    json_output = ctx.obj["json_output"]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=json_output
    ) as progress:
        progress.add_task("Resolving resource plan...", total=None)
        resource_plan = load_plan(config_path, logger)

    if not json_output:
        console.print("🚀 Starting GitHub OIDC provider deployment", style="bold green")
        console.print(f"📦 Stack: {stack_name}")
        print_plan(resource_plan)

    pulumi_manager = PulumiStackManager(
        stack_name=stack_name,
        aws_region=aws_region,
        aws_profile=aws_profile
    )

    if dry_run:
        try:
            preview_result = pulumi_manager.preview_deployment(resource_plan)
        except Exception as e:
            logger.error(f"Preview failed: {e}")
            sys.exit(ExitCodes.AWS_ERROR)

        if json_output:
            console.print(json.dumps({
                "status": "success",
                "deployment_mode": "preview",
                "stack_name": stack_name,
                "operations": len(resource_plan.operations),
                "change_summary": dict(getattr(preview_result, "change_summary", None) or {})
            }, indent=2, default=str))
        else:
            console.print("\n✅ Dry run preview completed. No changes were applied.", style="green")
        sys.exit(ExitCodes.SUCCESS)

    if not auto_approve and not json_output:
        if not click.confirm("\nProceed with deployment?"):
            console.print("Deployment cancelled by user", style="yellow")
            sys.exit(ExitCodes.SUCCESS)

    try:
        up_result = pulumi_manager.deploy(resource_plan)
        outputs = {k: v.value for k, v in pulumi_manager.get_outputs().items()}
    except Exception as e:
        logger.error(f"Deployment failed: {e}")
        sys.exit(ExitCodes.AWS_ERROR)

    if json_output:
        console.print(json.dumps({
            "status": "success",
            "deployment_mode": "deploy",
            "stack_name": stack_name,
            "outputs": outputs,
            "summary": up_result.summary.message if up_result.summary else None
        }, indent=2, default=str))
    else:
        console.print("\n🎉 Deployment successful!", style="bold green")
        if outputs:
            console.print("\n📤 Stack Outputs:", style="bold")
            print_outputs(outputs)
    sys.exit(ExitCodes.SUCCESS)


@cli.command()
@stack_name_option
@click.option(
    "--auto-approve",
    is_flag=True,
    envvar="OIDC_AUTO_APPROVE",
    help="Automatically approve destruction without confirmation (env: OIDC_AUTO_APPROVE)"
)
@click.pass_context
def destroy(ctx, stack_name: str, auto_approve: bool):
    """Destroy the resources deployed by a stack."""
    logger = ctx.obj["logger"]
    json_output = ctx.obj["json_output"]

    pulumi_manager = PulumiStackManager(stack_name=stack_name)

    if not pulumi_manager.get_stack_info():
        if json_output:
            console.print(json.dumps({"status": "error", "message": "Stack not found", "stack_name": stack_name}))
        else:
            console.print(f"❌ Stack '{stack_name}' not found", style="red")
        sys.exit(ExitCodes.CONFIG_ERROR)

    if not auto_approve and not json_output:
        console.print(f"⚠️  About to destroy stack: {stack_name}", style="bold red")
        if not click.confirm("Are you sure you want to proceed?"):
            console.print("Destruction cancelled by user", style="yellow")
            sys.exit(ExitCodes.SUCCESS)

    try:
        pulumi_manager.destroy()
    except Exception as e:
        logger.error(f"Destroy failed: {e}")
        sys.exit(ExitCodes.AWS_ERROR)

    if json_output:
        console.print(json.dumps({"status": "success", "message": "Stack destroyed successfully",
                                  "stack_name": stack_name}))
    else:
        console.print("✅ Stack destroyed successfully!", style="green")
    sys.exit(ExitCodes.SUCCESS)


@cli.command()
@stack_name_option
@click.pass_context
def status(ctx, stack_name: str):
    """Show deployment status and outputs of a stack."""
    logger = ctx.obj["logger"]
    json_output = ctx.obj["json_output"]

    pulumi_manager = PulumiStackManager(stack_name=stack_name)

    stack_info = pulumi_manager.get_stack_info()
    if not stack_info:
        if json_output:
            console.print(json.dumps({"status": "not_found", "stack_name": stack_name}))
        else:
            console.print(f"❌ Stack '{stack_name}' not found", style="red")
        sys.exit(ExitCodes.CONFIG_ERROR)

    try:
        outputs = {k: v.value for k, v in pulumi_manager.get_outputs().items()}
    except Exception as e:
        logger.error(f"Status check failed: {e}")
        sys.exit(ExitCodes.GENERAL_ERROR)

    update_time = getattr(stack_info, "end_time", None)
    if json_output:
        console.print(json.dumps({
            "status": "found",
            "stack_name": stack_name,
            "outputs": outputs,
            "update_time": update_time
        }, indent=2, default=str))
    else:
        console.print(f"📦 Stack: {stack_name}", style="bold")
        console.print(f"🕐 Last Update: {update_time or 'Unknown'}")
        if outputs:
            console.print("\n📤 Outputs:", style="bold")
            print_outputs(outputs)
        else:
            console.print("No outputs available")
    sys.exit(ExitCodes.SUCCESS)


if __name__ == "__main__":
    cli()
