"""
Pulumi Automation API Manager
Handles programmatic Pulumi stack management and deployment
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from pulumi import automation as auto

from github_oidc_provider import iam_resources
from github_oidc_provider.resolver import ResourcePlan

logger = logging.getLogger(__name__)


class PulumiStackManager:
    """Manages Pulumi stack operations using the Automation API."""

    def __init__(self, project_name: str = "github-oidc-provider",
                 stack_name: str = "dev",
                 aws_region: Optional[str] = None,
                 aws_profile: Optional[str] = None,
                 backend_url: Optional[str] = None):
        self.project_name = project_name
        self.stack_name = stack_name
        self.aws_region = aws_region
        self.aws_profile = aws_profile
        self.work_dir = Path.cwd()
        self._current_stack = None

        # Explicit URL wins over PULUMI_BACKEND_URL; local file backend otherwise
        self.backend_url = backend_url or os.getenv("PULUMI_BACKEND_URL")
        if not self.backend_url:
            state_dir = self.work_dir / '.pulumi-state'
            state_dir.mkdir(exist_ok=True)
            self.backend_url = f"file://{state_dir}"

    def _create_pulumi_program(self, plan: ResourcePlan):
        """Create the Pulumi program function that defines all resources of the plan."""

        def pulumi_program():
            # Configure AWS provider if specified
            aws_provider = None
            if self.aws_region:
                import pulumi_aws as aws
                provider_opts = {"region": self.aws_region}
                if self.aws_profile:
                    provider_opts["profile"] = self.aws_profile

                aws_provider = aws.Provider(
                    "aws-provider",
                    **provider_opts
                )
                logger.info(f"Configured AWS provider for region {self.aws_region}")

            return iam_resources.apply_resource_plan(
                plan,
                aws_provider,
                aws_region=self.aws_region,
                aws_profile=self.aws_profile,
            )

        return pulumi_program

    def _get_stack_config(self) -> Dict[str, str]:
        """Get stack configuration."""
        config = {}

        # AWS configuration
        if self.aws_region:
            config["aws:region"] = self.aws_region
        if self.aws_profile:
            config["aws:profile"] = self.aws_profile

        return config

    def _create_workspace_settings(self) -> auto.LocalWorkspaceOptions:
        """Create workspace settings for local development."""
        return auto.LocalWorkspaceOptions(
            work_dir=str(self.work_dir),
            env_vars={
                "PULUMI_BACKEND_URL": self.backend_url,
                "PULUMI_SKIP_UPDATE_CHECK": "true",
                "PULUMI_CONFIG_PASSPHRASE": os.getenv("PULUMI_CONFIG_PASSPHRASE", "dev-passphrase-123"),
            }
        )

    def _select_stack(self, program) -> auto.Stack:
        """Create or select the stack and apply the AWS configuration to it."""
        stack = auto.create_or_select_stack(
            stack_name=self.stack_name,
            project_name=self.project_name,
            program=program,
            opts=self._create_workspace_settings()
        )
        for key, value in self._get_stack_config().items():
            stack.set_config(key, auto.ConfigValue(value=value))
        return stack

    def preview_deployment(self, plan: ResourcePlan) -> auto.PreviewResult:
        """Preview the deployment without making changes."""
        logger.info("Creating deployment preview...")

        try:
            stack = self._select_stack(self._create_pulumi_program(plan))

            logger.info("Refreshing stack state...")
            stack.refresh(on_output=self._output_handler)

            logger.info("Generating preview...")
            return stack.preview(on_output=self._output_handler)

        except Exception as e:
            logger.error(f"Failed to create preview: {e}")
            raise

    def deploy(self, plan: ResourcePlan) -> auto.UpResult:
        """Deploy the resources to AWS."""
        logger.info("Starting deployment...")

        try:
            stack = self._select_stack(self._create_pulumi_program(plan))

            logger.info("Refreshing stack state...")
            stack.refresh(on_output=self._output_handler)

            logger.info("Applying changes...")
            up_result = stack.up(on_output=self._output_handler)

            logger.info("Deployment completed successfully!")

            # Store the stack for later use
            self._current_stack = stack

            return up_result

        except Exception as e:
            logger.error(f"Deployment failed: {e}")
            raise

    def destroy(self) -> auto.DestroyResult:
        """Destroy all resources in the stack."""
        logger.warning("Starting resource destruction...")

        def empty_program():
            pass

        try:
            stack = self._select_stack(empty_program)
            destroy_result = stack.destroy(on_output=self._output_handler)

            logger.info("Resources destroyed successfully!")
            return destroy_result

        except Exception as e:
            logger.error(f"Destruction failed: {e}")
            raise

    def get_outputs(self) -> Dict[str, auto.OutputValue]:
        """Get stack outputs."""
        # Use stored stack from recent deployment if available
        if self._current_stack is not None:
            try:
                return self._current_stack.outputs()
            except Exception as e:
                logger.debug(f"Failed to get outputs from current stack: {e}")

        def empty_program():
            pass

        try:
            stack = auto.create_or_select_stack(
                stack_name=self.stack_name,
                project_name=self.project_name,
                program=empty_program,
                opts=self._create_workspace_settings()
            )
            return stack.outputs()

        except Exception as e:
            logger.error(f"Failed to get outputs: {e}")
            raise

    def get_stack_info(self) -> Optional[auto.UpdateSummary]:
        """Get information about the last update of the stack, if it exists."""
        def empty_program():
            pass

        try:
            stack = auto.select_stack(
                stack_name=self.stack_name,
                project_name=self.project_name,
                program=empty_program,
                opts=self._create_workspace_settings()
            )
            return stack.info()

        except Exception as e:
            logger.debug(f"Stack not found or error getting info: {e}")
            return None

    def _output_handler(self, output: str) -> None:
        """Handle Pulumi output for logging."""
        # Filter out noisy log messages
        if any(skip in output for skip in ['Downloading', 'Installing', 'diagnostic:']):
            return

        if any(keyword in output for keyword in ['error:', 'Error:', 'failed', 'Failed']):
            logger.error(f"Pulumi: {output.strip()}")
        elif any(keyword in output for keyword in ['warning:', 'Warning:']):
            logger.warning(f"Pulumi: {output.strip()}")
        else:
            logger.debug(f"Pulumi: {output.strip()}")
