"""
GitHub OIDC Provider - AWS IAM OIDC identity provider and role for GitHub Actions

This package resolves provisioning options into a resource plan and applies it
using Pulumi Infrastructure as Code.
"""

__version__ = "1.0.0"

# Core components
from . import config_loader
from . import constants
from . import resolver

__all__ = [
    "config_loader",
    "constants",
    "resolver",
]
