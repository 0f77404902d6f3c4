"""
GitHub OIDC Provider Constants
Defaults and fixed values shared by the resolver and the Pulumi layer
"""

# OIDC Configuration
GITHUB_OIDC_PROVIDER_URL = "https://token.actions.githubusercontent.com"
GITHUB_OIDC_HOST = "token.actions.githubusercontent.com"
DEFAULT_AUDIENCE = "sts.amazonaws.com"
DEFAULT_GITHUB_THUMBPRINT = "6938fd4d98bab03faadb97b34396831e3780aea1"

# Role defaults
DEFAULT_ROLE_NAME = "github-oidc-provider-aws"
DEFAULT_ROLE_DESCRIPTION = "Role assumed by the GitHub OIDC provider."
DEFAULT_ROLE_PATH = "/"

# Session duration bounds, in seconds
MIN_SESSION_DURATION = 3600
MAX_SESSION_DURATION = 43200

# AWS Resource Configuration
MAX_ROLE_NAME_LENGTH = 64
MAX_MANAGED_POLICIES_PER_ROLE = 20

# IAM policy language
POLICY_VERSION = "2012-10-17"
ASSUME_ROLE_ACTION = "sts:AssumeRoleWithWebIdentity"

# Logical resource names used in plans and as Pulumi resource names
PROVIDER_RESOURCE = "oidc_provider"
ROLE_RESOURCE = "oidc_role"
TRUST_POLICY_UPDATE_RESOURCE = "oidc_role_trust_policy"
POLICY_ATTACHMENT_PREFIX = "oidc_role_policy"

# Stack outputs
OUTPUT_PROVIDER_ARN = "oidcProviderArn"
OUTPUT_ROLE_ARN = "oidcRoleArn"
OUTPUT_ROLE_NAME = "oidcRoleName"
