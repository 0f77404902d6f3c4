import pulumi
import pulumi_aws as aws
import logging
from github_oidc_provider.resolver import (
    AttachRolePolicy,
    CreateOidcProvider,
    CreateRole,
    Ref,
    ResourcePlan,
    TrustPolicyDocument,
    UpdateRoleTrustPolicy,
    link,
    link_operation,
)
from github_oidc_provider.trust_policy_updater import TrustPolicyUpdate
from . import constants

logger = logging.getLogger(__name__)

def _policy_document_input(document: TrustPolicyDocument):
    """Renders the trust policy, deferring until apply when the provider ARN is an Output."""
    if isinstance(document.provider_arn, str):
        return document.to_json()
    return document.provider_arn.apply(document.render)

def _resource_options(depends_on: tuple[str, ...], created: dict,
                      provider: aws.Provider | None) -> pulumi.ResourceOptions | None:
    """Builds ResourceOptions from the plan's ordering edges and the optional AWS provider."""
    dependencies = [created[name] for name in depends_on]
    if not dependencies and provider is None:
        return None
    return pulumi.ResourceOptions(provider=provider, depends_on=dependencies or None)

def _create_oidc_provider(op: CreateOidcProvider, opts: pulumi.ResourceOptions | None) -> aws.iam.OpenIdConnectProvider:
    """Creates the aws.iam.OpenIdConnectProvider Pulumi resource."""
    oidc_provider = aws.iam.OpenIdConnectProvider(op.name,
                                                  url=op.url,
                                                  client_id_lists=list(op.client_ids),
                                                  thumbprint_lists=list(op.thumbprints),
                                                  tags=dict(op.tags),
                                                  opts=opts)
    logger.info(f"Defined aws.iam.OpenIdConnectProvider for {op.url} (Pulumi name: {op.name})")
    return oidc_provider

def _create_iam_role(op: CreateRole, opts: pulumi.ResourceOptions | None) -> aws.iam.Role:
    """Creates the core aws.iam.Role Pulumi resource."""
    iam_role = aws.iam.Role(op.name,
                            name=op.role_name,
                            description=op.description,
                            path=op.path,
                            permissions_boundary=op.permissions_boundary,
                            max_session_duration=op.max_session_duration,
                            assume_role_policy=_policy_document_input(op.assume_role_policy),
                            tags=dict(op.tags),
                            opts=opts)
    logger.info(f"Defined aws.iam.Role: {op.role_name} (Pulumi name: {op.name})")
    return iam_role

def _update_role_trust_policy(op: UpdateRoleTrustPolicy, opts: pulumi.ResourceOptions | None,
                              aws_region: str | None, aws_profile: str | None) -> TrustPolicyUpdate:
    """Rewrites the trust policy of an existing role, leaving its other settings alone."""
    update = TrustPolicyUpdate(op.name,
                               role_name=op.role_name,
                               policy_document=_policy_document_input(op.assume_role_policy),
                               aws_region=aws_region,
                               aws_profile=aws_profile,
                               opts=opts)
    logger.info(f"Defined trust policy update for existing role: {op.role_name} (Pulumi name: {op.name})")
    return update

def _attach_managed_policy(op: AttachRolePolicy, opts: pulumi.ResourceOptions | None) -> aws.iam.RolePolicyAttachment:
    """Attaches a managed policy to the role."""
    attachment = aws.iam.RolePolicyAttachment(op.name,
                                              role=op.role,
                                              policy_arn=op.policy_arn,
                                              opts=opts)
    logger.debug(f"Attaching managed policy {op.policy_arn} (Pulumi name: {op.name})")
    return attachment

def _safe_export(key: str, value) -> None:
    """Safely export a value, only if we're in a valid Pulumi stack context."""
    try:
        pulumi.export(key, value)
        logger.debug(f"Exported: {key}")
    except Exception as e:
        # This happens when not running in a Pulumi stack context (e.g., CLI validation)
        logger.debug(f"Skipping export '{key}' - not in Pulumi stack context: {e}")

def apply_resource_plan(plan: ResourcePlan, pulumi_provider: aws.Provider = None,
                        aws_region: str | None = None, aws_profile: str | None = None) -> dict:
    """
    Defines the Pulumi resources of a resolved plan and exports its outputs.
    Operations are defined in plan order, so every Ref points at a resource defined earlier.
    Returns the created resources keyed by logical name.
    """
    logger.info(f"--- Defining IAM resources for {len(plan.operations)} planned operation(s) ---")

    created: dict = {}

    def lookup(ref: Ref):
        return getattr(created[ref.resource], ref.attribute)

    for op in plan.operations:
        # Link each operation against the resources defined so far.
        linked = link_operation(op, lookup)
        opts = _resource_options(op.depends_on, created, pulumi_provider)
        if isinstance(linked, CreateOidcProvider):
            created[op.name] = _create_oidc_provider(linked, opts)
        elif isinstance(linked, CreateRole):
            created[op.name] = _create_iam_role(linked, opts)
        elif isinstance(linked, UpdateRoleTrustPolicy):
            created[op.name] = _update_role_trust_policy(linked, opts, aws_region, aws_profile)
        elif isinstance(linked, AttachRolePolicy):
            created[op.name] = _attach_managed_policy(linked, opts)
        else:
            raise TypeError(f"Unsupported plan operation: {op.kind}")

    identity = link(plan, lookup).identity
    _safe_export(constants.OUTPUT_PROVIDER_ARN, identity.provider_arn)
    _safe_export(constants.OUTPUT_ROLE_ARN, identity.role_arn)
    _safe_export(constants.OUTPUT_ROLE_NAME, identity.role_name)

    logger.info("--- Successfully defined all IAM resources ---")
    return created
