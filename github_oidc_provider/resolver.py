"""
OIDC Trust Configurator
Computes the desired-state resource plan for a GitHub Actions OIDC provider and role
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, ClassVar, Mapping, Union

from . import constants
from .config_loader import ProvisionOptions, role_name_from_arn, validate_options

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ref:
    """Symbolic reference to an attribute of a planned resource, known only after apply."""
    resource: str
    attribute: str

    def __str__(self):
        return f"${{{self.resource}.{self.attribute}}}"


Value = Union[str, Ref]


def _render(value):
    return str(value) if isinstance(value, Ref) else value


def subject_for_repository(entry: str) -> str:
    """Expands a repositories entry into a GitHub OIDC subject pattern.

    ``org/repo`` matches every workflow of the repository (``repo:org/repo:*``);
    an entry that already carries a ``:`` qualifier is used as is.
    """
    if ":" in entry:
        return f"repo:{entry}"
    return f"repo:{entry}:*"


@dataclass(frozen=True)
class TrustPolicyDocument:
    """Trust policy letting GitHub Actions workflows assume a role through the OIDC provider."""
    provider_arn: Any
    subjects: tuple[str, ...]
    audience: str = constants.DEFAULT_AUDIENCE

    def render(self, provider_arn) -> str:
        """Serializes the document with the given (resolved) provider ARN."""
        policy = {
            "Version": constants.POLICY_VERSION,
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Federated": provider_arn},
                    "Action": constants.ASSUME_ROLE_ACTION,
                    "Condition": {
                        "StringEquals": {f"{constants.GITHUB_OIDC_HOST}:aud": self.audience},
                        "StringLike": {f"{constants.GITHUB_OIDC_HOST}:sub": list(self.subjects)},
                    },
                }
            ],
        }
        return json.dumps(policy)

    def to_json(self) -> str:
        return self.render(_render(self.provider_arn))


def build_trust_policy(provider_arn: Value, repositories) -> TrustPolicyDocument:
    subjects = tuple(dict.fromkeys(subject_for_repository(repo) for repo in repositories))
    logger.debug(f"Trust policy subjects: {list(subjects)}")
    return TrustPolicyDocument(provider_arn=provider_arn, subjects=subjects)


@dataclass(frozen=True)
class Operation:
    """Base class of plan entries; ``name`` is the logical resource name."""
    kind: ClassVar[str] = "operation"
    name: str
    depends_on: tuple[str, ...] = field(default=(), kw_only=True)

    def attributes(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("name", "depends_on")
        }

    def to_dict(self) -> dict:
        attributes = {}
        for key, value in self.attributes().items():
            if isinstance(value, TrustPolicyDocument):
                value = json.loads(value.to_json())
            elif isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, Mapping):
                value = dict(value)
            attributes[key] = _render(value)
        return {
            "operation": self.kind,
            "name": self.name,
            "dependsOn": list(self.depends_on),
            "attributes": attributes,
        }


@dataclass(frozen=True)
class CreateOidcProvider(Operation):
    kind: ClassVar[str] = "create-oidc-provider"
    url: str
    client_ids: tuple[str, ...]
    thumbprints: tuple[str, ...]
    tags: Mapping[str, str] = field(hash=False)


@dataclass(frozen=True)
class CreateRole(Operation):
    kind: ClassVar[str] = "create-iam-role"
    role_name: str
    description: str
    path: str
    permissions_boundary: str | None
    max_session_duration: int
    assume_role_policy: TrustPolicyDocument
    tags: Mapping[str, str] = field(hash=False)


@dataclass(frozen=True)
class UpdateRoleTrustPolicy(Operation):
    kind: ClassVar[str] = "update-iam-role-trust-policy"
    role_name: str
    assume_role_policy: TrustPolicyDocument


@dataclass(frozen=True)
class AttachRolePolicy(Operation):
    kind: ClassVar[str] = "attach-role-policy"
    role: Value
    policy_arn: str


@dataclass(frozen=True)
class ResolvedIdentity:
    provider_arn: Value
    role_arn: Value
    role_name: Value

    def to_dict(self) -> dict:
        return {
            constants.OUTPUT_PROVIDER_ARN: _render(self.provider_arn),
            constants.OUTPUT_ROLE_ARN: _render(self.role_arn),
            constants.OUTPUT_ROLE_NAME: _render(self.role_name),
        }


@dataclass(frozen=True)
class ResourcePlan:
    operations: tuple[Operation, ...]
    identity: ResolvedIdentity

    def of_kind(self, operation_type: type) -> list:
        return [op for op in self.operations if isinstance(op, operation_type)]

    def get(self, name: str) -> Operation | None:
        for op in self.operations:
            if op.name == name:
                return op
        return None

    def edges(self) -> list[tuple[str, str]]:
        """Ordering edges as (before, after) pairs of logical names."""
        return [(dep, op.name) for op in self.operations for dep in op.depends_on]

    def to_dict(self) -> dict:
        return {
            "operations": [op.to_dict() for op in self.operations],
            "outputs": self.identity.to_dict(),
        }


def attachment_name(policy_arn: str) -> str:
    """Logical name of a policy attachment, derived from the policy ARN alone.

    Adding or removing another policy never renames an existing attachment.
    The digest keeps same-named policies from different accounts or paths apart.
    """
    policy_name = policy_arn.rsplit("/", 1)[-1]
    digest = hashlib.sha256(policy_arn.encode("utf-8")).hexdigest()[:8]
    return f"{constants.POLICY_ATTACHMENT_PREFIX}-{policy_name}-{digest}"


def resolve(options: ProvisionOptions) -> ResourcePlan:
    """Validates the options and assembles the full resource plan.

    Raises ConfigError before anything is built; a plan is never partial.
    """
    validate_options(options)

    operations: list[Operation] = []

    if options.create_provider:
        provider_arn: Value = Ref(constants.PROVIDER_RESOURCE, "arn")
        provider_deps: tuple[str, ...] = (constants.PROVIDER_RESOURCE,)
        operations.append(CreateOidcProvider(
            constants.PROVIDER_RESOURCE,
            url=constants.GITHUB_OIDC_PROVIDER_URL,
            client_ids=(constants.DEFAULT_AUDIENCE,),
            thumbprints=(options.github_thumbprint,),
            tags=options.tags,
        ))
    else:
        provider_arn = options.oidc_provider_arn
        provider_deps = ()

    # Built once, shared by whichever of create-role / update-trust-policy is planned.
    trust_policy = build_trust_policy(provider_arn, options.repositories)

    if options.create_role:
        role_arn: Value = Ref(constants.ROLE_RESOURCE, "arn")
        role_name: Value = Ref(constants.ROLE_RESOURCE, "name")
        role_deps: tuple[str, ...] = (constants.ROLE_RESOURCE,)
        operations.append(CreateRole(
            constants.ROLE_RESOURCE,
            role_name=options.role_name,
            description=options.role_description,
            path=options.role_path,
            permissions_boundary=options.permissions_boundary_arn,
            max_session_duration=options.max_session_duration,
            assume_role_policy=trust_policy,
            tags=options.tags,
            depends_on=provider_deps,
        ))
    else:
        role_arn = options.oidc_role_arn
        role_name = role_name_from_arn(options.oidc_role_arn)
        role_deps = ()

    if options.updates_existing_role:
        operations.append(UpdateRoleTrustPolicy(
            constants.TRUST_POLICY_UPDATE_RESOURCE,
            role_name=role_name,
            assume_role_policy=trust_policy,
            depends_on=provider_deps,
        ))

    if options.attaches_policies:
        for policy_arn in options.attach_policy_arns:
            operations.append(AttachRolePolicy(
                attachment_name(policy_arn),
                role=role_name,
                policy_arn=policy_arn,
                depends_on=role_deps,
            ))

    plan = ResourcePlan(
        operations=tuple(operations),
        identity=ResolvedIdentity(provider_arn=provider_arn, role_arn=role_arn, role_name=role_name),
    )
    logger.info(f"Resolved plan with {len(plan.operations)} operation(s): "
                f"{[op.kind for op in plan.operations]}")
    return plan


def _link_value(value, lookup: Callable[[Ref], Any]):
    if isinstance(value, Ref):
        return lookup(value)
    if isinstance(value, TrustPolicyDocument) and isinstance(value.provider_arn, Ref):
        return replace(value, provider_arn=lookup(value.provider_arn))
    return value


def link_operation(op: Operation, lookup: Callable[[Ref], Any], linked_docs: dict | None = None) -> Operation:
    """Replaces the Refs of a single operation with ``lookup(ref)``."""
    linked_docs = {} if linked_docs is None else linked_docs

    def link_field(value):
        if isinstance(value, TrustPolicyDocument):
            if id(value) not in linked_docs:
                linked_docs[id(value)] = _link_value(value, lookup)
            return linked_docs[id(value)]
        return _link_value(value, lookup)

    return replace(op, **{key: link_field(value) for key, value in op.attributes().items()})


def link(plan: ResourcePlan, lookup: Callable[[Ref], Any]) -> ResourcePlan:
    """Replaces every Ref in the plan with ``lookup(ref)``.

    A TrustPolicyDocument shared by several operations stays shared after linking.
    """
    linked_docs: dict[int, TrustPolicyDocument] = {}
    operations = tuple(link_operation(op, lookup, linked_docs) for op in plan.operations)
    identity = ResolvedIdentity(
        provider_arn=_link_value(plan.identity.provider_arn, lookup),
        role_arn=_link_value(plan.identity.role_arn, lookup),
        role_name=_link_value(plan.identity.role_name, lookup),
    )
    return ResourcePlan(operations=operations, identity=identity)
