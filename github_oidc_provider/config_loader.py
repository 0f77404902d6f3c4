import os
import json
import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from . import constants

logger = logging.getLogger(__name__)

PROVIDER_ARN_PATTERN = re.compile(r"^arn:aws[a-z-]*:iam::[^:]*:oidc-provider/[^/\s]+.*$")
ROLE_ARN_PATTERN = re.compile(r"^arn:aws[a-z-]*:iam::[^:]*:role/(?:[^\s]*/)?(?P<name>[^/\s]+)$")
# org/repo, optionally followed by ':<subject pattern>'
REPOSITORY_PATTERN = re.compile(r"^[^/:\s]+/[^/:\s]+(?::\S+)?$")


class ConfigError(Exception):
    """Custom exception for configuration loading and validation errors."""
    pass


@dataclass(frozen=True)
class ProvisionOptions:
    """The full input set for a single provisioning run."""
    create_provider: bool = True
    create_role: bool = True
    oidc_provider_arn: str | None = None
    oidc_role_arn: str | None = None
    attach_policies_to_existing_role: bool = False
    update_existing_role_policy: bool = False
    github_thumbprint: str = constants.DEFAULT_GITHUB_THUMBPRINT
    role_name: str = constants.DEFAULT_ROLE_NAME
    role_description: str = constants.DEFAULT_ROLE_DESCRIPTION
    role_path: str = constants.DEFAULT_ROLE_PATH
    permissions_boundary_arn: str | None = None
    max_session_duration: int = constants.MIN_SESSION_DURATION
    repositories: tuple[str, ...] = ()
    attach_policy_arns: tuple[str, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        # Policies are a set; tags are a read-only copy.
        object.__setattr__(self, "repositories", tuple(self.repositories))
        object.__setattr__(self, "attach_policy_arns", _unique(self.attach_policy_arns))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @property
    def attaches_policies(self) -> bool:
        return self.create_role or self.attach_policies_to_existing_role

    @property
    def updates_existing_role(self) -> bool:
        return not self.create_role and self.update_existing_role_policy

    def __str__(self):
        return (f"ProvisionOptions(create_provider={self.create_provider}, create_role={self.create_role}, "
                f"role_name={self.role_name}, repositories={len(self.repositories)})")


# camelCase option name -> (attribute, accepted JSON type, nullable)
OPTION_FIELDS = {
    "createOidcProvider": ("create_provider", bool, False),
    "createOidcRole": ("create_role", bool, False),
    "oidcProviderArn": ("oidc_provider_arn", str, True),
    "oidcRoleArn": ("oidc_role_arn", str, True),
    "attachPoliciesToExistingRole": ("attach_policies_to_existing_role", bool, False),
    "updateExistingRolePolicy": ("update_existing_role_policy", bool, False),
    "githubThumbprint": ("github_thumbprint", str, False),
    "roleName": ("role_name", str, False),
    "roleDescription": ("role_description", str, False),
    "iamRolePath": ("role_path", str, False),
    "iamRolePermissionsBoundary": ("permissions_boundary_arn", str, True),
    "maxSessionDurationSeconds": ("max_session_duration", int, False),
    "repositories": ("repositories", list, False),
    "oidcRoleAttachPolicies": ("attach_policy_arns", list, False),
    "tags": ("tags", dict, False),
}


def _check_type(key: str, value, expected: type, nullable: bool):
    if value is None:
        if nullable:
            return
        raise ConfigError(f"Option '{key}' must not be null.")
    # bool is a subclass of int; a JSON true is never a valid duration
    if expected is int and isinstance(value, bool):
        raise ConfigError(f"Option '{key}' must be an integer, got {value!r}.")
    if not isinstance(value, expected):
        raise ConfigError(f"Option '{key}' must be of type {expected.__name__}, got {type(value).__name__}.")
    if expected is list and not all(isinstance(item, str) for item in value):
        raise ConfigError(f"Option '{key}' must be a list of strings.")
    if expected is dict and not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ConfigError(f"Option '{key}' must map strings to strings.")


def _unique(values) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def options_from_mapping(data: dict) -> ProvisionOptions:
    """Builds ProvisionOptions from a camelCase mapping, applying defaults for missing keys."""
    if not isinstance(data, dict):
        raise ConfigError("Options must be a JSON object.")
    unknown = sorted(set(data) - set(OPTION_FIELDS))
    if unknown:
        raise ConfigError(f"Unknown option(s): {unknown}")

    kwargs = {}
    for key, value in data.items():
        attribute, expected, nullable = OPTION_FIELDS[key]
        _check_type(key, value, expected, nullable)
        kwargs[attribute] = value

    options = ProvisionOptions(**kwargs)
    logger.debug(f"Parsed options: {options}")
    return options


def load_options(file_path: str) -> ProvisionOptions:
    """Loads ProvisionOptions from a JSON options file."""
    if not os.path.exists(file_path):
        raise ConfigError(f"Options file not found: {file_path}")
    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Error decoding JSON from {file_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading file {file_path}: {e}")
    logger.info(f"Loaded options file: {file_path}")
    return options_from_mapping(data)


def role_name_from_arn(role_arn: str) -> str:
    """Returns the role name of an IAM role ARN, the segment after the last '/'."""
    match = ROLE_ARN_PATTERN.match(role_arn or "")
    if not match:
        raise ConfigError(f"Malformed IAM role ARN: {role_arn!r}")
    return match.group("name")


def validate_options(options: ProvisionOptions) -> None:
    """Raises ConfigError naming the first violated rule."""
    if options.create_provider and options.oidc_provider_arn:
        raise ConfigError("oidcProviderArn must not be set when createOidcProvider is true.")
    if not options.create_provider:
        if not options.oidc_provider_arn:
            raise ConfigError("oidcProviderArn is required when createOidcProvider is false.")
        if not PROVIDER_ARN_PATTERN.match(options.oidc_provider_arn):
            raise ConfigError(f"Malformed OIDC provider ARN: {options.oidc_provider_arn!r}")

    if options.create_role and options.oidc_role_arn:
        raise ConfigError("oidcRoleArn must not be set when createOidcRole is true.")
    if not options.create_role:
        if not options.oidc_role_arn:
            raise ConfigError("oidcRoleArn is required when createOidcRole is false.")
        role_name_from_arn(options.oidc_role_arn)

    if not constants.MIN_SESSION_DURATION <= options.max_session_duration <= constants.MAX_SESSION_DURATION:
        raise ConfigError(
            f"maxSessionDurationSeconds must be between {constants.MIN_SESSION_DURATION} and "
            f"{constants.MAX_SESSION_DURATION}, got {options.max_session_duration}."
        )

    if options.create_role:
        if not options.role_name:
            raise ConfigError("roleName must not be empty when createOidcRole is true.")
        if len(options.role_name) > constants.MAX_ROLE_NAME_LENGTH:
            raise ConfigError(
                f"roleName exceeds {constants.MAX_ROLE_NAME_LENGTH} characters: {options.role_name!r}"
            )
        if not (options.role_path.startswith("/") and options.role_path.endswith("/")):
            raise ConfigError(f"iamRolePath must begin and end with '/', got {options.role_path!r}.")

    if options.attaches_policies and len(options.attach_policy_arns) > constants.MAX_MANAGED_POLICIES_PER_ROLE:
        raise ConfigError(
            f"At most {constants.MAX_MANAGED_POLICIES_PER_ROLE} policies can be attached to a role, "
            f"got {len(options.attach_policy_arns)}."
        )

    for entry in options.repositories:
        if not REPOSITORY_PATTERN.match(entry):
            raise ConfigError(f"repositories entry must look like 'org/repo' or 'org/repo:<pattern>', got {entry!r}.")

    if (options.create_role or options.updates_existing_role) and not options.repositories:
        logger.warning("No repositories configured; the trust policy will not match any GitHub workflow.")
