"""
Tests for resolver module
"""

import json
import pytest

from github_oidc_provider import constants
from github_oidc_provider.config_loader import ConfigError, ProvisionOptions
from github_oidc_provider.resolver import (
    AttachRolePolicy,
    CreateOidcProvider,
    CreateRole,
    Ref,
    ResolvedIdentity,
    ResourcePlan,
    TrustPolicyDocument,
    UpdateRoleTrustPolicy,
    attachment_name,
    build_trust_policy,
    link,
    resolve,
    subject_for_repository,
)


PROVIDER_ARN = "arn:aws:iam::123456789012:oidc-provider/token.actions.githubusercontent.com"
ROLE_ARN = "arn:aws:iam::123:role/my-role"


def _sub_condition(document: TrustPolicyDocument) -> list:
    policy = json.loads(document.to_json())
    return policy["Statement"][0]["Condition"]["StringLike"]["token.actions.githubusercontent.com:sub"]


@pytest.mark.unit
class TestSubjectForRepository:
    """Test cases for subject_for_repository function."""

    def test_plain_repository_matches_all_refs(self):
        assert subject_for_repository("org/repo") == "repo:org/repo:*"

    def test_qualified_repository_used_verbatim(self):
        assert subject_for_repository("org/repo:ref:refs/heads/main") == "repo:org/repo:ref:refs/heads/main"

    def test_environment_qualifier(self):
        assert subject_for_repository("org/repo:environment:production") == "repo:org/repo:environment:production"

    def test_wildcard_repository(self):
        assert subject_for_repository("org/*") == "repo:org/*:*"


@pytest.mark.unit
class TestTrustPolicyDocument:
    """Test cases for trust policy generation."""

    def test_document_structure(self):
        document = build_trust_policy(PROVIDER_ARN, ["org/repo"])
        policy = json.loads(document.to_json())

        assert policy["Version"] == "2012-10-17"
        assert len(policy["Statement"]) == 1

        statement = policy["Statement"][0]
        assert statement["Effect"] == "Allow"
        assert statement["Action"] == "sts:AssumeRoleWithWebIdentity"
        assert statement["Principal"]["Federated"] == PROVIDER_ARN
        assert statement["Condition"]["StringEquals"] == {
            "token.actions.githubusercontent.com:aud": "sts.amazonaws.com"
        }
        assert _sub_condition(document) == ["repo:org/repo:*"]

    def test_subjects_for_mixed_repositories(self):
        document = build_trust_policy(PROVIDER_ARN, ["org/repo", "org/other:ref:refs/heads/main"])
        assert _sub_condition(document) == ["repo:org/repo:*", "repo:org/other:ref:refs/heads/main"]

    def test_repository_order_does_not_change_condition_set(self):
        repos = ["org/a", "org/b:ref:refs/heads/main", "org/c"]
        forward = build_trust_policy(PROVIDER_ARN, repos)
        backward = build_trust_policy(PROVIDER_ARN, list(reversed(repos)))

        assert set(_sub_condition(forward)) == set(_sub_condition(backward))

    def test_duplicate_subjects_dropped(self):
        document = build_trust_policy(PROVIDER_ARN, ["org/repo", "org/repo:*", "org/repo"])
        assert _sub_condition(document) == ["repo:org/repo:*"]

    def test_symbolic_provider_arn_rendered_as_placeholder(self):
        document = build_trust_policy(Ref("oidc_provider", "arn"), ["org/repo"])
        policy = json.loads(document.to_json())
        assert policy["Statement"][0]["Principal"]["Federated"] == "${oidc_provider.arn}"

    def test_render_with_resolved_arn(self):
        document = build_trust_policy(Ref("oidc_provider", "arn"), ["org/repo"])
        policy = json.loads(document.render(PROVIDER_ARN))
        assert policy["Statement"][0]["Principal"]["Federated"] == PROVIDER_ARN


@pytest.mark.unit
class TestResolveDefaults:
    """Test cases for resolve with the default options."""

    def setup_method(self):
        self.options = ProvisionOptions(
            repositories=("org/repo",),
            attach_policy_arns=("arn:aws:iam::aws:policy/ReadOnlyAccess",),
            tags={"Team": "DevOps"},
        )
        self.plan = resolve(self.options)

    def test_operation_order(self):
        assert [op.kind for op in self.plan.operations] == [
            "create-oidc-provider",
            "create-iam-role",
            "attach-role-policy",
        ]

    def test_provider_operation(self):
        provider = self.plan.get(constants.PROVIDER_RESOURCE)
        assert isinstance(provider, CreateOidcProvider)
        assert provider.url == "https://token.actions.githubusercontent.com"
        assert provider.client_ids == ("sts.amazonaws.com",)
        assert provider.thumbprints == (constants.DEFAULT_GITHUB_THUMBPRINT,)
        assert provider.tags == {"Team": "DevOps"}
        assert provider.depends_on == ()

    def test_role_operation(self):
        role = self.plan.get(constants.ROLE_RESOURCE)
        assert isinstance(role, CreateRole)
        assert role.role_name == "github-oidc-provider-aws"
        assert role.description == constants.DEFAULT_ROLE_DESCRIPTION
        assert role.path == "/"
        assert role.permissions_boundary is None
        assert role.max_session_duration == 3600
        assert role.tags == {"Team": "DevOps"}
        assert role.assume_role_policy.provider_arn == Ref("oidc_provider", "arn")
        assert role.depends_on == ("oidc_provider",)

    def test_attachment_targets_created_role(self):
        (attachment,) = self.plan.of_kind(AttachRolePolicy)
        assert attachment.role == Ref("oidc_role", "name")
        assert attachment.policy_arn == "arn:aws:iam::aws:policy/ReadOnlyAccess"
        assert attachment.depends_on == ("oidc_role",)

    def test_edges(self):
        assert self.plan.edges() == [
            ("oidc_provider", "oidc_role"),
            ("oidc_role", attachment_name("arn:aws:iam::aws:policy/ReadOnlyAccess")),
        ]

    def test_identity(self):
        assert self.plan.identity == ResolvedIdentity(
            provider_arn=Ref("oidc_provider", "arn"),
            role_arn=Ref("oidc_role", "arn"),
            role_name=Ref("oidc_role", "name"),
        )


@pytest.mark.unit
class TestResolveExistingResources:
    """Test cases for resolve when reusing an existing provider or role."""

    def test_existing_provider(self):
        plan = resolve(ProvisionOptions(
            create_provider=False,
            oidc_provider_arn=PROVIDER_ARN,
            repositories=("org/repo",),
        ))

        assert plan.of_kind(CreateOidcProvider) == []
        assert plan.identity.provider_arn == PROVIDER_ARN
        role = plan.get(constants.ROLE_RESOURCE)
        assert role.depends_on == ()
        assert role.assume_role_policy.provider_arn == PROVIDER_ARN

    def test_existing_role_with_policies(self):
        plan = resolve(ProvisionOptions(
            create_role=False,
            oidc_role_arn=ROLE_ARN,
            attach_policies_to_existing_role=True,
            attach_policy_arns=("p1", "p2"),
        ))

        attachments = plan.of_kind(AttachRolePolicy)
        assert len(attachments) == 2
        assert [a.role for a in attachments] == ["my-role", "my-role"]
        assert [a.policy_arn for a in attachments] == ["p1", "p2"]
        assert all(a.depends_on == () for a in attachments)
        assert plan.of_kind(CreateRole) == []
        assert plan.identity.role_name == "my-role"
        assert plan.identity.role_arn == ROLE_ARN

    def test_existing_role_without_attach_flag_skips_policies(self):
        plan = resolve(ProvisionOptions(
            create_role=False,
            oidc_role_arn=ROLE_ARN,
            attach_policy_arns=("p1", "p2"),
        ))
        assert plan.of_kind(AttachRolePolicy) == []

    def test_existing_role_trust_policy_update(self):
        plan = resolve(ProvisionOptions(
            create_role=False,
            oidc_role_arn="arn:aws:iam::123456789012:role/ci/my-role",
            update_existing_role_policy=True,
            repositories=("org/repo",),
            max_session_duration=7200,
        ))

        (update,) = plan.of_kind(UpdateRoleTrustPolicy)
        assert update.role_name == "my-role"
        assert update.depends_on == ("oidc_provider",)
        assert _sub_condition(update.assume_role_policy) == ["repo:org/repo:*"]
        # Only the trust policy is carried to the existing role
        assert set(update.attributes()) == {"role_name", "assume_role_policy"}

    def test_update_ignored_when_creating_role(self):
        plan = resolve(ProvisionOptions(update_existing_role_policy=True))
        assert plan.of_kind(UpdateRoleTrustPolicy) == []
        assert len(plan.of_kind(CreateRole)) == 1

    def test_update_and_create_share_trust_policy_document(self):
        options = ProvisionOptions(repositories=("org/repo", "org/x:ref:refs/tags/v1"))
        created = resolve(options).get(constants.ROLE_RESOURCE).assume_role_policy

        updated = resolve(ProvisionOptions(
            create_role=False,
            oidc_role_arn=ROLE_ARN,
            update_existing_role_policy=True,
            repositories=options.repositories,
        )).get(constants.TRUST_POLICY_UPDATE_RESOURCE).assume_role_policy

        assert created.to_json() == updated.to_json()

    def test_all_existing_produces_empty_plan(self):
        plan = resolve(ProvisionOptions(
            create_provider=False,
            oidc_provider_arn=PROVIDER_ARN,
            create_role=False,
            oidc_role_arn=ROLE_ARN,
        ))
        assert plan.operations == ()
        assert plan.identity == ResolvedIdentity(PROVIDER_ARN, ROLE_ARN, "my-role")


@pytest.mark.unit
class TestResolveExactlyOne:
    """Exactly one of create / supplied ARN holds for provider and role."""

    @pytest.mark.parametrize("create_provider", [True, False])
    @pytest.mark.parametrize("create_role", [True, False])
    def test_exactly_one(self, create_provider, create_role):
        plan = resolve(ProvisionOptions(
            create_provider=create_provider,
            oidc_provider_arn=None if create_provider else PROVIDER_ARN,
            create_role=create_role,
            oidc_role_arn=None if create_role else ROLE_ARN,
        ))

        has_provider_op = bool(plan.of_kind(CreateOidcProvider))
        assert has_provider_op != (plan.identity.provider_arn == PROVIDER_ARN)

        has_role_op = bool(plan.of_kind(CreateRole))
        assert has_role_op != (plan.identity.role_name == "my-role")


@pytest.mark.unit
class TestResolveFailures:
    """Test cases for resolve failing fast."""

    def test_missing_provider_arn(self):
        with pytest.raises(ConfigError, match="oidcProviderArn"):
            resolve(ProvisionOptions(create_provider=False, oidc_provider_arn=None))

    def test_missing_role_arn(self):
        with pytest.raises(ConfigError, match="oidcRoleArn"):
            resolve(ProvisionOptions(create_role=False))

    def test_session_duration_just_above_minimum(self):
        plan = resolve(ProvisionOptions(max_session_duration=3601))
        assert plan.get(constants.ROLE_RESOURCE).max_session_duration == 3601

    @pytest.mark.parametrize("duration", [3599, 43201])
    def test_session_duration_out_of_range(self, duration):
        with pytest.raises(ConfigError, match="maxSessionDurationSeconds"):
            resolve(ProvisionOptions(max_session_duration=duration))


@pytest.mark.unit
class TestResolveIdempotence:
    """Resolving the same options twice yields the same plan."""

    def test_same_plan(self):
        options = ProvisionOptions(
            repositories=("org/repo", "org/other:environment:prod"),
            attach_policy_arns=("p1", "p2"),
            tags={"Team": "DevOps"},
        )
        first, second = resolve(options), resolve(options)

        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_plan_is_hashable(self):
        options = ProvisionOptions(repositories=("org/repo",), tags={"Team": "DevOps"})
        assert hash(resolve(options)) == hash(resolve(options))


@pytest.mark.unit
class TestPolicyAttachments:
    """Test cases for policy attachment operations."""

    def test_duplicate_policies_attached_once(self):
        plan = resolve(ProvisionOptions(repositories=("org/repo",), attach_policy_arns=("p1", "p1")))

        assert [op.policy_arn for op in plan.of_kind(AttachRolePolicy)] == ["p1"]

    def test_names_follow_policy_not_position(self):
        both = resolve(ProvisionOptions(repositories=("org/repo",), attach_policy_arns=("p1", "p2")))
        only_p2 = resolve(ProvisionOptions(repositories=("org/repo",), attach_policy_arns=("p2",)))

        names = {op.policy_arn: op.name for op in both.of_kind(AttachRolePolicy)}
        (remaining,) = only_p2.of_kind(AttachRolePolicy)
        assert remaining.name == names["p2"]
        assert names["p1"] != names["p2"]

    def test_attachment_name(self):
        name = attachment_name("arn:aws:iam::aws:policy/ReadOnlyAccess")
        assert name.startswith("oidc_role_policy-ReadOnlyAccess-")
        assert name == attachment_name("arn:aws:iam::aws:policy/ReadOnlyAccess")

    def test_same_policy_name_in_other_account(self):
        assert (attachment_name("arn:aws:iam::111111111111:policy/deploy")
                != attachment_name("arn:aws:iam::222222222222:policy/deploy"))


@pytest.mark.unit
class TestResolveRepositories:
    """Test cases for repository entry checks during resolve."""

    @pytest.mark.parametrize("entry", ["", "org", "/repo", "org/", "org/repo/extra", ":ref:refs/heads/main"])
    def test_malformed_entries(self, entry):
        with pytest.raises(ConfigError, match="repositories entry"):
            resolve(ProvisionOptions(repositories=(entry,)))

    @pytest.mark.parametrize("entry", ["org/repo", "org/*", "org/repo:ref:refs/heads/main", "org/repo:*"])
    def test_accepted_entries(self, entry):
        resolve(ProvisionOptions(repositories=(entry,)))


@pytest.mark.unit
class TestLink:
    """Test cases for link function."""

    def setup_method(self):
        self.plan = resolve(ProvisionOptions(repositories=("org/repo",), attach_policy_arns=("p1",)))
        self.values = {
            Ref("oidc_provider", "arn"): PROVIDER_ARN,
            Ref("oidc_role", "arn"): "arn:aws:iam::123456789012:role/github-oidc-provider-aws",
            Ref("oidc_role", "name"): "github-oidc-provider-aws",
        }

    def test_link_replaces_refs(self):
        linked = link(self.plan, self.values.__getitem__)

        role = linked.get(constants.ROLE_RESOURCE)
        assert role.assume_role_policy.provider_arn == PROVIDER_ARN
        (attachment,) = linked.of_kind(AttachRolePolicy)
        assert attachment.role == "github-oidc-provider-aws"
        assert linked.identity == ResolvedIdentity(
            provider_arn=PROVIDER_ARN,
            role_arn="arn:aws:iam::123456789012:role/github-oidc-provider-aws",
            role_name="github-oidc-provider-aws",
        )

    def test_link_keeps_ordering_edges(self):
        linked = link(self.plan, self.values.__getitem__)
        assert linked.edges() == self.plan.edges()

    def test_link_does_not_modify_original(self):
        link(self.plan, self.values.__getitem__)
        assert self.plan.identity.provider_arn == Ref("oidc_provider", "arn")

    def test_linked_plan_renders_without_placeholders(self):
        linked = link(self.plan, self.values.__getitem__)
        assert "${" not in json.dumps(linked.to_dict())


@pytest.mark.unit
class TestPlanToDict:
    """Test cases for ResourcePlan.to_dict."""

    def test_to_dict(self):
        plan = resolve(ProvisionOptions(
            create_role=False,
            oidc_role_arn=ROLE_ARN,
            update_existing_role_policy=True,
            repositories=("org/repo",),
        ))
        data = plan.to_dict()

        assert [op["operation"] for op in data["operations"]] == [
            "create-oidc-provider",
            "update-iam-role-trust-policy",
        ]
        update = data["operations"][1]
        assert update["dependsOn"] == ["oidc_provider"]
        assert update["attributes"]["role_name"] == "my-role"
        statement = update["attributes"]["assume_role_policy"]["Statement"][0]
        assert statement["Principal"]["Federated"] == "${oidc_provider.arn}"
        assert data["outputs"] == {
            "oidcProviderArn": "${oidc_provider.arn}",
            "oidcRoleArn": ROLE_ARN,
            "oidcRoleName": "my-role",
        }

    def test_to_dict_is_json_serializable(self):
        plan = resolve(ProvisionOptions(repositories=("org/repo",), attach_policy_arns=("p1",)))
        json.dumps(plan.to_dict())

    def test_empty_plan(self):
        plan = ResourcePlan(operations=(), identity=ResolvedIdentity(PROVIDER_ARN, ROLE_ARN, "my-role"))
        assert plan.to_dict()["operations"] == []
        assert plan.get("oidc_role") is None
