"""
Trust policy update for an IAM role this tool does not own.

Only the assume role policy is rewritten; session duration, description, path,
permissions boundary and tags of the role are left untouched.
"""

import logging

import boto3
import pulumi
from botocore.exceptions import ClientError
from pulumi.dynamic import CreateResult, DiffResult, ResourceProvider, UpdateResult

logger = logging.getLogger(__name__)


def _iam_client(props: dict):
    session = boto3.Session(
        profile_name=props.get("aws_profile") or None,
        region_name=props.get("aws_region") or None,
    )
    return session.client("iam")


def update_assume_role_policy(props: dict) -> None:
    role_name = props["role_name"]
    try:
        _iam_client(props).update_assume_role_policy(
            RoleName=role_name,
            PolicyDocument=props["policy_document"],
        )
        logger.info(f"Updated trust policy of existing role {role_name}")
    except ClientError:
        logger.exception("Couldn't update the trust policy for role %s.", role_name)
        raise


class TrustPolicyUpdateProvider(ResourceProvider):
    """Dynamic provider rewriting the trust policy of an existing role."""

    def create(self, props):
        update_assume_role_policy(props)
        return CreateResult(id_=props["role_name"], outs=props)

    def diff(self, _id, olds, news):
        replaces = ["role_name"] if olds.get("role_name") != news.get("role_name") else []
        changes = bool(replaces) or olds.get("policy_document") != news.get("policy_document")
        return DiffResult(changes=changes, replaces=replaces, delete_before_replace=False)

    def update(self, _id, _olds, news):
        update_assume_role_policy(news)
        return UpdateResult(outs=news)

    def delete(self, _id, props):
        # The role is not managed here; its current trust policy stays in place.
        logger.info(f"Releasing trust policy of existing role {props.get('role_name')} without changes")


class TrustPolicyUpdate(pulumi.dynamic.Resource):
    role_name: pulumi.Output[str]
    policy_document: pulumi.Output[str]

    def __init__(self, name: str, role_name, policy_document,
                 aws_region: str | None = None, aws_profile: str | None = None,
                 opts: pulumi.ResourceOptions | None = None):
        super().__init__(
            TrustPolicyUpdateProvider(),
            name,
            {
                "role_name": role_name,
                "policy_document": policy_document,
                "aws_region": aws_region,
                "aws_profile": aws_profile,
            },
            opts,
        )
