"""
Tests for constants module
"""

import pytest
from github_oidc_provider import constants


@pytest.mark.unit
class TestOidcConfiguration:
    """Test cases for OIDC configuration constants."""

    def test_github_oidc_provider_url(self):
        assert constants.GITHUB_OIDC_PROVIDER_URL == "https://token.actions.githubusercontent.com"
        assert constants.GITHUB_OIDC_PROVIDER_URL.endswith(constants.GITHUB_OIDC_HOST)

    def test_default_audience(self):
        assert constants.DEFAULT_AUDIENCE == "sts.amazonaws.com"

    def test_default_thumbprint_is_sha1_hex(self):
        assert len(constants.DEFAULT_GITHUB_THUMBPRINT) == 40
        int(constants.DEFAULT_GITHUB_THUMBPRINT, 16)


@pytest.mark.unit
class TestRoleDefaults:
    """Test cases for role default constants."""

    def test_role_defaults(self):
        assert constants.DEFAULT_ROLE_NAME == "github-oidc-provider-aws"
        assert constants.DEFAULT_ROLE_PATH == "/"
        assert constants.DEFAULT_ROLE_DESCRIPTION

    def test_session_duration_bounds(self):
        assert constants.MIN_SESSION_DURATION == 3600
        assert constants.MAX_SESSION_DURATION == 43200

    def test_aws_limits(self):
        assert constants.MAX_ROLE_NAME_LENGTH == 64
        assert constants.MAX_MANAGED_POLICIES_PER_ROLE == 20


@pytest.mark.unit
class TestOutputNames:
    """Test cases for stack output names."""

    def test_output_names(self):
        assert constants.OUTPUT_PROVIDER_ARN == "oidcProviderArn"
        assert constants.OUTPUT_ROLE_ARN == "oidcRoleArn"
        assert constants.OUTPUT_ROLE_NAME == "oidcRoleName"
