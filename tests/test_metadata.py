"""Tests for protected resource metadata and challenges."""

import pytest

from shared.models import Reason

from conftest import BASE_URL, CLIENT_ID, ISSUER


class TestResourceMetadataPublisher:
    """Tests for ResourceMetadataPublisher."""

    def test_document(self, config):
        """Test the discovery document derived from configuration."""
        from secure_mcp.metadata import ResourceMetadataPublisher

        document = ResourceMetadataPublisher(config).document()

        assert document == {
            "resource": "https://example.test/mcp",
            "authorization_servers": [ISSUER],
            "resource_documentation": "https://example.test/health",
            "scopes_supported": [f"api://{CLIENT_ID}/mcp:tools"],
            "resource_name": "Entra protected MCP demo server",
        }

    def test_configured_scope_advertised(self, settings):
        """Test that a configured MCP scope replaces the derived one."""
        from shared.config import ServerConfig
        from secure_mcp.metadata import ResourceMetadataPublisher

        settings.azure_ad.mcp_scope = "api://custom-app/mcp:tools"
        publisher = ResourceMetadataPublisher(ServerConfig.from_settings(settings))

        assert publisher.metadata.scopes_supported == ["api://custom-app/mcp:tools"]

    def test_placeholder_scope_without_client_id(self, settings):
        """Test the scope placeholder when no client id is configured."""
        from shared.config import ServerConfig
        from secure_mcp.metadata import ResourceMetadataPublisher

        settings.azure_ad.client_id = None
        publisher = ResourceMetadataPublisher(ServerConfig.from_settings(settings))

        assert publisher.metadata.scopes_supported == ["api://<client_id>/mcp:tools"]

    def test_metadata_url(self, config):
        """Test the absolute URL of the discovery document."""
        from secure_mcp.metadata import ResourceMetadataPublisher

        publisher = ResourceMetadataPublisher(config)

        assert publisher.metadata_url == f"{BASE_URL}/.well-known/oauth-protected-resource"


class TestChallenge:
    """Tests for WWW-Authenticate challenges."""

    def test_missing_token_challenge(self, config):
        """Test that a tokenless request gets no error code."""
        from secure_mcp.metadata import ResourceMetadataPublisher

        challenge = ResourceMetadataPublisher(config).challenge(Reason.MISSING_TOKEN)

        assert challenge == (
            'Bearer resource_metadata="https://example.test/.well-known/oauth-protected-resource"'
        )

    @pytest.mark.parametrize("reason", [Reason.INVALID_TOKEN, Reason.EXPIRED_TOKEN])
    def test_invalid_token_challenge(self, config, reason):
        """Test that rejected tokens get error=invalid_token."""
        from secure_mcp.metadata import ResourceMetadataPublisher

        challenge = ResourceMetadataPublisher(config).challenge(reason)

        assert challenge.startswith('Bearer resource_metadata="')
        assert 'error="invalid_token"' in challenge
        assert "error_description=" in challenge

    def test_insufficient_scope_challenge(self, config):
        """Test that a missing scope names the required scope."""
        from secure_mcp.metadata import ResourceMetadataPublisher

        challenge = ResourceMetadataPublisher(config).challenge(Reason.MISSING_SCOPE)

        assert 'error="insufficient_scope"' in challenge
        assert 'scope="mcp:tools"' in challenge

    @pytest.mark.parametrize("reason", [
        Reason.ALLOWED,
        Reason.CAPABILITY_NOT_FOUND,
        Reason.INVALID_INPUT,
        Reason.HANDLER_ERROR,
    ])
    def test_no_challenge_after_authorization(self, config, reason):
        """Test that post-authorization outcomes carry no challenge."""
        from secure_mcp.metadata import ResourceMetadataPublisher

        assert ResourceMetadataPublisher(config).challenge(reason) is None
