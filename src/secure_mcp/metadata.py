"""Protected resource metadata for the Secure MCP Server.

Clients that have no token yet start here: the discovery document names
the resource, the authorization server(s) to obtain a token from and the
scopes to ask for (RFC 9728). The same publisher renders the
WWW-Authenticate challenge that points rejected clients back at it.
"""

from typing import Optional

from shared.config import ServerConfig
from shared.models import AUTHENTICATION_REASONS, Reason, ResourceMetadata

WELL_KNOWN_PATH = "/.well-known/oauth-protected-resource"


class ResourceMetadataPublisher:
    """Builds the discovery document once and serves it read-only."""

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.metadata = ResourceMetadata(
            resource=config.resource_url,
            authorization_servers=list(config.authorization_servers),
            resource_documentation=config.documentation_url,
            scopes_supported=list(config.scopes_supported),
            resource_name=config.resource_name,
        )

    @property
    def metadata_url(self) -> str:
        return f"{self.config.base_url}{WELL_KNOWN_PATH}"

    def document(self) -> dict:
        """Discovery document with its fixed field names."""
        return self.metadata.model_dump()

    def challenge(self, reason: Reason) -> Optional[str]:
        """
        WWW-Authenticate value for a rejected request (RFC 6750 section 3).

        A request that carried no token gets no error code.
        """
        params = [f'resource_metadata="{self.metadata_url}"']

        if reason in (Reason.INVALID_TOKEN, Reason.EXPIRED_TOKEN):
            description = "The access token expired" if reason == Reason.EXPIRED_TOKEN else "The access token is invalid"
            params.append('error="invalid_token"')
            params.append(f'error_description="{description}"')
        elif reason == Reason.MISSING_SCOPE:
            params.append('error="insufficient_scope"')
            params.append(f'scope="{self.config.required_scope}"')
        elif reason not in AUTHENTICATION_REASONS:
            return None

        return "Bearer " + ", ".join(params)
