"""Discovery-related models for OAuth server metadata.

Contains models for Protected Resource Metadata (RFC 9728) and
Authorization Server Metadata (RFC 8414), plus the validated decode step
that turns an untrusted document into one of them.
"""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from latchkey.auth.client.models.errors import MalformedMetadataError

ModelT = TypeVar("ModelT", bound=BaseModel)


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728).

    Returned by a protected resource to name the authorization servers that
    issue tokens for it. An empty ``authorization_servers`` list is treated
    the same as an absent one.
    """

    model_config = ConfigDict(extra="allow")

    resource: str | None = None
    authorization_servers: list[str] = Field(default_factory=list)

    # Optional fields from RFC 9728
    bearer_methods_supported: list[str] | None = None
    resource_documentation: str | None = None
    resource_policy_uri: str | None = None
    resource_tos_uri: str | None = None

    def first_authorization_server(self) -> str | None:
        """Return the first advertised authorization server, if any."""
        if not self.authorization_servers:
            return None
        return self.authorization_servers[0]


class AuthServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Only ``authorization_endpoint`` and ``token_endpoint`` are required.
    Unknown fields are kept so the document is returned unchanged.
    """

    model_config = ConfigDict(extra="allow")

    authorization_endpoint: str = Field(min_length=1)
    token_endpoint: str = Field(min_length=1)

    # Dynamic registration (RFC 7591)
    registration_endpoint: str | None = None

    issuer: str | None = None
    revocation_endpoint: str | None = None
    introspection_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None


def decode_metadata(model: type[ModelT], content: str | bytes) -> ModelT:
    """Decode an untrusted JSON document into ``model``.

    Args:
        model: Metadata model to validate against
        content: Raw response body

    Returns:
        Validated model instance

    Raises:
        MalformedMetadataError: If the body is not JSON, not an object,
            or is missing required fields
    """
    try:
        return model.model_validate_json(content)
    except ValidationError as e:
        raise MalformedMetadataError(
            f"Invalid {model.__name__} document: {e.error_count()} error(s), "
            f"first: {e.errors()[0]['msg']}"
        ) from e
