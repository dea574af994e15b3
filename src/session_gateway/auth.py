"""Credential handles consumed by the executors.

Login flows and token persistence live outside this package; here we only
read what those flows leave behind and look secrets up in a fixed order.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from session_gateway.errors import MissingCredentialError


class MiroMindTokenStorage(BaseModel):
    """Stored browser session for MiroMind."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    session_token: str = ""
    email: str = ""
    last_refresh: str = ""
    type: str = "miromind"
    expire: str = Field(default="", alias="expired")


class TraeTokenStorage(BaseModel):
    """Stored Trae app/user tokens."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    app_token: str = ""
    refresh_token: str = ""
    user_token: str = ""
    email: str = ""
    user_id: str = ""
    host: str = ""
    region: str = ""
    ai_region: str = ""
    expire: str = Field(default="", alias="expired")
    token_expire_at: int = 0
    refresh_expire_at: int = 0
    last_refresh: str = ""
    type: str = "trae"


TokenStorage = MiroMindTokenStorage | TraeTokenStorage

_STORAGE_TYPES: dict[str, type[BaseModel]] = {
    "miromind": MiroMindTokenStorage,
    "trae": TraeTokenStorage,
}


@dataclass
class Auth:
    """Opaque auth handle passed to executors."""

    id: str = ""
    provider: str = ""
    label: str = ""
    storage: TokenStorage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    proxy_url: str | None = None


def load_auth_file(path: str | Path) -> Auth:
    """Read a stored credential file into an :class:`Auth`.

    The storage class is chosen by the file's ``type`` field; unknown types
    keep the raw JSON in ``metadata`` only.
    """
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: credential file must contain a JSON object")

    provider = str(data.get("type") or "")
    storage_cls = _STORAGE_TYPES.get(provider)
    storage = storage_cls.model_validate(data) if storage_cls is not None else None
    return Auth(
        id=path.name,
        provider=provider,
        label=str(data.get("email") or ""),
        storage=storage,
        metadata=data,
        proxy_url=data.get("proxy_url") or None,
    )


def resolve_secret(
    auth: Auth | None,
    provider: str,
    storage_type: type[BaseModel],
    secret_fields: Iterable[str],
    metadata_keys: Iterable[str],
    identity_field: str = "email",
) -> tuple[str, str]:
    """Return ``(secret, identity)`` for an auth handle.

    The typed storage slot is consulted first, then the metadata map. Each
    of ``secret_fields`` / ``metadata_keys`` is tried in order and the first
    non-empty string wins.
    """
    secret_fields = tuple(secret_fields)
    metadata_keys = tuple(metadata_keys)
    if auth is not None:
        storage = auth.storage
        if isinstance(storage, storage_type):
            for name in secret_fields:
                secret = getattr(storage, name, "")
                if secret:
                    return secret, getattr(storage, identity_field, "") or ""
        for key in metadata_keys:
            secret = auth.metadata.get(key)
            if isinstance(secret, str) and secret:
                identity = auth.metadata.get(identity_field)
                return secret, identity if isinstance(identity, str) else ""
    raise MissingCredentialError(provider)
