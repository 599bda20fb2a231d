# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Request Identity — who is calling, and which database they should land on.

The auth layer resolves tokens into a RequestIdentity; this package only
reads it. RequestContext is built per inbound call and thrown away after.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RequestIdentity:
    """Authenticated caller as handed over by the auth layer."""

    user_id: str
    tenant_id: Optional[str] = None
    role: Optional[str] = None

    def __repr__(self) -> str:
        return f"RequestIdentity(user={self.user_id!r}, tenant={self.tenant_id!r})"


@dataclass(frozen=True)
class RequestContext:
    """Per-request routing inputs."""

    path: str = ""
    identity: Optional[RequestIdentity] = None
    force_control_plane: bool = False

    @property
    def tenant_id(self) -> Optional[str]:
        return self.identity.tenant_id if self.identity else None
