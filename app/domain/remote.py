"""
Authenticated handle on a remote DHIS2 instance.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass


@dataclass(frozen=True)
class RemoteHandle:
    """
    Base URL plus the Authorization header value for one instance.
    """

    base_url: str
    auth_header: str
    instance_id: str | None = None
    instance_name: str | None = None

    @property
    def api_url(self) -> str:
        base = self.base_url.rstrip("/")
        return base if base.endswith("/api") else f"{base}/api"

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": self.auth_header, "Accept": "application/json"}

    @classmethod
    def from_basic_auth(
        cls,
        *,
        base_url: str,
        username: str,
        password: str,
        instance_id: str | None = None,
        instance_name: str | None = None,
    ) -> RemoteHandle:
        token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        return cls(
            base_url=base_url,
            auth_header=f"Basic {token}",
            instance_id=instance_id,
            instance_name=instance_name,
        )
