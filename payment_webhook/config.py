"""Environment-driven configuration for the payment webhook.

The snapshot is taken once per request and passed down explicitly, so the
dispatcher never reads ``os.environ`` itself.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

_FORWARD_FLAGS = ("PAYMENT_WEBHOOK_FORWARD_ENABLED", "PL_FORWARD_ENABLED")


@dataclass(frozen=True)
class WebhookConfig:
    forward_enabled: bool = False
    api_url: str = ""
    aes_key: str = ""
    biz_token: str = ""
    use_hash: bool = False
    client_id: str = ""
    client_secret: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WebhookConfig:
        env = os.environ if environ is None else environ
        return cls(
            forward_enabled=any(env.get(flag) == "true" for flag in _FORWARD_FLAGS),
            api_url=env.get("PL_API_URL", ""),
            aes_key=env.get("PL_AES_KEY", ""),
            biz_token=env.get("PL_X_BIZ_TOKEN", ""),
            use_hash=env.get("PL_USE_HASH") == "true",
            client_id=env.get("PL_CLIENT_ID", ""),
            client_secret=env.get("PL_CLIENT_SECRET", ""),
        )

    def missing_forwarding_settings(self) -> list[str]:
        """Names of required forwarding variables that are unset or blank."""
        required = {
            "PL_API_URL": self.api_url,
            "PL_AES_KEY": self.aes_key,
            "PL_X_BIZ_TOKEN": self.biz_token,
        }
        return [name for name, value in required.items() if not value]

    def missing_hash_settings(self) -> list[str]:
        required = {
            "PL_CLIENT_ID": self.client_id,
            "PL_CLIENT_SECRET": self.client_secret,
        }
        return [name for name, value in required.items() if not value]
