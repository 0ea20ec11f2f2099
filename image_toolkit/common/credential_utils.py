"""
Shared credential loading utilities.

The guest administrator credentials live in the same .env file as the AWS
keys; this module turns them into an explicit value.
"""

import os
from dataclasses import dataclass
from typing import Optional

from image_toolkit.common.aws_client_factory import load_env_file


@dataclass(frozen=True)
class GuestCredentials:
    """Administrator account used inside the build instance."""

    username: str
    password: str

    def __repr__(self):
        return f"GuestCredentials(username={self.username!r}, password='***')"


def load_guest_credentials(env_path: Optional[str] = None) -> GuestCredentials:
    """
    Load the guest administrator credentials from .env file.

    Raises:
        ValueError: If GUEST_ADMIN_USERNAME or GUEST_ADMIN_PASSWORD is missing
    """
    resolved_path = load_env_file(env_path)
    username = os.getenv("GUEST_ADMIN_USERNAME")
    password = os.getenv("GUEST_ADMIN_PASSWORD")
    if not username or not password:
        raise ValueError(f"Guest administrator credentials not found in {resolved_path}")
    return GuestCredentials(username=username, password=password)
