#!/usr/bin/env python3
"""
AWS Client Factory Module
Provides boto3 client creation for the services the image workflow calls.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import boto3
from dotenv import load_dotenv


def _resolve_env_path(env_path: Optional[str] = None) -> str:
    """
    Determine which .env file should be used for credentials.

    Priority order:
      1. Explicit parameter
      2. AWS_ENV_FILE environment variable
      3. ~/.env
    """
    if env_path:
        return env_path
    aws_env_file = os.environ.get("AWS_ENV_FILE")
    if aws_env_file:
        return aws_env_file
    return str(Path.home() / ".env")


def load_env_file(env_path: Optional[str] = None) -> str:
    """Load variables from the resolved .env file without overriding the environment."""
    resolved_path = _resolve_env_path(env_path)
    load_dotenv(resolved_path)
    return resolved_path


def load_credentials_from_env(env_path: Optional[str] = None) -> tuple[str, str]:
    """
    Load AWS credentials from .env file and return them as a tuple.

    Args:
        env_path: Optional override path (defaults to ~/.env)

    Returns:
        tuple: (aws_access_key_id, aws_secret_access_key)

    Raises:
        ValueError: If credentials are not found in .env file
    """
    resolved_path = load_env_file(env_path)

    aws_access_key_id = os.getenv("AWS_ACCESS_KEY_ID")
    aws_secret_access_key = os.getenv("AWS_SECRET_ACCESS_KEY")
    aws_session_token = os.getenv("AWS_SESSION_TOKEN")
    if aws_access_key_id and aws_secret_access_key:
        logging.info("✅ AWS credentials loaded from %s", resolved_path)
        if aws_session_token:
            logging.info("✅ AWS session token loaded from %s", resolved_path)
        return aws_access_key_id, aws_secret_access_key

    raise ValueError(f"AWS credentials not found in {resolved_path}")


def create_client(
    service_name: str,
    region: Optional[str] = None,
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
    aws_session_token: Optional[str] = None,
):
    """
    Create a boto3 client for any AWS service with credentials.

    Args:
        service_name: AWS service name (e.g., 'ec2', 'workspaces')
        region: AWS region name
        aws_access_key_id: Optional AWS access key (loads from env if not provided)
        aws_secret_access_key: Optional AWS secret key (loads from env if not provided)

    Returns:
        boto3.client: Configured AWS service client
    """
    if aws_access_key_id is None or aws_secret_access_key is None:
        aws_access_key_id, aws_secret_access_key = load_credentials_from_env()
    if aws_session_token is None:
        env_session_token = os.getenv("AWS_SESSION_TOKEN")
        if env_session_token:
            aws_session_token = env_session_token

    client_kwargs = {
        "aws_access_key_id": aws_access_key_id,
        "aws_secret_access_key": aws_secret_access_key,
    }

    if aws_session_token:
        client_kwargs["aws_session_token"] = aws_session_token

    if region is not None:
        client_kwargs["region_name"] = region

    return boto3.client(service_name, **client_kwargs)


def create_ec2_client(
    region: str,
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
):
    """Create an EC2 boto3 client with credentials."""
    return create_client("ec2", region, aws_access_key_id, aws_secret_access_key)


def create_workspaces_client(
    region: str,
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
):
    """Create a WorkSpaces boto3 client with credentials."""
    return create_client("workspaces", region, aws_access_key_id, aws_secret_access_key)


@dataclass(frozen=True)
class CloudSession:
    """Clients for one build, created once and passed down explicitly."""

    region: str
    ec2: Any
    workspaces: Any


def create_cloud_session(
    region: str,
    gallery_location: Optional[str] = None,
    env_path: Optional[str] = None,
) -> CloudSession:
    """
    Load credentials once and build the clients a workflow needs.

    The WorkSpaces client targets the gallery location, which may differ
    from the region the build instance runs in.
    """
    aws_access_key_id, aws_secret_access_key = load_credentials_from_env(env_path)
    return CloudSession(
        region=region,
        ec2=create_ec2_client(region, aws_access_key_id, aws_secret_access_key),
        workspaces=create_workspaces_client(
            gallery_location or region, aws_access_key_id, aws_secret_access_key
        ),
    )


if __name__ == "__main__":  # pragma: no cover - script entry point
    pass
