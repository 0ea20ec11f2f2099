#!/usr/bin/env python3
"""
Image build CLI.

Usage:
    image-toolkit provision --host H --group G --vpc V --subnet S \\
        (--image-family F | --custom-image I) --specialized-image SI \\
        --generalized-image GI --gallery-image GAL --gallery-location REGION
    image-toolkit capture --host H     # after customizing over remote desktop
    image-toolkit run ...              # provision, prompt, capture
    image-toolkit status --host H
"""

import argparse
import json
import logging
import sys

import paramiko
from botocore.exceptions import BotoCoreError, ClientError

from image_toolkit import config
from image_toolkit.common.aws_client_factory import create_cloud_session
from image_toolkit.common.cli_utils import add_state_db_args, add_yes_arg
from image_toolkit.common.credential_utils import load_guest_credentials
from image_toolkit.common.exceptions import (
    EndpointNotFoundError,
    ImageCaptureFailedError,
    ImageImportFailedError,
    InstanceAlreadyExistsError,
    NetworkNotFoundError,
    PollTimeoutError,
    RemoteCommandError,
    SourceImageNotFoundError,
    TransientProviderError,
    WorkflowStateError,
)
from image_toolkit.scripts.source_image import selector_from_args
from image_toolkit.workflow.pipeline import BuildRequest, ImagePipeline
from image_toolkit.workflow.state import BuildState

WORKFLOW_ERRORS = (
    InstanceAlreadyExistsError,
    SourceImageNotFoundError,
    NetworkNotFoundError,
    EndpointNotFoundError,
    ImageCaptureFailedError,
    ImageImportFailedError,
    RemoteCommandError,
    PollTimeoutError,
    TransientProviderError,
    WorkflowStateError,
    ClientError,
    BotoCoreError,
    paramiko.SSHException,
    OSError,
    ValueError,
)


def _add_build_args(parser):
    parser.add_argument("--group", required=True, help="Cloud group (Group tag) for the build.")
    parser.add_argument("--vpc", required=True, help="Name tag of the VPC.")
    parser.add_argument("--subnet", required=True, help="Name tag of the subnet in the VPC.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--image-family",
        help="Start from the newest public image whose name starts with this.",
    )
    source.add_argument("--custom-image", help="Start from this account's image of this name.")
    parser.add_argument(
        "--instance-type",
        default=config.DEFAULT_INSTANCE_TYPE,
        help=f"EC2 instance type (default: {config.DEFAULT_INSTANCE_TYPE}).",
    )
    parser.add_argument("--specialized-image", required=True, help="Name of the specialized AMI.")
    parser.add_argument("--generalized-image", required=True, help="Name of the generalized AMI.")
    parser.add_argument("--gallery-image", required=True, help="Name of the gallery image.")
    parser.add_argument(
        "--gallery-location", required=True, help="Region of the gallery to import into."
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with one subcommand per workflow entry point."""
    parser = argparse.ArgumentParser(
        description="Build a customized Windows image and publish it to the gallery."
    )
    parser.add_argument(
        "--region",
        default=None,
        help=(
            "AWS region of the build instance (default: the region recorded for the host, "
            f"else {config.DEFAULT_REGION})."
        ),
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    provision = subparsers.add_parser("provision", help="Launch the build instance.")
    add_state_db_args(provision, config.STATE_DB_PATH)
    _add_build_args(provision)

    run = subparsers.add_parser("run", help="Provision, wait for customization, capture.")
    add_state_db_args(run, config.STATE_DB_PATH)
    _add_build_args(run)
    add_yes_arg(run)

    capture = subparsers.add_parser("capture", help="Capture images and import to the gallery.")
    add_state_db_args(capture, config.STATE_DB_PATH)

    status = subparsers.add_parser("status", help="Show the recorded build state.")
    add_state_db_args(status, config.STATE_DB_PATH)
    return parser


def request_from_args(args) -> BuildRequest:
    """Turn parsed build arguments into a BuildRequest."""
    return BuildRequest(
        host_name=args.host,
        group=args.group,
        vpc_name=args.vpc,
        subnet_name=args.subnet,
        source=selector_from_args(args.image_family, args.custom_image),
        specialized_image_name=args.specialized_image,
        generalized_image_name=args.generalized_image,
        gallery_image_name=args.gallery_image,
        gallery_location=args.gallery_location,
        instance_type=args.instance_type,
    )


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("boto3", "botocore", "urllib3", "paramiko"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _gallery_location(args, state: BuildState):
    if getattr(args, "gallery_location", None):
        return args.gallery_location
    record = state.get(args.host)
    if record is not None:
        return record.request.get("gallery_location")
    return None


def _region(args, state: BuildState) -> str:
    if args.region:
        return args.region
    record = state.get(args.host)
    if record is not None:
        return record.region
    return config.DEFAULT_REGION


def _create_pipeline(args, state: BuildState) -> ImagePipeline:
    session = create_cloud_session(_region(args, state), _gallery_location(args, state))
    return ImagePipeline(session, state, load_guest_credentials())


def _run_command(args) -> int:
    state = BuildState(args.state_db)
    if args.command == "status":
        record = state.get(args.host)
        if record is None:
            print(f"No build recorded for {args.host}")
            return 1
        data = _create_pipeline(args, state).describe(args.host)
        print(json.dumps(data, indent=2, default=str))
        return 0

    pipeline = _create_pipeline(args, state)
    if args.command == "provision":
        record = pipeline.provision(request_from_args(args))
        print(f"✅ {record.host_name} is ready for customization. Run capture when done.")
    elif args.command == "run":
        pipeline.run(request_from_args(args), skip_prompt=args.yes)
    else:
        pipeline.capture(args.host)
    return 0


def main(argv=None) -> int:
    """CLI entry point; returns the process exit status."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return _run_command(args)
    except WORKFLOW_ERRORS as exc:
        print(f"❌ {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted. Re-run the same command to resume from the recorded phase.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
