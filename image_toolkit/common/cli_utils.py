"""
Shared CLI utilities for common command-line patterns.
"""

import argparse


def confirm_action(message, skip_prompt=False):
    """
    Prompt the operator for a yes/no confirmation.

    Args:
        message: Prompt message to display to the user
        skip_prompt: If True, skip confirmation and return True

    Returns:
        bool: True if the operator typed y/yes or the prompt was skipped
    """
    if skip_prompt:
        return True

    try:
        response = input(message).strip()
    except EOFError:
        print("\nConfirmation not received.")
        return False

    return response.lower() in {"y", "yes"}


def confirm_customization_complete(host_name, endpoint, skip_prompt=False):
    """
    Checkpoint between provisioning and capture.

    Tells the operator where to connect and waits for them to confirm that
    the instance has been customized.
    """
    print()
    print("=" * 70)
    print("MANUAL CUSTOMIZATION")
    print("=" * 70)
    print(f"Connect to {host_name} over remote desktop at {endpoint.address}:{endpoint.port}")
    print("Install and configure the applications, then return here.")
    print("=" * 70)
    return confirm_action("Customization complete, start capture? [y/N] ", skip_prompt)


def add_state_db_args(parser, db_path_default):
    """
    Add the --state-db and --host arguments shared by every subcommand.

    Returns:
        The same parser instance (for chaining)
    """
    parser.add_argument(
        "--host",
        required=True,
        help="Host name of the build instance (also its Name tag).",
    )
    parser.add_argument(
        "--state-db",
        default=db_path_default,
        help=f"Path to the build state SQLite DB (default: {db_path_default}).",
    )
    return parser


def add_yes_arg(parser: argparse.ArgumentParser):
    """Add --yes, which skips the customization checkpoint prompt."""
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Skip the customization confirmation prompt.",
    )
    return parser
