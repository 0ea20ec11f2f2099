"""
Remote command execution inside the build instance over SSH.

Used once per build to start in-guest generalization. The command is handed
to the guest's Task Scheduler and the session closed; the guest shuts itself
down when it finishes, which the workflow observes through the instance
status, not through this session.
"""

import logging

import paramiko

from image_toolkit.common.credential_utils import GuestCredentials
from image_toolkit.common.exceptions import RemoteCommandError
from image_toolkit.scripts.ec2_operations import Endpoint

logging.getLogger("paramiko").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 30


class RemoteSession:
    """An authenticated SSH connection to the guest."""

    def __init__(self, client: paramiko.SSHClient, endpoint: Endpoint):
        self.client = client
        self.endpoint = endpoint

    def run(self, command: str) -> str:
        """
        Run a command in the guest and wait for it to exit.

        Raises:
            RemoteCommandError: If the command exits non-zero
        """
        logger.debug("Executing on %s: %s", self.endpoint, command)
        _stdin, stdout, stderr = self.client.exec_command(command)
        exit_code = stdout.channel.recv_exit_status()
        output = stdout.read().decode("utf-8", errors="replace")
        if exit_code != 0:
            raise RemoteCommandError(
                command, exit_code, stderr.read().decode("utf-8", errors="replace")
            )
        return output

    def run_detached(self, command: str, task_name: str) -> str:
        """
        Start a command as a one-off SYSTEM scheduled task and return at once.

        Win32-OpenSSH kills the processes of a session when it closes, so a
        command that outlives the session has to be owned by the Task
        Scheduler instead. The task is created and started synchronously;
        its exit status only says whether scheduling succeeded.

        Raises:
            RemoteCommandError: If the task cannot be created or started
        """
        launcher = (
            f'schtasks /Create /F /TN "{task_name}" /SC ONCE /ST 00:00 /RU SYSTEM /RL HIGHEST '
            f'/TR "{command}" && schtasks /Run /TN "{task_name}"'
        )
        return self.run(launcher)

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def open_secure_session(
    endpoint: Endpoint,
    credentials: GuestCredentials,
    skip_cert_validation: bool = False,
) -> RemoteSession:
    """
    Connect to the guest's management endpoint.

    Args:
        endpoint: Address and SSH port of the instance
        credentials: Guest administrator account
        skip_cert_validation: Accept unknown host keys instead of rejecting them.
            A freshly built instance is never in known_hosts, so unattended
            builds need this.

    Raises:
        paramiko.SSHException: If authentication or negotiation fails
        OSError: If the endpoint cannot be reached
    """
    client = paramiko.SSHClient()
    client.load_system_host_keys()
    if skip_cert_validation:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    else:
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
    print(f"🔐 Opening management session to {endpoint} as {credentials.username}")
    client.connect(
        hostname=endpoint.address,
        port=endpoint.port,
        username=credentials.username,
        password=credentials.password,
        timeout=CONNECT_TIMEOUT_SECONDS,
        banner_timeout=CONNECT_TIMEOUT_SECONDS,
        look_for_keys=False,
        allow_agent=False,
    )
    return RemoteSession(client, endpoint)
