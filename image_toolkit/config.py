"""
Configuration for the image build workflow.

Timing defaults:
- Endpoint reachability is probed every 15 seconds for up to 30 minutes
- Instance start/stop transitions are polled every 15 seconds for up to 30 minutes
- Generalization shutdown gets 90 minutes since sysprep can be slow
- Gallery import is polled every 60 seconds for up to 6 hours

Any constant below can be overridden by an environment variable of the same
name, read from the same .env file that holds AWS credentials.
"""

import os

from image_toolkit.common.aws_client_factory import load_env_file

load_env_file()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_str(name: str, default: str) -> str:
    return os.getenv(name) or default


DEFAULT_REGION: str = _env_str("AWS_DEFAULT_REGION", "us-east-1")
DEFAULT_INSTANCE_TYPE: str = _env_str("IMAGE_INSTANCE_TYPE", "t3.large")

# State database location
STATE_DB_PATH: str = _env_str("IMAGE_STATE_DB_PATH", "image_build_state.db")

# Ports probed/connected on the instance
RDP_PORT: int = _env_int("RDP_PORT", 3389)
SSH_PORT: int = _env_int("SSH_PORT", 22)
ENDPOINT_CONNECT_TIMEOUT_SECONDS: int = _env_int("ENDPOINT_CONNECT_TIMEOUT_SECONDS", 5)

# Poll intervals and budgets
ENDPOINT_POLL_INTERVAL_SECONDS: int = _env_int("ENDPOINT_POLL_INTERVAL_SECONDS", 15)
ENDPOINT_MAX_WAIT_SECONDS: int = _env_int("ENDPOINT_MAX_WAIT_SECONDS", 1800)
INSTANCE_POLL_INTERVAL_SECONDS: int = _env_int("INSTANCE_POLL_INTERVAL_SECONDS", 15)
INSTANCE_MAX_WAIT_SECONDS: int = _env_int("INSTANCE_MAX_WAIT_SECONDS", 1800)
GENERALIZE_MAX_WAIT_SECONDS: int = _env_int("GENERALIZE_MAX_WAIT_SECONDS", 5400)
IMAGE_POLL_INTERVAL_SECONDS: int = _env_int("IMAGE_POLL_INTERVAL_SECONDS", 30)
IMAGE_MAX_WAIT_SECONDS: int = _env_int("IMAGE_MAX_WAIT_SECONDS", 3600)
IMPORT_POLL_INTERVAL_SECONDS: int = _env_int("IMPORT_POLL_INTERVAL_SECONDS", 60)
IMPORT_MAX_WAIT_SECONDS: int = _env_int("IMPORT_MAX_WAIT_SECONDS", 21600)

# In-guest generalization; sysprep shuts the machine down when it finishes
GENERALIZE_COMMAND: str = _env_str(
    "GENERALIZE_COMMAND",
    r"C:\Windows\System32\Sysprep\sysprep.exe /generalize /oobe /shutdown /quiet",
)
GENERALIZE_TASK_NAME: str = _env_str("GENERALIZE_TASK_NAME", "ImageToolkitSysprep")
SKIP_HOST_KEY_VALIDATION: bool = _env_str("SKIP_HOST_KEY_VALIDATION", "true").lower() in {
    "1",
    "true",
    "yes",
}

# WorkSpaces ingestion process used for gallery imports
GALLERY_INGESTION_PROCESS: str = _env_str("GALLERY_INGESTION_PROCESS", "BYOL_REGULAR_WSP")

# Sets the local administrator password and enables OpenSSH for the management session
USER_DATA_TEMPLATE: str = """<powershell>
$password = ConvertTo-SecureString '{password}' -AsPlainText -Force
if (Get-LocalUser -Name '{username}' -ErrorAction SilentlyContinue) {{
    Set-LocalUser -Name '{username}' -Password $password
}} else {{
    New-LocalUser -Name '{username}' -Password $password -PasswordNeverExpires
    Add-LocalGroupMember -Group 'Administrators' -Member '{username}'
}}
Add-WindowsCapability -Online -Name OpenSSH.Server~~~~0.0.1.0
Set-Service -Name sshd -StartupType Automatic
Start-Service sshd
</powershell>
"""
