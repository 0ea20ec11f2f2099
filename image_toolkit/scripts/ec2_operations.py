#!/usr/bin/env python3
"""
EC2 operations for the image build workflow.

One-shot calls into the EC2 control plane: precondition checks, instance
creation, lifecycle status, start/stop, endpoint lookup and image capture.
Status accessors raise TransientProviderError for throttling and for
instances the API does not know about yet, so the poller retries them;
every other ClientError propagates with AWS's diagnostic intact.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from botocore.exceptions import ClientError

from image_toolkit import config
from image_toolkit.common.aws_client_factory import CloudSession
from image_toolkit.common.credential_utils import GuestCredentials
from image_toolkit.common.exceptions import (
    EndpointNotFoundError,
    InstanceAlreadyExistsError,
    NetworkNotFoundError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

GROUP_TAG_KEY = "Group"
OS_STATE_TAG_KEY = "OsState"

TRANSIENT_ERROR_CODES = frozenset(
    {
        "RequestLimitExceeded",
        "Throttling",
        "ThrottlingException",
        "InvalidInstanceID.NotFound",
        "InvalidAMIID.NotFound",
    }
)


class VMStatus(Enum):
    """Instance lifecycle status as the workflow sees it"""

    PROVISIONING = "Provisioning"
    READY_ROLE = "ReadyRole"
    STOPPING = "StoppingVM"
    STOPPED = "StoppedVM"
    TERMINATED = "Terminated"
    UNKNOWN = "Unknown"


INSTANCE_STATE_TO_STATUS = {
    "pending": VMStatus.PROVISIONING,
    "running": VMStatus.READY_ROLE,
    "stopping": VMStatus.STOPPING,
    "stopped": VMStatus.STOPPED,
    "shutting-down": VMStatus.TERMINATED,
    "terminated": VMStatus.TERMINATED,
}


class OsState(Enum):
    """Whether a captured image keeps machine identity"""

    SPECIALIZED = "Specialized"
    GENERALIZED = "Generalized"


@dataclass(frozen=True)
class Endpoint:
    """Network location of a service on the instance."""

    address: str
    port: int

    def __str__(self):
        return f"{self.address}:{self.port}"


def is_transient_client_error(error: BaseException) -> bool:
    """Return True for ClientErrors that mean "ask again later"."""
    if not isinstance(error, ClientError):
        return False
    return error.response.get("Error", {}).get("Code") in TRANSIENT_ERROR_CODES


def _raise_transient(error: ClientError):
    if is_transient_client_error(error):
        raise TransientProviderError(str(error)) from error
    raise error


def _tags(host_name: str, group: str, **extra: str) -> list[dict]:
    tags = [{"Key": "Name", "Value": host_name}, {"Key": GROUP_TAG_KEY, "Value": group}]
    tags.extend({"Key": key, "Value": value} for key, value in extra.items())
    return tags


def find_instance(session: CloudSession, host_name: str, group: str) -> Optional[dict]:
    """Return the non-terminated instance tagged with host_name and group, if any."""
    response = session.ec2.describe_instances(
        Filters=[
            {"Name": "tag:Name", "Values": [host_name]},
            {"Name": f"tag:{GROUP_TAG_KEY}", "Values": [group]},
            {
                "Name": "instance-state-name",
                "Values": ["pending", "running", "stopping", "stopped"],
            },
        ]
    )
    for reservation in response.get("Reservations", []):
        for instance in reservation.get("Instances", []):
            return instance
    return None


def ensure_instance_absent(session: CloudSession, host_name: str, group: str):
    """
    Precondition for create_instance.

    Raises:
        InstanceAlreadyExistsError: If the host already exists in the group
    """
    instance = find_instance(session, host_name, group)
    if instance is not None:
        raise InstanceAlreadyExistsError(host_name, group, instance["InstanceId"])


def _find_by_name_tag(describe, result_key: str, name: str, extra_filters=None):
    filters = [{"Name": "tag:Name", "Values": [name]}]
    if extra_filters:
        filters.extend(extra_filters)
    response = describe(Filters=filters)
    items = response.get(result_key, [])
    return items[0] if items else None


def resolve_subnet(session: CloudSession, vpc_name: str, subnet_name: str) -> str:
    """
    Resolve a subnet id from the Name tags of its VPC and itself.

    Raises:
        NetworkNotFoundError: If either name does not match
    """
    vpc = _find_by_name_tag(session.ec2.describe_vpcs, "Vpcs", vpc_name)
    if vpc is None:
        raise NetworkNotFoundError("VPC", vpc_name)
    subnet = _find_by_name_tag(
        session.ec2.describe_subnets,
        "Subnets",
        subnet_name,
        [{"Name": "vpc-id", "Values": [vpc["VpcId"]]}],
    )
    if subnet is None:
        raise NetworkNotFoundError("subnet", f"{subnet_name} in {vpc_name}")
    return subnet["SubnetId"]


def render_user_data(credentials: GuestCredentials) -> str:
    """Fill the first-boot script with the guest administrator account."""

    def _quote(value):
        return value.replace("'", "''")

    return config.USER_DATA_TEMPLATE.format(
        username=_quote(credentials.username),
        password=_quote(credentials.password),
    )


def create_instance(
    session: CloudSession,
    host_name: str,
    group: str,
    image_id: str,
    subnet_id: str,
    instance_type: str,
    credentials: GuestCredentials,
) -> str:  # pylint: disable=too-many-arguments,too-many-positional-arguments
    """Launch the build instance and return its id."""
    print(f"🚀 Launching {host_name} ({instance_type}) from {image_id} in {subnet_id}")
    response = session.ec2.run_instances(
        ImageId=image_id,
        InstanceType=instance_type,
        MinCount=1,
        MaxCount=1,
        SubnetId=subnet_id,
        UserData=render_user_data(credentials),
        TagSpecifications=[
            {"ResourceType": "instance", "Tags": _tags(host_name, group)},
            {"ResourceType": "volume", "Tags": _tags(host_name, group)},
        ],
    )
    instance_id = response["Instances"][0]["InstanceId"]
    print(f"   ✅ Instance {instance_id} created")
    return instance_id


def describe_instance(session: CloudSession, instance_id: str) -> dict:
    """
    Return the EC2 description of one instance.

    Raises:
        TransientProviderError: If EC2 does not list the instance yet or throttles
        ClientError: For any other API failure
    """
    try:
        response = session.ec2.describe_instances(InstanceIds=[instance_id])
    except ClientError as e:
        _raise_transient(e)
    reservations = response.get("Reservations", [])
    if not reservations or not reservations[0].get("Instances"):
        raise TransientProviderError(f"Instance {instance_id} not listed yet")
    return reservations[0]["Instances"][0]


def get_instance_status(session: CloudSession, instance_id: str) -> VMStatus:
    """Map the instance's EC2 state to a VMStatus."""
    instance = describe_instance(session, instance_id)
    state = instance.get("State", {}).get("Name", "")
    return INSTANCE_STATE_TO_STATUS.get(state, VMStatus.UNKNOWN)


def get_endpoint(session: CloudSession, instance_id: str, local_port: int) -> Endpoint:
    """
    Locate a service port on the instance.

    EC2 does not remap ports, so the endpoint is the instance's public
    address (private address inside a VPN-only subnet) and the same port.

    Raises:
        EndpointNotFoundError: If the instance has no address yet
    """
    instance = describe_instance(session, instance_id)
    address = instance.get("PublicIpAddress") or instance.get("PrivateIpAddress")
    if not address:
        raise EndpointNotFoundError(instance_id)
    return Endpoint(address=address, port=local_port)


def stop_instance(session: CloudSession, instance_id: str, keep_allocated: bool = True):
    """
    Request a shutdown.

    EC2 keeps an instance's volumes and network interface across a stop
    either way; keep_allocated=False additionally forces the stop so the
    host is released without waiting on the guest.
    """
    print(f"⏹️  Stopping instance {instance_id}")
    session.ec2.stop_instances(InstanceIds=[instance_id], Force=not keep_allocated)


def start_instance(session: CloudSession, instance_id: str):
    """Request a start."""
    print(f"▶️  Starting instance {instance_id}")
    session.ec2.start_instances(InstanceIds=[instance_id])


def save_image(
    session: CloudSession,
    instance_id: str,
    image_name: str,
    os_state: OsState,
    group: str,
) -> str:
    """
    Capture the instance's disks as an AMI and return the image id.

    The instance is expected to be stopped, so NoReboot keeps EC2 from
    touching it.
    """
    print(f"📸 Capturing {os_state.value.lower()} image {image_name} from {instance_id}")
    tags = _tags(image_name, group, **{OS_STATE_TAG_KEY: os_state.value})
    response = session.ec2.create_image(
        InstanceId=instance_id,
        Name=image_name,
        Description=f"{os_state.value} image captured from {instance_id}",
        NoReboot=True,
        TagSpecifications=[
            {"ResourceType": "image", "Tags": tags},
            {"ResourceType": "snapshot", "Tags": tags},
        ],
    )
    image_id = response["ImageId"]
    print(f"   ✅ Image {image_id} registered")
    return image_id


def get_image_state(session: CloudSession, image_id: str) -> dict:
    """Return the AMI description; transient while EC2 does not list it yet."""
    try:
        response = session.ec2.describe_images(ImageIds=[image_id])
    except ClientError as e:
        _raise_transient(e)
    images = response.get("Images", [])
    if not images:
        raise TransientProviderError(f"Image {image_id} not listed yet")
    return images[0]
