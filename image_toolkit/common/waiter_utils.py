"""
Waiters for the image build workflow.

Each function here is one concrete PollRequest run through the
ConditionPoller with default delays and budgets from config. They return
the final observed value, raise PollTimeoutError when the budget runs out,
and re-raise the accessor's own error when it fails fatally.
"""

import socket
from typing import Optional

from image_toolkit import config
from image_toolkit.common.aws_client_factory import CloudSession
from image_toolkit.common.condition_poller import (
    ConditionPoller,
    PollRequest,
    require_satisfied,
)
from image_toolkit.common.exceptions import (
    ImageCaptureFailedError,
    ImageImportFailedError,
    TransientProviderError,
    WorkflowStateError,
)
from image_toolkit.scripts.ec2_operations import (
    Endpoint,
    VMStatus,
    get_image_state,
    get_instance_status,
)
from image_toolkit.scripts.gallery_import import (
    WORKSPACES_STATE_TO_STATUS,
    ImportStatus,
    describe_gallery_image,
)


def _run(request: PollRequest, poller: Optional[ConditionPoller]):
    poller = poller or ConditionPoller()
    return require_satisfied(poller.poll(request), request.description)


def probe_endpoint(endpoint: Endpoint, timeout=config.ENDPOINT_CONNECT_TIMEOUT_SECONDS):
    """
    Open and close a TCP connection to the endpoint.

    A completed handshake only shows that something listens on the port; it
    does not prove the service behind it is fully ready.

    Raises:
        TransientProviderError: If the connection is refused or times out
    """
    try:
        with socket.create_connection((endpoint.address, endpoint.port), timeout=timeout):
            return endpoint
    except OSError as e:
        raise TransientProviderError(f"{endpoint} not accepting connections: {e}") from e


def wait_for_endpoint_reachable(
    endpoint: Endpoint,
    delay=config.ENDPOINT_POLL_INTERVAL_SECONDS,
    max_duration=config.ENDPOINT_MAX_WAIT_SECONDS,
    poller: Optional[ConditionPoller] = None,
) -> Endpoint:
    """Wait until the endpoint accepts TCP connections."""
    print(f"⏳ Waiting for {endpoint} to accept connections...")
    result = _run(
        PollRequest(
            accessor=lambda: probe_endpoint(endpoint),
            predicate=lambda _endpoint: True,
            interval=delay,
            max_attempts=None,
            max_duration=max_duration,
            description=f"endpoint {endpoint}",
        ),
        poller,
    )
    print(f"   ✅ {endpoint} is accepting connections")
    return result


def wait_for_instance_status(
    session: CloudSession,
    instance_id: str,
    target: VMStatus,
    delay=config.INSTANCE_POLL_INTERVAL_SECONDS,
    max_duration=config.INSTANCE_MAX_WAIT_SECONDS,
    poller: Optional[ConditionPoller] = None,
) -> VMStatus:  # pylint: disable=too-many-arguments,too-many-positional-arguments
    """
    Wait for an instance to reach the target status.

    Raises:
        WorkflowStateError: If the instance is terminated while waiting
        PollTimeoutError: If max_duration elapses first
    """

    def _status():
        status = get_instance_status(session, instance_id)
        if status is VMStatus.TERMINATED and target is not VMStatus.TERMINATED:
            raise WorkflowStateError(
                f"Instance {instance_id} terminated while waiting for {target.value}"
            )
        return status

    print(f"⏳ Waiting for {instance_id} to reach {target.value}...")
    result = _run(
        PollRequest(
            accessor=_status,
            predicate=lambda status: status is target,
            interval=delay,
            max_attempts=None,
            max_duration=max_duration,
            description=f"instance {instance_id} status {target.value}",
        ),
        poller,
    )
    print(f"   ✅ {instance_id} is {target.value}")
    return result


def wait_for_image_available(
    session: CloudSession,
    image_id: str,
    delay=config.IMAGE_POLL_INTERVAL_SECONDS,
    max_duration=config.IMAGE_MAX_WAIT_SECONDS,
    poller: Optional[ConditionPoller] = None,
) -> str:
    """
    Wait for a captured AMI to reach the available state.

    Raises:
        ImageCaptureFailedError: If EC2 reports the image as failed
    """

    def _state():
        image = get_image_state(session, image_id)
        state = image.get("State", "pending")
        if state in {"failed", "error", "invalid"}:
            raise ImageCaptureFailedError(image_id, image.get("StateReason", {}).get("Message"))
        return state

    print(f"⏳ Waiting for image {image_id} to become available...")
    result = _run(
        PollRequest(
            accessor=_state,
            predicate=lambda state: state == "available",
            interval=delay,
            max_attempts=None,
            max_duration=max_duration,
            description=f"image {image_id} available",
        ),
        poller,
    )
    print(f"   ✅ Image {image_id} is available")
    return result


def wait_for_import_ready(
    session: CloudSession,
    gallery_image_id: str,
    delay=config.IMPORT_POLL_INTERVAL_SECONDS,
    max_duration=config.IMPORT_MAX_WAIT_SECONDS,
    poller: Optional[ConditionPoller] = None,
) -> ImportStatus:
    """
    Wait for a gallery import job to finish.

    Raises:
        ImageImportFailedError: If the import reports an error state
    """

    def _status():
        image = describe_gallery_image(session, gallery_image_id)
        status = WORKSPACES_STATE_TO_STATUS.get(image.get("State"), ImportStatus.UPLOADING)
        if status is ImportStatus.FAILED:
            raise ImageImportFailedError(gallery_image_id, image.get("ErrorMessage"))
        return status

    print(f"⏳ Waiting for gallery import {gallery_image_id} (checking every {delay}s)...")
    result = _run(
        PollRequest(
            accessor=_status,
            predicate=lambda status: status is ImportStatus.READY,
            interval=delay,
            max_attempts=None,
            max_duration=max_duration,
            description=f"gallery import {gallery_image_id}",
        ),
        poller,
    )
    print(f"   ✅ Gallery image {gallery_image_id} is ready")
    return result
