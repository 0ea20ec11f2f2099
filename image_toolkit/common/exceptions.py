"""Custom exceptions for the image build workflow."""


class TransientProviderError(Exception):
    """Raised by status accessors when the resource is not ready to answer yet"""


class InstanceAlreadyExistsError(Exception):
    """Raised when the target host already exists in the cloud group"""

    def __init__(self, host_name, group, instance_id):
        super().__init__(
            f"Instance {host_name} already exists in group {group} ({instance_id}); "
            "refusing to overwrite"
        )
        self.instance_id = instance_id


class SourceImageNotFoundError(Exception):
    """Raised when the source image selector matches no available AMI"""

    def __init__(self, selector):
        super().__init__(f"No available source image found for {selector}")


class NetworkNotFoundError(Exception):
    """Raised when a VPC or subnet cannot be resolved by its Name tag"""

    def __init__(self, kind, name):
        super().__init__(f"No {kind} found with Name tag {name!r}")


class EndpointNotFoundError(Exception):
    """Raised when an instance has no address to connect to"""

    def __init__(self, instance_id):
        super().__init__(f"Instance {instance_id} has no public or private IP address")


class ImageCaptureFailedError(Exception):
    """Raised when AWS reports that AMI creation failed"""

    def __init__(self, image_id, reason=None):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Image {image_id} creation failed{detail}")


class ImageImportFailedError(Exception):
    """Raised when the gallery import job reports an error state"""

    def __init__(self, image_id, reason=None):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Gallery import of {image_id} failed{detail}")


class RemoteCommandError(Exception):
    """Raised when a command run in the guest exits with a non-zero status"""

    def __init__(self, command, exit_code, stderr=""):
        super().__init__(f"Remote command {command!r} exited with {exit_code}: {stderr.strip()}")
        self.exit_code = exit_code


class PollTimeoutError(Exception):
    """Raised when a bounded wait ends before its condition holds"""

    def __init__(self, description, attempts, last_status):
        super().__init__(
            f"Timed out waiting for {description} after {attempts} attempt(s); "
            f"last status: {last_status}"
        )
        self.attempts = attempts
        self.last_status = last_status


class WorkflowStateError(Exception):
    """Raised when a workflow phase is invoked out of order"""
