"""Gallery import: hands a generalized AMI to the WorkSpaces image catalog."""

from enum import Enum

from botocore.exceptions import ClientError

from image_toolkit import config
from image_toolkit.common.aws_client_factory import CloudSession
from image_toolkit.common.exceptions import TransientProviderError
from image_toolkit.scripts.ec2_operations import is_transient_client_error


class ImportStatus(Enum):
    """Gallery import job status"""

    UPLOADING = "Uploading"
    READY = "Ready"
    FAILED = "Failed"


WORKSPACES_STATE_TO_STATUS = {
    "PENDING": ImportStatus.UPLOADING,
    "AVAILABLE": ImportStatus.READY,
    "ERROR": ImportStatus.FAILED,
}


def import_image(
    session: CloudSession,
    image_name: str,
    location: str,
    source_image_id: str,
    ingestion_process: str = config.GALLERY_INGESTION_PROCESS,
) -> str:
    """
    Start importing source_image_id into the gallery at location.

    The session's WorkSpaces client must already target location.

    Returns:
        str: The gallery image id to poll with get_import_status
    """
    print(f"📦 Importing {source_image_id} into the gallery in {location} as {image_name}")
    response = session.workspaces.import_workspace_image(
        Ec2ImageId=source_image_id,
        IngestionProcess=ingestion_process,
        ImageName=image_name,
        ImageDescription=f"Generalized image {source_image_id} imported from {session.region}",
    )
    image_id = response["ImageId"]
    print(f"   ✅ Import started: {image_id}")
    return image_id


def describe_gallery_image(session: CloudSession, image_id: str) -> dict:
    """Return the WorkSpaces description of a gallery image."""
    try:
        response = session.workspaces.describe_workspace_images(ImageIds=[image_id])
    except ClientError as e:
        if is_transient_client_error(e):
            raise TransientProviderError(str(e)) from e
        raise
    images = response.get("Images", [])
    if not images:
        raise TransientProviderError(f"Gallery image {image_id} not listed yet")
    return images[0]


def get_import_status(session: CloudSession, image_id: str) -> ImportStatus:
    """Map the gallery image's state to an ImportStatus."""
    image = describe_gallery_image(session, image_id)
    return WORKSPACES_STATE_TO_STATUS.get(image.get("State"), ImportStatus.UPLOADING)
