"""
Source image selection.

A build starts either from the newest image of a public family (for
example ``Windows_Server-2022-English-Full-Base``) or from one of the
account's own images by exact name. The two cases are separate types so
a selector can never carry both.
"""

from dataclasses import dataclass
from typing import Union

from image_toolkit.common.aws_client_factory import CloudSession
from image_toolkit.common.exceptions import SourceImageNotFoundError

FAMILY_IMAGE_OWNER = "amazon"


@dataclass(frozen=True)
class ImageFamily:
    """Newest available image whose name starts with the family name."""

    family: str

    def __str__(self):
        return f"image family {self.family!r}"


@dataclass(frozen=True)
class CustomImage:
    """An image owned by this account, matched by exact name."""

    image_name: str

    def __str__(self):
        return f"custom image {self.image_name!r}"


SourceImageSelector = Union[ImageFamily, CustomImage]


def selector_from_args(image_family=None, custom_image=None) -> SourceImageSelector:
    """
    Build a selector from the two mutually exclusive CLI options.

    Raises:
        ValueError: Unless exactly one option is given
    """
    if bool(image_family) == bool(custom_image):
        raise ValueError("Exactly one of image_family or custom_image is required")
    if image_family:
        return ImageFamily(image_family)
    return CustomImage(custom_image)


def _newest(images):
    return max(images, key=lambda image: image.get("CreationDate", ""))


def resolve_source_image(session: CloudSession, selector: SourceImageSelector) -> str:
    """
    Return the AMI id a selector points at.

    Raises:
        SourceImageNotFoundError: If nothing available matches
    """
    available = {"Name": "state", "Values": ["available"]}
    if isinstance(selector, ImageFamily):
        response = session.ec2.describe_images(
            Owners=[FAMILY_IMAGE_OWNER],
            Filters=[{"Name": "name", "Values": [f"{selector.family}*"]}, available],
        )
    else:
        response = session.ec2.describe_images(
            Owners=["self"],
            Filters=[{"Name": "name", "Values": [selector.image_name]}, available],
        )
    images = response.get("Images", [])
    if not images:
        raise SourceImageNotFoundError(selector)
    image = _newest(images)
    print(f"🔍 Using {selector}: {image['ImageId']} ({image.get('Name', 'unnamed')})")
    return image["ImageId"]
