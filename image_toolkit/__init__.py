"""Build customized Windows images on EC2 and publish them to the WorkSpaces gallery."""
