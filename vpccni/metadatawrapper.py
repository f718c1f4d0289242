"""Client for the parts of the instance metadata service the metrics helper uses."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from vpccni.ec2api import InstanceIdentityDocument, InstanceMetadataService

METADATA_RETRIES = 5


@runtime_checkable
class HttpClient(Protocol):
    """What the client needs from the underlying metadata transport."""

    def get_instance_identity_document(self) -> InstanceIdentityDocument: ...

    def region(self) -> str: ...


class EC2MetadataClient:
    """Reads the identity document and region from the metadata service."""

    def __init__(self, client: Optional[HttpClient] = None) -> None:
        self.client: HttpClient = (
            client if client is not None else InstanceMetadataService(max_retries=METADATA_RETRIES)
        )

    def get_instance_identity_document(self) -> InstanceIdentityDocument:
        """Return the instance identity document."""
        return self.client.get_instance_identity_document()

    def region(self) -> str:
        """Return the instance's region."""
        return self.client.region()