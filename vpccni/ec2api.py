"""Interfaces to the EC2 control plane and the instance metadata service."""

from __future__ import annotations

import json
import posixpath
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable

DEFAULT_ENDPOINT = "http://169.254.169.254"
METADATA_ERROR = "EC2MetadataError"
SERIALIZATION_ERROR = "SerializationError"


class AWSError(Exception):
    """An error reported by an AWS API, carrying the service's error code."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message


@runtime_checkable
class EC2(Protocol):
    """The EC2 calls used to manage ENIs and their addresses.

    Requests and responses are mappings shaped like the EC2 API, with
    the API's own field names (``NetworkInterfaceId``, ``Groups`` ...).
    Failures are raised, normally as ``AWSError``.
    """

    def create_network_interface(self, request: Mapping[str, Any]) -> dict: ...

    def describe_instances(self, request: Mapping[str, Any]) -> dict: ...

    def attach_network_interface(self, request: Mapping[str, Any]) -> dict: ...

    def delete_network_interface(self, request: Mapping[str, Any]) -> dict: ...

    def detach_network_interface(self, request: Mapping[str, Any]) -> dict: ...

    def assign_private_ip_addresses(self, request: Mapping[str, Any]) -> dict: ...

    def unassign_private_ip_addresses(self, request: Mapping[str, Any]) -> dict: ...

    def describe_network_interfaces(self, request: Mapping[str, Any]) -> dict: ...

    def modify_network_interface_attribute(self, request: Mapping[str, Any]) -> dict: ...

    def create_tags(self, request: Mapping[str, Any]) -> dict: ...

    def describe_tags(self, request: Mapping[str, Any]) -> dict: ...


@runtime_checkable
class EC2Metadata(Protocol):
    """Read access to the instance metadata service."""

    def get_metadata(self, path: str) -> str: ...

    def region(self) -> str: ...


_DOCUMENT_FIELDS = {
    "privateIp": "private_ip",
    "availabilityZone": "availability_zone",
    "version": "version",
    "region": "region",
    "accountId": "account_id",
    "instanceId": "instance_id",
    "billingProducts": "billing_products",
    "imageId": "image_id",
    "instanceType": "instance_type",
    "architecture": "architecture",
    "kernelId": "kernel_id",
    "ramdiskId": "ramdisk_id",
}


@dataclass
class InstanceIdentityDocument:
    """The instance identity document published by the metadata service."""

    private_ip: str = ""
    availability_zone: str = ""
    version: str = ""
    region: str = ""
    account_id: str = ""
    instance_id: str = ""
    billing_products: list[str] = field(default_factory=list)
    image_id: str = ""
    instance_type: str = ""
    pending_time: Optional[datetime] = None
    architecture: str = ""
    kernel_id: str = ""
    ramdisk_id: str = ""

    @classmethod
    def from_json(cls, text: str) -> "InstanceIdentityDocument":
        """Parse the JSON form of the document."""
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise AWSError(SERIALIZATION_ERROR, f"failed to decode instance identity document: {exc}") from exc
        if not isinstance(data, dict):
            raise AWSError(SERIALIZATION_ERROR, "instance identity document is not an object")

        values: dict[str, Any] = {
            attr: data[key] for key, attr in _DOCUMENT_FIELDS.items() if data.get(key) is not None
        }
        values["billing_products"] = list(values.get("billing_products") or [])
        pending = data.get("pendingTime")
        if pending:
            try:
                values["pending_time"] = datetime.fromisoformat(str(pending).replace("Z", "+00:00"))
            except ValueError as exc:
                raise AWSError(SERIALIZATION_ERROR, f"invalid pendingTime {pending!r}") from exc
        return cls(**values)


class InstanceMetadataService:
    """HTTP client of the instance metadata service, retrying failed requests."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        max_retries: int = 10,
        timeout: float = 5.0,
        retry_delay: float = 0.1,
        fetch: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._fetch = fetch or self._urlopen

    def _urlopen(self, url: str) -> str:
        with urllib.request.urlopen(url, timeout=self.timeout) as response:
            return response.read().decode("utf-8")

    def _request(self, path: str) -> str:
        url = self.endpoint + posixpath.normpath(path)
        attempts = self.max_retries + 1
        last_error: Optional[BaseException] = None
        for attempt in range(attempts):
            try:
                return self._fetch(url)
            except urllib.error.HTTPError as exc:
                if exc.code < 500 and exc.code != 429:
                    raise AWSError(METADATA_ERROR, f"failed to make EC2Metadata request: {exc}") from exc
                last_error = exc
            except OSError as exc:
                last_error = exc
            if attempt + 1 < attempts and self.retry_delay > 0:
                time.sleep(self.retry_delay * (2**attempt))
        raise AWSError(METADATA_ERROR, f"failed to make EC2Metadata request: {last_error}") from last_error

    def get_metadata(self, path: str) -> str:
        """Return the metadata value stored under ``path``."""
        return self._request("/latest/meta-data/" + path)

    def region(self) -> str:
        """Return the region the instance runs in."""
        zone = self.get_metadata("placement/availability-zone")
        if not zone:
            raise AWSError(METADATA_ERROR, "received an empty availability zone")
        return zone[:-1]

    def get_instance_identity_document(self) -> InstanceIdentityDocument:
        """Fetch and parse the instance identity document."""
        return InstanceIdentityDocument.from_json(
            self._request("/latest/dynamic/instance-identity/document")
        )