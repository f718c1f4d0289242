"""Creating, attaching, freeing ENIs and managing their secondary IPv4 addresses."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Optional

from vpccni.awsmetrics import api_error_inc, record_latency, utils_error_inc
from vpccni.ec2api import EC2, AWSError
from vpccni.instance_metadata import InstanceMetadata
from vpccni.limits import INSTANCE_ENIS_AVAILABLE, INSTANCE_IPS_AVAILABLE

log = logging.getLogger(__name__)

MAX_ENI_DELETE_RETRIES = 20
ENI_DESCRIPTION_PREFIX = "aws-K8S-"
# a free device number is searched between 0 and MAX_ENIS
MAX_ENIS = 128
CLUSTER_NAME_ENV_VAR = "CLUSTER_NAME"
ENI_NODE_TAG_KEY = "node.k8s.amazonaws.com/instance_id"
ENI_CLUSTER_TAG_KEY = "cluster.k8s.amazonaws.com/name"
RETRY_DELETE_ENI_INTERVAL = 5.0

UNKNOWN_INSTANCE_TYPE = "vpc ip resource(eni ip limit): unknown instance type"


class ENINotFoundError(LookupError):
    """The ENI does not exist."""

    def __init__(self, message: str = "ENI is not found") -> None:
        super().__init__(message)


class UnknownInstanceTypeError(LookupError):
    """The instance type has no known ENI or IP limits."""

    def __init__(self, message: str = UNKNOWN_INSTANCE_TYPE) -> None:
        super().__init__(message)


def _error_code(err: BaseException) -> Optional[str]:
    return err.code if isinstance(err, AWSError) else None


@dataclass
class EC2InstanceMetadataCache(InstanceMetadata):
    """Instance facts plus the EC2 calls that manage the instance's ENIs.

    Not thread-safe.
    """

    ec2_svc: Optional[EC2] = None
    retry_interval: float = RETRY_DELETE_ENI_INTERVAL

    def _ec2(self) -> EC2:
        if self.ec2_svc is None:
            raise RuntimeError("no EC2 client configured")
        return self.ec2_svc

    def _call(self, api: str, method: str, request: dict) -> dict:
        """Call an EC2 method, recording latency and counting API errors."""
        start = time.monotonic()
        try:
            result = getattr(self._ec2(), method)(request)
        except Exception as exc:
            record_latency(api, True, start)
            api_error_inc(api, exc)
            raise
        record_latency(api, False, start)
        return result or {}

    def _sleep(self) -> None:
        if self.retry_interval > 0:
            time.sleep(self.retry_interval)

    def get_free_device_number(self) -> int:
        """Return the lowest device index not used by an attached ENI."""
        request = {"InstanceIds": [self.instance_id]}
        try:
            result = self._call("DescribeInstances", "describe_instances", request)
        except Exception as exc:
            log.error("Unable to retrieve instance data from EC2 control plane: %s", exc)
            raise RuntimeError(
                "find a free device number for ENI: not able to retrieve instance data "
                f"from EC2 control plane: {exc}"
            ) from exc

        reservations = result.get("Reservations") or []
        if len(reservations) != 1:
            raise LookupError(f"awsGetFreeDeviceNumber: invalid instance id {self.instance_id}")

        instance = reservations[0]["Instances"][0]
        used: set[int] = set()
        for eni in instance.get("NetworkInterfaces") or []:
            index = int(eni["Attachment"]["DeviceIndex"])
            if index >= MAX_ENIS:
                log.warning(
                    "The Device Index %d of the attached ENI %s > instance max slot %d",
                    index,
                    eni.get("NetworkInterfaceId", ""),
                    MAX_ENIS,
                )
            else:
                log.debug("Discovered device number is used: %d", index)
                used.add(index)

        free = next((i for i in range(MAX_ENIS) if i not in used), None)
        if free is None:
            raise RuntimeError("awsGetFreeDeviceNumber: no available device number")
        log.debug("Found a free device number: %d", free)
        return free

    def alloc_eni(self, use_custom_cfg: bool, security_groups: Optional[list[str]], subnet: str) -> str:
        """Create an ENI, tag it, attach it to the instance and return its id."""
        try:
            eni_id = self._create_eni(use_custom_cfg, security_groups, subnet)
        except Exception as exc:
            raise RuntimeError(f"AllocENI: failed to create ENI: {exc}") from exc

        self._tag_eni(eni_id)

        try:
            attachment_id = self._attach_eni(eni_id)
        except Exception as exc:
            try:
                self._delete_eni(eni_id)
            except Exception as cleanup_exc:
                log.error("Failed to clean up ENI %s: %s", eni_id, cleanup_exc)
            raise RuntimeError(f"AllocENI: error attaching ENI: {exc}") from exc

        # delete the ENI together with the instance
        request = {
            "Attachment": {"AttachmentId": attachment_id, "DeleteOnTermination": True},
            "NetworkInterfaceId": eni_id,
        }
        try:
            self._call("ModifyNetworkInterfaceAttribute", "modify_network_interface_attribute", request)
        except Exception as exc:
            try:
                self._delete_eni(eni_id)
            except Exception as cleanup_exc:
                utils_error_inc("ENICleanupUponModifyNetworkErr", cleanup_exc)
            raise RuntimeError(f"AllocENI: unable to change the ENI's attribute: {exc}") from exc

        log.info("Successfully created and attached a new ENI %s to instance", eni_id)
        return eni_id

    def _attach_eni(self, eni_id: str) -> str:
        try:
            device = self.get_free_device_number()
        except Exception as exc:
            raise RuntimeError(f"attachENI: failed to get a free device number: {exc}") from exc

        request = {
            "DeviceIndex": device,
            "InstanceId": self.instance_id,
            "NetworkInterfaceId": eni_id,
        }
        try:
            result = self._call("AttachNetworkInterface", "attach_network_interface", request)
        except Exception as exc:
            if _error_code(exc) == "AttachmentLimitExceeded":
                log.info("Exceeded instance ENI attachment limit: %d", self.current_enis)
            log.error("Failed to attach ENI %s: %s", eni_id, exc)
            raise RuntimeError(f"attachENI: failed to attach ENI: {exc}") from exc
        return result.get("AttachmentId") or ""

    def _create_eni(self, use_custom_cfg: bool, security_groups: Optional[list[str]], subnet: str) -> str:
        if use_custom_cfg:
            log.info("createENI: use custom network config, %s, %s", security_groups, subnet)
            groups, subnet_id = list(security_groups or []), subnet
        else:
            log.info(
                "createENI: use primary interface's config, %s, %s", self.security_groups, self.subnet_id
            )
            groups, subnet_id = list(self.security_groups), self.subnet_id
        request = {
            "Description": ENI_DESCRIPTION_PREFIX + self.instance_id,
            "Groups": groups,
            "SubnetId": subnet_id,
        }
        try:
            result = self._call("CreateNetworkInterface", "create_network_interface", request)
        except Exception as exc:
            log.error("Failed to CreateNetworkInterface %s", exc)
            raise RuntimeError(f"failed to create network interface: {exc}") from exc
        eni_id = (result.get("NetworkInterface") or {}).get("NetworkInterfaceId") or ""
        log.info("Created a new ENI: %s", eni_id)
        return eni_id

    def _tag_eni(self, eni_id: str) -> None:
        tags = [{"Key": ENI_NODE_TAG_KEY, "Value": self.instance_id}]
        cluster_name = os.environ.get(CLUSTER_NAME_ENV_VAR, "")
        if cluster_name:
            tags.append({"Key": ENI_CLUSTER_TAG_KEY, "Value": cluster_name})
        for tag in tags:
            log.debug("Trying to tag newly created ENI: key=%s, value=%s", tag["Key"], tag["Value"])

        try:
            self._call("CreateTags", "create_tags", {"Resources": [eni_id], "Tags": tags})
        except Exception as exc:
            log.warning("Failed to tag the newly created ENI %s: %s", eni_id, exc)
        else:
            log.debug("Successfully tagged ENI: %s", eni_id)

    def free_eni(self, eni_id: str) -> None:
        """Detach and delete an ENI; an ENI that no longer exists counts as freed."""
        log.info("Trying to free ENI: %s", eni_id)
        try:
            _, attachment_id = self.describe_eni(eni_id)
        except ENINotFoundError:
            log.info("ENI %s not found. It seems to be already freed", eni_id)
            return
        except Exception as exc:
            utils_error_inc("FreeENIDescribeENIFailed", exc)
            log.error("Failed to retrieve ENI %s attachment id: %s", eni_id, exc)
            raise RuntimeError(f"FreeENI: failed to retrieve ENI's attachment id: {exc}") from exc
        log.debug("Found ENI %s attachment id: %s", eni_id, attachment_id)

        request = {"AttachmentId": attachment_id}
        for attempt in range(MAX_ENI_DELETE_RETRIES + 1):
            try:
                self._call("DetachNetworkInterface", "detach_network_interface", request)
            except Exception as exc:
                log.error("Failed to detach ENI %s %s", eni_id, exc)
                if attempt == MAX_ENI_DELETE_RETRIES:
                    raise RuntimeError("unable to detach ENI from EC2 instance, giving up") from exc
                log.debug(
                    "Not able to detach ENI yet (attempt %d/%d): %s", attempt, MAX_ENI_DELETE_RETRIES, exc
                )
                self._sleep()
            else:
                log.info("Successfully detached ENI: %s", eni_id)
                break

        try:
            self._delete_eni(eni_id)
        except Exception as exc:
            utils_error_inc("FreeENIDeleteErr", exc)
            raise RuntimeError(f"FreeENI: failed to free ENI: {eni_id}: {exc}") from exc
        log.info("Successfully freed ENI: %s", eni_id)

    def _delete_eni(self, eni_id: str) -> None:
        log.debug("Trying to delete ENI: %s", eni_id)
        request = {"NetworkInterfaceId": eni_id}
        last_error: Optional[BaseException] = None
        for attempt in range(1, MAX_ENI_DELETE_RETRIES + 1):
            try:
                self._call("DeleteNetworkInterface", "delete_network_interface", request)
            except Exception as exc:
                last_error = exc
                log.debug(
                    "Not able to delete ENI yet (attempt %d/%d): %s", attempt, MAX_ENI_DELETE_RETRIES, exc
                )
                if attempt < MAX_ENI_DELETE_RETRIES:
                    self._sleep()
            else:
                log.info("Successfully deleted ENI: %s", eni_id)
                return
        raise RuntimeError("unable to delete ENI, giving up") from last_error

    def describe_eni(self, eni_id: str) -> tuple[list[dict[str, Any]], Optional[str]]:
        """Return the ENI's private IPv4 address records and its attachment id.

        Raises ENINotFoundError when EC2 does not know the ENI.
        """
        request = {"NetworkInterfaceIds": [eni_id]}
        start = time.monotonic()
        try:
            result = self._ec2().describe_network_interfaces(request) or {}
        except Exception as exc:
            record_latency("DescribeNetworkInterfaces", True, start)
            if _error_code(exc) == "InvalidNetworkInterfaceID.NotFound":
                raise ENINotFoundError() from exc
            api_error_inc("DescribeNetworkInterfaces", exc)
            log.error("Failed to get ENI %s information from EC2 control plane %s", eni_id, exc)
            raise RuntimeError(f"failed to describe network interface: {exc}") from exc
        record_latency("DescribeNetworkInterfaces", False, start)

        interface = result["NetworkInterfaces"][0]
        addresses = list(interface.get("PrivateIpAddresses") or [])
        attachment_id = (interface.get("Attachment") or {}).get("AttachmentId")
        return addresses, attachment_id

    def alloc_ip_address(self, eni_id: str) -> None:
        """Assign one secondary private IPv4 address to the ENI."""
        log.info("Trying to allocate an IP address on ENI: %s", eni_id)
        request = {"NetworkInterfaceId": eni_id, "SecondaryPrivateIpAddressCount": 1}
        try:
            result = self._call("AssignPrivateIpAddresses", "assign_private_ip_addresses", request)
        except Exception as exc:
            log.error("Failed to allocate a private IP address %s", exc)
            raise RuntimeError(f"failed to assign private IP addresses: {exc}") from exc
        log.info("Successfully allocated IP address %s on ENI %s", result, eni_id)

    def get_eni_ip_limit(self) -> int:
        """Return how many secondary IPv4 addresses an ENI of this instance can hold."""
        try:
            limit = INSTANCE_IPS_AVAILABLE[self.instance_type]
        except KeyError:
            log.error("Failed to get ENI IP limit due to unknown instance type %s", self.instance_type)
            raise UnknownInstanceTypeError() from None
        return limit - 1

    def get_eni_limit(self) -> int:
        """Return how many ENIs can be attached to this instance."""
        try:
            return INSTANCE_ENIS_AVAILABLE[self.instance_type]
        except KeyError:
            raise UnknownInstanceTypeError(f"{UNKNOWN_INSTANCE_TYPE}: {self.instance_type}") from None

    def alloc_ip_addresses(self, eni_id: str, num_ips: int) -> None:
        """Assign up to ``num_ips`` secondary addresses, capped by the ENI's limit.

        Reaching the ENI's address limit on the EC2 side is not an error.
        """
        try:
            limit = self.get_eni_ip_limit()
        except UnknownInstanceTypeError as exc:
            utils_error_inc("UnknownInstanceType", exc)
            raise

        need = min(num_ips, limit)
        if need < 1:
            return

        log.info("Trying to allocate %d IP addresses on ENI %s", need, eni_id)
        request = {"NetworkInterfaceId": eni_id, "SecondaryPrivateIpAddressCount": need}
        try:
            self._call("AssignPrivateIpAddresses", "assign_private_ip_addresses", request)
        except Exception as exc:
            if _error_code(exc) == "PrivateIpAddressLimitExceeded":
                return
            log.error("Failed to allocate a private IP address %s", exc)
            raise RuntimeError(
                f"allocate IP address: failed to allocate a private IP address: {exc}"
            ) from exc

    def dealloc_ip_addresses(self, eni_id: str, ips: list[str]) -> None:
        """Unassign the given private IPv4 addresses from the ENI."""
        log.info("Trying to unassign the following IPs %s from ENI %s", ips, eni_id)
        request = {"NetworkInterfaceId": eni_id, "PrivateIpAddresses": list(ips)}
        try:
            self._call(
                "UnassignPrivateIpAddressesWithContext", "unassign_private_ip_addresses", request
            )
        except Exception as exc:
            log.error("Failed to deallocate a private IP address %s", exc)
            raise RuntimeError(
                f"deallocate IP addresses: failed to deallocate private IP addresses: {ips}: {exc}"
            ) from exc