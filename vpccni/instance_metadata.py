"""Instance and ENI facts read from the instance metadata service."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Optional

from vpccni.awsmetrics import api_error_inc, record_latency
from vpccni.ec2api import EC2Metadata

log = logging.getLogger(__name__)

METADATA_MAC_PATH = "network/interfaces/macs/"
METADATA_AZ = "placement/availability-zone/"
METADATA_LOCAL_IP = "local-ipv4"
METADATA_INSTANCE_ID = "instance-id"
METADATA_INSTANCE_TYPE = "instance-type"
METADATA_MAC = "mac"
METADATA_SGS = "/security-group-ids/"
METADATA_SUBNET_ID = "/subnet-id/"
METADATA_VPC_CIDRS = "/vpc-ipv4-cidr-blocks/"
METADATA_VPC_CIDR = "/vpc-ipv4-cidr-block/"
METADATA_DEVICE_NUM = "/device-number/"
METADATA_INTERFACE = "/interface-id/"
METADATA_SUBNET_CIDR = "/subnet-ipv4-cidr-block"
METADATA_IPV4S = "/local-ipv4s"
METADATA_OWNER_ID = "/owner-id"

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


def _parse_device_number(text: str) -> int:
    """Parse an int32 written in decimal, 0x-hex or 0-prefixed octal."""
    sign = 1
    body = text
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body[:2] in ("0x", "0X"):
        digits, base, pattern = body[2:], 16, r"[0-9a-fA-F]+"
    elif len(body) > 1 and body[0] == "0":
        digits, base, pattern = body[1:], 8, r"[0-7]+"
    else:
        digits, base, pattern = body, 10, r"[0-9]+"
    if not re.fullmatch(pattern, digits):
        raise ValueError(f"invalid syntax: {text!r}")
    value = sign * int(digits, base)
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"value out of range: {text!r}")
    return value


@dataclass
class ENIMetadata:
    """An attached ENI as described by the metadata service."""

    eni_id: str
    mac: str
    device_number: int  # 0 is the primary interface
    subnet_ipv4_cidr: str
    local_ipv4s: list[str] = field(default_factory=list)


@dataclass
class InstanceMetadata:
    """Facts about this instance and its primary ENI, cached from the metadata service."""

    ec2_metadata: Optional[EC2Metadata] = None
    security_groups: list[str] = field(default_factory=list)
    subnet_id: str = ""
    cidr_block: str = ""
    local_ipv4: str = ""
    instance_id: str = ""
    instance_type: str = ""
    vpc_ipv4_cidr: str = ""
    vpc_ipv4_cidrs: list[str] = field(default_factory=list)
    primary_eni: str = ""
    primary_eni_mac: str = ""
    availability_zone: str = ""
    region: str = ""
    account_id: str = ""
    current_enis: int = 0

    def _metadata(self, path: str, context: str, timed: bool = False) -> str:
        if self.ec2_metadata is None:
            raise RuntimeError(f"{context}: no metadata service configured")
        start = time.monotonic()
        try:
            value = self.ec2_metadata.get_metadata(path)
        except Exception as exc:
            if timed:
                record_latency("GetMetadata", True, start)
            api_error_inc("GetMetadata", exc)
            log.error("%s: %s", context, exc)
            raise RuntimeError(f"{context}: {exc}") from exc
        if timed:
            record_latency("GetMetadata", False, start)
        return value

    def init_with_ec2_metadata(self) -> None:
        """Fill in the instance facts from the metadata service.

        Raises RuntimeError naming the first value that could not be read.
        """
        self.availability_zone = self._metadata(
            METADATA_AZ, "get instance metadata: failed to retrieve availability zone data"
        )
        log.debug("Found availability zone: %s", self.availability_zone)

        self.local_ipv4 = self._metadata(
            METADATA_LOCAL_IP,
            "get instance metadata: failed to retrieve the instance primary ip address data",
        )
        log.debug("Discovered the instance primary ip address: %s", self.local_ipv4)

        self.instance_id = self._metadata(
            METADATA_INSTANCE_ID, "get instance metadata: failed to retrieve instance-id"
        )
        log.debug("Found instance-id: %s", self.instance_id)

        self.instance_type = self._metadata(
            METADATA_INSTANCE_TYPE, "get instance metadata: failed to retrieve instance-type"
        )
        log.debug("Found instance-type: %s", self.instance_type)

        mac = self._metadata(
            METADATA_MAC, "get instance metadata: failed to retrieve primary interface MAC address"
        )
        self.primary_eni_mac = mac
        log.debug("Found primary interface's MAC address: %s", mac)

        try:
            self.set_primary_eni()
        except Exception as exc:
            raise RuntimeError(f"get instance metadata: failed to find primary ENI: {exc}") from exc

        sg_ids = self._metadata(
            METADATA_MAC_PATH + mac + METADATA_SGS,
            "get instance metadata: failed to retrieve security-group-ids",
        )
        for sg_id in sg_ids.split():
            log.debug("Found security-group id: %s", sg_id)
            self.security_groups.append(sg_id)

        self.subnet_id = self._metadata(
            METADATA_MAC_PATH + mac + METADATA_SUBNET_ID,
            "get instance metadata: failed to retrieve subnet-ids",
        )
        log.debug("Found subnet-id: %s", self.subnet_id)

        self.vpc_ipv4_cidr = self._metadata(
            METADATA_MAC_PATH + mac + METADATA_VPC_CIDR,
            "get instance metadata: failed to retrieve vpc-ipv4-cidr-block data",
        )
        log.debug("Found vpc-ipv4-cidr-block: %s", self.vpc_ipv4_cidr)

        cidrs = self._metadata(
            METADATA_MAC_PATH + mac + METADATA_VPC_CIDRS,
            "get instance metadata: failed to retrieve vpc-ipv4-cidr-block data",
        )
        for cidr in cidrs.split():
            log.debug("Found VPC CIDR: %s", cidr)
            self.vpc_ipv4_cidrs.append(cidr)

    def set_primary_eni(self) -> None:
        """Find the ENI whose MAC is the primary MAC and remember its id.

        Does nothing when the primary ENI is already known. Raises
        LookupError when no attached ENI has the primary MAC.
        """
        if self.primary_eni:
            return

        macs = self._metadata(
            METADATA_MAC_PATH, "set primary ENI: failed to retrieve interfaces data"
        ).split()
        log.debug("Discovered %d interfaces.", len(macs))
        self.current_enis = len(macs)

        for eni_mac in macs:
            device = self._metadata(
                METADATA_MAC_PATH + eni_mac + METADATA_DEVICE_NUM,
                f"set primary ENI: failed to retrieve the device-number data of ENI {eni_mac}",
            )
            try:
                device_num = _parse_device_number(device)
            except ValueError as exc:
                raise ValueError(f"set primary ENI: invalid device {device}: {exc}") from exc
            log.debug("Found device-number: %d", device_num)

            if not self.account_id:
                self.account_id = self._metadata(
                    METADATA_MAC_PATH + eni_mac + METADATA_OWNER_ID,
                    "set primary ENI: failed to retrieve ownerID",
                )
                log.debug("Found account ID: %s", self.account_id)

            eni = self._metadata(
                METADATA_MAC_PATH + eni_mac + METADATA_INTERFACE,
                "set primary ENI: failed to retrieve interface-id",
            )
            log.debug("Found eni: %s", eni)
            if self.primary_eni_mac == eni_mac.split("/")[0]:
                self.primary_eni = eni
                log.debug("Found ENI %s is a primary ENI", eni)
                return
        raise LookupError("set primary ENI: primary ENI not found")

    def get_attached_enis(self) -> list[ENIMetadata]:
        """Return every ENI attached to the instance, in metadata order."""
        macs = self._metadata(
            METADATA_MAC_PATH, "get attached ENIs: failed to retrieve interfaces data"
        ).split()
        log.debug("Total number of interfaces found: %d", len(macs))
        self.current_enis = len(macs)

        enis = []
        for mac in macs:
            try:
                enis.append(self._get_eni_metadata(mac))
            except Exception as exc:
                raise RuntimeError(
                    f"get attached ENIs: failed to retrieve ENI metadata for ENI: {mac}: {exc}"
                ) from exc
        return enis

    def _get_eni_metadata(self, mac: str) -> ENIMetadata:
        eni_mac = mac.split("/")[0]
        log.debug("Found ENI mac address: %s", eni_mac)
        eni, device_num = self._get_eni_device_number(eni_mac)
        log.debug("Found ENI: %s, MAC %s, device %d", eni, eni_mac, device_num)
        local_ipv4s, cidr = self._get_ips_and_cidr(eni_mac)
        return ENIMetadata(
            eni_id=eni,
            mac=eni_mac,
            device_number=device_num,
            subnet_ipv4_cidr=cidr,
            local_ipv4s=local_ipv4s,
        )

    def _get_ips_and_cidr(self, eni_mac: str) -> tuple[list[str], str]:
        cidr = self._metadata(
            METADATA_MAC_PATH + eni_mac + METADATA_SUBNET_CIDR,
            f"failed to retrieve subnet-ipv4-cidr-block for ENI {eni_mac}",
            timed=True,
        )
        log.debug("Found CIDR %s for ENI %s", cidr, eni_mac)
        ipv4s = self._metadata(
            METADATA_MAC_PATH + eni_mac + METADATA_IPV4S,
            f"failed to retrieve ENI {eni_mac} local-ipv4s",
            timed=True,
        ).split()
        log.debug("Found IP addresses %s on ENI %s", ipv4s, eni_mac)
        return ipv4s, cidr

    def _get_eni_device_number(self, eni_mac: str) -> tuple[str, int]:
        device = self._metadata(
            METADATA_MAC_PATH + eni_mac + METADATA_DEVICE_NUM,
            f"failed to retrieve device-number for ENI {eni_mac}",
            timed=True,
        )
        try:
            device_num = _parse_device_number(device)
        except ValueError as exc:
            raise ValueError(f"invalid device {device} for ENI {eni_mac}: {exc}") from exc

        eni = self._metadata(
            METADATA_MAC_PATH + eni_mac + METADATA_INTERFACE,
            f"get attached ENIs: failed to retrieve interface-id for ENI {eni_mac}",
            timed=True,
        )
        if self.primary_eni == eni:
            log.debug("Using device number 0 for primary eni: %s", eni)
            return eni, 0
        # 0 is reserved for the primary ENI, so the others are shifted by one
        return eni, device_num + 1