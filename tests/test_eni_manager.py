import pytest

from vpccni.awsmetrics import AWS_API_ERR
from vpccni.ec2api import AWSError
from vpccni.eni_manager import (
    ENI_CLUSTER_TAG_KEY,
    ENI_NODE_TAG_KEY,
    MAX_ENI_DELETE_RETRIES,
    MAX_ENIS,
    EC2InstanceMetadataCache,
    ENINotFoundError,
    UnknownInstanceTypeError,
)

INSTANCE_ID = "i-00000000000000001"
ENI_ID = "eni-5731da78"
ENI_ATTACH_ID = "eni-attach-beb21856"
ACCOUNT_ID = "000000000000"


class FakeEC2:
    def __init__(self):
        self.responses = {}
        self.calls = []

    def queue(self, name, *results):
        self.responses.setdefault(name, []).extend(results)

    def names(self):
        return [name for name, _ in self.calls]

    def requests(self, name):
        return [req for n, req in self.calls if n == name]

    def _call(self, name, request):
        self.calls.append((name, request))
        queued = self.responses.get(name)
        result = queued.pop(0) if queued else {}
        if isinstance(result, BaseException):
            raise result
        return result

    def create_network_interface(self, request):
        return self._call("create_network_interface", request)

    def describe_instances(self, request):
        return self._call("describe_instances", request)

    def attach_network_interface(self, request):
        return self._call("attach_network_interface", request)

    def delete_network_interface(self, request):
        return self._call("delete_network_interface", request)

    def detach_network_interface(self, request):
        return self._call("detach_network_interface", request)

    def assign_private_ip_addresses(self, request):
        return self._call("assign_private_ip_addresses", request)

    def unassign_private_ip_addresses(self, request):
        return self._call("unassign_private_ip_addresses", request)

    def describe_network_interfaces(self, request):
        return self._call("describe_network_interfaces", request)

    def modify_network_interface_attribute(self, request):
        return self._call("modify_network_interface_attribute", request)

    def create_tags(self, request):
        return self._call("create_tags", request)

    def describe_tags(self, request):
        return self._call("describe_tags", request)


def instances_with_devices(devices):
    enis = [{"Attachment": {"DeviceIndex": d}, "OwnerId": ACCOUNT_ID} for d in devices]
    return {"Reservations": [{"Instances": [{"NetworkInterfaces": enis}]}]}


def describe_result():
    return {"NetworkInterfaces": [{"Attachment": {"AttachmentId": ENI_ATTACH_ID}}]}


@pytest.fixture
def ec2():
    return FakeEC2()


def make_cache(ec2, **kwargs):
    return EC2InstanceMetadataCache(ec2_svc=ec2, retry_interval=0, instance_id=INSTANCE_ID, **kwargs)


def test_free_device_number_on_error(ec2):
    ec2.queue("describe_instances", RuntimeError("Error on DescribeInstances"))
    with pytest.raises(RuntimeError):
        make_cache(ec2).get_free_device_number()


def test_free_device_number_no_device(ec2):
    ec2.queue("describe_instances", instances_with_devices(range(MAX_ENIS)))
    with pytest.raises(RuntimeError, match="no available device number"):
        make_cache(ec2).get_free_device_number()


def test_free_device_number_finds_gap(ec2):
    ec2.queue("describe_instances", instances_with_devices([0, 3]))
    assert make_cache(ec2).get_free_device_number() == 1
    assert ec2.requests("describe_instances") == [{"InstanceIds": [INSTANCE_ID]}]


def test_free_device_number_invalid_reservations(ec2):
    ec2.queue("describe_instances", {"Reservations": []})
    with pytest.raises(LookupError):
        make_cache(ec2).get_free_device_number()


def test_api_error_is_counted(ec2):
    before = AWS_API_ERR.value(api="DescribeInstances", error="Throttling")
    ec2.queue("describe_instances", AWSError("Throttling", "slow down"))
    with pytest.raises(RuntimeError):
        make_cache(ec2).get_free_device_number()
    assert AWS_API_ERR.value(api="DescribeInstances", error="Throttling") == before + 1


def test_describe_eni_success(ec2):
    ec2.queue("describe_network_interfaces", describe_result())
    addresses, attachment_id = make_cache(ec2).describe_eni("test-eni")
    assert attachment_id == ENI_ATTACH_ID
    assert addresses == []
    assert ec2.requests("describe_network_interfaces") == [{"NetworkInterfaceIds": ["test-eni"]}]


def test_describe_eni_not_found(ec2):
    ec2.queue("describe_network_interfaces", AWSError("InvalidNetworkInterfaceID.NotFound"))
    with pytest.raises(ENINotFoundError):
        make_cache(ec2).describe_eni("test-eni")


def test_alloc_eni(ec2):
    ec2.queue("create_network_interface", {"NetworkInterface": {"NetworkInterfaceId": ENI_ID}})
    ec2.queue("describe_instances", instances_with_devices([0, 3]))
    ec2.queue("attach_network_interface", {"AttachmentId": "eni-attach-58ddda9d"})
    cache = make_cache(ec2, security_groups=["sg-1"], subnet_id="subnet-1")

    assert cache.alloc_eni(False, None, "") == ENI_ID

    create = ec2.requests("create_network_interface")[0]
    assert create == {"Description": "aws-K8S-" + INSTANCE_ID, "Groups": ["sg-1"], "SubnetId": "subnet-1"}
    assert ec2.requests("attach_network_interface")[0]["DeviceIndex"] == 1
    modify = ec2.requests("modify_network_interface_attribute")[0]
    assert modify["Attachment"] == {"AttachmentId": "eni-attach-58ddda9d", "DeleteOnTermination": True}
    assert "delete_network_interface" not in ec2.names()


def test_alloc_eni_custom_config(ec2):
    ec2.queue("create_network_interface", {"NetworkInterface": {"NetworkInterfaceId": ENI_ID}})
    ec2.queue("describe_instances", instances_with_devices([0]))
    ec2.queue("attach_network_interface", {"AttachmentId": "eni-attach-1"})
    cache = make_cache(ec2, security_groups=["sg-1"], subnet_id="subnet-1")
    cache.alloc_eni(True, ["sg-custom"], "subnet-custom")
    create = ec2.requests("create_network_interface")[0]
    assert create["Groups"] == ["sg-custom"]
    assert create["SubnetId"] == "subnet-custom"


def test_alloc_eni_no_free_device(ec2):
    ec2.queue("create_network_interface", {"NetworkInterface": {"NetworkInterfaceId": ENI_ID}})
    ec2.queue("describe_instances", instances_with_devices(range(MAX_ENIS)))
    with pytest.raises(RuntimeError):
        make_cache(ec2).alloc_eni(False, None, "")
    assert ec2.requests("delete_network_interface") == [{"NetworkInterfaceId": ENI_ID}]


def test_alloc_eni_max_reached(ec2):
    ec2.queue("create_network_interface", {"NetworkInterface": {"NetworkInterfaceId": ENI_ID}})
    ec2.queue("describe_instances", instances_with_devices([0, 3]))
    ec2.queue("attach_network_interface", AWSError("AttachmentLimitExceeded"))
    with pytest.raises(RuntimeError):
        make_cache(ec2).alloc_eni(False, None, "")
    assert len(ec2.requests("delete_network_interface")) == 1


def test_alloc_eni_modify_failure_deletes(ec2):
    ec2.queue("create_network_interface", {"NetworkInterface": {"NetworkInterfaceId": ENI_ID}})
    ec2.queue("describe_instances", instances_with_devices([0]))
    ec2.queue("attach_network_interface", {"AttachmentId": "eni-attach-1"})
    ec2.queue("modify_network_interface_attribute", AWSError("InternalError"))
    with pytest.raises(RuntimeError, match="unable to change"):
        make_cache(ec2).alloc_eni(False, None, "")
    assert len(ec2.requests("delete_network_interface")) == 1


def test_tags_include_cluster_name(ec2, monkeypatch):
    monkeypatch.setenv("CLUSTER_NAME", "my-cluster")
    ec2.queue("create_network_interface", {"NetworkInterface": {"NetworkInterfaceId": ENI_ID}})
    ec2.queue("describe_instances", instances_with_devices([0]))
    ec2.queue("attach_network_interface", {"AttachmentId": "eni-attach-1"})
    make_cache(ec2).alloc_eni(False, None, "")
    tags = ec2.requests("create_tags")[0]
    assert tags["Resources"] == [ENI_ID]
    assert tags["Tags"] == [
        {"Key": ENI_NODE_TAG_KEY, "Value": INSTANCE_ID},
        {"Key": ENI_CLUSTER_TAG_KEY, "Value": "my-cluster"},
    ]


def test_tag_failure_is_not_fatal(ec2, monkeypatch):
    monkeypatch.delenv("CLUSTER_NAME", raising=False)
    ec2.queue("create_network_interface", {"NetworkInterface": {"NetworkInterfaceId": ENI_ID}})
    ec2.queue("create_tags", AWSError("InternalError"))
    ec2.queue("describe_instances", instances_with_devices([0]))
    ec2.queue("attach_network_interface", {"AttachmentId": "eni-attach-1"})
    assert make_cache(ec2).alloc_eni(False, None, "") == ENI_ID
    assert len(ec2.requests("create_tags")[0]["Tags"]) == 1


def test_free_eni(ec2):
    ec2.queue("describe_network_interfaces", describe_result())
    assert make_cache(ec2).free_eni("test-eni") is None
    assert ec2.names() == [
        "describe_network_interfaces",
        "detach_network_interface",
        "delete_network_interface",
    ]
    assert ec2.requests("detach_network_interface") == [{"AttachmentId": ENI_ATTACH_ID}]


def test_free_eni_retry(ec2):
    ec2.queue("describe_network_interfaces", describe_result())
    ec2.queue("delete_network_interface", RuntimeError("testing retrying delete"), {})
    make_cache(ec2).free_eni("test-eni")
    assert len(ec2.requests("delete_network_interface")) == 2


def test_free_eni_retry_max(ec2):
    ec2.queue("describe_network_interfaces", describe_result())
    ec2.queue(
        "delete_network_interface",
        *[RuntimeError("testing retrying delete") for _ in range(MAX_ENI_DELETE_RETRIES)],
    )
    with pytest.raises(RuntimeError):
        make_cache(ec2).free_eni("test-eni")
    assert len(ec2.requests("delete_network_interface")) == MAX_ENI_DELETE_RETRIES


def test_free_eni_detach_retry(ec2):
    ec2.queue("describe_network_interfaces", describe_result())
    ec2.queue("detach_network_interface", AWSError("IncorrectState"), {})
    make_cache(ec2).free_eni("test-eni")
    assert len(ec2.requests("detach_network_interface")) == 2
    assert len(ec2.requests("delete_network_interface")) == 1


def test_free_eni_describe_error(ec2):
    ec2.queue("describe_network_interfaces", RuntimeError("Error on DescribeNetworkInterfaces"))
    with pytest.raises(RuntimeError):
        make_cache(ec2).free_eni("test-eni")


def test_free_eni_already_gone(ec2):
    ec2.queue("describe_network_interfaces", AWSError("InvalidNetworkInterfaceID.NotFound"))
    assert make_cache(ec2).free_eni("test-eni") is None
    assert ec2.names() == ["describe_network_interfaces"]


def test_alloc_ip_address(ec2):
    make_cache(ec2).alloc_ip_address("eni-id")
    assert ec2.requests("assign_private_ip_addresses") == [
        {"NetworkInterfaceId": "eni-id", "SecondaryPrivateIpAddressCount": 1}
    ]


def test_alloc_ip_address_on_error(ec2):
    ec2.queue("assign_private_ip_addresses", RuntimeError("Error on AssignPrivateIpAddresses"))
    with pytest.raises(RuntimeError):
        make_cache(ec2).alloc_ip_address("eni-id")


def test_alloc_ip_addresses(ec2):
    cache = make_cache(ec2, instance_type="c5n.18xlarge")

    cache.alloc_ip_addresses("eni-id", 5)
    cache.alloc_ip_addresses("eni-id", 50)
    cache.alloc_ip_addresses("eni-id", 0)

    assert ec2.requests("assign_private_ip_addresses") == [
        {"NetworkInterfaceId": "eni-id", "SecondaryPrivateIpAddressCount": 5},
        {"NetworkInterfaceId": "eni-id", "SecondaryPrivateIpAddressCount": 49},
    ]


def test_alloc_ip_addresses_limit_exceeded_is_ignored(ec2):
    ec2.queue("assign_private_ip_addresses", AWSError("PrivateIpAddressLimitExceeded"))
    assert make_cache(ec2, instance_type="c1.medium").alloc_ip_addresses("eni-id", 3) is None
    assert len(ec2.requests("assign_private_ip_addresses")) == 1


def test_alloc_ip_addresses_other_error(ec2):
    ec2.queue("assign_private_ip_addresses", AWSError("InternalError"))
    with pytest.raises(RuntimeError):
        make_cache(ec2, instance_type="c1.medium").alloc_ip_addresses("eni-id", 3)


def test_alloc_ip_addresses_unknown_type(ec2):
    with pytest.raises(UnknownInstanceTypeError):
        make_cache(ec2, instance_type="zz.huge").alloc_ip_addresses("eni-id", 3)
    assert ec2.calls == []


def test_limits(ec2):
    cache = make_cache(ec2, instance_type="c1.medium")
    assert cache.get_eni_ip_limit() == 5
    assert cache.get_eni_limit() == 2


def test_eni_limit_unknown_type(ec2):
    with pytest.raises(UnknownInstanceTypeError, match="zz.huge"):
        make_cache(ec2, instance_type="zz.huge").get_eni_limit()


def test_dealloc_ip_addresses(ec2):
    make_cache(ec2).dealloc_ip_addresses("eni-id", ["10.0.0.5", "10.0.0.6"])
    assert ec2.requests("unassign_private_ip_addresses") == [
        {"NetworkInterfaceId": "eni-id", "PrivateIpAddresses": ["10.0.0.5", "10.0.0.6"]}
    ]


def test_dealloc_ip_addresses_error(ec2):
    ec2.queue("unassign_private_ip_addresses", AWSError("InternalError"))
    with pytest.raises(RuntimeError, match="10.0.0.5"):
        make_cache(ec2).dealloc_ip_addresses("eni-id", ["10.0.0.5"])