# vpccni

Building blocks for a node agent that gives Kubernetes pods addresses taken straight from a
VPC. The agent attaches elastic network interfaces (ENIs) to the instance and assigns
secondary private IPv4 addresses to them.

The package has no cloud SDK of its own and no third-party dependencies. You pass in
objects that talk to the EC2 API and to the instance metadata service, so every part can
be driven from tests with plain stand-ins.

## Modules

### `vpccni.limits`

- `eni_limit(instance_type)` returns how many ENIs an instance type can have attached.
- `ip_limit(instance_type)` returns how many IPv4 addresses one ENI of that type can hold.
- Both raise `KeyError` for an unknown instance type.
- The tables are also available as the read-only mappings `INSTANCE_ENIS_AVAILABLE` and
  `INSTANCE_IPS_AVAILABLE`.

### `vpccni.ec2api`

- `EC2` is the protocol the package expects from an EC2 client. It has one method per call
  (`create_network_interface`, `describe_instances`, `attach_network_interface`,
  `delete_network_interface`, `detach_network_interface`, `assign_private_ip_addresses`,
  `unassign_private_ip_addresses`, `describe_network_interfaces`,
  `modify_network_interface_attribute`, `create_tags`, `describe_tags`). Each method takes a
  request mapping and returns a response dict, both using the EC2 API's own field names.
- `EC2Metadata` is the protocol for the metadata service: `get_metadata(path)` and `region()`.
- `AWSError(code, message)` is an error that carries an API error code in `.code`.
- `InstanceIdentityDocument` is a dataclass for the identity document.
  `InstanceIdentityDocument.from_json(text)` parses the JSON form and raises `AWSError` with
  the code `SerializationError` on bad input.
- `InstanceMetadataService` is a client for the metadata endpoint built on `urllib`. The
  default endpoint is `http://169.254.169.254`.
  - It retries on connection errors, 5xx responses and 429, with an exponential delay.
  - Other HTTP errors, and running out of retries, raise `AWSError` with the code
    `EC2MetadataError`.
  - `region()` is the availability zone with its last character removed.
  - A `fetch` callable can replace the HTTP request.

### `vpccni.metadatawrapper`

- `EC2MetadataClient(client=None)` returns the identity document and the region through an
  `HttpClient`.
- When no client is given it uses `InstanceMetadataService` with 5 retries.

### `vpccni.clustertag`

- `EC2Wrapper(ec2_client, identity_document).get_cluster_tag(tag_key)` returns the value of
  a tag of the running instance.
- It raises `RuntimeError` when the tags cannot be read and `LookupError` when no tag has
  that key.

### `vpccni.awsmetrics`

In-memory labelled metrics:

- `MetricVec` supports `inc`, `observe`, `value` and `count`, with keyword labels.
- The module defines three of them: `AWS_API_LATENCY`, `AWS_API_ERR` and `AWS_UTILS_ERR`.
- `api_error_inc(api, err)` counts only `AWSError`s, keyed by their code.
- `utils_error_inc(fn, err)` counts an error under a function name.
- `record_latency(api, failed, start)` records the whole milliseconds elapsed since a
  `time.monotonic()` value.

### `vpccni.instance_metadata`

- `InstanceMetadata(ec2_metadata=...)` is a dataclass of instance facts.
- `init_with_ec2_metadata()` reads these facts from the metadata service: the zone, the
  primary IP, the instance id and type, the primary MAC, the security groups, the subnet and
  the VPC CIDRs.
- `set_primary_eni()` finds the ENI whose MAC is the primary MAC.
- `get_attached_enis()` returns a list of `ENIMetadata` in metadata order. The primary ENI
  gets device number 0 and the others get their device number plus one.
- Failed reads raise `RuntimeError`, and a missing primary ENI raises `LookupError`.

### `vpccni.eni_manager`

`EC2InstanceMetadataCache` extends `InstanceMetadata` with an `ec2_svc` client and a
`retry_interval` in seconds (default 5). It provides:

- `alloc_eni(use_custom_cfg, security_groups, subnet)` creates an ENI. It uses the primary
  interface's groups and subnet unless `use_custom_cfg` is true. It then:
  - tags the ENI with the instance id, and with `CLUSTER_NAME` when that variable is set;
  - attaches it at the lowest free device index;
  - marks it delete-on-termination.

  If attaching or modifying fails, it deletes the ENI again.
- `free_eni(eni_id)` detaches the ENI, with up to 21 attempts, then deletes it, with up to 20
  attempts. An ENI that EC2 no longer knows counts as freed.
- `describe_eni(eni_id)` returns the private address records and the attachment id. It raises
  `ENINotFoundError` for an unknown ENI.
- `alloc_ip_address(eni_id)` assigns one secondary address.
- `alloc_ip_addresses(eni_id, num_ips)` assigns up to `num_ips` addresses, capped at the
  per-ENI limit. It does nothing below 1, and it ignores `PrivateIpAddressLimitExceeded`.
- `dealloc_ip_addresses(eni_id, ips)` unassigns the given addresses.
- `get_eni_ip_limit()` returns the per-ENI address limit minus the primary address.
- `get_eni_limit()` returns the ENI limit. Both limit methods raise `UnknownInstanceTypeError`
  for an unknown instance type.
- `get_free_device_number()` returns the lowest unused device index below 128.

Other failures raise `RuntimeError`.

### `vpccni.eniconfig`

- `ENIConfigController` caches `ENIConfigSpec`s by name and knows which one this node uses.
  A `Handler` (or `new_handler(controller)`) applies `Event`s for `ENIConfig` and `Node`
  objects to it.
- For its own node (`MY_NODE_NAME`), the handler picks the configuration named by the node
  annotation. If the annotation is missing it uses the node label, and if that is missing too
  it uses `default`.
- `my_eni_config()` raises `NoENIConfigError` when that configuration is not known.
- `getter()` returns an `ENIConfigInfo` snapshot.
- `get_eni_config_annotation_def()` and `get_eni_config_label_def()` return the annotation
  and label keys.

### `vpccni.docker`

- `running_pod_containers(containers)` maps pod UIDs to the running pod sandbox containers.
  It raises `ConflictError` when two sandboxes share both a UID and a name.
- `DockerClient(host=None).get_running_containers()` lists the containers from the Docker
  Engine and applies `running_pod_containers` to them.
  - The engine address is `host`, else `DOCKER_HOST`, else `unix:///var/run/docker.sock`.
  - The `unix`, `tcp` and `http` schemes are supported.

### `vpccni.netlinkerrors`

- `is_not_exists_error(err)` is true for an `OSError` with `ESRCH`.
- `is_route_exists_error(err)` is true for an `OSError` with `EEXIST`.
- `is_network_unreachable_error(err)` is true for an `OSError` with `ENETUNREACH`.

### `vpccni.discovery`

- `Controller(node_name=None, indexer=None, queue=None)` keeps the non-host-network pods on
  this node and the `kube-system/aws-node*` pods. Its `indexer` is a mapping from
  `namespace/name` keys to `Pod`s.
- `handle_pod_update(key)` applies the current state of one key.
- `process_next_item()` takes a key from the `WorkQueue` and applies it. It retries a failing
  key with a delay up to 5 times.
- `k8s_get_local_pod_ips()` raises `InformerNotSyncedError` until `mark_synced()` has been
  called.
- `WorkQueue` is a de-duplicating queue with exponential per-key retry delays.

## Example

```python
from vpccni.eni_manager import EC2InstanceMetadataCache

cache = EC2InstanceMetadataCache(
    ec2_svc=my_ec2_client,
    instance_type="m5.large",
    instance_id="i-00000000000000000",
)
eni_id = cache.alloc_eni(False, None, "")
cache.alloc_ip_addresses(eni_id, 5)
```

`my_ec2_client` is any object that provides the methods of `vpccni.ec2api.EC2`.

## What it does not do

- There is no command, daemon or long-running agent loop.
- There is no IP address manager that decides when to grow or shrink the pool.
- Nothing watches the Kubernetes API. `Controller` and `ENIConfigController` are fed by the
  caller, through the indexer mapping and the work queue or through `Handler.handle`.
- Nothing programs routes, rules or links. `vpccni.netlinkerrors` only classifies errors.
- Metrics are kept in memory and are not exported.

## Environment

| Variable | Meaning |
| --- | --- |
| `MY_NODE_NAME` | The name of this node, used by `ENIConfigController` and `Controller`. |
| `CLUSTER_NAME` | When set, new ENIs are also tagged with the cluster name. |
| `ENI_CONFIG_ANNOTATION_DEF` | Overrides the node annotation key that selects the ENIConfig. |
| `ENI_CONFIG_LABEL_DEF` | Overrides the node label key that selects the ENIConfig. |
| `DOCKER_HOST` | Docker Engine address used by `DockerClient` when no host is given. |

## Tests

```
pip install -e .[test]
pytest
```