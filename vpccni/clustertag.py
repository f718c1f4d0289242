"""Look up tags of the running instance through the EC2 API."""

from __future__ import annotations

from vpccni.ec2api import EC2, InstanceIdentityDocument

RESOURCE_ID = "resource-id"
RESOURCE_KEY = "key"
CLUSTER_ID_TAG = "CLUSTER_ID"


class EC2Wrapper:
    """Reads tags such as the cluster id from the instance's EC2 tags."""

    def __init__(self, ec2_client: EC2, identity_document: InstanceIdentityDocument) -> None:
        self.ec2_client = ec2_client
        self.identity_document = identity_document

    def get_cluster_tag(self, tag_key: str) -> str:
        """Return the value of the instance tag ``tag_key``.

        Raises RuntimeError when the tags cannot be read and LookupError
        when no tag has that key.
        """
        request = {
            "Filters": [
                {"Name": RESOURCE_ID, "Values": [self.identity_document.instance_id]},
                {"Name": RESOURCE_KEY, "Values": [tag_key]},
            ]
        }
        try:
            result = self.ec2_client.describe_tags(request)
        except Exception as exc:
            raise RuntimeError(f"GetClusterTag: Unable to obtain EC2 instance tags: {exc}") from exc

        tags = (result or {}).get("Tags") or []
        if not tags:
            raise LookupError(f"GetClusterTag: No tag matching key: {tag_key}")
        return tags[0].get("Value") or ""