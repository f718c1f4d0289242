"""Local cache of ENIConfig custom resources and of this node's chosen ENIConfig."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Optional, Union

log = logging.getLogger(__name__)

DEFAULT_ENI_CONFIG_ANNOTATION_DEF = "k8s.amazonaws.com/eniConfig"
DEFAULT_ENI_CONFIG_LABEL_DEF = "k8s.amazonaws.com/eniConfig"
ENI_CONFIG_DEFAULT = "default"

# Environment variables that override the annotation and label keys
# looked up on the node to find the name of its ENIConfig.
ENV_ENI_CONFIG_ANNOTATION_DEF = "ENI_CONFIG_ANNOTATION_DEF"
ENV_ENI_CONFIG_LABEL_DEF = "ENI_CONFIG_LABEL_DEF"
ENV_MY_NODE_NAME = "MY_NODE_NAME"


@dataclass
class ENIConfigSpec:
    """The security groups and subnet that secondary ENIs should use."""

    security_groups: list[str] = field(default_factory=list)
    subnet: str = ""

    def copy(self) -> "ENIConfigSpec":
        return ENIConfigSpec(security_groups=list(self.security_groups), subnet=self.subnet)


@dataclass
class ENIConfig:
    """An ENIConfig resource: a name and its spec."""

    name: str
    spec: ENIConfigSpec = field(default_factory=ENIConfigSpec)


@dataclass
class Node:
    """A cluster node with its annotations and labels."""

    name: str
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class Event:
    """A change notification for an ENIConfig or a Node."""

    object: Union[ENIConfig, Node, object]
    deleted: bool = False


class NoENIConfigError(LookupError):
    """No ENIConfig is available for this node."""

    def __init__(self, message: str = "eniconfig: eniconfig is not available") -> None:
        super().__init__(message)


@dataclass
class ENIConfigInfo:
    """A snapshot of the locally cached ENIConfigs."""

    eni: dict[str, ENIConfigSpec] = field(default_factory=dict)
    my_eni: str = ""
    eni_config_annotation_def: str = ""
    eni_config_label_def: str = ""


def _env_or_default(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value:
        log.debug("Using %s %s", name, value)
        return value
    return default


def get_eni_config_annotation_def() -> str:
    """Return the node annotation key naming the ENIConfig to use."""
    return _env_or_default(ENV_ENI_CONFIG_ANNOTATION_DEF, DEFAULT_ENI_CONFIG_ANNOTATION_DEF)


def get_eni_config_label_def() -> str:
    """Return the node label key naming the ENIConfig to use."""
    return _env_or_default(ENV_ENI_CONFIG_LABEL_DEF, DEFAULT_ENI_CONFIG_LABEL_DEF)


class ENIConfigController:
    """Holds the known ENIConfigs and the name of the one this node uses."""

    def __init__(self, node_name: Optional[str] = None) -> None:
        self.my_node_name = node_name if node_name is not None else os.environ.get(ENV_MY_NODE_NAME, "")
        self.eni: dict[str, ENIConfigSpec] = {}
        self.my_eni = ENI_CONFIG_DEFAULT
        self.eni_config_annotation_def = get_eni_config_annotation_def()
        self.eni_config_label_def = get_eni_config_label_def()
        self.lock = threading.Lock()

    def getter(self) -> ENIConfigInfo:
        """Return a copy of the cached state."""
        with self.lock:
            return ENIConfigInfo(
                eni={name: spec.copy() for name, spec in self.eni.items()},
                my_eni=self.my_eni,
                eni_config_annotation_def=get_eni_config_annotation_def(),
                eni_config_label_def=get_eni_config_label_def(),
            )

    def my_eni_config(self) -> ENIConfigSpec:
        """Return the spec of this node's ENIConfig.

        Raises NoENIConfigError when that ENIConfig is not known.
        """
        with self.lock:
            spec = self.eni.get(self.my_eni)
            if spec is None:
                raise NoENIConfigError()
            return spec.copy()


class Handler:
    """Applies ENIConfig and Node events to a controller's cache."""

    def __init__(self, controller: ENIConfigController) -> None:
        self.controller = controller

    def handle(self, event: Event) -> None:
        """Update the cache from one event; other object kinds are ignored."""
        obj = event.object
        controller = self.controller
        if isinstance(obj, ENIConfig):
            if event.deleted:
                log.info("Deleting ENIConfig: %s", obj.name)
                with controller.lock:
                    controller.eni.pop(obj.name, None)
                return
            spec = obj.spec.copy()
            log.info(
                "Handle ENIConfig Add/Update: %s, %s, %s", obj.name, spec.security_groups, spec.subnet
            )
            with controller.lock:
                controller.eni[obj.name] = spec
        elif isinstance(obj, Node):
            log.info("Handle Node: %s, %s, %s", obj.name, obj.annotations, obj.labels)
            if controller.my_node_name != obj.name:
                return
            value = obj.annotations.get(controller.eni_config_annotation_def)
            if value is None:
                value = obj.labels.get(controller.eni_config_label_def, ENI_CONFIG_DEFAULT)
            with controller.lock:
                controller.my_eni = value
            log.info("Setting myENI to: %s", value)


def new_handler(controller: ENIConfigController) -> Handler:
    """Create a handler that feeds ``controller``."""
    return Handler(controller)