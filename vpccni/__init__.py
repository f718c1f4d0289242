"""ENI, secondary IP, instance metadata, ENIConfig and pod-discovery helpers for VPC-native pod networking."""

__version__ = "0.1.0"