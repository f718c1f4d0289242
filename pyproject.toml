[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vpccni"
version = "0.1.0"
description = "Node-side helpers for VPC-native pod networking: ENI and secondary IP management, instance metadata, ENIConfig selection and pod discovery"
requires-python = ">=3.10"
dependencies = []
keywords = ["vpc", "eni", "ec2", "kubernetes", "cni", "networking", "ipam"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vpccni"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
