[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vpcsim"
version = "0.1.0"
description = "Virtual PC simulator building blocks: packet headers, checksums, option parsing, IP fragmentation and reassembly, and a small IPv4 stack"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "networking",
    "ipv4",
    "ipv6",
    "arp",
    "icmp",
    "checksum",
    "fragmentation",
    "reassembly",
    "getopt",
    "simulator",
    "virtual-pc",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
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
packages = ["vpcsim"]

[tool.hatch.build.targets.sdist]
include = ["vpcsim", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
