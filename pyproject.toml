[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "usernet"
version = "0.1.0"
description = "Pure-Python pieces of a user-mode network stack: checksums, ARP/NDP caches, DHCP, DHCPv6, IP validation, fragmentation and NDP"
requires-python = ">=3.10"
dependencies = []
keywords = ["networking", "dhcp", "dhcpv6", "ndp", "arp", "icmpv6", "ipv4", "ipv6", "user-mode"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["usernet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
