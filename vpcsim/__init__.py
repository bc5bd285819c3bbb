"""Building blocks for a simulated virtual PC: headers, checksums, option parsing, fragmentation and an IPv4 stack."""

__version__ = "0.1.0"

__all__ = [
    "headers",
    "getopt",
    "inet6",
    "ipnet",
    "frag",
    "frag6",
    "packets",
]