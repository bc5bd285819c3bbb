# vpcsim

Building blocks for a simulated virtual PC on a network. The package reads
and writes Ethernet, ARP, IPv4, IPv6, ICMP, UDP and TCP headers, computes
Internet checksums, converts IPv6 addresses to and from text, parses
command-line options in the classic `getopt` style, fragments and
reassembles IPv4 and IPv6 datagrams, and runs a small IPv4 stack that
answers ARP requests, pings and UDP probes.

It needs nothing beyond the Python 3.10+ standard library.

## Modules

| Module | Purpose |
| --- | --- |
| `vpcsim.headers` | Header dataclasses `EthernetHeader`, `ArpHeader`, `IPv4Header`, `UdpHeader`, `TcpHeader`, `IcmpHeader`, `IPv6Header`, `IPv6FragmentHeader`, each with `from_bytes` and `to_bytes`; protocol constants; `format_mac` and `ether_map_ipv6_multicast` |
| `vpcsim.getopt` | `GetOpt`, an iterator of `(option, argument)` pairs that moves non-option arguments to the end of its `argv` |
| `vpcsim.inet6` | `pton6` and `ntop6`: IPv6 text/binary conversion with `::` compression and embedded IPv4 forms |
| `vpcsim.ipnet` | `checksum`, `checksum_fixup`, `checksum6`, `mask_from_cidr`, `cidr_from_mask`, `same_net`, `same_net6`, Ethernet and IPv6 header helpers, `icmp_description`, `ip6_to_str` |
| `vpcsim.frag` | `fragment_ipv4` and `Ipv4Reassembler` |
| `vpcsim.frag6` | `fragment_ipv6` and `Ipv6Reassembler` |
| `vpcsim.packets` | `Ipv4Stack`, `HostConfig`, `Session`, `Verdict`, and the builders `build_packet`, `arp_request`, `udp_reply`, `icmp_reply`, plus `parse_response` |

## Examples

IPv6 addresses:

```python
from vpcsim.inet6 import ntop6, pton6

packed = pton6("2001:db8::1")
print(ntop6(packed))          # 2001:db8::1
```

`pton6` raises `ValueError` for text that is not an IPv6 address.

Checksums and netmasks:

```python
from vpcsim.ipnet import checksum, cidr_from_mask, mask_from_cidr, same_net

print(hex(checksum(b"\x45\x00\x00\x1c")))
print(cidr_from_mask(mask_from_cidr(24)))              # 24
print(same_net(0x0A010146, 0x0A010141, 26))             # True
```

Option parsing:

```python
from vpcsim.getopt import GetOpt

parser = GetOpt(["prog", "-p", "5000", "file"], "p:")
print(list(parser))                  # [('p', '5000')]
print(parser.argv[parser.optind:])   # ['file']
```

Fragmenting and reassembling: `fragment_ipv4(frame, mtu)` returns a list
of frames that fit the MTU; feeding them to `Ipv4Reassembler().add(...)`
returns `None` until the last piece arrives and then the whole frame.
`fragment_ipv6` and `Ipv6Reassembler` do the same with IPv6 fragment
headers. Reassemblers take a `clock` callable and drop incomplete chains
older than 30 seconds or with more than 16 pieces.

A host's IPv4 stack:

```python
from vpcsim.packets import HostConfig, Ipv4Stack, arp_request

host = HostConfig(ip=0x0A000001, mac=bytes.fromhex("020000000001"))
peer = HostConfig(ip=0x0A000002, mac=bytes.fromhex("020000000002"))
stack = Ipv4Stack(host)

verdict, reply = stack.receive(arp_request(peer, host.ip))
print(verdict)                        # Verdict.ENQ
print(stack.lookup(peer.ip).hex())    # 020000000002
```

Frames to send collect in `Ipv4Stack.outgoing`; echo and UDP answers
collect in `Ipv4Stack.background`. IPv6 and TCP handling are hooked in
through `ipv6_handler`, `ipv6_sender` and `tcp_handler`.

## What it does not do

The package is a library only. It has no command-line program, no
interactive console, no packet dump printer or capture-file writer, no
help texts for console commands, and no transport that puts frames on a
real or UDP-tunnelled network: the caller moves frames in and out of the
stack's queues.

## Running the tests

Install the package with its `test` extra and run `pytest` from the
project directory.