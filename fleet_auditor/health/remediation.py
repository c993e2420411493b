"""
Failed-check kind -> operator suggestion. Advisory only.
"""

REMEDIATION = {
    "dns": "DNS resolution failed: verify the hostname, the DNS server configuration "
           "(resolv.conf / adapter settings) and that a record exists for the target.",
    "icmp": "Host did not answer ping: check that the host is powered on and that a "
            "firewall is not dropping ICMP echo requests.",
    "port": "Management port unreachable: open the management port (WinRM 5985/5986 or "
            "the configured port) in the host and network firewalls.",
    "service": "Management service unavailable: start the remote management service "
               "(e.g. 'winrm quickconfig' or the SSH daemon) and confirm it is listening.",
    "credential": "Authentication failed: verify the supplied credential has rights on the "
                  "target; it was not retried with alternate credentials.",
}


def remediation_for(kinds: list[str]) -> list[str]:
    """Suggestions for the failed kinds, in check order, without duplicates."""
    seen: set[str] = set()
    out: list[str] = []
    for kind in kinds:
        if kind in REMEDIATION and kind not in seen:
            seen.add(kind)
            out.append(REMEDIATION[kind])
    return out
