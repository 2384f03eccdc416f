"""Protocol codecs and state machines (ARP, IPv4, ICMP, UDP, DHCP)."""
