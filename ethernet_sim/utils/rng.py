"""Seeded random source for link addresses, device ids and transaction ids."""

import numpy as np

from ethernet_sim.core.addressing import DeviceID, MacAddress


class AddressRNG:
    """Reproducible random values for a simulation.

    Attributes:
        seed: Seed the generator was created with.
        generator: The underlying numpy generator.
    """

    def __init__(self, seed: int):
        self.seed = seed
        self.generator = np.random.default_rng(seed)

    def mac(self) -> MacAddress:
        """Generate a locally administered unicast link address.

        Returns:
            A link address that is never the broadcast or loopback sentinel.
        """
        octets = self.generator.integers(0, 256, size=6).tolist()
        # unicast, locally administered
        octets[0] = (octets[0] & 0xFC) | 0x02
        return MacAddress(bytes(octets))

    def device_id(self) -> DeviceID:
        return DeviceID(int(self.generator.integers(DeviceID.MIN, DeviceID.MAX + 1)))

    def xid(self) -> int:
        """A 32-bit DHCP transaction id."""
        return int(self.generator.integers(0, 2**32))
