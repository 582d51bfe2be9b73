"""Network classification helpers."""

#: Local development networks where everything external is mocked.
#:
#: On these we deploy mock pairs, skip liquidity seeding and reward hook discovery.
EPHEMERAL_NETWORKS = frozenset({"localhost", "hardhat", "anvil"})


def is_ephemeral_network(network_name: str) -> bool:
    """Is this a throwaway local chain.

    :param network_name:
        Network name as used in the config file name, e.g. ``sonic-testnet``
    """
    return network_name in EPHEMERAL_NETWORKS
