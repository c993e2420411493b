"""
    macOS specific collectors and utilities.
"""

from fleet_auditor.collectors.base import TierContext, tier


def get_mac_network_info():
    """Retrieve macOS network interfaces using pyobjc SystemConfiguration."""
    # Imported lazily: pyobjc only exists on macOS.
    import SystemConfiguration

    network_info = []
    networks = SystemConfiguration.SCNetworkInterfaceCopyAll()

    for network in networks:
        interface_info = {
            "name": SystemConfiguration.SCNetworkInterfaceGetLocalizedDisplayName(network),
            "type": SystemConfiguration.SCNetworkInterfaceGetInterfaceType(network),
            "bsd_name": SystemConfiguration.SCNetworkInterfaceGetBSDName(network),
        }
        network_info.append(interface_info)

    return network_info


def _system_configuration(ctx: TierContext):
    ctx.require_local("SystemConfiguration")
    interfaces = get_mac_network_info()
    if not interfaces:
        raise RuntimeError("SystemConfiguration returned no interfaces")
    return {"interfaces": interfaces}


SYSTEM_CONFIGURATION_TIER = tier("system_configuration", "SystemConfiguration", _system_configuration)
