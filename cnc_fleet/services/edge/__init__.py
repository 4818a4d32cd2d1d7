"""
Edge Services - OPC UA server and client for the CNC fleet.

- opcua_server: address space, method binding, server lifecycle
- protocol_adapters: client discovery, monitoring, invocation, reconnect
"""
