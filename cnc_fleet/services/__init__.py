"""
CNC Fleet services.

- machines: information model and state machine
- edge: OPC UA server and client adapters
"""
