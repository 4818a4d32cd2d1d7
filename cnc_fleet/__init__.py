"""
CNC Fleet OPC UA

Information model, OPC UA server and monitoring client for a small fleet
of CNC milling machines (base and Pro variants).
"""

__version__ = "1.0.0"
