"""
CNC Fleet test suite.
"""
