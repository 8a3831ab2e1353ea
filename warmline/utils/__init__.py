"""Utilities package.

Modules:
    - cost_tracking: Decision Oracle usage and cost log
"""
