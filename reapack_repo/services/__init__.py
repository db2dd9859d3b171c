"""
Scanning, checks, network services and README rendering.
"""
