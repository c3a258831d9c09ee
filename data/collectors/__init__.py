"""
Data collectors
"""
