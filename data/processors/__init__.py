"""
Data processors
"""
