"""
Data storage: cache and models
"""
