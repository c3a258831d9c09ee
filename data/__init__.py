"""
Data Module
Collection, normalization and storage of chain data
"""
