"""
Monitoring Module
"""
