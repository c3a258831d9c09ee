"""
Configuration Module
"""
