"""
Core Module
Eligibility engine and scoring
"""
