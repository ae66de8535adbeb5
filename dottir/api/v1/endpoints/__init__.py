"""
Endpoints API v1
"""
