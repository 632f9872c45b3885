"""
TubeRelay - rendition catalog and delivery core
"""
