"""
Renderer discovery and resolution.
"""
