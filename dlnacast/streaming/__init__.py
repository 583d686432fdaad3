"""
Local HTTP streaming of media and subtitle files to renderers.
"""
