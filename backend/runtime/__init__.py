"""
Container runtime clients used by the update core.
"""
