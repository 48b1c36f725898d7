"""
HTTP administrative surface for the tile grid.
"""
