"""
Tile-grid partitioning engine.

Assigns each stored geometry to the grid tile of its bbox min corner, keeps the
per-tile partition catalog, and routes spatial queries to every tile that can
hold a match. Geometry indexing *within* a tile is left to the store.
"""
