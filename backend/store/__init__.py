"""
Partition stores.

A store owns the physical partitions (create, index, write, exact-intersection
scan). The tile grid never looks inside a partition beyond these primitives.
"""
