"""
Grid geometry helpers: bboxes, tile math, geometry decoding.
"""
