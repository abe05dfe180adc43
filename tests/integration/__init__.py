"""
Integration tests for the rnarank analysis pipeline.

These tests run the complete workflow from raw counts through filtering,
normalization, dispersion estimation and testing to ranked gene lists.
"""
