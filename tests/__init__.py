"""
Test suite - adaptive learning engine
"""
