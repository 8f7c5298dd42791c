"""
Issue tracker to project sync service.
"""
