"""
Student Dashboard backend.
"""
