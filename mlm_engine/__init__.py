"""
Compensation and global-cycle settlement engine.
"""
