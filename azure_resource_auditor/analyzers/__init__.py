"""Independent analysis modules"""
