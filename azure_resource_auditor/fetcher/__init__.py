"""Resource inventory collection"""
