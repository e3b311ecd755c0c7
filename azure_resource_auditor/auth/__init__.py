"""Azure authentication and client creation"""
