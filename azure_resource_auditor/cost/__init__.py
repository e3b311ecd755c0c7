"""Fallback cost estimation"""
