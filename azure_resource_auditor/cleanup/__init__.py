"""Cleanup recommendation synthesis"""
