"""Core models, configuration and orchestration"""
