"""Report writing and summaries"""
