"""
Services for Harecame.
"""
