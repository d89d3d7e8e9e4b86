"""
Quality reviews of answered, recorded calls.
"""
