"""
Missed calls and the callback queue.
"""
