"""
Telephony statistics (overview, agents, queues).
"""
