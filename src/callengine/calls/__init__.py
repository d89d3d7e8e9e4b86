"""
Call queries: listing, detail, caller lookup and live state.
"""
