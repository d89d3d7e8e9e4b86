"""
PBX event ingestion: batch entry point and its HTTP router.
"""
