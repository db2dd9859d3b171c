"""
HTTP routes: the published index and payloads, and the admin API.
"""
