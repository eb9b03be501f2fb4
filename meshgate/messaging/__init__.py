"""
Inter-service messaging: wire protocol, transport client, message server and
router, retry wrapper and event emitter.
"""
