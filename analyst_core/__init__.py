"""
Shared runtime for the file analyst agent.

Configuration, logging and the service runtime layer (errors, retry,
run context, pooled HTTP client).
"""
