"""
Reusable infrastructure: error taxonomy, structured logging, resilience
policies, async HTTP download and log sanitization.
"""
