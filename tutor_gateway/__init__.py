"""
Child-safe chat gateway: a session-gated, rate-limited and content-filtered
proxy in front of an LLM chat completion API, plus the resilient client used
by the tutor app.
"""
