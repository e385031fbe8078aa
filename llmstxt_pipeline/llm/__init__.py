"""
LLM access: provider registry, prompts, response validation and the
retry/timeout wrapper around every model call.
"""
