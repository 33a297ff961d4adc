"""
Prompt material for the remediation pipeline.

- System prompt (identity + output contract)
- One user-prompt template per model-backed stage (analyze, search, generate)
"""
