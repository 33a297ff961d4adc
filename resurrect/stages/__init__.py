"""
Model-backed pipeline stages.

Each stage renders its prompt, makes one gateway call, parses the answer and
validates it into a tagged outcome (Typed result or Fallback raw text).
"""
