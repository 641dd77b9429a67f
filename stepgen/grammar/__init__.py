"""
Grammar handling module.

Components:
    - preprocessor: Rewrite user patterns (escapes, negated classes) into a
      form the engine's constraint compiler accepts
    - schema: Convert a JSON Schema into a GBNF grammar

Example:
    ```python
    from stepgen.grammar import preprocess

    preprocess("[^abc]")
    # '[ !"#$%&\\'()*+,\\-./0-9...]' without a, b and c
    ```
"""

from stepgen.grammar.preprocessor import preprocess
from stepgen.grammar.schema import json_schema_to_grammar, load_schema

__all__ = [
    "preprocess",
    "json_schema_to_grammar",
    "load_schema",
]
