"""Embedding generation and read access to pre-chunked PDF embeddings.

Provides the OpenAI embedding client used for questions and web paragraphs,
and chunk stores (in-memory and Postgres) holding ingested PDF chunks.
"""
