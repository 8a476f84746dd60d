"""Matching engine services: vectorizer, embeddings, similarity, store, orchestrator."""
