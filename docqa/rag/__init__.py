"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document loading and text extraction
- Text chunking with overlap
- Vector storage and similarity search
- Ingestion and retrieval
- Grounded answer generation
"""
