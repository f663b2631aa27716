"""Application package containing the API, configuration, data access, retrieval/generation
pipelines, and supporting utilities.

Submodules overview:
- main: FastAPI application, routes and startup.
- config: Application settings and environment variable loading.
- errors: Error taxonomy shared by every stage.
- db: Database engine/session management helpers.
- models: ORM models (documents, embedding models, embeddings).
- documents / vectors: Persistence of documents, models and vectors; similarity queries.
- schemas: Pydantic request/response models for API contracts.
- chunking: Token-window chunking with overlap.
- backend: HTTP client for the embedding, rerank and chat services.
- embedding: Prefixing, batching and vector checks.
- reranker: Passage reranking (remote service or local cross-encoder).
- merger: Merge adjacent retrieved chunks into passages.
- rag: Query-time pipeline (search, retrieve, answer).
- generation: Prompting, chat streaming, translation and summaries.
- cache: Optional Redis cache for search results.
- ingestion: Crawl, chunk and embed the documentation site.
- obs: Observability utilities (tracing/spans).
"""
