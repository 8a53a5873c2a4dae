"""Manga catalog source adapters.

Provides the shared extraction engine every source reuses, the HTTP
transport, the data-driven source pipelines and their descriptors.

Key modules:
    models      -- CatalogEntry, ChapterRecord, PageRecord, ListPage, FetchResult
    errors      -- TransportError, MalformedResponseError, ExtractionFailure
    aggregator  -- collect_pages() listing aggregator (pagination fold)
    normalizer  -- EntryNormalizer, status/rating normalisation
    dedup       -- deduplicate_chapters() for multi-release chapter lists
    extractor   -- extract_embedded_array() for JSON inlined in scripts
    strategies  -- FallbackChain of ExtractionStrategy objects
    dates       -- RelativeDateResolver for "5 minutes ago" style labels
    http        -- HttpFetcher, HostRateLimiter, RetryPolicy
    base        -- BaseSource abstract class (list, details, chapters, pages)
    sources     -- JsonApiSource, HtmlSource, AnimeSamaSource and descriptors
    factory     -- SourceFactory for creating sources by id
    controller  -- fork_join() and ThreadPoolController for per-entry jobs
    config      -- Settings and per-source descriptor dataclasses
    storage     -- StorageBase and JsonlStorage result sinks
"""
