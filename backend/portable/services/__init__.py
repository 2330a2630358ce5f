# Services package init
"""
Portable Backend — Services Layer
===================================

What:  Business logic between routes (HTTP) and the database.

Service Inventory:
    - url_rules:         network-free URL classification and validation
    - metadata_scraper:  fast title/description/image scrape at save time
    - content_extractor: full-article Markdown (Firecrawl or local trafilatura)
    - llm_base:          EnrichmentService interface
    - gemini_service:    Gemini implementation (type, summary, topics)
    - item_processing:   background extraction + enrichment pipeline
    - item_service:      items, triage, views and topics
    - profile_service:   API keys and profile view
"""
