"""
Resumable two-phase export pipeline for Magento collections.

Modules:
    rate_limiter: Process-wide FIFO admission of API requests
    client: Magento REST client (bearer auth, searchCriteria, error mapping)
    sources: Per-collection paging, enrichment and formatting (orders, customers)
    store: Directory of durable units, one JSON file per entity
    checkpoint: Atomic per-stage checkpoint files
    download: Download stage (API -> unit store)
    process: Process stage (unit store -> CSV)
    formatters: Entity -> flat rows
    sink: Append-only CSV writer
    pipeline: Orchestrator wiring the pieces for one collection
    cli: argparse entry point

Architecture:
    1. Download - page through the API, enrich each entity with its
       dependent resources and persist it as a unit; resume by page
    2. Process - consume units in sorted order into one CSV per run,
       deleting each unit after its rows are written; resume by unit name

    Each phase checkpoints its own progress and isolates per-entity
    failures; only authentication errors abort a download outright.

Example:
    settings = Settings()
    pipeline = ExportPipeline(settings, EntityKind.ORDERS)

    await pipeline.download(resume=True)
    checkpoint = pipeline.process(resume=True)

    print(f"Wrote {checkpoint.total_lines} lines to {checkpoint.output_file}")
"""

__all__ = [
    "RateLimitedFetcher",
    "MagentoClient",
    "EntitySource",
    "OrderSource",
    "CustomerSource",
    "DurableUnitStore",
    "CheckpointStore",
    "DownloadStage",
    "ProcessStage",
    "CsvOutputSink",
    "ExportPipeline",
]
