# Services layer: ingestion, linking, search sync and catalog queries
