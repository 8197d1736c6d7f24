"""Document sync pipeline: models, chunking, change ledger and orchestration."""
