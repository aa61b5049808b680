"""In-memory fakes and log builders for exercising bestcrow without a node."""
