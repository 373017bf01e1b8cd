"""Relocates Firehose-delivered log batches to canonical S3 keys."""
