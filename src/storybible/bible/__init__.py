"""Story Bible — per-project aggregate of entities, narrative threads and style hints.

Pipeline for every mutating call:
    storage.get → schema.migrate → merge.* → quota.prune → storage.set

Search and snapshot (``projection``) are read-only and never write.
"""
