"""
Index sync service keeping OpenSearch in step with the S3 object store.

This module handles the flow:
1. Receive an object store notification (or a replayed change event)
2. Verify the stored object still matches the notification's ETag
3. Decode the stored payload and upsert it with its external version
4. Delete index documents for removed objects
5. Drain failed notifications from the retry queue on a time budget
6. Reindex whole collections through the retry queue with a checkpoint
"""
