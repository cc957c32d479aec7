"""Application modules.

- video: Video records, ingestion and direct-to-storage uploads
- transcoding: MP4 transcode pipeline, thumbnails and the polling worker
"""
