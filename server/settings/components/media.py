"""Media lifecycle settings."""

from server.settings.components import config

# Days an object stays in the bin before the sweeper purges it
MEDIA_RETENTION_DAYS = config('MEDIA_RETENTION_DAYS', cast=int, default=7)

# Thumbnail geometry and generation bound
MEDIA_THUMBNAIL_SIZE = config('MEDIA_THUMBNAIL_SIZE', cast=int, default=412)
MEDIA_THUMBNAIL_TIMEOUT = config(
    'MEDIA_THUMBNAIL_TIMEOUT',
    cast=float,
    default=10.0,
)

# Bounded retry of the thumbnail read path (one retry after a fixed delay)
MEDIA_THUMBNAIL_READ_RETRY = {
    'ATTEMPTS': config('MEDIA_THUMBNAIL_READ_ATTEMPTS', cast=int, default=1),
    'DELAY': config('MEDIA_THUMBNAIL_READ_DELAY', cast=float, default=5.0),
}

# Retention sweeper
MEDIA_SWEEP_INTERVAL = config('MEDIA_SWEEP_INTERVAL', cast=int, default=3600)
MEDIA_SWEEP_BATCH_SIZE = config(
    'MEDIA_SWEEP_BATCH_SIZE',
    cast=int,
    default=1000,
)

# Minimum age in seconds of an unrecorded file before reconciliation
# treats it as an orphan; must exceed MEDIA_THUMBNAIL_TIMEOUT plus the
# index write of an ingest running in another process
MEDIA_RECONCILE_GRACE = config('MEDIA_RECONCILE_GRACE', cast=int, default=600)

# Extension allow-lists, lowercase without the dot
MEDIA_IMAGE_EXTENSIONS = ('jpg', 'jpeg', 'png', 'webp', 'gif')
MEDIA_VIDEO_EXTENSIONS = ('mp4', 'mov', 'webm', 'm4v', 'mkv', 'avi')
