"""Django admin configuration for media app.

Records are read-only here: the lifecycle manager is their only writer.
The purge action routes through it like the retention sweeper does.
"""

from django.contrib import admin, messages
from django.db.models import QuerySet
from django.http import HttpRequest

from server.apps.media.exceptions import MediaError
from server.apps.media.logic.lifecycle import LifecycleManager
from server.apps.media.models import MediaRecord, MediaState


@admin.register(MediaRecord)
class MediaRecordAdmin(admin.ModelAdmin[MediaRecord]):
    """Admin interface for MediaRecord model."""

    list_display = [
        'object_id',
        'user_id',
        'kind',
        'state',
        'created_at',
        'deleted_at',
    ]

    list_filter = [
        'state',
        'kind',
        'created_at',
    ]

    search_fields = [
        'user_id',
        'object_id',
    ]

    readonly_fields = [
        'user_id',
        'object_id',
        'extension',
        'kind',
        'state',
        'created_at',
        'deleted_at',
        'modified_at',
    ]

    fieldsets = (
        ('Object', {
            'fields': ('user_id', 'object_id', 'extension', 'kind'),
        }),
        ('Lifecycle', {
            'fields': ('state', 'created_at', 'deleted_at', 'modified_at'),
        }),
    )

    actions = ['purge_selected']

    def has_add_permission(self, request: HttpRequest) -> bool:
        """Records are only created by ingest."""
        return False

    def has_delete_permission(
        self,
        request: HttpRequest,
        obj: MediaRecord | None = None,
    ) -> bool:
        """Deleting rows directly would orphan their files."""
        return False

    @admin.action(description='Purge selected binned media')
    def purge_selected(
        self,
        request: HttpRequest,
        queryset: QuerySet[MediaRecord],
    ) -> None:
        """Permanently delete selected Binned objects.

        Args:
            request: HTTP request.
            queryset: Selected records; Active ones are skipped.
        """
        manager = LifecycleManager.from_settings()
        purged = 0
        try:
            for record in queryset.filter(state=MediaState.BINNED):
                try:
                    manager.purge(record.user_id, record.object_id)
                except MediaError as error:
                    self.message_user(request, str(error), messages.WARNING)
                else:
                    purged += 1
        finally:
            manager.close()

        self.message_user(
            request,
            f'Purged {purged} media objects',
            messages.SUCCESS,
        )
