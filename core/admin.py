from django.contrib import admin

from .models import DocumentSequence


@admin.register(DocumentSequence)
class DocumentSequenceAdmin(admin.ModelAdmin):
    list_display = ("scope", "last_value", "updated_at")
    search_fields = ("scope",)
    readonly_fields = ("scope", "last_value", "updated_at")
