from django.contrib import admin

from .models import Ticket, TicketComment


class TicketCommentInline(admin.TabularInline):
    model = TicketComment
    extra = 0


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = (
        "ticket_number",
        "title",
        "client",
        "assigned_to",
        "category",
        "priority",
        "status",
        "created_at",
    )
    list_filter = ("status", "priority", "category")
    search_fields = ("ticket_number", "title", "client__username")
    readonly_fields = ("ticket_number", "resolved_at", "closed_at")
    inlines = [TicketCommentInline]
