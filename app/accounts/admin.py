"""
Django admin configuration for accounts.
"""

from django.contrib import admin

from accounts.models import Profile, User


class ProfileInline(admin.StackedInline):
    """Inline directory profile on the user page."""

    model = Profile
    can_delete = False
    readonly_fields = ["search_text", "created_at", "updated_at"]


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """Admin interface for email-based users."""

    list_display = ["email", "is_active", "is_staff", "date_joined"]
    list_filter = ["is_active", "is_staff"]
    search_fields = ["email", "profile__display_name"]
    ordering = ["-date_joined"]
    readonly_fields = ["date_joined", "updated_at", "last_login"]
    exclude = ["password", "groups", "user_permissions"]
    inlines = [ProfileInline]


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    """Admin interface for directory profiles."""

    list_display = ["user", "display_name", "entity_type", "updated_at"]
    list_filter = ["entity_type"]
    search_fields = ["display_name", "user__email"]
    readonly_fields = ["search_text", "created_at", "updated_at"]
    raw_id_fields = ["user"]
