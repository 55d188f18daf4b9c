"""
Account models.

- User: email-based account (identity only, no profile data)
- Profile: directory identity shown wherever a sender or member appears

Related files:
    - managers.py: UserManager (email-based creation)
    - services.py: DirectoryService (resolve / search)
    - signals.py: auto-create Profile, invalidate directory cache
"""

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from accounts.managers import UserManager
from core.models import BaseModel


class EntityType(models.TextChoices):
    """Kinds of accounts on the platform."""

    PATIENT = "patient", "Patient"
    DOCTOR = "doctor", "Doctor"
    PHARMACY = "pharmacy", "Pharmacy"
    LABORATORY = "laboratory", "Laboratory"
    CLINIC = "clinic", "Clinic"
    BUSINESS = "business", "Business"
    ADMIN = "admin", "Admin"
    NURSE = "nurse", "Nurse"
    AMBULANCE = "ambulance", "Ambulance"
    PHARMA_SUPPLIER = "pharma_supplier", "Pharma supplier"
    EQUIPMENT_SUPPLIER = "equipment_supplier", "Equipment supplier"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Account using email as the primary identifier.

    Display data lives on Profile so that the directory can be cached and
    searched without touching authentication columns.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this account is active. Inactive accounts are hidden from the directory.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )
    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the account was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        try:
            return self.profile.display_name or self.email
        except Profile.DoesNotExist:
            return self.email

    def get_short_name(self):
        return self.email.split("@")[0]

    @property
    def is_patient(self) -> bool:
        try:
            return self.profile.entity_type == EntityType.PATIENT
        except Profile.DoesNotExist:
            return False


class Profile(BaseModel):
    """
    Directory identity for a user.

    Fields:
        user: OneToOne link to User (also the primary key)
        display_name: Name shown to other users
        entity_type: Account kind (patient, doctor, pharmacy, ...)
        avatar_url: Public avatar URL
        search_text: Lowercased haystack for directory search, derived on save
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="profile",
        primary_key=True,
        help_text="User this profile belongs to",
    )
    display_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Name shown to other users",
    )
    entity_type = models.CharField(
        max_length=32,
        choices=EntityType.choices,
        default=EntityType.PATIENT,
        db_index=True,
        help_text="Kind of account (patient, doctor, pharmacy, ...)",
    )
    avatar_url = models.URLField(
        max_length=500,
        blank=True,
        help_text="Public avatar URL",
    )
    search_text = models.CharField(
        max_length=512,
        blank=True,
        db_index=True,
        editable=False,
        help_text="Lowercased search haystack (display name, email, type)",
    )

    class Meta:
        db_table = "accounts_profile"
        verbose_name = "profile"
        verbose_name_plural = "profiles"

    def __str__(self):
        return self.display_name or f"Profile({self.user_id})"

    def build_search_text(self) -> str:
        parts = [self.display_name, self.user.email, self.get_entity_type_display()]
        return " ".join(part for part in parts if part).lower()

    def save(self, *args, **kwargs):
        self.search_text = self.build_search_text()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "search_text" not in update_fields:
            kwargs["update_fields"] = [*update_fields, "search_text"]
        super().save(*args, **kwargs)
