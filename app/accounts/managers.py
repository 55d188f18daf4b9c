"""
Custom user manager for email-based accounts.

Directory fields (display_name, entity_type, avatar_url) may be passed to
create_user(); they are written to the Profile that the post_save signal
creates for every new user.
"""

from django.contrib.auth.models import BaseUserManager

PROFILE_FIELDS = ("display_name", "entity_type", "avatar_url")


class UserManager(BaseUserManager):
    """
    Manager for User with email as the primary identifier.

    Usage:
        user = User.objects.create_user(
            email="dr.amrani@example.com",
            password="securepassword",
            display_name="Dr. Amrani",
            entity_type="doctor",
        )
    """

    def create_user(self, email, password=None, **extra_fields):
        """
        Create and save a user with the given email and password.

        Raises:
            ValueError: If email is not provided
        """
        if not email:
            raise ValueError("The Email field must be set")

        email = self.normalize_email(email)

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)

        profile_fields = {
            name: extra_fields.pop(name)
            for name in PROFILE_FIELDS
            if name in extra_fields
        }

        user = self.model(email=email, **extra_fields)

        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()

        user.save(using=self._db)

        if profile_fields:
            profile = user.profile
            for name, value in profile_fields.items():
                setattr(profile, name, value)
            profile.save()

        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create and save a superuser with the given email and password.

        Raises:
            ValueError: If is_staff or is_superuser is not True
        """
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("entity_type", "admin")

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)
