from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """
    User model

    Payment webhooks identify buyers by email only, so the address is unique
    and doubles as the profile lookup key.
    """
    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    # Profile information
    full_name = models.CharField(max_length=200, blank=True, null=True, verbose_name="Full Name")
    avatar = models.URLField(blank=True, null=True, verbose_name="Avatar URL")
    phone = models.CharField(max_length=20, blank=True, null=True, verbose_name="Phone Number")
    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email']

    class Meta:
        db_table = 'user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return self.username

    @classmethod
    def find_by_email(cls, email):
        """Return the active user registered under ``email`` (case-insensitive), if any."""
        if not email:
            return None
        return cls.objects.filter(email__iexact=email.strip(), is_active=True).first()
