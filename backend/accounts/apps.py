from django.apps import AppConfig


class AccountConfig(AppConfig):
    """
    Account app configuration

    Holds the user model that payment webhooks resolve buyers against.
    """
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'accounts'
    verbose_name = 'Accounts'
