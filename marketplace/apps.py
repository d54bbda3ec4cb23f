from django.apps import AppConfig


class MarketplaceConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'marketplace'
    verbose_name = 'Farm Equipment Marketplace'

    def ready(self):
        # Register domain event receivers
        from . import signals  # noqa: F401
