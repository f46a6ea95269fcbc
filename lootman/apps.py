from django.apps import AppConfig


class LootmanConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "lootman"
    verbose_name = "Lootman - Awards & Choices"
