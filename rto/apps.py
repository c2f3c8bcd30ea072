from django.apps import AppConfig


class RtoConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rto"
    verbose_name = "Rent to own"
