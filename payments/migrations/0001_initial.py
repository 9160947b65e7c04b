import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        db_index=True,
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("reference", models.CharField(db_index=True, max_length=100, unique=True)),
                (
                    "transaction_request_id",
                    models.CharField(db_index=True, max_length=100, unique=True),
                ),
                (
                    "merchant_request_id",
                    models.CharField(blank=True, db_index=True, max_length=100, null=True),
                ),
                (
                    "checkout_request_id",
                    models.CharField(blank=True, db_index=True, max_length=100, null=True),
                ),
                (
                    "transaction_id",
                    models.CharField(blank=True, db_index=True, max_length=100, null=True),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("currency", models.CharField(default="KES", max_length=10)),
                ("phone", models.CharField(db_index=True, max_length=15)),
                ("email", models.EmailField(max_length=254)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("result_code", models.CharField(blank=True, max_length=16, null=True)),
                (
                    "result_description",
                    models.CharField(blank=True, max_length=255, null=True),
                ),
                ("receipt_number", models.CharField(blank=True, max_length=100, null=True)),
                ("transaction_date", models.CharField(blank=True, max_length=50, null=True)),
                ("gateway_response", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
