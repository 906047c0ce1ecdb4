import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(max_length=200, unique=True)),
                ("sku", models.CharField(blank=True, max_length=64)),
                ("image_url", models.URLField(blank=True, max_length=500)),
                ("price", models.PositiveBigIntegerField()),
                ("stock_quantity", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("allow_deposit", models.BooleanField(default=False)),
                (
                    "deposit_type",
                    models.CharField(
                        blank=True,
                        choices=[("percent", "Percent"), ("fixed", "Fixed")],
                        max_length=16,
                    ),
                ),
                ("deposit_percentage", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("deposit_amount", models.PositiveBigIntegerField(blank=True, null=True)),
                ("deposit_due_hours", models.PositiveIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "products",
                "ordering": ["name"],
            },
        ),
    ]
