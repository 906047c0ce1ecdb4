import uuid
from django.db import models


class Product(models.Model):
    """Catalog entry that owns the stock counter and deposit eligibility.

    ``stock_quantity`` is a PositiveIntegerField so the database itself
    rejects any write that would drive stock below zero.
    """

    class DepositType(models.TextChoices):
        PERCENT = "percent"
        FIXED = "fixed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True)
    sku = models.CharField(max_length=64, blank=True)
    image_url = models.URLField(max_length=500, blank=True)
    price = models.PositiveBigIntegerField()
    stock_quantity = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    allow_deposit = models.BooleanField(default=False)
    deposit_type = models.CharField(max_length=16, choices=DepositType.choices, blank=True)
    deposit_percentage = models.PositiveSmallIntegerField(null=True, blank=True)
    deposit_amount = models.PositiveBigIntegerField(null=True, blank=True)
    deposit_due_hours = models.PositiveIntegerField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["name"]

    def __str__(self):
        return self.name
